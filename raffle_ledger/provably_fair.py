"""
Provably Fair Substitute Values
SHA-256 derived random values a manual resolver can publish together with
the seeds, so anyone can recompute the draw
"""

import hashlib
import hmac
import secrets
from typing import Dict, Any


def client_seed_for(raffle: Dict[str, Any]) -> str:
    """Client seed bound to the raffle's final state: id:entries_sold:max_entries"""
    return f"{raffle['id']}:{raffle['entries_sold']}:{raffle['max_entries']}"


def _derive(server_seed: str, client_seed: str, nonce: str) -> str:
    combined = f"{server_seed}:{client_seed}:{nonce}"
    return hashlib.sha256(combined.encode()).hexdigest()


def generate_substitute_value(raffle: Dict[str, Any], server_seed: str = None) -> Dict[str, Any]:
    """
    Generate a verifiable random value for resolve_by_random_value.

    Algorithm:
    1. server_seed: 64 hex chars from a cryptographically secure RNG (unless given)
    2. client_seed: "raffle_id:entries_sold:max_entries"
    3. nonce: raffle id
    4. proof_hash = SHA-256("server_seed:client_seed:nonce")
    5. value = proof_hash read as a 256-bit integer

    Args:
        raffle: Raffle snapshot (RaffleLedger.get_raffle)
        server_seed: Optional fixed seed (e.g. a published beacon output)

    Returns:
        Dictionary containing server_seed, client_seed, nonce, proof_hash,
        value, and winning_index when the raffle has entries
    """
    server_seed = server_seed or secrets.token_hex(32)
    client_seed = client_seed_for(raffle)
    nonce = str(raffle['id'])

    proof_hash = _derive(server_seed, client_seed, nonce)
    value = int(proof_hash, 16)

    return {
        'server_seed': server_seed,
        'client_seed': client_seed,
        'nonce': nonce,
        'proof_hash': proof_hash,
        'value': value,
        'winning_index': value % raffle['entries_sold'] if raffle['entries_sold'] else None,
    }


def verify_substitute_value(server_seed: str, client_seed: str, nonce: str,
                            expected_hash: str, expected_value: int) -> bool:
    """
    Recompute the hash and value from published seeds.

    Returns:
        True if both match, False otherwise
    """
    computed_hash = _derive(server_seed, client_seed, nonce)
    if not hmac.compare_digest(computed_hash, expected_hash):
        return False
    return int(computed_hash, 16) == expected_value
