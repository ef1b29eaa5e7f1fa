"""
Oracle Delivery Webhook
Flask routes through which a remote randomness oracle delivers values

Usage:
    from raffle_ledger.webhooks import register_oracle_routes

    register_oracle_routes(app, ledger, secret=ORACLE_WEBHOOK_SECRET)

The oracle signs the raw request body with HMAC-SHA256 using the shared
secret and sends the hex digest in X-Oracle-Signature. A valid signature is
what makes the request count as coming from the configured oracle identity.
"""

import hashlib
import hmac
import json
import logging
from typing import Optional

from flask import Blueprint, Flask, jsonify, request

from .config import ORACLE_WEBHOOK_SECRET
from .exceptions import LedgerError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Oracle-Signature"

oracle_webhooks_bp = Blueprint('oracle_webhooks', __name__)

# Set via register_oracle_routes
_ledger = None
_secret: Optional[str] = None


def sign_payload(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body"""
    return hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()


def verify_oracle_signature(raw_body: bytes, signature_header: str, secret: str) -> bool:
    """
    Verify the oracle's HMAC signature.

    Returns:
        False when no secret is configured, the header is missing, or the digest differs
    """
    if not secret:
        logger.error("ORACLE_WEBHOOK_SECRET is not set, rejecting oracle delivery")
        return False
    if not signature_header:
        return False

    expected = sign_payload(raw_body, secret)
    return hmac.compare_digest(expected, signature_header.strip().lower())


def _parse_values(values):
    if not isinstance(values, list) or not values:
        raise ValueError("values must be a non-empty list")
    parsed = []
    for value in values:
        if isinstance(value, bool):
            raise ValueError("values must be integers")
        parsed.append(int(value))
        if parsed[-1] < 0:
            raise ValueError("values must be non-negative")
    return parsed


@oracle_webhooks_bp.route('/oracle/fulfill', methods=['POST'])
def fulfill_randomness():
    """
    Deliver randomness for a pending request.

    Body:
        {"request_id": "...", "values": [123, ...]}

    Returns:
        200 with the winner (null for an ignored delivery)
        400 malformed body
        401 bad or missing signature
        409 ledger rejected the delivery
    """
    # Raw body first: the signature covers the exact bytes
    raw_body: bytes = request.get_data(cache=True)

    if not verify_oracle_signature(raw_body, request.headers.get(SIGNATURE_HEADER, ""), _secret):
        logger.warning("🚫 Oracle delivery with invalid signature")
        return jsonify({'success': False, 'error': 'invalid signature'}), 401

    try:
        payload = json.loads(raw_body or b"{}")
        request_id = payload['request_id']
        values = _parse_values(payload.get('values'))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"Malformed oracle delivery: {e}")
        return jsonify({'success': False, 'error': f'malformed delivery: {e}'}), 400

    try:
        winner = _ledger.on_randomness_delivered(str(request_id), values, caller=_ledger.oracle_address)
    except LedgerError as e:
        logger.warning(f"Oracle delivery {request_id} rejected: {e}")
        return jsonify({
            'success': False,
            'error': type(e).__name__,
            'message': str(e),
        }), 409

    return jsonify({'success': True, 'request_id': str(request_id), 'winner': winner}), 200


@oracle_webhooks_bp.route('/oracle/health', methods=['GET'])
def oracle_health():
    return jsonify({'status': 'healthy'}), 200


def register_oracle_routes(app, ledger, secret=None):
    """
    Register oracle routes with a Flask app.

    Args:
        app: Flask application
        ledger: RaffleLedger receiving deliveries
        secret: Shared HMAC secret (defaults to ORACLE_WEBHOOK_SECRET)
    """
    global _ledger, _secret
    _ledger = ledger
    _secret = ORACLE_WEBHOOK_SECRET if secret is None else secret

    app.register_blueprint(oracle_webhooks_bp)
    logger.info("✅ Registered oracle delivery route at /oracle/fulfill")


def create_app(ledger, secret=None):
    """Standalone Flask app serving only the oracle routes"""
    app = Flask(__name__)
    register_oracle_routes(app, ledger, secret=secret)
    return app
