"""
Authentication Blueprint - Challenge Issuing and Signature Verification

HTTP surface of the engine: a kiosk fetches a challenge, shows its id as a
QR code and hands the message to the client; the client posts back its
address, the message and the signature.
"""

import logging

from flask import Blueprint, jsonify, request

from dogeauth.blueprints.admin import challenges_issued, decisions_total
from dogeauth.factory import get_engine
from dogeauth.models import DenialReason, VerificationRequest
from dogeauth.security import limiter

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

# Rate limiting decorators
VERIFY_RATE_LIMIT = "10 per minute"
CHALLENGE_RATE_LIMIT = "30 per minute"

DENIAL_STATUS = {
    DenialReason.MISSING_FIELDS: 400,
    DenialReason.MALFORMED_SIGNATURE: 400,
    DenialReason.CHALLENGE_NOT_FOUND: 400,
    DenialReason.CHALLENGE_EXPIRED: 400,
    DenialReason.INVALID_SIGNATURE: 401,
    DenialReason.ADDRESS_NOT_ALLOWED: 403,
}


@auth_bp.route("/generate-challenge", methods=["GET"])
@limiter.limit(CHALLENGE_RATE_LIMIT)
def generate_challenge():
    """
    Issue a single-use challenge.

    Returns:
        JSON with the public challenge id, the message to sign and its expiry
    """
    challenge = get_engine().issue_challenge(ip_address=request.remote_addr)
    challenges_issued.inc()

    return jsonify({
        "challenge": challenge.id,
        "message": challenge.message,
        "expires_at": int(challenge.expires_at),
    })


@auth_bp.route("/verify-signature", methods=["POST"])
@limiter.limit(VERIFY_RATE_LIMIT)
def verify_signature():
    """
    Verify a signed challenge and decide access.

    Expected JSON body:
        - address: Address the client controls
        - message: Challenge message exactly as issued
        - signature: 65-byte compact signature, base64 or hex

    Returns:
        JSON decision; 200 when granted, 4xx with the denial reason otherwise
    """
    verification = VerificationRequest.from_json(request.get_json(silent=True))
    decision = get_engine().verify(verification, ip_address=request.remote_addr)

    decisions_total.labels(
        outcome=decision.outcome.value,
        reason=decision.reason.value if decision.reason else "",
    ).inc()

    if decision.is_granted:
        return jsonify(decision.to_dict()), 200
    return jsonify(decision.to_dict()), DENIAL_STATUS.get(decision.reason, 403)
