"""
Data model for the address-signature access gate.

Challenges are the single-use messages a client signs, verification requests
carry the client's answer, and decisions are the engine's final verdict.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ChallengeState(Enum):
    """Lifecycle states of an issued challenge."""

    PENDING = "pending"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class Outcome(Enum):
    GRANTED = "granted"
    DENIED = "denied"


class DenialReason(Enum):
    """Expected, recoverable reasons an authentication attempt is denied."""

    MISSING_FIELDS = "missing_fields"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    CHALLENGE_EXPIRED = "challenge_expired"
    MALFORMED_SIGNATURE = "malformed_signature"
    INVALID_SIGNATURE = "invalid_signature"
    ADDRESS_NOT_ALLOWED = "address_not_allowed"


# Human readable text per reason, one fixed string per category.
DENIAL_MESSAGES: Dict[DenialReason, str] = {
    DenialReason.MISSING_FIELDS: "Missing required fields",
    DenialReason.CHALLENGE_NOT_FOUND: "Unknown or already used challenge",
    DenialReason.CHALLENGE_EXPIRED: "Challenge expired",
    DenialReason.MALFORMED_SIGNATURE: "Invalid signature format",
    DenialReason.INVALID_SIGNATURE: "Invalid signature",
    DenialReason.ADDRESS_NOT_ALLOWED: "Address not allowed",
}


@dataclass(frozen=True)
class Challenge:
    """
    A server-issued message that must be signed to prove key possession.

    Attributes:
        id: Hex SHA-256 of ``message``; safe to display publicly (QR code)
        message: Plaintext the client signs, ``<unix-millis>-<hex random>``
        issued_at: Unix timestamp (seconds) of creation
        expires_at: Unix timestamp (seconds) after which the challenge is dead
        state: Current lifecycle state
    """

    id: str
    message: str
    issued_at: float
    expires_at: float
    state: ChallengeState = ChallengeState.PENDING

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at

    def with_state(self, state: ChallengeState) -> "Challenge":
        return replace(self, state=state)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "message": self.message,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Challenge":
        return cls(
            id=data["id"],
            message=data["message"],
            issued_at=float(data["issued_at"]),
            expires_at=float(data["expires_at"]),
            state=ChallengeState(data.get("state", ChallengeState.PENDING.value)),
        )


@dataclass(frozen=True)
class VerificationRequest:
    """A client's answer to a challenge."""

    claimed_address: str
    message: str
    signature: str

    @classmethod
    def from_json(cls, data: Any) -> "VerificationRequest":
        """Build a request from a decoded JSON body; anything but an object counts as empty."""
        if not isinstance(data, dict):
            data = {}

        def _text(key: str) -> str:
            value = data.get(key)
            return value.strip() if isinstance(value, str) else ""

        return cls(
            claimed_address=_text("address"),
            message=_text("message"),
            signature=_text("signature"),
        )

    def missing_fields(self) -> bool:
        return not (self.claimed_address and self.message and self.signature)


@dataclass(frozen=True)
class Decision:
    """Final, immutable result of one verification attempt."""

    outcome: Outcome
    reason: Optional[DenialReason] = None
    address: Optional[str] = None
    decided_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def granted(cls, address: str) -> "Decision":
        return cls(outcome=Outcome.GRANTED, address=address)

    @classmethod
    def denied(cls, reason: DenialReason) -> "Decision":
        return cls(outcome=Outcome.DENIED, reason=reason)

    @property
    def is_granted(self) -> bool:
        return self.outcome is Outcome.GRANTED

    def to_dict(self) -> Dict[str, Any]:
        if self.is_granted:
            return {"status": self.outcome.value, "address": self.address, "action": "access_granted"}
        return {
            "status": self.outcome.value,
            "error": self.reason.value if self.reason else None,
            "message": DENIAL_MESSAGES.get(self.reason, "Access denied"),
        }
