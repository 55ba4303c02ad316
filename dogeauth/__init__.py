"""
Address-signature access gate.

Grants access to a door, ticket or service to whoever proves control of an
allow-listed wallet address by signing a single-use challenge.
"""

from dogeauth.models import Challenge, Decision, DenialReason, Outcome, VerificationRequest

__all__ = ["Challenge", "Decision", "DenialReason", "Outcome", "VerificationRequest"]
__version__ = "1.0.0"
