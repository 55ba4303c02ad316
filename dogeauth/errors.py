"""
Exceptions raised by the access gate.

Authentication denials are not exceptions; they are returned as ``Decision``
values. The classes here cover malformed input inside the verifier and the
one system-level failure: an unusable allow-list source.
"""

from typing import Any, Dict, Optional


class AuthGateError(Exception):
    """Base exception with a stable error code and JSON rendering."""

    error_code = "auth_gate_error"

    def __init__(self, message: str, hint: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.hint = hint
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.error_code,
            "message": self.message,
        }
        if self.hint:
            result["hint"] = self.hint
        if self.details:
            result["details"] = self.details
        return result


class MalformedSignature(AuthGateError):
    """Signature has the wrong length, encoding or header byte."""

    error_code = "malformed_signature"


class AllowListUnavailable(AuthGateError):
    """The allow-list source is unreachable or corrupt (server misconfiguration)."""

    error_code = "allow_list_unavailable"
