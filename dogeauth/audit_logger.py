"""
Audit logging for the access gate.

This is a basic implementation that logs to Python's logging system.
Challenge messages and signatures are never written to the audit trail;
addresses and challenge id prefixes are.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    # Add console handler if not already present
    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()

    _logger.info("Audit logger initialized")
    return _audit_logger


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


class AuditLogger:
    """
    Audit logging interface for security events.

    Every authentication decision, challenge issuance and allow-list change
    goes through here so operators can reconstruct who opened what, when.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_challenge_issued(self, challenge_id: str, ip_address: Optional[str] = None):
        """Log challenge issuance (id prefix only)."""
        self.logger.info(f"CHALLENGE_ISSUED | id={challenge_id[:12]}... | ip={ip_address}")

    def log_decision(
        self,
        address: Optional[str],
        outcome: str,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ):
        """Log an authentication decision."""
        msg = f"AUTH_DECISION | address={address} | outcome={outcome.upper()}"
        if reason:
            msg += f" | reason={reason}"
        msg += f" | ip={ip_address}"
        self.logger.info(msg)

    def log_action_failed(self, address: str, error: str):
        """Log failure of the post-grant action (door, ticket, webhook)."""
        self.logger.error(f"ACTION_FAILED | address={address} | error={error}")

    def log_allow_list_loaded(self, count: int, network: Optional[str] = None):
        """Log allow-list (re)load."""
        self.logger.info(f"ALLOW_LIST_LOADED | count={count} | network={network}")

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={details}")

    def log_rate_limit_exceeded(self, ip_address: str, endpoint: str):
        """Log rate limit violation."""
        self.logger.warning(f"RATE_LIMIT_EXCEEDED | ip={ip_address} | endpoint={endpoint}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
