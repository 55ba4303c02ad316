"""
Authentication engine: challenge lookup, signature check, allow-list check.

Per request the engine walks

    Received -> ChallengeLookup -> SignatureCheck -> AllowListCheck -> Decided

and every step that fails ends in a denied ``Decision`` rather than an
exception. The challenge is consumed as soon as it is looked up, whatever the
outcome, so a challenge can be used for exactly one attempt. The allow-list
is only consulted after the signature has been verified.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Optional, Set

from dogeauth.actions import OnGranted
from dogeauth.allowlist import AllowListGate
from dogeauth.audit_logger import AuditLogger, get_audit_logger
from dogeauth.challenges import ChallengeIssuer, challenge_id_for
from dogeauth.crypto import SignatureVerifier, canonical_address
from dogeauth.errors import MalformedSignature
from dogeauth.models import Challenge, Decision, DenialReason, VerificationRequest
from dogeauth.storage import ChallengeStore

logger = logging.getLogger(__name__)


class AuthenticationEngine:
    """Orchestrates one verification attempt end to end."""

    def __init__(
        self,
        store: ChallengeStore,
        issuer: ChallengeIssuer,
        verifier: SignatureVerifier,
        gate: AllowListGate,
        on_granted: Optional[OnGranted] = None,
        action_workers: int = 4,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.issuer = issuer
        self.verifier = verifier
        self.gate = gate
        self.on_granted = on_granted
        self._audit = audit_logger or get_audit_logger()
        self._executor = ThreadPoolExecutor(max_workers=action_workers, thread_name_prefix="grant-action")
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    def issue_challenge(self, ip_address: Optional[str] = None) -> Challenge:
        """Issue a fresh single-use challenge."""
        challenge = self.issuer.issue()
        self._audit.log_challenge_issued(challenge.id, ip_address=ip_address)
        return challenge

    def verify(self, request: VerificationRequest, ip_address: Optional[str] = None) -> Decision:
        """
        Decide a verification request.

        Args:
            request: Address, message and signature sent by the client
            ip_address: Client address for the audit trail

        Returns:
            Granted or denied decision

        Raises:
            AllowListUnavailable: If the allow-list source is broken; this is a
                server fault, not a denial
        """
        if request.missing_fields():
            return self._decide(Decision.denied(DenialReason.MISSING_FIELDS), request, ip_address)

        challenge_id = challenge_id_for(request.message)
        challenge = self.store.take(challenge_id)
        if challenge is None:
            reason = (
                DenialReason.CHALLENGE_EXPIRED
                if self.store.was_expired(challenge_id)
                else DenialReason.CHALLENGE_NOT_FOUND
            )
            return self._decide(Decision.denied(reason), request, ip_address)

        # From here on the challenge is consumed, whatever the outcome.
        try:
            valid = self.verifier.verify(request.claimed_address, challenge.message, request.signature)
        except MalformedSignature as e:
            logger.debug(f"Malformed signature for {request.claimed_address}: {e.message}")
            return self._decide(Decision.denied(DenialReason.MALFORMED_SIGNATURE), request, ip_address)

        if not valid:
            return self._decide(Decision.denied(DenialReason.INVALID_SIGNATURE), request, ip_address)

        if not self.gate.is_allowed(request.claimed_address):
            return self._decide(Decision.denied(DenialReason.ADDRESS_NOT_ALLOWED), request, ip_address)

        decision = self._decide(Decision.granted(canonical_address(request.claimed_address)), request, ip_address)
        self._dispatch(decision)
        return decision

    def sweep(self) -> int:
        """Evict expired challenges from the store."""
        return self.store.sweep()

    def drain(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for outstanding grant actions.

        Returns:
            True if every action finished within ``timeout``
        """
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_actions: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_actions)

    def _decide(self, decision: Decision, request: VerificationRequest, ip_address: Optional[str]) -> Decision:
        self._audit.log_decision(
            address=request.claimed_address or None,
            outcome=decision.outcome.value,
            reason=decision.reason.value if decision.reason else None,
            ip_address=ip_address,
        )
        return decision

    def _dispatch(self, decision: Decision) -> None:
        """Run the grant action off the request thread, exactly once."""
        if self.on_granted is None:
            return

        future = self._executor.submit(self._run_action, decision.address)
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _run_action(self, address: str) -> None:
        try:
            self.on_granted(address)
        except Exception as e:
            # the decision is already final; action failures are only reported
            logger.error(f"Grant action failed for {address}: {e}", exc_info=True)
            self._audit.log_action_failed(address, str(e))
