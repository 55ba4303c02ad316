"""
Challenge issuing.

A challenge message is ``<unix-millis>-<hex random>``; its public id is the
SHA-256 of the message. The id is what a kiosk shows in a QR code, so it must
not reveal the message, and the random part is what makes the message
unguessable.
"""

import hashlib
import logging
import secrets
import threading
import time
from typing import Callable, Optional

from dogeauth.models import Challenge
from dogeauth.storage import ChallengeStore

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
MIN_RANDOM_BYTES = 16  # 128 bits


def challenge_id_for(message: str) -> str:
    """Return the public id (hex SHA-256) for a challenge message."""
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


class ChallengeIssuer:
    """Creates unique challenges and registers them with the store."""

    def __init__(
        self,
        store: ChallengeStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        random_bytes: int = MIN_RANDOM_BYTES,
        sweep_interval: Optional[float] = 60,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError(f"Challenge TTL must be positive (got {ttl_seconds!r})")
        if random_bytes < MIN_RANDOM_BYTES:
            raise ValueError(
                f"Challenges need at least {MIN_RANDOM_BYTES} random bytes (got {random_bytes!r})"
            )

        self.store = store
        self.ttl_seconds = ttl_seconds
        self.random_bytes = random_bytes
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._sweep_lock = threading.Lock()
        self._last_sweep = clock()

    def issue(self) -> Challenge:
        """
        Create a challenge, store it and return it.

        Returns:
            Pending challenge valid for ``ttl_seconds``
        """
        self._maybe_sweep()

        now = self._clock()
        message = f"{int(now * 1000)}-{secrets.token_hex(self.random_bytes)}"
        challenge = Challenge(
            id=challenge_id_for(message),
            message=message,
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )
        self.store.put(challenge)
        return challenge

    def _maybe_sweep(self) -> None:
        """Best-effort cleanup of expired challenges to avoid unbounded growth."""
        if not self.sweep_interval:
            return

        now = self._clock()
        with self._sweep_lock:
            if now - self._last_sweep < self.sweep_interval:
                return
            self._last_sweep = now

        removed = self.store.sweep(now)
        if removed:
            logger.info(f"Expired challenges swept: {removed}")
