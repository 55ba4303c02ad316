"""Challenge storage backends.

Two implementations share the ``ChallengeStore`` interface: an in-process
map guarded by a lock (the default, also used by the test-suite) and a Redis
store for deployments running several gateway instances behind one
load balancer.

``take`` is the single point of consumption. It removes the challenge and
returns it at most once, so two verification attempts racing on the same
challenge can never both proceed.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional

import redis

from dogeauth.models import Challenge, ChallengeState

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def _tombstone_deadline(challenge: Challenge) -> float:
    return challenge.expires_at + (challenge.expires_at - challenge.issued_at)


class ChallengeStore(ABC):
    """Holds outstanding challenges keyed by challenge id."""

    @abstractmethod
    def put(self, challenge: Challenge) -> None:
        """Register a freshly issued challenge."""

    @abstractmethod
    def take(self, challenge_id: str) -> Optional[Challenge]:
        """Atomically remove and return a pending, unexpired challenge.

        Returns ``None`` for unknown, expired or already consumed ids; never
        raises for those cases.
        """

    @abstractmethod
    def sweep(self, now: Optional[float] = None) -> int:
        """Drop every challenge whose ``expires_at`` is before ``now``.

        Returns:
            Number of challenges removed
        """

    @abstractmethod
    def get_expired(self, challenge_id: str) -> Optional[Challenge]:
        """Return the ``EXPIRED`` record of a challenge that lapsed unconsumed."""

    def was_expired(self, challenge_id: str) -> bool:
        """True if the id was issued and then expired without being consumed."""
        return self.get_expired(challenge_id) is not None

    def ping(self) -> bool:
        return True


class InMemoryChallengeStore(ChallengeStore):
    """Thread-safe in-process store.

    Expired entries are kept as ``EXPIRED`` tombstones for one further TTL
    window so that a late client can be told its challenge expired rather
    than that it never existed. Tombstones are purged by ``sweep``.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._challenges: Dict[str, Challenge] = {}
        self._tombstones: Dict[str, Challenge] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def put(self, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[challenge.id] = challenge

    def take(self, challenge_id: str) -> Optional[Challenge]:
        now = self._clock()
        with self._lock:
            challenge = self._challenges.pop(challenge_id, None)
            if challenge is None:
                return None
            if challenge.is_expired(now):
                self._bury(challenge)
                return None
        return challenge.with_state(ChallengeState.CONSUMED)

    def sweep(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            expired = [c for c in self._challenges.values() if c.expires_at < now]
            for challenge in expired:
                del self._challenges[challenge.id]
                self._bury(challenge)

            stale = [cid for cid, record in self._tombstones.items() if _tombstone_deadline(record) < now]
            for cid in stale:
                del self._tombstones[cid]

        if expired:
            logger.debug(f"Swept {len(expired)} expired challenges")
        return len(expired)

    def get_expired(self, challenge_id: str) -> Optional[Challenge]:
        with self._lock:
            return self._tombstones.get(challenge_id)

    def _bury(self, challenge: Challenge) -> None:
        # caller holds the lock
        self._tombstones[challenge.id] = challenge.with_state(ChallengeState.EXPIRED)


class RedisChallengeStore(ChallengeStore):
    """Redis-backed store shared by several gateway instances.

    Records live for twice their TTL so an expired-but-unconsumed challenge can
    still be recognised as expired; consumption uses a MULTI/EXEC transaction
    of GET and DEL, which Redis executes atomically.
    """

    KEY_PREFIX = "challenge:"
    TOMBSTONE_PREFIX = "challenge-expired:"

    def __init__(self, client: "redis.Redis", clock: Clock = time.time):
        self._client = client
        self._clock = clock

    def _key(self, challenge_id: str) -> str:
        return f"{self.KEY_PREFIX}{challenge_id}"

    def _tombstone_key(self, challenge_id: str) -> str:
        return f"{self.TOMBSTONE_PREFIX}{challenge_id}"

    @staticmethod
    def _ttl_seconds(challenge: Challenge) -> int:
        return max(1, math.ceil(challenge.expires_at - challenge.issued_at))

    def put(self, challenge: Challenge) -> None:
        ttl = self._ttl_seconds(challenge)
        self._client.set(self._key(challenge.id), json.dumps(challenge.to_dict()), ex=ttl * 2)

    def take(self, challenge_id: str) -> Optional[Challenge]:
        pipe = self._client.pipeline(transaction=True)
        pipe.get(self._key(challenge_id))
        pipe.delete(self._key(challenge_id))
        raw, _deleted = pipe.execute()
        if not raw:
            return None

        challenge = Challenge.from_dict(json.loads(raw))
        if challenge.is_expired(self._clock()):
            self._bury(challenge)
            return None
        return challenge.with_state(ChallengeState.CONSUMED)

    def sweep(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        removed = 0
        for key in self._client.scan_iter(match=f"{self.KEY_PREFIX}*"):
            raw = self._client.get(key)
            if not raw:
                continue
            challenge = Challenge.from_dict(json.loads(raw))
            if challenge.expires_at < now and self._client.delete(key):
                self._bury(challenge)
                removed += 1
        return removed

    def get_expired(self, challenge_id: str) -> Optional[Challenge]:
        raw = self._client.get(self._tombstone_key(challenge_id))
        return Challenge.from_dict(json.loads(raw)) if raw else None

    def was_expired(self, challenge_id: str) -> bool:
        return bool(self._client.exists(self._tombstone_key(challenge_id)))

    def ping(self) -> bool:
        return bool(self._client.ping())

    def _bury(self, challenge: Challenge) -> None:
        record = challenge.with_state(ChallengeState.EXPIRED)
        self._client.set(
            self._tombstone_key(challenge.id), json.dumps(record.to_dict()), ex=self._ttl_seconds(challenge)
        )


def create_redis_client(cfg: Mapping[str, Any]) -> "redis.Redis":
    """
    Build a Redis client from configuration.

    Socket timeouts are bounded by ``REQUEST_DEADLINE_SECONDS`` so a slow
    store cannot hold a verification request open indefinitely.
    """
    deadline = cfg.get("REQUEST_DEADLINE_SECONDS", 5)
    if cfg.get("REDIS_URL"):
        return redis.Redis.from_url(
            str(cfg["REDIS_URL"]),
            decode_responses=True,
            socket_connect_timeout=deadline,
            socket_timeout=deadline,
        )

    return redis.Redis(
        host=cfg.get("REDIS_HOST", "localhost"),
        port=cfg.get("REDIS_PORT", 6379),
        password=cfg.get("REDIS_PASSWORD"),
        db=cfg.get("REDIS_DB", 0),
        decode_responses=True,  # Return strings instead of bytes
        socket_connect_timeout=deadline,
        socket_timeout=deadline,
        max_connections=50,
        health_check_interval=30,
    )


def build_challenge_store(cfg: Mapping[str, Any], clock: Clock = time.time) -> ChallengeStore:
    """
    Create the challenge store selected by ``CHALLENGE_STORE``.

    Outside production an unreachable Redis falls back to in-memory storage;
    in production the error propagates, since a per-process store would break
    single-use guarantees across instances.
    """
    backend = str(cfg.get("CHALLENGE_STORE", "memory")).lower()
    if backend != "redis":
        return InMemoryChallengeStore(clock=clock)

    try:
        client = create_redis_client(cfg)
        client.ping()
        logger.info("Challenge store: redis")
        return RedisChallengeStore(client, clock=clock)
    except redis.RedisError as e:
        if cfg.get("FLASK_ENV") == "production":
            raise
        logger.error(f"Failed to initialize Redis challenge store: {e}")
        logger.warning("Falling back to in-memory challenge storage")
        return InMemoryChallengeStore(clock=clock)
