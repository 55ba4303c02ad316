"""
Allow-list of addresses that are granted access.

The gate keeps an immutable set of canonical addresses and swaps it as a
whole on refresh, so readers never see a half-updated list. Where the list
comes from (a JSON file, an environment variable) is the job of a source
callable returning the current addresses.
"""

import json
import logging
import os
import threading
import time
from typing import Callable, FrozenSet, Iterable, List, Optional, Set

from dogeauth.audit_logger import AuditLogger, get_audit_logger
from dogeauth.crypto import DOGECOIN, NetworkParams, canonical_address, is_valid_address
from dogeauth.errors import AllowListUnavailable

logger = logging.getLogger(__name__)

AllowListSource = Callable[[], Iterable[str]]


def load_allowed_addresses(path: str) -> List[str]:
    """
    Read ``{"allowed_addresses": [...]}`` from a JSON file.

    Raises:
        AllowListUnavailable: If the file is missing, unreadable or malformed
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            config = json.load(fh)
    except FileNotFoundError as e:
        raise AllowListUnavailable(f"Allow-list file not found: {path}", hint="Check ALLOWED_ADDRESSES_FILE") from e
    except (OSError, json.JSONDecodeError) as e:
        raise AllowListUnavailable(f"Allow-list file unreadable: {path}: {e}") from e

    if not isinstance(config, dict):
        raise AllowListUnavailable(f"Allow-list file {path} must contain a JSON object")

    addresses = config.get("allowed_addresses", [])
    if not isinstance(addresses, list) or not all(isinstance(a, str) for a in addresses):
        raise AllowListUnavailable(f"'allowed_addresses' in {path} must be a list of strings")
    return addresses


def parse_inline_addresses(raw: str) -> List[str]:
    """Split a comma-separated address list (``ALLOWED_ADDRESSES``)."""
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


class FileAllowListSource:
    """Reads the allow-list file, re-parsing it only when its mtime changes."""

    def __init__(self, path: str):
        self.path = path
        self._mtime: Optional[float] = None
        self._addresses: List[str] = []
        self._lock = threading.Lock()

    def current_allow_list(self) -> Set[str]:
        try:
            mtime = os.stat(self.path).st_mtime
        except OSError as e:
            raise AllowListUnavailable(f"Allow-list file not accessible: {self.path}: {e}") from e

        with self._lock:
            if mtime != self._mtime:
                self._addresses = load_allowed_addresses(self.path)
                self._mtime = mtime
                logger.info(f"Loaded {len(self._addresses)} allowed addresses from {self.path}")
            return set(self._addresses)

    __call__ = current_allow_list


class AllowListGate:
    """Membership check of verified addresses against the allow-list."""

    def __init__(
        self,
        addresses: Iterable[str] = (),
        source: Optional[AllowListSource] = None,
        refresh_interval: float = 30,
        network: NetworkParams = DOGECOIN,
        audit_logger: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.network = network
        self.refresh_interval = refresh_interval
        self._source = source
        self._audit = audit_logger or get_audit_logger()
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._addresses: FrozenSet[str] = frozenset()
        self._last_refresh = clock()

        if source is not None:
            self.refresh()
        else:
            self.replace(addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def replace(self, addresses: Iterable[str]) -> int:
        """
        Atomically swap in a new allow-list.

        Entries are canonicalized once here; invalid addresses are skipped
        with a warning.

        Returns:
            Number of addresses now allowed
        """
        accepted = set()
        for raw in addresses:
            address = canonical_address(raw)
            if not is_valid_address(address, self.network):
                logger.warning(f"Ignoring invalid {self.network.name} address in allow-list: {address!r}")
                continue
            accepted.add(address)

        updated = frozenset(accepted)
        if updated != self._addresses:
            self._addresses = updated
            self._audit.log_allow_list_loaded(len(updated), network=self.network.name)
        return len(updated)

    def refresh(self) -> int:
        """
        Pull the current list from the source.

        Raises:
            AllowListUnavailable: If the source fails
        """
        if self._source is None:
            return len(self._addresses)

        try:
            addresses = list(self._source())
        except AllowListUnavailable:
            raise
        except Exception as e:
            raise AllowListUnavailable(f"Allow-list source failed: {e}") from e

        self._last_refresh = self._clock()
        return self.replace(addresses)

    def is_allowed(self, address: str) -> bool:
        """
        O(1) membership check.

        Raises:
            AllowListUnavailable: If a due refresh fails
        """
        self._maybe_refresh()
        return canonical_address(address) in self._addresses

    def _maybe_refresh(self) -> None:
        if self._source is None or self._clock() - self._last_refresh < self.refresh_interval:
            return
        # one refresher at a time; other readers keep using the current set
        if not self._refresh_lock.acquire(blocking=False):
            return
        try:
            self.refresh()
        finally:
            self._refresh_lock.release()
