"""
Side effects performed after access is granted.

The engine calls an ``on_granted(address)`` callable once per granted
decision: open a door, mark a ticket used, unlock content. The default only
logs; ``WebhookAction`` forwards the grant to an HTTP endpoint such as a door
controller.
"""

import logging
import time
from typing import Any, Callable, Mapping, Optional

import requests

logger = logging.getLogger(__name__)

OnGranted = Callable[[str], None]


def log_access_granted(address: str) -> None:
    logger.info(f"Access granted for address: {address}")


class WebhookAction:
    """POST ``{"address", "action", "timestamp"}`` to a controller URL."""

    def __init__(self, url: str, timeout: float = 5, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def __call__(self, address: str) -> None:
        response = self._session.post(
            self.url,
            json={"address": address, "action": "access_granted", "timestamp": int(time.time())},
            timeout=self.timeout,
        )
        response.raise_for_status()
        logger.info(f"Webhook {self.url} acknowledged grant for {address} ({response.status_code})")


def build_action(cfg: Mapping[str, Any]) -> OnGranted:
    """Pick the grant action from configuration."""
    url = cfg.get("ACTION_WEBHOOK_URL")
    if url:
        return WebhookAction(str(url), timeout=cfg.get("ACTION_WEBHOOK_TIMEOUT", 5))
    return log_access_granted
