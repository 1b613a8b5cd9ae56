from __future__ import annotations

import logging
import time
from typing import Callable

from .command import probe

logger = logging.getLogger(__name__)

PING_HOST = "8.8.8.8"
NETWORK_ATTEMPTS = 30
NETWORK_INTERVAL_S = 2.0


def can_ping(host: str = PING_HOST, *, timeout_s: int = 2) -> bool:
    return probe(["ping", "-c", "1", "-W", str(timeout_s), host]).ok


def can_fetch(url: str, *, timeout_s: int = 10) -> bool:
    """HEAD request through curl, following redirects."""

    return probe(["curl", "-sL", "--max-time", str(timeout_s), "-I", url]).ok


def wait_for_network(
    *,
    attempts: int = NETWORK_ATTEMPTS,
    interval_s: float = NETWORK_INTERVAL_S,
    is_online: Callable[[], bool] = can_ping,
    sleep: Callable[[float], None] = time.sleep,
    dry_run: bool = False,
) -> None:
    """Poll until the network answers; raise RuntimeError on timeout."""

    if dry_run:
        logger.info("Skipping network wait (dry run)")
        return

    logger.info("Waiting for network connectivity...")
    for attempt in range(1, attempts + 1):
        if is_online():
            logger.info("Network is available")
            return
        logger.info("Network not ready, attempt %d/%d", attempt, attempts)
        if attempt < attempts:
            sleep(interval_s)

    raise RuntimeError(f"Network timeout after {attempts} attempts")
