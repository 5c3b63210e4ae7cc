"""Background sweeps that keep the throttle maps bounded."""

import asyncio
import logging
from typing import Protocol

logger = logging.getLogger(__name__)

LOGIN_THROTTLE_SWEEP_INTERVAL = 300
API_THROTTLE_SWEEP_INTERVAL = 60


class Sweepable(Protocol):
    def cleanup_expired(self) -> int: ...


async def throttle_cleanup_loop(throttle: Sweepable, interval: float, name: str) -> None:
    """Periodically evict expired throttle entries to prevent memory leaks."""
    while True:
        try:
            await asyncio.sleep(interval)
            removed = throttle.cleanup_expired()
            if removed > 0:
                logger.debug(f"{name} cleanup: removed {removed} expired entries")
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"{name} cleanup error: {e}")
