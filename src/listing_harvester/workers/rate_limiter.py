"""Randomized politeness delays between page requests.

Rate-limit windows are declared by each site adapter
(:class:`~listing_harvester.adapters.base.RateLimitWindow`); this module only
draws and sleeps.  Delays are integers in milliseconds, matching how the
windows are declared.

Typical usage::

    waited_ms = await polite_delay(adapter.get_rate_limit(), enabled=True)
    logger.debug("waited %d ms", waited_ms)
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from listing_harvester.adapters.base import RateLimitWindow

logger = logging.getLogger(__name__)


def draw_delay_ms(min_ms: int, max_ms: int) -> int:
    """Return a uniformly drawn integer in ``[min_ms, max_ms]`` (inclusive).

    Raises:
        ValueError: If the bounds are negative or inverted.
    """
    if min_ms < 0 or max_ms < min_ms:
        raise ValueError(f"Invalid delay window: [{min_ms}, {max_ms}]")
    return random.randint(min_ms, max_ms)


async def random_delay(min_ms: int, max_ms: int) -> int:
    """Sleep for a random duration in ``[min_ms, max_ms]`` and return it.

    The return value is the delay actually used, so call sites can log or
    assert on it rather than on the requested range.
    """
    delay_ms = draw_delay_ms(min_ms, max_ms)
    await asyncio.sleep(delay_ms / 1000)
    return delay_ms


async def polite_delay(window: RateLimitWindow, *, enabled: bool = True) -> int:
    """Apply ``window`` unless rate limiting is switched off.

    Returns:
        The milliseconds slept; 0 when ``enabled`` is False.
    """
    if not enabled:
        return 0
    delay_ms = await random_delay(window.min_ms, window.max_ms)
    logger.debug("rate_limiter: waited %d ms (window %d-%d)", delay_ms, window.min_ms, window.max_ms)
    return delay_ms
