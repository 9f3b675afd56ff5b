"""Bounded retry with exponential backoff around a single-attempt fetch."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from shared.clock import SystemClock
from shared.constants import (
    HTTP_RETRIES_DEFAULT,
    RATE_LIMIT_RETRY_DELAY_S,
    RETRY_BASE_DELAY_S,
)
from shared.errors import RateLimitedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from domain.models import TileCoordinate
    from shared.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def load_with_retry(
    fetch: Callable[[TileCoordinate], Awaitable[T]],
    coordinate: TileCoordinate,
    *,
    max_retries: int = HTTP_RETRIES_DEFAULT,
    clock: Clock | None = None,
    base_delay_s: float = RETRY_BASE_DELAY_S,
    rate_limit_delay_s: float = RATE_LIMIT_RETRY_DELAY_S,
    before_attempt: Callable[[], Awaitable[None]] | None = None,
) -> T | None:
    """Run ``fetch`` until it succeeds or the attempts are used up.

    Attempt ``n`` that fails waits ``base_delay_s * 2**n`` before the next
    one; no wait follows the final attempt. The first HTTP 429 waits
    ``rate_limit_delay_s`` and is retried without consuming an attempt; a
    second 429 gives up straight away.

    Every failure is absorbed: the result is ``None`` plus a warning log.
    Cancellation propagates.
    """
    clock = clock or SystemClock()
    rate_limited_once = False
    last_exc: Exception | None = None
    attempt = 0

    while attempt < max_retries:
        if before_attempt is not None:
            await before_attempt()
        try:
            return await fetch(coordinate)
        except RateLimitedError as e:
            last_exc = e
            if rate_limited_once:
                logger.warning('Rate limited again for %s, giving up', coordinate)
                return None
            rate_limited_once = True
            logger.info(
                'Rate limited for %s, retrying in %.1fs', coordinate, rate_limit_delay_s
            )
            await clock.sleep(rate_limit_delay_s)
            continue
        except Exception as e:
            last_exc = e
            logger.debug('Attempt %d for %s failed: %s', attempt + 1, coordinate, e)
        if attempt < max_retries - 1:
            await clock.sleep(base_delay_s * 2**attempt)
        attempt += 1

    logger.warning(
        'Failed to load tile %s after %d attempts: %s', coordinate, max_retries, last_exc
    )
    return None
