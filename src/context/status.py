"""Overpass rate-limit status oracle.

The public Overpass instance reports per-client slot availability on a
plain-text ``/api/status`` page::

    Connected as: 1234567890
    Current time: 2024-01-15T14:00:00Z
    Announced endpoint: gall.openstreetmap.de/
    Rate limit: 2
    Slot available after: 2024-01-15T14:01:07Z, in 67 seconds.
    Slot available after: 2024-01-15T14:02:30Z, in 150 seconds.
    Currently running queries (pid, space limit, time limit, start time):
    12345	536870912	180	2024-01-15T13:59:50Z

The monitor polls that page in the background and lets context loads wait
for the next free slot instead of burning retries on HTTP 429.
"""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import aiohttp

from infrastructure.http.client import release_response
from shared.clock import SystemClock
from shared.constants import (
    HTTP_OK,
    OVERPASS_STATUS_ENDPOINT,
    STATUS_CACHE_TTL_S,
    STATUS_FALLBACK_THROTTLE_S,
    STATUS_MAX_SLOT_WAIT_S,
    STATUS_POLL_INTERVAL_S,
    STATUS_TIMEOUT_S,
)

if TYPE_CHECKING:
    from shared.clock import Clock

logger = logging.getLogger(__name__)

_ISO = r'\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:?\d{2})?'
_CURRENT_TIME = re.compile(rf'^Current time:\s*({_ISO})')
_SLOT_AFTER = re.compile(rf'^Slot available after:\s*({_ISO})')
_SLOTS_NOW = re.compile(r'^(\d+)\s+slots?\s+available now', re.IGNORECASE)
_RUNNING_HEADER = 'Currently running queries'
_RUNNING_ROW = re.compile(r'^\d+')


@dataclass(frozen=True)
class RateSlot:
    available_after: datetime


@dataclass
class RateStatus:
    """One parsed snapshot of the status page."""

    current_time: datetime
    slots: list[RateSlot] = field(default_factory=list)
    running_queries: int = 0


def _parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    # Timestamps without an offset are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_status(text: str) -> RateStatus | None:
    """Parse the status page; ``None`` when no ``Current time`` line is present."""
    current_time: datetime | None = None
    slots: list[RateSlot] = []
    running = 0
    in_running = False

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if in_running:
            if _RUNNING_ROW.match(line):
                running += 1
            continue
        if line.startswith(_RUNNING_HEADER):
            in_running = True
            continue

        try:
            if m := _CURRENT_TIME.match(line):
                current_time = _parse_iso(m.group(1))
            elif m := _SLOT_AFTER.match(line):
                slots.append(RateSlot(_parse_iso(m.group(1))))
            elif (m := _SLOTS_NOW.match(line)) and current_time is not None:
                slots.extend(RateSlot(current_time) for _ in range(int(m.group(1))))
        except ValueError:
            logger.debug('Skipping unparseable status line: %r', line)

    if current_time is None:
        return None
    return RateStatus(current_time=current_time, slots=slots, running_queries=running)


class OverpassStatusMonitor:
    """Background poller of the Overpass status page.

    ``get_status`` never blocks: it returns the last snapshot and kicks off a
    refresh when that snapshot is stale. A failed poll keeps the previous
    snapshot; once it is older than twice the TTL the monitor reports itself
    unhealthy and ``wait_for_slot`` falls back to a fixed throttle.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        status_url: str = OVERPASS_STATUS_ENDPOINT,
        poll_interval_s: float = STATUS_POLL_INTERVAL_S,
        timeout_s: float = STATUS_TIMEOUT_S,
        cache_ttl_s: float = STATUS_CACHE_TTL_S,
        fallback_throttle_s: float = STATUS_FALLBACK_THROTTLE_S,
        max_slot_wait_s: float = STATUS_MAX_SLOT_WAIT_S,
        clock: Clock | None = None,
    ) -> None:
        self.session = session
        self.status_url = status_url
        self.poll_interval_s = poll_interval_s
        self.timeout_s = timeout_s
        self.cache_ttl_s = cache_ttl_s
        self.fallback_throttle_s = fallback_throttle_s
        self.max_slot_wait_s = max_slot_wait_s
        self.clock = clock or SystemClock()

        self._status: RateStatus | None = None
        self._cache_timestamp: float | None = None
        self._poll_task: asyncio.Task | None = None
        self._refresh_task: asyncio.Task | None = None
        self._disposed = False

    # --- lifecycle

    def start(self) -> None:
        """Launch the periodic poll loop; the first fetch happens after one interval."""
        if self._disposed or (self._poll_task and not self._poll_task.done()):
            return
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def poll(self) -> RateStatus | None:
        """Fetch the status page now and restart the poll schedule."""
        self._cancel_poll_loop()
        status = await self._fetch_status()
        if not self._disposed:
            self._poll_task = asyncio.create_task(self._poll_loop())
        return status

    def dispose(self) -> None:
        self._disposed = True
        self._cancel_poll_loop()
        if self._refresh_task and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = None
        self._status = None
        self._cache_timestamp = None

    def _cancel_poll_loop(self) -> None:
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    async def _poll_loop(self) -> None:
        while not self._disposed:
            await self.clock.sleep(self.poll_interval_s)
            try:
                await self._fetch_status()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning('Overpass status poll failed, retrying next interval', exc_info=True)

    # --- fetching

    async def _fetch_status(self) -> RateStatus | None:
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            resp = await self.session.get(self.status_url, timeout=timeout)
            try:
                if resp.status != HTTP_OK:
                    logger.warning('Overpass status HTTP %s', resp.status)
                    return None
                text = await resp.text()
            finally:
                release_response(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            # ValueError covers a body that is not valid text
            logger.warning('Overpass status check failed: %s', e)
            return None

        status = parse_status(text)
        if status is None:
            logger.warning('Overpass status page could not be parsed')
            return None
        if self._disposed:
            return status
        self._status = status
        self._cache_timestamp = self.clock.monotonic()
        logger.debug(
            'Overpass status: %d slot(s) listed, %d running',
            len(status.slots),
            status.running_queries,
        )
        return status

    def _schedule_refresh(self) -> None:
        if self._disposed:
            return
        if self._refresh_task and not self._refresh_task.done():
            return
        try:
            self._refresh_task = asyncio.get_running_loop().create_task(self._fetch_status())
        except RuntimeError:
            # Called outside a running loop; the poll loop will refresh later
            self._refresh_task = None

    # --- queries

    def _age(self) -> float | None:
        if self._cache_timestamp is None:
            return None
        return self.clock.monotonic() - self._cache_timestamp

    def get_status(self) -> RateStatus | None:
        age = self._age()
        if age is None or age >= self.cache_ttl_s:
            self._schedule_refresh()
        return self._status

    def get_next_available_slot(self) -> datetime | None:
        status = self.get_status()
        if status is None or not status.slots:
            return None
        return min(s.available_after for s in status.slots)

    def is_healthy(self) -> bool:
        age = self._age()
        return age is not None and age < 2 * self.cache_ttl_s

    @property
    def current_load(self) -> int:
        return self._status.running_queries if self._status else 0

    async def wait_for_slot(self) -> None:
        """Sleep until the next slot should be free, or throttle when blind."""
        if not self.is_healthy():
            await self.clock.sleep(self.fallback_throttle_s)
            return

        status = self.get_status()
        slot = self.get_next_available_slot()
        if status is None or slot is None or slot <= status.current_time:
            return

        delay = (slot - status.current_time).total_seconds()
        age = self._age() or 0.0
        delay = min(max(delay - age, 0.0), self.max_slot_wait_s)
        if delay > 0:
            logger.info('Waiting %.1fs for an Overpass slot', delay)
            await self.clock.sleep(delay)

    async def __aenter__(self) -> OverpassStatusMonitor:
        self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        with suppress(Exception):
            self.dispose()
