"""Pytest configuration and fixtures for the tile core tests."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))


class FakeClock:
    """Virtual time for timers.

    With ``auto_advance`` every ``sleep`` returns at once after moving time
    forward. Without it, sleepers stay suspended until ``advance`` moves
    virtual time past their deadline.
    """

    def __init__(self, start: float = 1_700_000_000.0, *, auto_advance: bool = True):
        self.now = start
        self.mono = 0.0
        self.auto_advance = auto_advance
        self.sleeps: list[float] = []
        self._waiters: list[tuple[float, asyncio.Future]] = []

    def time(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.mono

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        if self.auto_advance:
            self.advance(seconds)
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.append((self.mono + seconds, future))
        await future

    def advance(self, seconds: float) -> None:
        self.now += seconds
        self.mono += seconds
        still_waiting = []
        for deadline, future in self._waiters:
            if future.done():
                continue
            if deadline <= self.mono:
                future.set_result(None)
            else:
                still_waiting.append((deadline, future))
        self._waiters = still_waiting

    @property
    def sleeper_count(self) -> int:
        return sum(1 for _, f in self._waiters if not f.done())


@pytest.fixture
def clock():
    """Clock whose sleeps complete immediately."""
    return FakeClock()


@pytest.fixture
def manual_clock():
    """Clock whose sleeps wait for an explicit advance()."""
    return FakeClock(auto_advance=False)


@pytest.fixture
def drain():
    """Let pending callbacks and ready tasks run."""

    async def _drain(rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    return _drain
