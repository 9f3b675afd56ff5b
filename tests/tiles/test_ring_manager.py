"""Tests for TileRingManager."""

from __future__ import annotations

import asyncio

import pytest

from domain.models import MercatorPosition, TileAdded, TileRemoved
from geo.observer import ObserverFeed
from geo.tiles import tile_bounds
from domain.models import TileCoordinate
from tiles.ring import TileRingManager
from tiles.scheduler import LoadScheduler

ZOOM = 13


def center_of(col: int, row: int) -> MercatorPosition:
    b = tile_bounds(TileCoordinate(ZOOM, col, row))
    return MercatorPosition((b.min_x + b.max_x) / 2, (b.min_y + b.max_y) / 2)


class GatedLoader:
    """Loads that resolve only when the test says so."""

    def __init__(self):
        self.calls: list[str] = []
        self._gates: dict[str, asyncio.Future] = {}

    async def __call__(self, coordinate):
        self.calls.append(coordinate.key)
        gate = asyncio.get_running_loop().create_future()
        self._gates[coordinate.key] = gate
        return await gate

    def finish(self, key: str, result: object = None) -> None:
        self._gates[key].set_result(result if result is not None else f'tile:{key}')

    def finish_all(self) -> None:
        for key, gate in self._gates.items():
            if not gate.done():
                gate.set_result(f'tile:{key}')


class InstantLoader:
    def __init__(self):
        self.calls: list[str] = []

    async def __call__(self, coordinate):
        self.calls.append(coordinate.key)
        return f'tile:{coordinate.key}'


def make_manager(loader, clock, *, radius=1, max_loads=16) -> tuple[TileRingManager, list]:
    scheduler = LoadScheduler(loader, max_concurrent_loads=max_loads, queue_timeout_s=60, clock=clock)
    manager = TileRingManager(scheduler, zoom=ZOOM, ring_radius=radius, name='test')
    events: list = []
    manager.subscribe(events.append)
    return manager, events


class TestRingReconciliation:
    """Tests for ring computation and reconciliation."""

    @pytest.mark.asyncio
    async def test_start_loads_full_ring(self, manual_clock, drain):
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock)
        manager.start(MercatorPosition(0.0, 0.0))
        await drain()

        assert manager.center == TileCoordinate(ZOOM, 4096, 4096)
        assert len(manager.ring_keys()) == 9
        assert set(manager.tiles) == set(manager.ring_keys())
        assert sorted(loader.calls) == sorted(manager.ring_keys())
        assert all(isinstance(e, TileAdded) for e in events)
        assert len(events) == 9
        assert manager.get_tile('13:4096:4096') == 'tile:13:4096:4096'
        assert len(manager.all_tiles()) == 9

    @pytest.mark.asyncio
    async def test_same_tile_move_is_noop(self, manual_clock, drain):
        """A second move inside the same tile changes nothing."""
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock)
        manager.start(center_of(4096, 4096))
        await drain()
        calls_before = list(loader.calls)
        events_before = list(events)
        tiles_before = dict(manager.tiles)

        b = tile_bounds(TileCoordinate(ZOOM, 4096, 4096))
        manager.on_observer_moved(MercatorPosition(b.min_x + 1.0, b.max_y - 1.0))
        await drain()

        assert loader.calls == calls_before
        assert events == events_before
        assert dict(manager.tiles) == tiles_before

    @pytest.mark.asyncio
    async def test_move_east_evicts_and_loads_minimal_set(self, manual_clock, drain):
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock)
        manager.start(center_of(100, 100))
        await drain()
        events.clear()
        loader.calls.clear()

        manager.on_observer_moved(center_of(101, 100))
        await drain()

        removed = sorted(e.key for e in events if isinstance(e, TileRemoved))
        added = sorted(e.key for e in events if isinstance(e, TileAdded))
        assert removed == ['13:99:100', '13:99:101', '13:99:99']
        assert added == ['13:102:100', '13:102:101', '13:102:99']
        assert sorted(loader.calls) == added
        assert set(manager.tiles) == set(manager.ring_keys())

    @pytest.mark.asyncio
    async def test_removals_are_emitted_before_additions(self, manual_clock, drain):
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock, radius=0)
        manager.start(center_of(10, 10))
        await drain()
        events.clear()

        manager.on_observer_moved(center_of(11, 10))
        await drain()
        assert events[0] == TileRemoved(key='13:10:10')
        assert isinstance(events[1], TileAdded)
        assert events[1].key == '13:11:10'


class TestStaleResults:
    """Results arriving after the observer moved on are discarded."""

    @pytest.mark.asyncio
    async def test_result_for_key_that_left_ring_is_dropped(self, manual_clock, drain):
        loader = GatedLoader()
        manager, events = make_manager(loader, manual_clock, radius=0)
        manager.start(center_of(10, 10))
        await drain()
        assert loader.calls == ['13:10:10']

        # Observer moves away before the load completes
        manager.on_observer_moved(center_of(20, 10))
        await drain()
        loader.finish('13:10:10')
        await drain()

        assert manager.get_tile('13:10:10') is None
        assert all(e.key != '13:10:10' for e in events)
        assert '13:10:10' not in manager.pending_keys

    @pytest.mark.asyncio
    async def test_in_flight_load_is_reused_when_key_returns(self, manual_clock, drain):
        loader = GatedLoader()
        manager, events = make_manager(loader, manual_clock, radius=0)
        manager.start(center_of(10, 10))
        await drain()
        manager.on_observer_moved(center_of(11, 10))
        await drain()
        manager.on_observer_moved(center_of(10, 10))
        await drain()

        # The running load was not cancelled and is not duplicated
        assert loader.calls == ['13:10:10', '13:11:10']
        loader.finish_all()
        await drain()
        assert manager.get_tile('13:10:10') == 'tile:13:10:10'
        assert [e.key for e in events if isinstance(e, TileAdded)] == ['13:10:10']

    @pytest.mark.asyncio
    async def test_failed_load_adds_nothing(self, manual_clock, drain):
        async def failing(coordinate):
            return None

        manager, events = make_manager(failing, manual_clock, radius=0)
        manager.start(center_of(10, 10))
        await drain()
        assert manager.tiles == {}
        assert events == []
        assert manager.pending_keys == frozenset()

    @pytest.mark.asyncio
    async def test_queued_loads_for_departed_keys_are_dropped(self, manual_clock, drain):
        loader = GatedLoader()
        manager, _ = make_manager(loader, manual_clock, radius=1, max_loads=1)
        manager.start(center_of(10, 10))
        await drain()
        assert manager.scheduler.queued_count == 8

        manager.on_observer_moved(center_of(50, 50))
        await drain()
        # Only the still-running first load and the new ring remain
        assert manager.scheduler.queued_count == 9
        assert loader.calls == ['13:9:9']


class TestListenersAndLifecycle:
    """Tests for subscriptions, observer feed and disposal."""

    @pytest.mark.asyncio
    async def test_attach_follows_feed(self, manual_clock, drain):
        loader = InstantLoader()
        manager, _ = make_manager(loader, manual_clock, radius=0)
        feed = ObserverFeed()
        manager.attach(feed)
        manager.start(center_of(10, 10))
        await drain()

        feed.publish(center_of(12, 10))
        await drain()
        assert manager.center == TileCoordinate(ZOOM, 12, 10)
        assert set(manager.tiles) == {'13:12:10'}

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_others(self, manual_clock, drain):
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock, radius=0)

        def broken(event):
            raise RuntimeError('listener bug')

        manager.unsubscribe(events.append)
        manager.subscribe(broken)
        manager.subscribe(events.append)
        manager.start(center_of(10, 10))
        await drain()
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_events(self, manual_clock, drain):
        loader = InstantLoader()
        manager, events = make_manager(loader, manual_clock, radius=0)
        manager.unsubscribe(events.append)
        manager.start(center_of(10, 10))
        await drain()
        assert events == []
        assert len(manager.tiles) == 1

    @pytest.mark.asyncio
    async def test_dispose_clears_state_and_detaches(self, manual_clock, drain):
        loader = GatedLoader()
        manager, events = make_manager(loader, manual_clock, radius=1)
        feed = ObserverFeed()
        manager.attach(feed)
        manager.start(center_of(10, 10))
        await drain()

        manager.dispose()
        await drain()
        assert feed.subscriber_count == 0
        assert manager.tiles == {}
        assert manager.pending_keys == frozenset()
        assert manager.center is None
        assert manager.scheduler.active_count == 0

        feed.publish(center_of(30, 30))
        await drain()
        assert events == []

    def test_negative_radius_rejected(self, manual_clock):
        scheduler = LoadScheduler(InstantLoader(), max_concurrent_loads=1, clock=manual_clock)
        with pytest.raises(ValueError):
            TileRingManager(scheduler, zoom=ZOOM, ring_radius=-1)
