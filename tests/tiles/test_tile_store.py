"""Tests for TileStore and the tile codecs."""

from __future__ import annotations

import sqlite3
import tempfile
from pathlib import Path

import numpy as np
import pytest

from context.features import ContextFeatures, LineString, Road
from domain.models import ContextTile, ElevationTile, TileCoordinate
from geo.tiles import tile_bounds
from shared.errors import TileKeyError
from tiles.store import ContextTileCodec, ElevationTileCodec, TileStore

TTL = 86400.0


@pytest.fixture
def temp_cache_dir():
    """Create temporary directory for the store."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_cache_dir, clock):
    """Elevation TileStore on virtual time."""
    ts = TileStore('elevation', ElevationTileCodec(), cache_dir=temp_cache_dir, ttl_s=TTL, clock=clock)
    yield ts
    ts.close()


def make_elevation_tile(coord: TileCoordinate, value: float = 12.5) -> ElevationTile:
    return ElevationTile(
        coordinate=coord,
        bounds=tile_bounds(coord),
        data=np.full((4, 4), value, dtype=np.float32),
        tile_size=4,
    )


class TestTileStore:
    """Tests for TileStore class."""

    def test_init_creates_database_per_namespace(self, temp_cache_dir, clock):
        cache_dir = temp_cache_dir / 'nested'
        with TileStore('context', ContextTileCodec(), cache_dir=cache_dir, clock=clock) as ts:
            assert ts.available
            assert (cache_dir / 'context.db').exists()

    def test_set_and_get(self, store):
        coord = TileCoordinate(15, 100, 200)
        store.set(coord.key, make_elevation_tile(coord))
        tile = store.get(coord.key)
        assert tile is not None
        assert tile.coordinate == coord
        assert tile.bounds == tile_bounds(coord)
        assert tile.data.dtype == np.float32
        np.testing.assert_array_equal(tile.data, np.full((4, 4), 12.5, dtype=np.float32))

    def test_get_missing_returns_none(self, store):
        assert store.get('15:1:1') is None

    def test_set_overwrites(self, store):
        coord = TileCoordinate(15, 1, 1)
        store.set(coord.key, make_elevation_tile(coord, 1.0))
        store.set(coord.key, make_elevation_tile(coord, 2.0))
        assert store.get(coord.key).data[0, 0] == 2.0
        assert store.count() == 1

    def test_get_within_ttl(self, store, clock):
        coord = TileCoordinate(15, 1, 1)
        store.set(coord.key, make_elevation_tile(coord))
        clock.advance(TTL - 1)
        assert store.get(coord.key) is not None

    def test_expired_entry_is_deleted_on_get(self, store, clock):
        coord = TileCoordinate(15, 1, 1)
        store.set(coord.key, make_elevation_tile(coord))
        clock.advance(TTL)
        assert store.get(coord.key) is None
        assert store.count() == 0

    def test_delete(self, store):
        coord = TileCoordinate(15, 1, 1)
        store.set(coord.key, make_elevation_tile(coord))
        assert store.delete(coord.key)
        assert store.get(coord.key) is None
        assert not store.delete(coord.key)

    def test_cleanup_expired_counts_only_expired(self, store, clock):
        old = [TileCoordinate(15, i, 0) for i in range(3)]
        for c in old:
            store.set(c.key, make_elevation_tile(c))
        clock.advance(TTL / 2)
        fresh = TileCoordinate(15, 9, 9)
        store.set(fresh.key, make_elevation_tile(fresh))
        clock.advance(TTL / 2 + 1)

        assert store.cleanup_expired() == 3
        assert store.count() == 1
        assert store.get(fresh.key) is not None

    def test_entries_survive_reopen(self, temp_cache_dir, clock):
        coord = TileCoordinate(15, 5, 5)
        with TileStore('elevation', ElevationTileCodec(), cache_dir=temp_cache_dir, clock=clock) as ts:
            ts.set(coord.key, make_elevation_tile(coord))
        with TileStore('elevation', ElevationTileCodec(), cache_dir=temp_cache_dir, clock=clock) as ts:
            assert ts.get(coord.key) is not None

    def test_namespaces_are_separate(self, temp_cache_dir, clock):
        coord = TileCoordinate(15, 5, 5)
        a = TileStore('a', ElevationTileCodec(), cache_dir=temp_cache_dir, clock=clock)
        b = TileStore('b', ElevationTileCodec(), cache_dir=temp_cache_dir, clock=clock)
        a.set(coord.key, make_elevation_tile(coord))
        assert b.get(coord.key) is None
        a.close()
        b.close()

    @pytest.mark.parametrize('payload', [b'not a numpy blob', b''])
    def test_corrupt_payload_is_a_miss(self, store, payload):
        """Garbage and empty blobs are dropped and read as a miss."""
        store._conn.execute(
            'INSERT INTO tiles (key, payload, stored_at, expires_at) VALUES (?, ?, ?, ?)',
            ('15:1:1', payload, 0.0, 1e12),
        )
        store._conn.commit()
        assert store.get('15:1:1') is None
        assert store.count() == 0

    def test_malformed_key_propagates(self, store):
        store._conn.execute(
            'INSERT INTO tiles (key, payload, stored_at, expires_at) VALUES (?, ?, ?, ?)',
            ('bad-key', b'x', 0.0, 1e12),
        )
        store._conn.commit()
        with pytest.raises(TileKeyError):
            store.get('bad-key')


class TestUnavailableStore:
    """The store degrades to no-ops instead of failing."""

    def test_disabled_store_is_noop(self, temp_cache_dir, clock):
        ts = TileStore('elevation', ElevationTileCodec(), cache_dir=temp_cache_dir, enabled=False, clock=clock)
        coord = TileCoordinate(15, 1, 1)
        assert not ts.available
        ts.set(coord.key, make_elevation_tile(coord))
        assert ts.get(coord.key) is None
        assert ts.cleanup_expired() == 0
        assert not ts.delete(coord.key)
        assert not (temp_cache_dir / 'elevation.db').exists()

    def test_unopenable_path_is_noop(self, temp_cache_dir, clock):
        blocker = temp_cache_dir / 'file'
        blocker.write_text('not a directory')
        ts = TileStore('elevation', ElevationTileCodec(), cache_dir=blocker / 'sub', clock=clock)
        assert not ts.available
        assert ts.get('15:1:1') is None

    def test_query_failure_disables_store(self, store):
        store._conn.execute('DROP TABLE tiles')
        store._conn.commit()
        assert store.get('15:1:1') is None
        assert not store.available
        assert store.cleanup_expired() == 0

    def test_closed_store_is_noop(self, store):
        store.close()
        assert store.get('15:1:1') is None
        assert not store.available


class TestCodecs:
    """Tests for the blob codecs."""

    def test_elevation_codec_preserves_values(self):
        coord = TileCoordinate(12, 7, 9)
        data = np.arange(16, dtype=np.float32).reshape(4, 4) - 32768.0
        tile = ElevationTile(coordinate=coord, bounds=tile_bounds(coord), data=data, tile_size=4)
        codec = ElevationTileCodec()
        decoded = codec.decode(coord.key, codec.encode(tile))
        np.testing.assert_array_equal(decoded.data, data)
        assert decoded.tile_size == 4

    def test_context_codec_preserves_features(self):
        coord = TileCoordinate(14, 8299, 5636)
        road = Road(
            id='42',
            geometry=LineString(coordinates=[(0.0, 0.0), (10.0, 5.0)]),
            type='primary',
            color='#ffffff',
            lane_count=2,
            width_category='large',
        )
        tile = ContextTile(
            coordinate=coord,
            bounds=tile_bounds(coord),
            features=ContextFeatures(roads=[road]),
        )
        codec = ContextTileCodec()
        decoded = codec.decode(coord.key, codec.encode(tile))
        assert decoded.coordinate == coord
        assert decoded.features == tile.features

    def test_sqlite_file_has_expiry_index(self, store):
        conn = sqlite3.connect(str(store.db_path))
        names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
        conn.close()
        assert 'idx_tiles_expires_at' in names
