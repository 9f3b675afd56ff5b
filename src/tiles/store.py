"""SQLite-backed persistent tile store with per-entry expiry.

One database file per namespace (data kind). Every entry expires a fixed
TTL after it was written; expired entries are removed lazily on ``get`` and
in bulk by ``cleanup_expired`` at startup.

The store is an optional layer: if the database cannot be opened or a
query fails, the error is logged and the store turns itself off so tile
delivery carries on from the network alone.
"""

from __future__ import annotations

import logging
import sqlite3
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar

import numpy as np

from context.features import ContextFeatures
from domain.models import ContextTile, ElevationTile
from geo.tiles import parse_tile_key, tile_bounds
from shared.clock import SystemClock
from shared.constants import TILE_STORE_DIR, TILE_STORE_TTL_HOURS
from shared.errors import TileKeyError

if TYPE_CHECKING:
    from shared.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TileCodec(Protocol[T]):
    """Converts one tile kind to and from a database blob."""

    def encode(self, tile: T) -> bytes: ...

    def decode(self, key: str, payload: bytes) -> T: ...


class ElevationTileCodec:
    """Elevation grid stored as a ``.npy`` blob; position comes from the key."""

    def encode(self, tile: ElevationTile) -> bytes:
        buf = BytesIO()
        np.save(buf, np.asarray(tile.data, dtype=np.float32), allow_pickle=False)
        return buf.getvalue()

    def decode(self, key: str, payload: bytes) -> ElevationTile:
        coordinate = parse_tile_key(key)
        data = np.load(BytesIO(payload), allow_pickle=False)
        return ElevationTile(
            coordinate=coordinate,
            bounds=tile_bounds(coordinate),
            data=data,
            tile_size=int(data.shape[0]),
        )


class ContextTileCodec:
    """Feature collections stored as pydantic JSON."""

    def encode(self, tile: ContextTile) -> bytes:
        return tile.features.model_dump_json().encode('utf-8')

    def decode(self, key: str, payload: bytes) -> ContextTile:
        coordinate = parse_tile_key(key)
        return ContextTile(
            coordinate=coordinate,
            bounds=tile_bounds(coordinate),
            features=ContextFeatures.model_validate_json(payload),
        )


class TileStore(Generic[T]):
    """Durable key/value store of tiles for one namespace.

    Usage:
        store = TileStore('elevation', ElevationTileCodec(), cache_dir='.cache')
        store.set(tile.key, tile)
        tile = store.get('15:16598:11273')
        store.close()
    """

    def __init__(
        self,
        namespace: str,
        codec: TileCodec[T],
        *,
        cache_dir: str | Path = TILE_STORE_DIR,
        ttl_s: float = TILE_STORE_TTL_HOURS * 3600,
        enabled: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self.namespace = namespace
        self.codec = codec
        self.cache_dir = Path(cache_dir)
        self.ttl_s = ttl_s
        self.clock = clock or SystemClock()
        self._conn: sqlite3.Connection | None = None
        if enabled:
            self._open()
        else:
            logger.info('TileStore %s disabled', namespace)

    @property
    def db_path(self) -> Path:
        return self.cache_dir / f'{self.namespace}.db'

    @property
    def available(self) -> bool:
        return self._conn is not None

    def _open(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.execute('PRAGMA journal_mode=WAL')
            conn.execute('PRAGMA synchronous=NORMAL')
            conn.executescript('''
                CREATE TABLE IF NOT EXISTS tiles (
                    key TEXT PRIMARY KEY,
                    payload BLOB NOT NULL,
                    stored_at REAL NOT NULL,
                    expires_at REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_tiles_expires_at ON tiles(expires_at);
            ''')
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            logger.warning('TileStore %s unavailable at %s: %s', self.namespace, self.db_path, e)
            return
        self._conn = conn
        logger.info('TileStore %s opened at %s', self.namespace, self.db_path)

    def _disable(self, op: str, exc: Exception) -> None:
        logger.warning('TileStore %s %s failed, disabling store: %s', self.namespace, op, exc)
        conn, self._conn = self._conn, None
        if conn is not None:
            try:
                conn.close()
            except sqlite3.Error:
                logger.debug('Closing broken TileStore %s failed', self.namespace, exc_info=True)

    def get(self, key: str) -> T | None:
        """Stored tile for ``key`` if present and not expired.

        An expired entry is deleted on the way out.
        """
        if self._conn is None:
            return None
        try:
            row = self._conn.execute(
                'SELECT payload, expires_at FROM tiles WHERE key = ?', (key,)
            ).fetchone()
            if row is None:
                return None
            payload, expires_at = row
            if self.clock.time() >= expires_at:
                self._conn.execute('DELETE FROM tiles WHERE key = ?', (key,))
                self._conn.commit()
                logger.debug('TileStore %s: %s expired', self.namespace, key)
                return None
        except sqlite3.Error as e:
            self._disable('get', e)
            return None
        try:
            return self.codec.decode(key, payload)
        except TileKeyError:
            raise
        except (ValueError, OSError, EOFError) as e:
            # Corrupt or empty blob; treat as a miss and drop it
            logger.warning('TileStore %s: unreadable entry %s: %s', self.namespace, key, e)
            self.delete(key)
            return None

    def set(self, key: str, tile: T) -> None:
        if self._conn is None:
            return
        now = self.clock.time()
        try:
            payload = self.codec.encode(tile)
            self._conn.execute(
                '''INSERT OR REPLACE INTO tiles (key, payload, stored_at, expires_at)
                   VALUES (?, ?, ?, ?)''',
                (key, payload, now, now + self.ttl_s),
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._disable('set', e)

    def delete(self, key: str) -> bool:
        if self._conn is None:
            return False
        try:
            cursor = self._conn.execute('DELETE FROM tiles WHERE key = ?', (key,))
            self._conn.commit()
        except sqlite3.Error as e:
            self._disable('delete', e)
            return False
        return cursor.rowcount > 0

    def cleanup_expired(self) -> int:
        """Delete every entry whose expiry lies in the past.

        Returns:
            Number of entries deleted.
        """
        if self._conn is None:
            return 0
        try:
            cursor = self._conn.execute(
                'DELETE FROM tiles WHERE expires_at < ?', (self.clock.time(),)
            )
            self._conn.commit()
        except sqlite3.Error as e:
            self._disable('cleanup', e)
            return 0
        count = cursor.rowcount
        logger.info('TileStore %s: removed %d expired tiles', self.namespace, count)
        return count

    def count(self) -> int:
        if self._conn is None:
            return 0
        try:
            return self._conn.execute('SELECT COUNT(*) FROM tiles').fetchone()[0]
        except sqlite3.Error as e:
            self._disable('count', e)
            return 0

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info('TileStore %s closed', self.namespace)

    def __enter__(self) -> TileStore[T]:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
