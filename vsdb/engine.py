"""Low-level ordered key-value storage shared by all instances."""

from __future__ import annotations

import os
import sqlite3
import threading
from collections.abc import Iterator
from pathlib import Path

from . import common
from .common import PREFIX_SIZE, RESERVED_ID_CNT, VsdbError, parse_int

# The meta table is kept apart from the data areas.
DATA_SET_NUM = 2

_DB_FILE = "vsdb.sqlite3"
_META_TABLE = "meta"
_META_KEY_PREFIX_ALLOCATOR = b"\x00"
_BATCH = 256

Item = tuple[bytes, bytes]


def _next_prefix(prefix: bytes) -> bytes | None:
    value = parse_int(prefix) + 1
    if value >= 1 << (8 * PREFIX_SIZE):
        return None
    return value.to_bytes(PREFIX_SIZE, "big")


class Engine:
    """Ordered byte store split into areas, addressed by instance prefixes."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._alloc_lock = threading.Lock()
        self._len_locks = [threading.Lock() for _ in range(DATA_SET_NUM)]
        self._conn = sqlite3.connect(
            self.directory / _DB_FILE,
            isolation_level=None,
            check_same_thread=False,
        )
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            for table in self._tables():
                self._conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} "
                    "(k BLOB PRIMARY KEY, v BLOB NOT NULL) WITHOUT ROWID"
                )
            if self._meta_get(_META_KEY_PREFIX_ALLOCATOR) is None:
                self._meta_put(
                    _META_KEY_PREFIX_ALLOCATOR,
                    RESERVED_ID_CNT.to_bytes(PREFIX_SIZE, "big"),
                )

    @staticmethod
    def _tables() -> list[str]:
        return [f"area_{i}" for i in range(DATA_SET_NUM)] + [_META_TABLE]

    def _meta_get(self, key: bytes) -> bytes | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT v FROM {_META_TABLE} WHERE k = ?", (key,)
            ).fetchone()
        return None if row is None else bytes(row[0])

    def _meta_put(self, key: bytes, value: bytes) -> None:
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO {_META_TABLE} (k, v) VALUES (?, ?)",
                (key, value),
            )

    @staticmethod
    def _check_prefix(meta_prefix: bytes) -> bytes:
        meta_prefix = bytes(meta_prefix)
        if len(meta_prefix) != PREFIX_SIZE:
            raise VsdbError(
                f"a prefix takes {PREFIX_SIZE} bytes, got {len(meta_prefix)}"
            )
        return meta_prefix

    def _table(self, meta_prefix: bytes) -> str:
        return f"area_{self.area_idx(meta_prefix)}"

    def alloc_prefix(self) -> int:
        """Hand out a fresh, never used instance prefix."""
        with self._alloc_lock:
            current = self._meta_get(_META_KEY_PREFIX_ALLOCATOR)
            if current is None:
                raise VsdbError("the prefix allocator is missing")
            ret = parse_int(current)
            self._meta_put(
                _META_KEY_PREFIX_ALLOCATOR, (ret + 1).to_bytes(PREFIX_SIZE, "big")
            )
            return ret

    def area_count(self) -> int:
        return DATA_SET_NUM

    def area_idx(self, meta_prefix: bytes) -> int:
        return self._check_prefix(meta_prefix)[0] % self.area_count()

    def flush(self) -> None:
        """Push pending writes from the log into the main database file."""
        with self._lock:
            self._conn.execute("PRAGMA wal_checkpoint(PASSIVE)")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _scan(
        self,
        table: str,
        lo: bytes | None,
        lo_inc: bool,
        hi: bytes | None,
        hi_inc: bool,
        reverse: bool,
    ) -> Iterator[Item]:
        order = "DESC" if reverse else "ASC"
        while True:
            conds: list[str] = []
            params: list[bytes] = []
            if lo is not None:
                conds.append("k >= ?" if lo_inc else "k > ?")
                params.append(lo)
            if hi is not None:
                conds.append("k <= ?" if hi_inc else "k < ?")
                params.append(hi)
            where = " AND ".join(conds) or "1"
            sql = (
                f"SELECT k, v FROM {table} WHERE {where} "
                f"ORDER BY k {order} LIMIT {_BATCH}"
            )
            with self._lock:
                rows = self._conn.execute(sql, params).fetchall()
            for k, v in rows:
                yield bytes(k)[PREFIX_SIZE:], bytes(v)
            if len(rows) < _BATCH:
                return
            last = bytes(rows[-1][0])
            if reverse:
                hi, hi_inc = last, False
            else:
                lo, lo_inc = last, False

    def iter(self, meta_prefix: bytes, reverse: bool = False) -> Iterator[Item]:
        """Yield every ``(key, value)`` of one instance in key order."""
        meta_prefix = self._check_prefix(meta_prefix)
        return self._scan(
            self._table(meta_prefix),
            meta_prefix,
            True,
            _next_prefix(meta_prefix),
            False,
            reverse,
        )

    def range(
        self,
        meta_prefix: bytes,
        start: bytes | None = None,
        end: bytes | None = None,
        include_start: bool = True,
        include_end: bool = False,
        reverse: bool = False,
    ) -> Iterator[Item]:
        """Yield the ``(key, value)`` pairs of one instance within the bounds."""
        meta_prefix = self._check_prefix(meta_prefix)
        if start is None:
            lo, lo_inc = meta_prefix, True
        else:
            lo, lo_inc = meta_prefix + bytes(start), include_start
        if end is None:
            hi, hi_inc = _next_prefix(meta_prefix), False
        else:
            hi, hi_inc = meta_prefix + bytes(end), include_end
        return self._scan(self._table(meta_prefix), lo, lo_inc, hi, hi_inc, reverse)

    def get(self, meta_prefix: bytes, key: bytes) -> bytes | None:
        meta_prefix = self._check_prefix(meta_prefix)
        with self._lock:
            row = self._conn.execute(
                f"SELECT v FROM {self._table(meta_prefix)} WHERE k = ?",
                (meta_prefix + bytes(key),),
            ).fetchone()
        return None if row is None else bytes(row[0])

    def insert(self, meta_prefix: bytes, key: bytes, value: bytes) -> bytes | None:
        """Store ``value`` under ``key``; return the value it replaced."""
        meta_prefix = self._check_prefix(meta_prefix)
        with self._lock:
            old = self.get(meta_prefix, key)
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self._table(meta_prefix)} (k, v) "
                "VALUES (?, ?)",
                (meta_prefix + bytes(key), bytes(value)),
            )
        return old

    def remove(self, meta_prefix: bytes, key: bytes) -> bytes | None:
        """Delete ``key``; return the value it held."""
        meta_prefix = self._check_prefix(meta_prefix)
        with self._lock:
            old = self.get(meta_prefix, key)
            self._conn.execute(
                f"DELETE FROM {self._table(meta_prefix)} WHERE k = ?",
                (meta_prefix + bytes(key),),
            )
        return old

    def get_instance_len_hint(self, instance_prefix: bytes) -> int:
        instance_prefix = self._check_prefix(instance_prefix)
        raw = self._meta_get(instance_prefix)
        if raw is None:
            raise VsdbError(f"no length is recorded for {instance_prefix.hex()}")
        return parse_int(raw)

    def set_instance_len_hint(self, instance_prefix: bytes, new_len: int) -> None:
        instance_prefix = self._check_prefix(instance_prefix)
        self._meta_put(instance_prefix, new_len.to_bytes(8, "big"))

    def increase_instance_len_hint(self, instance_prefix: bytes) -> None:
        with self._len_locks[self.area_idx(instance_prefix)]:
            n = self.get_instance_len_hint(instance_prefix)
            self.set_instance_len_hint(instance_prefix, n + 1)

    def decrease_instance_len_hint(self, instance_prefix: bytes) -> None:
        with self._len_locks[self.area_idx(instance_prefix)]:
            n = self.get_instance_len_hint(instance_prefix)
            self.set_instance_len_hint(instance_prefix, max(n - 1, 0))


_ENGINE: Engine | None = None
_ENGINE_LOCK = threading.Lock()


def get_engine() -> Engine:
    """Return the process-wide engine, opening it in the base directory."""
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is None:
            directory = common.vsdb_get_base_dir()
            # Lock the base directory once the store is open.
            try:
                common.vsdb_set_base_dir(directory)
            except VsdbError:
                pass
            _ENGINE = Engine(directory)
        return _ENGINE


def vsdb_flush() -> None:
    """Flush data to disk, may take a long time."""
    get_engine().flush()