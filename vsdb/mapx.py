"""A map of raw byte keys to raw byte values, kept in the shared engine."""

from __future__ import annotations

from collections.abc import Callable, Iterator

from .common import PREFIX_SIZE, VsdbError
from .engine import get_engine

Item = tuple[bytes, bytes]


class ValueMut:
    """A value taken out of a map for editing; ``save`` writes it back."""

    def __init__(self, owner: MapxRaw, key: bytes, value: bytes) -> None:
        self.owner = owner
        self.key = bytes(key)
        self.value = bytes(value)

    def save(self) -> None:
        """Store the current value under the key."""
        self.owner.insert(self.key, self.value)

    def __enter__(self) -> ValueMut:
        return self

    def __exit__(self, *args: object) -> None:
        self.save()

    def __bytes__(self) -> bytes:
        return bytes(self.value)

    def __repr__(self) -> str:
        return f"ValueMut(key={self.key!r}, value={self.value!r})"


class Entry:
    """A slot for one key of a map, filled only when it is empty."""

    def __init__(self, owner: MapxRaw, key: bytes) -> None:
        self.owner = owner
        self.key = bytes(key)

    def or_insert(self, default: bytes) -> ValueMut:
        """Return the stored value, storing ``default`` first if there is none."""
        return self.or_insert_with(lambda: default)

    def or_insert_with(self, factory: Callable[[], bytes]) -> ValueMut:
        """Return the stored value, storing ``factory()`` first if there is none."""
        current = self.owner.get_mut(self.key)
        if current is not None:
            return current
        value = bytes(factory())
        self.owner.insert(self.key, value)
        return ValueMut(self.owner, self.key, value)


def _restore(prefix: bytes) -> MapxRaw:
    return MapxRaw.from_prefix_slice(prefix)


class MapxRaw:
    """An ordered, disk-backed map; keys and values are stored as given."""

    def __init__(self) -> None:
        self._prefix: bytes | None = None

    def _prefix_bytes(self) -> bytes:
        if self._prefix is None:
            engine = get_engine()
            prefix = engine.alloc_prefix().to_bytes(PREFIX_SIZE, "big")
            engine.set_instance_len_hint(prefix, 0)
            self._prefix = prefix
        return self._prefix

    def shadow(self) -> MapxRaw:
        """Return another handle to the very same stored data."""
        return MapxRaw.from_prefix_slice(self._prefix_bytes())

    def get(self, key: bytes) -> bytes | None:
        return get_engine().get(self._prefix_bytes(), bytes(key))

    def get_mut(self, key: bytes) -> ValueMut | None:
        value = self.get(key)
        if value is None:
            return None
        return ValueMut(self, key, value)

    def contains_key(self, key: bytes) -> bool:
        return self.get(key) is not None

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (bytes, bytearray, memoryview)):
            return False
        return self.contains_key(bytes(key))

    def get_le(self, key: bytes) -> Item | None:
        """Return the entry with the greatest key not above ``key``."""
        return next(
            self.range(end=key, include_end=True, reverse=True), None
        )

    def get_ge(self, key: bytes) -> Item | None:
        """Return the entry with the smallest key not below ``key``."""
        return next(self.range(start=key), None)

    def __len__(self) -> int:
        return get_engine().get_instance_len_hint(self._prefix_bytes())

    def is_empty(self) -> bool:
        return len(self) == 0

    def entry(self, key: bytes) -> Entry:
        return Entry(self, key)

    def iter(self, reverse: bool = False) -> Iterator[Item]:
        """Yield ``(key, value)`` pairs in key order."""
        return get_engine().iter(self._prefix_bytes(), reverse)

    def __iter__(self) -> Iterator[bytes]:
        """Yield the keys in order."""
        return (k for k, _ in self.iter())

    def range(
        self,
        start: bytes | None = None,
        end: bytes | None = None,
        include_start: bool = True,
        include_end: bool = False,
        reverse: bool = False,
    ) -> Iterator[Item]:
        """Yield ``(key, value)`` pairs whose keys lie within the bounds."""
        return get_engine().range(
            self._prefix_bytes(), start, end, include_start, include_end, reverse
        )

    def iter_mut(self, reverse: bool = False) -> Iterator[tuple[bytes, ValueMut]]:
        """Yield ``(key, ValueMut)``; each value is written back once handled."""
        for key, value in self.iter(reverse):
            handle = ValueMut(self, key, value)
            try:
                yield key, handle
            finally:
                handle.save()

    def first(self) -> Item | None:
        return next(self.iter(), None)

    def last(self) -> Item | None:
        return next(self.iter(reverse=True), None)

    def insert(self, key: bytes, value: bytes) -> bytes | None:
        """Store ``value`` under ``key``; return the value it replaced."""
        engine = get_engine()
        prefix = self._prefix_bytes()
        old = engine.insert(prefix, bytes(key), bytes(value))
        if old is None:
            engine.increase_instance_len_hint(prefix)
        return old

    def remove(self, key: bytes) -> bytes | None:
        """Delete ``key``; return the value it held."""
        engine = get_engine()
        prefix = self._prefix_bytes()
        old = engine.remove(prefix, bytes(key))
        if old is not None:
            engine.decrease_instance_len_hint(prefix)
        return old

    def clear(self) -> None:
        engine = get_engine()
        prefix = self._prefix_bytes()
        for key in [k for k, _ in engine.iter(prefix)]:
            engine.remove(prefix, key)
        engine.set_instance_len_hint(prefix, 0)

    def copy(self) -> MapxRaw:
        """Return a new, independent map holding the same entries."""
        new = MapxRaw()
        for key, value in self.iter():
            new.insert(key, value)
        return new

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MapxRaw):
            return NotImplemented
        if len(self) != len(other):
            return False
        return all(a == b for a, b in zip(self.iter(), other.iter()))

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_prefix_slice(cls, data: bytes) -> MapxRaw:
        """Reopen the map whose instance prefix is ``data``."""
        data = bytes(data)
        if len(data) != PREFIX_SIZE:
            raise VsdbError(f"a prefix takes {PREFIX_SIZE} bytes, got {len(data)}")
        instance = cls()
        instance._prefix = data
        return instance

    def as_prefix_slice(self) -> bytes:
        return self._prefix_bytes()

    def is_the_same_instance(self, other: MapxRaw) -> bool:
        return self._prefix_bytes() == other._prefix_bytes()

    def __reduce__(self) -> tuple[Callable[[bytes], MapxRaw], tuple[bytes]]:
        return _restore, (self._prefix_bytes(),)

    def __repr__(self) -> str:
        return f"MapxRaw(prefix={self._prefix_bytes().hex()})"