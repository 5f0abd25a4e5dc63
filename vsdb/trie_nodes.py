"""Building blocks of the trie node format: headers, sizes, bitmaps, compact ints."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from Crypto.Hash import keccak

FIRST_PREFIX = 0b00 << 6
LEAF_PREFIX_MASK = 0b01 << 6
BRANCH_WITHOUT_MASK = 0b10 << 6
BRANCH_WITH_MASK = 0b11 << 6
EMPTY_TRIE = FIRST_PREFIX | (0b00 << 4)
ALT_HASHING_LEAF_PREFIX_MASK = FIRST_PREFIX | (0b1 << 5)
ALT_HASHING_BRANCH_WITH_MASK = FIRST_PREFIX | (0b01 << 4)
ESCAPE_COMPACT_HEADER = EMPTY_TRIE | 0b00_01

TRIE_VALUE_NODE_THRESHOLD = 33
BITMAP_LENGTH = 2
HASH_LENGTH = 32

_COMPACT_MAX_BYTES = 4 + 0b11_1111


class CodecError(Exception):
    """Raised when encoded trie data is malformed or truncated."""


def keccak256(data: bytes) -> bytes:
    """Return the 32-byte Keccak-256 digest of ``data``."""
    return keccak.new(digest_bits=256, data=bytes(data)).digest()


class ByteReader:
    """A cursor over a byte string that tracks its absolute position."""

    def __init__(self, data: bytes) -> None:
        self.data = bytes(data)
        self.offset = 0

    def take(self, count: int) -> range:
        """Consume ``count`` bytes and return the positions they occupy."""
        if count < 0 or self.offset + count > len(self.data):
            raise CodecError("out of data")
        taken = range(self.offset, self.offset + count)
        self.offset += count
        return taken

    def read(self, count: int) -> bytes:
        """Consume ``count`` bytes and return them."""
        taken = self.take(count)
        return self.data[taken.start : taken.stop]

    def read_byte(self) -> int:
        if self.offset + 1 > len(self.data):
            raise CodecError("out of data")
        byte = self.data[self.offset]
        self.offset += 1
        return byte

    def remaining_len(self) -> int:
        return max(len(self.data) - self.offset, 0)


def encode_compact(value: int) -> bytes:
    """Encode a non-negative integer in the SCALE compact format."""
    if value < 0:
        raise ValueError(f"compact integers are unsigned, got {value}")
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    length = max(4, (value.bit_length() + 7) // 8)
    if length > _COMPACT_MAX_BYTES:
        raise ValueError(f"{value} is too large for a compact integer")
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, "little")


def decode_compact(reader: ByteReader) -> int:
    """Read one SCALE compact integer, rejecting non-canonical forms."""
    first = reader.read_byte()
    mode = first & 0b11
    if mode == 0b00:
        return first >> 2
    if mode == 0b01:
        value = (first | reader.read_byte() << 8) >> 2
        if value < 1 << 6:
            raise CodecError("out of range decoding compact integer")
        return value
    if mode == 0b10:
        value = int.from_bytes(bytes([first]) + reader.read(3), "little") >> 2
        if value < 1 << 14:
            raise CodecError("out of range decoding compact integer")
        return value
    length = (first >> 2) + 4
    raw = reader.read(length)
    value = int.from_bytes(raw, "little")
    if length == 4:
        if value < 1 << 30:
            raise CodecError("out of range decoding compact integer")
    elif raw[-1] == 0:
        raise CodecError("out of range decoding compact integer")
    return value


def size_and_prefix_iterator(size: int, prefix: int, prefix_mask: int) -> Iterator[int]:
    """Yield the header bytes that carry ``prefix`` and a nibble ``size``."""
    if size < 0:
        raise ValueError(f"size must not be negative, got {size}")
    max_value = 255 >> prefix_mask
    l1 = min(max(max_value - 1, 0), size)
    if size == l1:
        yield (prefix + l1) & 0xFF
        return
    yield (prefix + max_value) & 0xFF
    rem = size - l1
    while rem > 0:
        if rem < 256:
            yield rem - 1
            rem = 0
        else:
            rem = max(rem - 255, 0)
            yield 255


def decode_size(first: int, reader: ByteReader, prefix_mask: int) -> int:
    """Read a nibble count whose first bits sit in the header byte ``first``."""
    max_value = 255 >> prefix_mask
    result = first & max_value
    if result < max_value:
        return result
    result -= 1
    while True:
        n = reader.read_byte()
        if n < 255:
            return result + n + 1
        result += 255


class NodeKind(enum.Enum):
    """The kinds of non-empty node a header can announce."""

    LEAF = "leaf"
    BRANCH_NO_VALUE = "branch_no_value"
    BRANCH_WITH_VALUE = "branch_with_value"
    HASHED_VALUE_LEAF = "hashed_value_leaf"
    HASHED_VALUE_BRANCH = "hashed_value_branch"

    @property
    def prefix(self) -> int:
        """The high bits that mark this kind in a header byte."""
        return _KIND_LAYOUT[self][0]

    @property
    def prefix_mask(self) -> int:
        """How many high bits of the header byte the prefix takes."""
        return _KIND_LAYOUT[self][1]

    @property
    def is_leaf(self) -> bool:
        return self in (NodeKind.LEAF, NodeKind.HASHED_VALUE_LEAF)


_KIND_LAYOUT = {
    NodeKind.LEAF: (LEAF_PREFIX_MASK, 2),
    NodeKind.BRANCH_NO_VALUE: (BRANCH_WITHOUT_MASK, 2),
    NodeKind.BRANCH_WITH_VALUE: (BRANCH_WITH_MASK, 2),
    NodeKind.HASHED_VALUE_LEAF: (ALT_HASHING_LEAF_PREFIX_MASK, 3),
    NodeKind.HASHED_VALUE_BRANCH: (ALT_HASHING_BRANCH_WITH_MASK, 4),
}


@dataclass(frozen=True)
class NodeHeader:
    """A node header: its kind and nibble count, or ``kind=None`` for the empty node."""

    kind: NodeKind | None
    nibble_count: int = 0

    def __post_init__(self) -> None:
        if self.nibble_count < 0:
            raise ValueError(f"nibble count must not be negative, got {self.nibble_count}")
        if self.kind is None and self.nibble_count != 0:
            raise ValueError("the empty node header carries no nibbles")

    @classmethod
    def null(cls) -> NodeHeader:
        return cls(None, 0)

    @property
    def is_null(self) -> bool:
        return self.kind is None

    @property
    def branch_has_value(self) -> bool:
        """False only for a branch that holds no value."""
        return self.kind is not NodeKind.BRANCH_NO_VALUE

    def contains_hash_of_value(self) -> bool:
        return self.kind in (NodeKind.HASHED_VALUE_BRANCH, NodeKind.HASHED_VALUE_LEAF)

    def encode(self) -> bytes:
        if self.kind is None:
            return bytes([EMPTY_TRIE])
        return bytes(
            size_and_prefix_iterator(
                self.nibble_count, self.kind.prefix, self.kind.prefix_mask
            )
        )

    @classmethod
    def decode(cls, reader: ByteReader) -> NodeHeader:
        i = reader.read_byte()
        if i == EMPTY_TRIE:
            return cls.null()
        top = i & (0b11 << 6)
        if top == LEAF_PREFIX_MASK:
            return cls(NodeKind.LEAF, decode_size(i, reader, 2))
        if top == BRANCH_WITH_MASK:
            return cls(NodeKind.BRANCH_WITH_VALUE, decode_size(i, reader, 2))
        if top == BRANCH_WITHOUT_MASK:
            return cls(NodeKind.BRANCH_NO_VALUE, decode_size(i, reader, 2))
        if i & (0b111 << 5) == ALT_HASHING_LEAF_PREFIX_MASK:
            return cls(NodeKind.HASHED_VALUE_LEAF, decode_size(i, reader, 3))
        if i & (0b1111 << 4) == ALT_HASHING_BRANCH_WITH_MASK:
            return cls(NodeKind.HASHED_VALUE_BRANCH, decode_size(i, reader, 4))
        raise CodecError("Unallowed encoding")


@dataclass(frozen=True)
class Bitmap:
    """Which of the 16 children of a branch are present."""

    value: int

    @classmethod
    def decode(cls, data: bytes) -> Bitmap:
        if len(data) < BITMAP_LENGTH:
            raise CodecError("not enough data to fill buffer")
        value = int.from_bytes(bytes(data[:BITMAP_LENGTH]), "little")
        if value == 0:
            raise CodecError("Bitmap without a child.")
        return cls(value)

    def value_at(self, i: int) -> bool:
        return bool(self.value & (1 << i))

    @staticmethod
    def encode(has_children: Iterable[bool]) -> bytes:
        """Pack child presence flags into the two bitmap bytes."""
        bitmap = 0
        cursor = 1
        for present in has_children:
            if present:
                bitmap |= cursor
            cursor = (cursor << 1) & 0xFFFF
        return bytes([bitmap % 256, bitmap // 256])