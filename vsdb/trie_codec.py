"""Encoding and decoding of trie nodes in the no-extension layout."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Optional, Union

from .trie_nodes import (
    BITMAP_LENGTH,
    EMPTY_TRIE,
    ESCAPE_COMPACT_HEADER,
    HASH_LENGTH,
    Bitmap,
    ByteReader,
    CodecError,
    NodeHeader,
    NodeKind,
    decode_compact,
    encode_compact,
    keccak256,
    size_and_prefix_iterator,
)

NIBBLE_LENGTH = 16
NIBBLE_PER_BYTE = 2

Hasher = Callable[[bytes], bytes]


@dataclass(frozen=True)
class InlineValue:
    """A value, or a child node, stored in place."""

    data: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))


@dataclass(frozen=True)
class HashedValue:
    """A value, or a child node, referred to by its hash."""

    hash: bytes

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", bytes(self.hash))


Value = Union[InlineValue, HashedValue]
Child = Optional[Value]


def _nibbles_of(partial: bytes, offset: int) -> tuple[int, ...]:
    nibbles = [n for b in partial for n in (b >> 4, b & 0x0F)]
    return tuple(nibbles[offset:])


@dataclass(frozen=True)
class EmptyPlan:
    """The decoded empty node."""


@dataclass(frozen=True)
class LeafPlan:
    """A decoded leaf: its packed partial key and the value it holds."""

    partial: bytes
    partial_offset: int
    value: Value

    @property
    def nibbles(self) -> tuple[int, ...]:
        """The partial key as nibbles, leading padding dropped."""
        return _nibbles_of(self.partial, self.partial_offset)


@dataclass(frozen=True)
class BranchPlan:
    """A decoded branch: partial key, optional value and sixteen child slots."""

    partial: bytes
    partial_offset: int
    value: Value | None
    children: tuple[Child, ...]

    @property
    def nibbles(self) -> tuple[int, ...]:
        """The partial key as nibbles, leading padding dropped."""
        return _nibbles_of(self.partial, self.partial_offset)


NodePlan = Union[EmptyPlan, LeafPlan, BranchPlan]


def branch_node_bit_mask(has_children: Iterable[bool]) -> tuple[int, int]:
    """Return the low and high bytes of the child-presence bitmap."""
    low, high = Bitmap.encode(has_children)
    return low, high


def fuse_nibbles_node(nibbles: Sequence[int], kind: NodeKind) -> bytes:
    """Encode a node header of ``kind`` followed by the packed ``nibbles``."""
    if any(not 0 <= n < 16 for n in nibbles):
        raise ValueError("every nibble must lie in [0, 15]")
    out = bytearray(size_and_prefix_iterator(len(nibbles), kind.prefix, kind.prefix_mask))
    odd = len(nibbles) % 2
    if odd:
        out.append(nibbles[0])
    rest = list(nibbles[odd:])
    out.extend(hi << 4 | lo for hi, lo in zip(rest[::2], rest[1::2]))
    return bytes(out)


def _encode_bytes(data: bytes) -> bytes:
    return encode_compact(len(data)) + bytes(data)


def _encode_value(value: Value) -> bytes:
    if isinstance(value, InlineValue):
        return _encode_bytes(value.data)
    return value.hash


class TrieStream:
    """Accumulates the encoding of one node while a trie root is computed."""

    def __init__(self, hasher: Hasher = keccak256) -> None:
        self.hasher = hasher
        self._buffer = bytearray()

    def append_empty_data(self) -> None:
        self._buffer.append(EMPTY_TRIE)

    def append_leaf(self, key: Sequence[int], value: Value) -> None:
        """Append a leaf whose partial key is given as nibbles."""
        kind = NodeKind.LEAF if isinstance(value, InlineValue) else NodeKind.HASHED_VALUE_LEAF
        self._buffer += fuse_nibbles_node(key, kind)
        self._buffer += _encode_value(value)

    def begin_branch(
        self,
        maybe_partial: Sequence[int] | None,
        maybe_value: Value | None,
        has_children: Iterable[bool],
    ) -> None:
        """Append a branch header, its bitmap and its value, if any."""
        if maybe_partial is None:
            raise ValueError("trie stream codec only for no extension trie")
        if maybe_value is None:
            kind = NodeKind.BRANCH_NO_VALUE
        elif isinstance(maybe_value, InlineValue):
            kind = NodeKind.BRANCH_WITH_VALUE
        else:
            kind = NodeKind.HASHED_VALUE_BRANCH
        self._buffer += fuse_nibbles_node(maybe_partial, kind)
        self._buffer += bytes(branch_node_bit_mask(has_children))
        if maybe_value is not None:
            self._buffer += _encode_value(maybe_value)

    def append_extension(self, key: Sequence[int]) -> None:
        """Reject extension nodes; an empty extension adds nothing to the stream."""
        nibbles = tuple(key)
        if nibbles:
            raise ValueError(
                f"trie stream codec only for no extension trie "
                f"(got an extension of {len(nibbles)} nibbles)"
            )

    def append_substream(self, other: TrieStream) -> None:
        """Append a child node: in place when short, by its hash otherwise."""
        data = other.out()
        if len(data) <= 31:
            self._buffer += _encode_bytes(data)
        else:
            self._buffer += _encode_bytes(self.hasher(data))

    def out(self) -> bytes:
        return bytes(self._buffer)


class NodeCodec:
    """Encodes and decodes trie nodes with SCALE-style lengths."""

    ESCAPE_HEADER = ESCAPE_COMPACT_HEADER

    def __init__(self, hasher: Hasher = keccak256, hash_length: int = HASH_LENGTH) -> None:
        self.hasher = hasher
        self.hash_length = hash_length

    def hashed_null_node(self) -> bytes:
        return self.hasher(self.empty_node())

    def empty_node(self) -> bytes:
        return bytes([EMPTY_TRIE])

    def is_empty_node(self, data: bytes) -> bool:
        return bytes(data) == self.empty_node()

    def _read_partial(self, reader: ByteReader, nibble_count: int) -> tuple[bytes, int]:
        if nibble_count % NIBBLE_PER_BYTE:
            if reader.offset >= len(reader.data):
                raise CodecError("out of data")
            if reader.data[reader.offset] & 0xF0:
                raise CodecError("bad format")
        partial = reader.read((nibble_count + NIBBLE_PER_BYTE - 1) // NIBBLE_PER_BYTE)
        return partial, nibble_count % NIBBLE_PER_BYTE

    def _read_value(self, reader: ByteReader, hashed: bool) -> Value:
        if hashed:
            return HashedValue(reader.read(self.hash_length))
        return InlineValue(reader.read(decode_compact(reader)))

    def decode_plan(self, data: bytes) -> NodePlan:
        """Decode one node; raise ``CodecError`` if it is malformed."""
        reader = ByteReader(data)
        header = NodeHeader.decode(reader)
        if header.is_null:
            return EmptyPlan()
        hashed = header.contains_hash_of_value()
        partial, offset = self._read_partial(reader, header.nibble_count)

        if header.kind is not None and header.kind.is_leaf:
            return LeafPlan(partial, offset, self._read_value(reader, hashed))

        bitmap = Bitmap.decode(reader.read(BITMAP_LENGTH))
        value = self._read_value(reader, hashed) if header.branch_has_value else None
        children: list[Child] = []
        for i in range(NIBBLE_LENGTH):
            if not bitmap.value_at(i):
                children.append(None)
                continue
            child = reader.read(decode_compact(reader))
            if len(child) == self.hash_length:
                children.append(HashedValue(child))
            else:
                children.append(InlineValue(child))
        return BranchPlan(partial, offset, value, tuple(children))

    def _check_value(self, value: Value | None) -> None:
        if isinstance(value, HashedValue) and len(value.hash) != self.hash_length:
            raise ValueError(
                f"a value hash takes {self.hash_length} bytes, got {len(value.hash)}"
            )

    def leaf_node(self, partial: Iterable[int], number_nibble: int, value: Value) -> bytes:
        """Encode a leaf from its packed partial key bytes and value."""
        self._check_value(value)
        kind = NodeKind.HASHED_VALUE_LEAF if isinstance(value, HashedValue) else NodeKind.LEAF
        return NodeHeader(kind, number_nibble).encode() + bytes(partial) + _encode_value(value)

    def branch_node_nibbled(
        self,
        partial: Iterable[int],
        number_nibble: int,
        children: Iterable[Child],
        value: Value | None,
    ) -> bytes:
        """Encode a branch from its packed partial key, children and value."""
        self._check_value(value)
        if value is None:
            kind = NodeKind.BRANCH_NO_VALUE
        elif isinstance(value, InlineValue):
            kind = NodeKind.BRANCH_WITH_VALUE
        else:
            kind = NodeKind.HASHED_VALUE_BRANCH
        head = NodeHeader(kind, number_nibble).encode() + bytes(partial)
        body = bytearray() if value is None else bytearray(_encode_value(value))
        present: list[bool] = []
        for child in children:
            if child is None:
                present.append(False)
            elif isinstance(child, HashedValue):
                body += _encode_bytes(child.hash)
                present.append(True)
            else:
                body += _encode_bytes(child.data)
                present.append(True)
        return head + Bitmap.encode(present) + bytes(body)