import pytest

from vsdb.trie_codec import (
    BranchPlan,
    EmptyPlan,
    HashedValue,
    InlineValue,
    LeafPlan,
    NodeCodec,
    TrieStream,
    branch_node_bit_mask,
    fuse_nibbles_node,
)
from vsdb.trie_nodes import (
    EMPTY_TRIE,
    ESCAPE_COMPACT_HEADER,
    CodecError,
    NodeKind,
    encode_compact,
    keccak256,
)


@pytest.fixture
def codec():
    return NodeCodec()


def test_empty_node(codec):
    assert codec.empty_node() == bytes([EMPTY_TRIE])
    assert codec.is_empty_node(codec.empty_node())
    assert not codec.is_empty_node(b"\x01")
    assert codec.decode_plan(codec.empty_node()) == EmptyPlan()


def test_hashed_null_node(codec):
    assert codec.hashed_null_node() == keccak256(bytes([EMPTY_TRIE]))
    assert len(codec.hashed_null_node()) == 32
    assert NodeCodec.ESCAPE_HEADER == ESCAPE_COMPACT_HEADER


def test_leaf_matches_fused_header(codec):
    encoded = codec.leaf_node(bytes([0x01, 0x23]), 3, InlineValue(b"ab"))
    expected = fuse_nibbles_node([1, 2, 3], NodeKind.LEAF) + encode_compact(2) + b"ab"
    assert encoded == expected


def test_leaf_round_trip(codec):
    encoded = codec.leaf_node(bytes([0x01, 0x23]), 3, InlineValue(b"ab"))
    plan = codec.decode_plan(encoded)
    assert isinstance(plan, LeafPlan)
    assert plan.nibbles == (1, 2, 3)
    assert plan.partial_offset == 1
    assert plan.value == InlineValue(b"ab")


def test_hashed_leaf_round_trip(codec):
    digest = keccak256(b"value")
    encoded = codec.leaf_node(bytes([0x12, 0x34]), 4, HashedValue(digest))
    plan = codec.decode_plan(encoded)
    assert plan == LeafPlan(bytes([0x12, 0x34]), 0, HashedValue(digest))
    assert plan.nibbles == (1, 2, 3, 4)


def test_long_partial_round_trip(codec):
    nibbles = [i % 16 for i in range(70)]
    packed = bytes(hi << 4 | lo for hi, lo in zip(nibbles[::2], nibbles[1::2]))
    encoded = codec.leaf_node(packed, 70, InlineValue(b"x"))
    plan = codec.decode_plan(encoded)
    assert plan.nibbles == tuple(nibbles)
    assert plan.value == InlineValue(b"x")


def test_branch_round_trip(codec):
    children = [None] * 16
    children[0] = InlineValue(b"small")
    children[5] = HashedValue(keccak256(b"child"))
    children[15] = InlineValue(b"z")
    encoded = codec.branch_node_nibbled(bytes([0x0A]), 1, children, InlineValue(b"val"))
    plan = codec.decode_plan(encoded)
    assert isinstance(plan, BranchPlan)
    assert plan.nibbles == (0x0A,)
    assert plan.value == InlineValue(b"val")
    assert plan.children == tuple(children)


def test_branch_without_value_and_hashed_value(codec):
    children = [None] * 16
    children[3] = InlineValue(b"c")
    plain = codec.decode_plan(codec.branch_node_nibbled(b"", 0, children, None))
    assert plain.value is None
    assert plain.children[3] == InlineValue(b"c")

    digest = keccak256(b"v")
    hashed = codec.decode_plan(codec.branch_node_nibbled(b"", 0, children, HashedValue(digest)))
    assert hashed.value == HashedValue(digest)
    assert hashed.children == tuple(children)


def test_bad_padding_rejected(codec):
    with pytest.raises(CodecError):
        codec.decode_plan(bytes([0x41, 0x10, 0x00]))


def test_truncated_rejected(codec):
    encoded = codec.leaf_node(bytes([0x12]), 2, InlineValue(b"abcdef"))
    with pytest.raises(CodecError):
        codec.decode_plan(encoded[:-2])


def test_branch_without_child_rejected(codec):
    with pytest.raises(CodecError):
        codec.decode_plan(bytes([0x80, 0x00, 0x00]))


def test_bad_hash_length_rejected(codec):
    with pytest.raises(ValueError):
        codec.leaf_node(b"", 0, HashedValue(b"short"))


def test_branch_node_bit_mask():
    assert branch_node_bit_mask([True] + [False] * 15) == (1, 0)
    assert branch_node_bit_mask([False] * 8 + [True]) == (0, 1)


def test_stream_empty_and_leaf(codec):
    stream = TrieStream()
    stream.append_empty_data()
    assert stream.out() == codec.empty_node()

    leaf = TrieStream()
    leaf.append_leaf([1, 2, 3, 4], InlineValue(b"v"))
    assert leaf.out() == codec.leaf_node(bytes([0x12, 0x34]), 4, InlineValue(b"v"))


def test_stream_branch_is_prefix_of_codec_branch(codec):
    children = [None] * 16
    children[2] = InlineValue(b"kid")
    stream = TrieStream()
    stream.begin_branch([7], InlineValue(b"val"), (c is not None for c in children))
    full = codec.branch_node_nibbled(bytes([0x07]), 1, children, InlineValue(b"val"))
    assert full.startswith(stream.out())
    assert full[len(stream.out()):] == encode_compact(3) + b"kid"


def test_stream_rejects_extensions():
    stream = TrieStream()
    with pytest.raises(ValueError):
        stream.begin_branch(None, None, [True])
    with pytest.raises(ValueError):
        stream.append_extension([1])


def test_substream_inline_and_hashed():
    small = TrieStream()
    small.append_leaf([1], InlineValue(b"a"))
    parent = TrieStream()
    parent.append_substream(small)
    assert parent.out() == encode_compact(len(small.out())) + small.out()

    large = TrieStream()
    large.append_leaf([1, 2], InlineValue(b"y" * 40))
    parent = TrieStream()
    parent.append_substream(large)
    assert parent.out() == encode_compact(32) + keccak256(large.out())


def test_fuse_nibbles_rejects_bad_nibble():
    with pytest.raises(ValueError):
        fuse_nibbles_node([16], NodeKind.LEAF)