# vsdb

Disk-backed storage building blocks:

- `vsdb.mapx.MapxRaw`: an ordered map of raw `bytes` keys to raw `bytes`
  values, kept in a shared storage engine and identified by an 8-byte prefix.
- `vsdb.slot_db.SlotDB`: a skip-list-like in-memory index that groups entries
  by an integer slot and answers paged queries quickly, in either direction.
- `vsdb.trie_codec` and `vsdb.trie_nodes`: the node codec of a radix-16
  trie without extension nodes (leaf and branch nodes, compact lengths,
  children bitmaps, Keccak-256 hashing).

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Where data lives

`vsdb.engine.Engine` keeps every map in one SQLite file (`vsdb.sqlite3`) in
the data directory. The directory is taken from the `VSDB_BASE_DIR`
environment variable, falling back to `$HOME/.vsdb`, then `/tmp/.vsdb`. It can
be set once, before the storage is first used:

```python
from vsdb.common import vsdb_set_base_dir, vsdb_get_base_dir

vsdb_set_base_dir("/tmp/my_vsdb_data")
print(vsdb_get_base_dir())
```

A second call raises `vsdb.common.VsdbError`; opening the shared engine
(`vsdb.engine.get_engine()`) also locks the directory in.
`vsdb.common.vsdb_get_custom_dir()` returns a `__CUSTOM__` sub-directory of
the base directory, and `vsdb.engine.vsdb_flush()` checkpoints pending writes
into the database file.

## MapxRaw

```python
from vsdb.mapx import MapxRaw

m = MapxRaw()
m.insert(b"\x01", b"\x00")
m.insert(b"\x02", b"\x00")
assert len(m) == 2

for key, value in m.iter():
    assert value == b"\x00"
assert list(m) == [b"\x01", b"\x02"]   # iterating a map yields its keys

m.remove(b"\x02")
assert len(m) == 1

m.insert(b"\x04", b"\x04")
m.insert(b"\x50", b"\x50")
assert m.get_ge(b"\x4f") == (b"\x50", b"\x50")
assert m.get_le(b"\x03")[0] == b"\x01"

# ranges: start/end bounds, inclusive flags, either direction
keys = [k for k, _ in m.range(b"\x02", b"\x10")]

# in-place updates are written back when the handle is saved or closed
with m.get_mut(b"\x01") as v:
    v.value = b"\x07"

m.entry(b"\x09").or_insert(b"\x09")
m.clear()
assert m.is_empty()
```

`insert` and `remove` return the value that was replaced or removed, or
`None`. `iter_mut()` yields `(key, ValueMut)` pairs and writes each value back
once it has been handled. `first()` and `last()` return the smallest and
greatest entries.

`as_prefix_slice()` returns the instance's 8-byte identifier;
`MapxRaw.from_prefix_slice(...)` and `shadow()` give another handle to the
same stored data, while `copy()` makes a new, independent map with the same
entries. Pickling a map stores only its prefix.

## SlotDB

```python
from vsdb.slot_db import SlotDB

db = SlotDB(8, False)          # multiple_step, swap_order
for i in range(1000):
    db.insert(i, i)

assert db.total() == 1000
assert db.get_entries_by_page(10, 0, False) == list(range(10))
assert db.get_entries_by_page(10, 0, True) == list(range(999, 989, -1))

# restrict to slots 100..=199, second page, newest first
page = db.get_entries_by_page_slot(100, 199, 10, 1, True)

assert db.entry_cnt_within_two_slots(100, 199) == 100
assert db.total_by_slot(100, None) == 900
db.remove(5, 5)
db.clear()
```

Slots are integers in `[0, 2**64 - 1]`, page sizes in `[0, 65535]` and page
indexes in `[0, 2**32 - 1]`; values outside raise `ValueError`. Entries of one
slot are kept sorted and unique. Pass `swap_order=True` when most queries run
newest-first; results are the same, only the internal layout changes.
A `SlotDB` lives in memory only.

## Trie node codec

```python
from vsdb.trie_codec import NodeCodec, InlineValue, LeafPlan
from vsdb.trie_nodes import keccak256

codec = NodeCodec(keccak256, 32)
encoded = codec.leaf_node(bytes([0x12]), 2, InlineValue(b"value"))
plan = codec.decode_plan(encoded)
assert isinstance(plan, LeafPlan)
assert plan.nibbles == (1, 2)
assert codec.is_empty_node(codec.empty_node())
```

`NodeCodec.branch_node_nibbled` encodes branches; `decode_plan` returns an
`EmptyPlan`, `LeafPlan` or `BranchPlan`. `TrieStream` builds node encodings
while a root is computed. `vsdb.trie_nodes` holds the lower layers:
`NodeHeader`, `Bitmap`, `ByteReader`, `encode_compact` / `decode_compact`.
Malformed input raises `vsdb.trie_nodes.CodecError`.

## What this package does not do

It provides the trie's node format only: there is no trie structure on top
of it — no insertion, lookup or root computation over a key set, no
reference-counted node store and no versioned store of trie roots. There is
also no command-line tool and no server; everything is used as a library.