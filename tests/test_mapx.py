import pickle

import pytest

from vsdb.common import VsdbError, vsdb_set_base_dir
from vsdb.mapx import MapxRaw


@pytest.fixture(scope="module", autouse=True)
def _isolated_base_dir(tmp_path_factory):
    try:
        vsdb_set_base_dir(tmp_path_factory.mktemp("vsdb_mapx"))
    except VsdbError:
        pass


def to_bytes(i):
    return i.to_bytes(8, "big")


def to_u64(data):
    return int.from_bytes(data, "big")


def test_insert():
    hdr = MapxRaw()
    max_ = 100
    for i in range(max_):
        key, value = to_bytes(i), to_bytes(max_ + i)
        assert hdr.get(key) is None
        hdr.entry(key).or_insert(value)
        assert hdr.insert(key, value) is not None
        assert hdr.contains_key(key)
        assert hdr.get(key) == value
        assert hdr.remove(key) == value
        assert hdr.get(key) is None
        assert hdr.insert(key, value) is None
    hdr.clear()
    for i in range(max_):
        assert hdr.get(to_bytes(i)) is None
    assert hdr.is_empty()


def test_len():
    hdr = MapxRaw()
    max_ = 100
    for i in range(max_):
        assert hdr.insert(to_bytes(i), to_bytes(max_ + i)) is None
    assert len(hdr) == 100
    for i in range(max_):
        assert hdr.remove(to_bytes(i)) is not None
    assert len(hdr) == 0


def test_iter():
    hdr = MapxRaw()
    max_ = 100
    for i in range(max_):
        assert hdr.insert(to_bytes(i), to_bytes(i)) is None

    for _, vm in hdr.iter_mut():
        vm.value = to_bytes(to_u64(vm.value) + 1)

    keys = [k for k, _ in hdr.iter()]
    for idx, key in enumerate(keys):
        assert to_u64(hdr.remove(key)) == idx + 1
    assert len(hdr) == 0


def test_first_last():
    hdr = MapxRaw()
    max_ = 100
    for i in range(max_):
        assert hdr.insert(to_bytes(i), to_bytes(i)) is None
    _, value = next(hdr.iter())
    assert to_u64(value) == 0
    _, value = next(hdr.iter(reverse=True))
    assert to_u64(value) == max_ - 1
    assert to_u64(hdr.first()[1]) == 0
    assert to_u64(hdr.last()[1]) == max_ - 1


def test_basic_cases():
    cnt = 200
    hdr_i = MapxRaw()
    assert len(hdr_i) == 0
    for i in range(cnt):
        assert hdr_i.get(to_bytes(i)) is None

    for i in range(cnt):
        k = b = to_bytes(i)
        hdr_i.entry(k).or_insert(b)
        assert hdr_i.get(k) == k
        assert hdr_i.remove(k) == b
        assert hdr_i.get(k) is None
        assert hdr_i.insert(k, b) is None
        assert hdr_i.insert(k, b) is not None

    assert len(hdr_i) == cnt
    encoded = pickle.dumps(hdr_i)

    reloaded = pickle.loads(encoded)
    assert len(reloaded) == cnt
    for i in range(cnt):
        assert reloaded.get(to_bytes(i)) == to_bytes(i)

    for i in range(1, cnt):
        k = to_bytes(i)
        with reloaded.get_mut(k) as vm:
            vm.value = k
        assert reloaded.get(k) == k
        assert reloaded.contains_key(k)
        assert reloaded.remove(k) is not None
        assert not reloaded.contains_key(k)

    assert len(reloaded) == 1
    reloaded.clear()
    assert reloaded.is_empty()

    for b in (1, 4, 6, 80):
        reloaded.insert(bytes([b]), bytes([b]))

    assert next(reloaded.range(b"", b"\x01"), None) is None
    assert next(reloaded.range(b"\x02", b"\x0a"))[1] == bytes([4])
    assert next(reloaded.range(b"\x02", b"\x0a", reverse=True))[1] == bytes([6])

    assert reloaded.get_ge(bytes([79]))[1] == bytes([80])
    assert reloaded.get_ge(bytes([80]))[1] == bytes([80])
    assert reloaded.get_le(bytes([80]))[1] == bytes([80])
    assert reloaded.get_le(bytes([100]))[1] == bytes([80])


def test_get_le_ge_missing():
    m = MapxRaw()
    m.insert(b"\x05", b"a")
    assert m.get_le(b"\x04") is None
    assert m.get_ge(b"\x06") is None


def test_entry_keeps_existing_value():
    m = MapxRaw()
    m.insert(b"k", b"old")
    vm = m.entry(b"k").or_insert_with(lambda: b"new")
    assert vm.value == b"old"
    assert m.get(b"k") == b"old"
    assert len(m) == 1


def test_value_mut_save():
    m = MapxRaw()
    m.insert(b"k", b"v")
    vm = m.get_mut(b"k")
    vm.value = b"w"
    assert m.get(b"k") == b"v"
    vm.save()
    assert m.get(b"k") == b"w"
    assert m.get_mut(b"missing") is None


def test_iter_keys_and_contains():
    m = MapxRaw()
    for b in (3, 1, 2):
        m.insert(bytes([b]), b"x")
    assert list(m) == [b"\x01", b"\x02", b"\x03"]
    assert b"\x02" in m
    assert b"\x09" not in m
    assert "text" not in m


def test_range_inclusive_bounds():
    m = MapxRaw()
    for b in range(10):
        m.insert(bytes([b]), bytes([b]))
    keys = [k[0] for k, _ in m.range(b"\x02", b"\x05", include_start=False, include_end=True)]
    assert keys == [3, 4, 5]


def test_shadow_and_same_instance():
    m = MapxRaw()
    s = m.shadow()
    assert m.is_the_same_instance(s)
    s.insert(b"a", b"1")
    assert m.get(b"a") == b"1"
    assert not m.is_the_same_instance(MapxRaw())


def test_copy_and_eq():
    m = MapxRaw()
    m.insert(b"a", b"1")
    m.insert(b"b", b"2")
    c = m.copy()
    assert c == m
    assert not c.is_the_same_instance(m)
    c.insert(b"c", b"3")
    assert c != m
    assert m.get(b"c") is None


def test_prefix_roundtrip():
    m = MapxRaw()
    m.insert(b"x", b"y")
    prefix = m.as_prefix_slice()
    assert len(prefix) == 8
    again = MapxRaw.from_prefix_slice(prefix)
    assert again.get(b"x") == b"y"
    assert again.is_the_same_instance(m)


def test_from_prefix_slice_bad_length():
    with pytest.raises(VsdbError):
        MapxRaw.from_prefix_slice(b"\x01\x02")


def test_distinct_instances_are_isolated():
    a, b = MapxRaw(), MapxRaw()
    a.insert(b"k", b"a")
    assert b.get(b"k") is None
    assert len(b) == 0