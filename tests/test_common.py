import os

import pytest

from vsdb import common
from vsdb.common import (
    PREFIX_SIZE,
    VsdbError,
    parse_int,
    parse_prefix,
    vsdb_get_base_dir,
    vsdb_get_custom_dir,
    vsdb_set_base_dir,
)


@pytest.fixture
def fresh_config(tmp_path, monkeypatch):
    base = tmp_path / "base"
    monkeypatch.setenv("VSDB_BASE_DIR", str(base))
    monkeypatch.setenv("VSDB_CUSTOM_DIR", "")
    monkeypatch.setattr(common, "_CONFIG", common._DirConfig())
    return base


def test_parse_int_round_trip():
    for n in (0, 1, 12345, 2**64 - 1):
        assert parse_int(n.to_bytes(8, "big")) == n


def test_parse_int_is_big_endian():
    assert parse_int(b"\x01\x00") == 256


def test_parse_prefix_round_trip():
    n = common.RESERVED_ID_CNT
    assert parse_prefix(n.to_bytes(PREFIX_SIZE, "big")) == n


@pytest.mark.parametrize("size", [0, 7, 9])
def test_parse_prefix_rejects_wrong_size(size):
    with pytest.raises(VsdbError):
        parse_prefix(bytes(size))


def test_base_dir_from_environment(fresh_config):
    base = vsdb_get_base_dir()
    assert base == fresh_config
    assert base.is_dir()


def test_base_dir_falls_back_to_home(tmp_path, monkeypatch, fresh_config):
    monkeypatch.delenv("VSDB_BASE_DIR")
    monkeypatch.setenv("HOME", str(tmp_path))
    base = vsdb_get_base_dir()
    assert base == tmp_path / ".vsdb"
    assert base.is_dir()


def test_set_base_dir_only_once(tmp_path, fresh_config):
    target = tmp_path / "chosen"
    vsdb_set_base_dir(target)
    assert vsdb_get_base_dir() == target
    assert os.environ["VSDB_BASE_DIR"] == str(target)
    with pytest.raises(VsdbError):
        vsdb_set_base_dir(tmp_path / "other")
    assert vsdb_get_base_dir() == target


def test_custom_dir_lives_under_base(fresh_config):
    custom = vsdb_get_custom_dir()
    assert custom == fresh_config / "__CUSTOM__"
    assert custom.is_dir()
    assert os.environ["VSDB_CUSTOM_DIR"] == str(custom)
    assert vsdb_get_custom_dir() == custom