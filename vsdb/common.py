"""Shared constants, byte helpers and the location of the data directory."""

from __future__ import annotations

import os
import threading
from pathlib import Path

NULL = b""

KB = 1 << 10
MB = 1 << 20
GB = 1 << 30

PREFIX_SIZE = 8
RESERVED_ID_CNT = 4096_0000
BIGGEST_RESERVED_ID = RESERVED_ID_CNT - 1

BASE_DIR_VAR = "VSDB_BASE_DIR"
CUSTOM_DIR_VAR = "VSDB_CUSTOM_DIR"
CUSTOM_DIR_NAME = "__CUSTOM__"


class VsdbError(Exception):
    """Raised when the store is misused or its data is inconsistent."""


def parse_int(data: bytes) -> int:
    """Read a big-endian unsigned integer from ``data``."""
    return int.from_bytes(bytes(data), "big")


def parse_prefix(data: bytes) -> int:
    """Read an instance prefix; ``data`` must be exactly ``PREFIX_SIZE`` bytes."""
    if len(data) != PREFIX_SIZE:
        raise VsdbError(
            f"a prefix takes {PREFIX_SIZE} bytes, got {len(data)}"
        )
    return parse_int(data)


def _gen_data_dir() -> Path:
    directory = os.environ.get(BASE_DIR_VAR)
    if directory is None:
        home = os.environ.get("HOME")
        directory = f"{home}/.vsdb" if home is not None else "/tmp/.vsdb"
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


class _DirConfig:
    """Process-wide record of the base and custom directories."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._base: Path | None = None
        self._custom: Path | None = None
        self._inited = False

    def base_dir(self) -> Path:
        with self._lock:
            if self._base is None:
                self._base = _gen_data_dir()
            return self._base

    def set_base_dir(self, directory: str | os.PathLike[str]) -> None:
        with self._lock:
            if self._inited:
                raise VsdbError("VSDB has been initialized !!")
            self._inited = True
            os.environ[BASE_DIR_VAR] = os.fspath(directory)
            self._base = Path(directory)

    def custom_dir(self) -> Path:
        with self._lock:
            if self._custom is None:
                path = self.base_dir() / CUSTOM_DIR_NAME
                path.mkdir(parents=True, exist_ok=True)
                os.environ[CUSTOM_DIR_VAR] = os.fspath(path)
                self._custom = path
            return self._custom


_CONFIG = _DirConfig()


def vsdb_get_base_dir() -> Path:
    """Return ``${VSDB_BASE_DIR}``, creating the default one on first use."""
    return _CONFIG.base_dir()


def vsdb_set_base_dir(directory: str | os.PathLike[str]) -> None:
    """Set ``${VSDB_BASE_DIR}``; this succeeds at most once per process."""
    _CONFIG.set_base_dir(directory)


def vsdb_get_custom_dir() -> Path:
    """Return ``${VSDB_CUSTOM_DIR}``, a sub-directory of the base directory."""
    return _CONFIG.custom_dir()