"""A skip-list like index of entries grouped by slot, built for paged queries."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any

from sortedcontainers import SortedDict, SortedSet

SLOT_MIN = 0
SLOT_MAX = (1 << 64) - 1
PAGE_SIZE_MAX = (1 << 16) - 1
PAGE_INDEX_MAX = (1 << 32) - 1


def _swap_order(slot: int) -> int:
    return SLOT_MAX ^ slot


def _check_range(name: str, value: int, upper: int) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} must lie in [0, {upper}], got {value}")
    return value


@dataclass
class _Level:
    """Entry counts summed over slot floors that are multiples of ``floor_base``."""

    floor_base: int
    counts: SortedDict = field(default_factory=SortedDict)

    @classmethod
    def new(cls, level_idx: int, multiple_step: int) -> _Level:
        return cls(floor_base=multiple_step ** (1 + level_idx))

    def floor(self, slot: int) -> int:
        return slot // self.floor_base * self.floor_base

    def add(self, slot: int, count: int) -> None:
        key = self.floor(slot)
        self.counts[key] = self.counts.get(key, 0) + count

    def decrement(self, slot: int) -> None:
        key = self.floor(slot)
        if self.counts[key] == 1:
            del self.counts[key]
        else:
            self.counts[key] -= 1


def _skip_through(
    mapping: SortedDict,
    start: int | None,
    local_idx: int,
    weight: Callable[[Any], int],
) -> tuple[int | None, int]:
    """Walk whole slots of ``mapping`` from ``start`` while they fit in ``local_idx``.

    A returned start of ``None`` means every slot has been passed.
    """
    if start is None:
        return None, local_idx
    keys = iter(mapping.irange(minimum=start))
    current = next(keys, None)
    while current is not None:
        cnt = weight(mapping[current])
        if cnt > local_idx:
            break
        nxt = next(keys, None)
        start = nxt
        local_idx -= cnt
        current = nxt
    return start, local_idx


class SlotDB:
    """Entries kept in numbered slots, with layered counts for fast paging.

    ``swap_order`` flips the internal slot direction: positive queries are the
    cheaper ones, so swap it if most queries run in reverse order.
    """

    def __init__(self, multiple_step: int = 8, swap_order: bool = False) -> None:
        if not isinstance(multiple_step, int) or multiple_step < 1:
            raise ValueError(f"multiple_step must be a positive int, got {multiple_step!r}")
        self.multiple_step = multiple_step
        self.swap_order = bool(swap_order)
        self._data: SortedDict = SortedDict()
        self._total = 0
        self._levels: list[_Level] = []

    def _internal_slot(self, slot: int) -> int:
        _check_range("slot", slot, SLOT_MAX)
        return _swap_order(slot) if self.swap_order else slot

    def insert(self, slot: int, item: Hashable) -> None:
        """Add ``item`` to ``slot``; an item already there is left alone."""
        slot = self._internal_slot(slot)

        if self._levels:
            top = self._levels[-1]
            if len(top.counts) > self.multiple_step:
                new_top = _Level.new(len(self._levels), self.multiple_step)
                for s, cnt in top.counts.items():
                    new_top.add(s, cnt)
                self._levels.append(new_top)
        else:
            new_top = _Level.new(0, self.multiple_step)
            for s, entries in self._data.items():
                new_top.add(s, len(entries))
            self._levels.append(new_top)

        entries = self._data.get(slot)
        if entries is None:
            entries = SortedSet()
            self._data[slot] = entries
        if item not in entries:
            entries.add(item)
            for level in self._levels:
                level.add(slot, 1)
            self._total += 1

    def remove(self, slot: int, item: Hashable) -> None:
        """Take ``item`` out of ``slot``; a missing item is ignored."""
        slot = self._internal_slot(slot)

        while self._levels and len(self._levels[-1].counts) < 2:
            self._levels.pop()

        entries = self._data.get(slot)
        if entries is None:
            return
        exist = item in entries
        entries.discard(item)
        if not entries:
            del self._data[slot]

        if exist:
            for level in self._levels:
                level.decrement(slot)
            self._total -= 1

    def clear(self) -> None:
        self._total = 0
        self._data.clear()
        self._levels.clear()

    def get_entries_by_page(
        self, page_size: int, page_index: int, reverse_order: bool = False
    ) -> list[Any]:
        """Return one page of all entries; ``page_index`` starts from 0."""
        return self.get_entries_by_page_slot(
            None, None, page_size, page_index, reverse_order
        )

    def get_entries_by_page_slot(
        self,
        slot_left_bound: int | None,
        slot_right_bound: int | None,
        page_size: int,
        page_index: int,
        reverse_order: bool = False,
    ) -> list[Any]:
        """Return one page of the entries whose slots lie in the inclusive bounds."""
        _check_range("page_size", page_size, PAGE_SIZE_MAX)
        _check_range("page_index", page_index, PAGE_INDEX_MAX)
        slot_min = SLOT_MIN if slot_left_bound is None else slot_left_bound
        slot_max = SLOT_MAX if slot_right_bound is None else slot_right_bound
        _check_range("slot_left_bound", slot_min, SLOT_MAX)
        _check_range("slot_right_bound", slot_max, SLOT_MAX)
        reverse = bool(reverse_order)

        if self.swap_order:
            slot_min, slot_max = _swap_order(slot_max), _swap_order(slot_min)
            reverse = not reverse

        if slot_max < slot_min:
            return []
        if page_size == 0 or self.total() == 0:
            return []

        return self._get_entries(slot_min, slot_max, page_size, page_index, reverse)

    def _slot_entry_cnt(self, slot: int) -> int:
        entries = self._data.get(slot)
        return 0 if entries is None else len(entries)

    def _distance_to_the_leftmost_slot(self, slot: int) -> int:
        """Count entries in slots strictly below ``slot``."""
        left_bound = SLOT_MIN
        ret = 0
        for level in reversed(self._levels):
            right_bound = level.floor(slot)
            ret += sum(
                level.counts[k]
                for k in level.counts.irange(
                    left_bound, right_bound, inclusive=(True, False)
                )
            )
            left_bound = right_bound
        ret += sum(
            len(self._data[k])
            for k in self._data.irange(left_bound, slot, inclusive=(True, False))
        )
        return ret

    def _offsets_from_the_leftmost_slot(
        self,
        slot_start: int,
        slot_end: int,
        page_size: int,
        page_index: int,
        reverse: bool,
    ) -> tuple[int, int]:
        if slot_start > slot_end:
            return 0, 0

        if not reverse:
            skip_n = (
                self._distance_to_the_leftmost_slot(slot_start)
                + page_size * page_index
            )
            return skip_n, page_size

        skip_n = (
            self._distance_to_the_leftmost_slot(slot_end)
            + self._slot_entry_cnt(slot_end)
            - page_size * (1 + page_index)
        )
        distance_of_slot_start = self._distance_to_the_leftmost_slot(slot_start)
        if distance_of_slot_start <= skip_n:
            take_n = page_size
        else:
            back_shift = min(distance_of_slot_start - skip_n, PAGE_SIZE_MAX)
            skip_n = distance_of_slot_start
            take_n = max(page_size - back_shift, 0)
        return skip_n, take_n

    def _get_local_skip_num(self, global_skip_num: int) -> tuple[int | None, int]:
        start: int | None = SLOT_MIN
        local_idx = global_skip_num
        for level in reversed(self._levels):
            start, local_idx = _skip_through(level.counts, start, local_idx, int)
        return _skip_through(self._data, start, local_idx, len)

    def _get_entries(
        self,
        slot_start: int,
        slot_end: int,
        page_size: int,
        page_index: int,
        reverse: bool,
    ) -> list[Any]:
        ret: list[Any] = []
        if slot_end < slot_start:
            return ret

        global_skip_n, take_n = self._offsets_from_the_leftmost_slot(
            slot_start, slot_end, page_size, page_index, reverse
        )
        start_actual, skip_n = self._get_local_skip_num(global_skip_n)

        if start_actual is not None:
            for slot in self._data.irange(start_actual, slot_end):
                entries = self._data[slot]
                remaining = take_n - len(ret)
                ret.extend(entries[skip_n : skip_n + remaining])
                skip_n = 0
                if len(ret) >= take_n:
                    break

        if reverse:
            ret.reverse()
        return ret

    def entry_cnt_within_two_slots(self, slot_start: int, slot_end: int) -> int:
        """Count the entries whose slots lie in ``[slot_start, slot_end]``."""
        _check_range("slot_start", slot_start, SLOT_MAX)
        _check_range("slot_end", slot_end, SLOT_MAX)
        if self.swap_order:
            slot_start, slot_end = _swap_order(slot_end), _swap_order(slot_start)

        if slot_start > slot_end:
            return 0
        return (
            self._distance_to_the_leftmost_slot(slot_end)
            - self._distance_to_the_leftmost_slot(slot_start)
            + self._slot_entry_cnt(slot_end)
        )

    def total_by_slot(
        self, slot_start: int | None = None, slot_end: int | None = None
    ) -> int:
        start = SLOT_MIN if slot_start is None else slot_start
        end = SLOT_MAX if slot_end is None else slot_end
        if start == SLOT_MIN and end == SLOT_MAX:
            return self._total
        return self.entry_cnt_within_two_slots(start, end)

    def total(self) -> int:
        return self.total_by_slot(None, None)

    def __repr__(self) -> str:
        return (
            f"SlotDB(multiple_step={self.multiple_step}, "
            f"swap_order={self.swap_order}, total={self._total})"
        )