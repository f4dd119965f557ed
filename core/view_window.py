"""Window placement for the sliding image cache.

A cache of half-width ``K`` holds ``2K + 1`` slots.  Away from the directory
edges the current image sits in the centre slot; near either edge the window
is pinned to the edge and the current image moves off-centre instead.
"""
from __future__ import annotations

from dataclasses import dataclass

UNSET = -1


@dataclass(frozen=True)
class WindowPlan:
    position: int
    start: int
    offset: int
    indices: tuple[int, ...]

    @property
    def cache_count(self) -> int:
        return len(self.indices) // 2

    @property
    def current_slot(self) -> int:
        return self.cache_count + self.offset


def clamp_position(pos: int, num_files: int) -> int:
    if num_files <= 0:
        raise ValueError("num_files must be positive")
    return max(0, min(int(pos), num_files - 1))


def window_for_position(pos: int, num_files: int, cache_count: int) -> WindowPlan:
    """Place a ``2K + 1`` window so that ``pos`` is visible.

    Slots that fall outside ``[0, num_files)`` (short directories) are
    reported as ``UNSET``.
    """
    if cache_count < 0:
        raise ValueError("cache_count must be non-negative")
    pos = clamp_position(pos, num_files)
    size = 2 * cache_count + 1
    if pos < cache_count:
        start = 0
        offset = pos - cache_count
    elif pos >= num_files - cache_count:
        start = num_files - size
        offset = cache_count - ((num_files - 1) - pos)
    else:
        start = pos - cache_count
        offset = 0
    indices = tuple(
        idx if 0 <= idx < num_files else UNSET for idx in range(start, start + size)
    )
    return WindowPlan(position=pos, start=start, offset=offset, indices=indices)


def next_prefetch_target(current_index: int, offset: int, cache_count: int) -> int:
    """Global index of the image just past the leading edge of the window."""
    return current_index - offset + cache_count + 1


def previous_prefetch_target(current_index: int, offset: int, cache_count: int) -> int:
    """Global index of the image just before the trailing edge of the window."""
    return current_index - offset - cache_count - 1
