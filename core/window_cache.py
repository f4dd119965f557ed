"""Per-pane sliding window of decoded images.

The window is a fixed arena of ``2K + 1`` slots.  ``cached_image_indices``
records the global index each slot stands for and ``cached_payload`` holds
the decoded image, or ``None`` while the slot is a hole.  The current image
lives in slot ``K + current_offset``.

Stepping is two-phase.  A render commit (:meth:`render_next`) moves the
current image one slot forward inside the window, and a load completion
(:meth:`move_next`) later slides the window by one slot, inserting the newly
decoded image at the leading edge.
"""
from __future__ import annotations

import logging
from typing import Sequence

from core.backends import CachedImage
from core.errors import NoMoreImages, NoPreviousImages, report_contract_violation
from core.view_window import (
    UNSET,
    WindowPlan,
    next_prefetch_target,
    previous_prefetch_target,
    window_for_position,
)

LOG = logging.getLogger(__name__)


class WindowedCache:
    def __init__(
        self,
        image_paths: Sequence[str],
        cache_count: int,
        *,
        initial_index: int = 0,
        strict: bool = False,
    ):
        if not image_paths:
            raise ValueError("image_paths must not be empty")
        if cache_count < 1:
            raise ValueError("cache_count must be at least 1")
        self.image_paths = tuple(image_paths)
        self.cache_count = int(cache_count)
        self.strict = bool(strict)
        size = self.window_size
        self.cached_payload: list[CachedImage | None] = [None] * size
        self.cached_image_indices: list[int] = [UNSET] * size
        self.current_index = 0
        self.current_offset = 0
        self.window_start = 0
        self._apply_plan(window_for_position(initial_index, self.num_files, self.cache_count))

    # ------------------------------------------------------------------
    # Geometry
    @property
    def num_files(self) -> int:
        return len(self.image_paths)

    @property
    def window_size(self) -> int:
        return 2 * self.cache_count + 1

    @property
    def window_end(self) -> int:
        return self.window_start + self.window_size - 1

    @property
    def current_slot(self) -> int:
        return self.cache_count + self.current_offset

    def window_indices(self) -> tuple[int, ...]:
        return tuple(self.cached_image_indices)

    def is_first(self) -> bool:
        return self.current_index <= 0

    def is_last(self) -> bool:
        return self.current_index >= self.num_files - 1

    def at_edge(self, direction: int) -> bool:
        return self.is_last() if direction > 0 else self.is_first()

    def current_path(self) -> str:
        return self.image_paths[self.current_index]

    # ------------------------------------------------------------------
    # Slot access
    def payload_at(self, slot: int) -> CachedImage | None:
        if 0 <= slot < self.window_size:
            return self.cached_payload[slot]
        return None

    def is_filled(self, slot: int) -> bool:
        return self.payload_at(slot) is not None

    def current_payload(self) -> CachedImage | None:
        return self.payload_at(self.current_slot)

    def slot_of(self, global_index: int) -> int | None:
        if global_index == UNSET:
            return None
        slot = global_index - self.window_start
        if 0 <= slot < self.window_size and self.cached_image_indices[slot] == global_index:
            return slot
        return None

    def holes(self) -> list[tuple[int, int]]:
        """``(global_index, slot)`` for every valid slot still missing data."""
        return [
            (index, slot)
            for slot, index in enumerate(self.cached_image_indices)
            if index != UNSET and self.cached_payload[slot] is None
        ]

    def next_index_to_load(self) -> int:
        return next_prefetch_target(self.current_index, self.current_offset, self.cache_count)

    def prev_index_to_load(self) -> int:
        return previous_prefetch_target(self.current_index, self.current_offset, self.cache_count)

    # ------------------------------------------------------------------
    # Render commits
    def render_next(self) -> bool:
        """Show the next image if it is already decoded. Returns ``False`` on a hole."""
        if self.is_last():
            raise NoMoreImages(self.image_paths[-1])
        return self._render(1)

    def render_prev(self) -> bool:
        if self.is_first():
            raise NoPreviousImages(self.image_paths[0])
        return self._render(-1)

    def _render(self, step: int) -> bool:
        slot = self.current_slot + step
        if not 0 <= slot < self.window_size:
            return False
        if self.cached_payload[slot] is None:
            return False
        if self.cached_image_indices[slot] != self.current_index + step:
            report_contract_violation(
                f"slot {slot} holds image {self.cached_image_indices[slot]}, "
                f"expected {self.current_index + step}",
                strict=self.strict,
            )
            return False
        self.current_offset += step
        self.current_index += step
        return True

    # ------------------------------------------------------------------
    # Window shifts, applied when a LOAD_* / SHIFT_* operation completes
    def move_next(self, payload: CachedImage | None) -> bool:
        """Slide the window one image forward, appending ``payload``.

        ``payload`` may be ``None`` when the decode failed; the leading slot
        then becomes a hole that a later backfill fills in.
        """
        if self.is_last():
            raise NoMoreImages(self.image_paths[-1])
        if not self._check_shift_bound(-1):
            return False
        new_index = self.window_end + 1
        if new_index >= self.num_files:
            report_contract_violation(
                f"shift past the last image ({new_index} >= {self.num_files})",
                strict=self.strict,
            )
            return False
        self.cached_payload.pop(0)
        self.cached_image_indices.pop(0)
        self.cached_payload.append(payload)
        self.cached_image_indices.append(new_index)
        self.window_start += 1
        self.current_offset -= 1
        return True

    def move_prev(self, payload: CachedImage | None) -> bool:
        if self.is_first():
            raise NoPreviousImages(self.image_paths[0])
        if not self._check_shift_bound(1):
            return False
        new_index = self.window_start - 1
        if new_index < 0:
            report_contract_violation(
                f"shift before the first image ({new_index})", strict=self.strict
            )
            return False
        self.cached_payload.pop()
        self.cached_image_indices.pop()
        self.cached_payload.insert(0, payload)
        self.cached_image_indices.insert(0, new_index)
        self.window_start -= 1
        self.current_offset += 1
        return True

    def move_next_edge(self) -> bool:
        """Bookkeeping for a ``SHIFT_NEXT``: validate without touching slots."""
        if self.is_last():
            raise NoMoreImages(self.image_paths[-1])
        return self._check_shift_bound(-1)

    def move_prev_edge(self) -> bool:
        if self.is_first():
            raise NoPreviousImages(self.image_paths[0])
        return self._check_shift_bound(1)

    def can_shift(self, direction: int) -> bool:
        """Whether a window shift towards ``direction`` keeps the current image inside."""
        return abs(self.current_offset - int(direction)) <= self.cache_count

    def _check_shift_bound(self, delta: int) -> bool:
        new_offset = self.current_offset + delta
        if -self.cache_count <= new_offset <= self.cache_count:
            return True
        report_contract_violation(
            f"offset {new_offset} outside [-{self.cache_count}, {self.cache_count}]",
            strict=self.strict,
        )
        return False

    # ------------------------------------------------------------------
    # Direct positioning
    def fill(self, global_index: int, payload: CachedImage, slot_hint: int | None = None) -> int | None:
        """Store a ``LOAD_POS`` result if some slot still expects ``global_index``."""
        slot = None
        if (
            slot_hint is not None
            and 0 <= slot_hint < self.window_size
            and self.cached_image_indices[slot_hint] == global_index
        ):
            slot = slot_hint
        else:
            slot = self.slot_of(global_index)
        if slot is None:
            return None
        self.cached_payload[slot] = payload
        return slot

    def reposition(self, pos: int) -> list[tuple[int, int]]:
        """Re-centre the window on ``pos`` and return the slots still to load.

        Payloads already decoded for images that stay inside the new window
        are carried over.  The returned ``(global_index, slot)`` pairs are
        ordered nearest to the current image first.
        """
        plan = window_for_position(pos, self.num_files, self.cache_count)
        keep = {
            index: payload
            for index, payload in zip(self.cached_image_indices, self.cached_payload)
            if index != UNSET and payload is not None
        }
        self._apply_plan(plan)
        for slot, index in enumerate(self.cached_image_indices):
            if index in keep:
                self.cached_payload[slot] = keep[index]
        current = self.current_slot
        return sorted(self.holes(), key=lambda item: (abs(item[1] - current), item[1]))

    def _apply_plan(self, plan: WindowPlan) -> None:
        self.cached_image_indices = list(plan.indices)
        self.cached_payload = [None] * self.window_size
        self.window_start = plan.start
        self.current_offset = plan.offset
        self.current_index = plan.position

    def clear(self) -> None:
        self.cached_payload = [None] * self.window_size

    # ------------------------------------------------------------------
    def check_invariants(self) -> list[str]:
        problems: list[str] = []
        k = self.cache_count
        if not -k <= self.current_offset <= k:
            problems.append(f"offset {self.current_offset} outside [-{k}, {k}]")
        if len(self.cached_payload) != self.window_size:
            problems.append("payload arena has the wrong size")
        if len(self.cached_image_indices) != self.window_size:
            problems.append("index arena has the wrong size")
        for slot, index in enumerate(self.cached_image_indices):
            expected = self.window_start + slot
            if index != UNSET and index != expected:
                problems.append(f"slot {slot} holds {index}, expected {expected}")
            payload = self.cached_payload[slot]
            if payload is not None and payload.global_index != index:
                problems.append(f"slot {slot} payload is image {payload.global_index}, not {index}")
        if self.cached_image_indices[self.current_slot] != self.current_index:
            problems.append(
                f"current slot {self.current_slot} holds {self.cached_image_indices[self.current_slot]},"
                f" not current index {self.current_index}"
            )
        return problems

    def __repr__(self) -> str:
        return (
            f"WindowedCache(current_index={self.current_index}, offset={self.current_offset}, "
            f"window={self.window_start}..{self.window_end}, files={self.num_files})"
        )
