"""Queue operations and the completion events the decode worker posts back."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from core.backends import DecodedImage


class Direction(enum.IntEnum):
    PREVIOUS = -1
    NEXT = 1

    @property
    def opposite(self) -> "Direction":
        return Direction.PREVIOUS if self is Direction.NEXT else Direction.NEXT


class LoadKind(enum.Enum):
    LOAD_NEXT = "load_next"
    LOAD_PREVIOUS = "load_previous"
    SHIFT_NEXT = "shift_next"
    SHIFT_PREVIOUS = "shift_previous"
    LOAD_POS = "load_pos"

    @property
    def direction(self) -> Direction | None:
        if self in (LoadKind.LOAD_NEXT, LoadKind.SHIFT_NEXT):
            return Direction.NEXT
        if self in (LoadKind.LOAD_PREVIOUS, LoadKind.SHIFT_PREVIOUS):
            return Direction.PREVIOUS
        return None

    @property
    def shifts_window(self) -> bool:
        return self is not LoadKind.LOAD_POS

    @property
    def loads_images(self) -> bool:
        return self in (LoadKind.LOAD_NEXT, LoadKind.LOAD_PREVIOUS, LoadKind.LOAD_POS)

    @classmethod
    def load_for(cls, direction: Direction) -> "LoadKind":
        return cls.LOAD_NEXT if direction is Direction.NEXT else cls.LOAD_PREVIOUS

    @classmethod
    def shift_for(cls, direction: Direction) -> "LoadKind":
        return cls.SHIFT_NEXT if direction is Direction.NEXT else cls.SHIFT_PREVIOUS


@dataclass(frozen=True)
class LoadOperation:
    """One queue entry.

    ``targets`` is aligned with ``pane_indices``; ``None`` means the pane
    takes part in the operation without loading anything.  ``LOAD_POS``
    addresses a single pane and lists ``(global_index, slot)`` pairs in
    ``positions``.
    """

    op_id: int
    kind: LoadKind
    pane_indices: tuple[int, ...]
    targets: tuple[Optional[int], ...] = ()
    positions: tuple[tuple[int, int], ...] = ()

    def __post_init__(self) -> None:
        if self.kind is LoadKind.LOAD_POS:
            if len(self.pane_indices) != 1:
                raise ValueError("LOAD_POS addresses exactly one pane")
        elif len(self.targets) != len(self.pane_indices):
            raise ValueError("targets must align with pane_indices")

    @property
    def direction(self) -> Direction | None:
        return self.kind.direction

    def target_for(self, pane_index: int) -> Optional[int]:
        for idx, target in zip(self.pane_indices, self.targets):
            if idx == pane_index:
                return target
        return None

    def same_request(self, other: "LoadOperation") -> bool:
        return (
            self.kind is other.kind
            and self.pane_indices == other.pane_indices
            and self.targets == other.targets
            and self.positions == other.positions
        )


@dataclass(frozen=True)
class DecodeJob:
    pane_index: int
    global_index: int
    slot: int | None = None


@dataclass(frozen=True)
class LoadResult:
    pane_index: int
    global_index: int
    slot: int | None = None
    decoded: DecodedImage | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.decoded is not None and self.error is None


@dataclass(frozen=True)
class LoadEvent:
    """Completion of a queue operation.

    ``LOAD_POS`` produces one non-final event per decoded entry followed by a
    final event; every other kind produces a single final event.
    """

    op: LoadOperation
    results: tuple[LoadResult, ...] = ()
    final: bool = True

    def result_for(self, pane_index: int) -> LoadResult | None:
        for result in self.results:
            if result.pane_index == pane_index:
                return result
        return None


@dataclass(frozen=True)
class PreviewEvent:
    """Low-resolution decode requested while scrubbing, tagged with its position."""

    pane_index: int
    pos: int
    generation: int
    decoded: DecodedImage | None = None
    error: str | None = None
    submitted_at: float = field(default=0.0, compare=False)
