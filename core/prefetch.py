"""Pending / in-flight queues of load operations, one pair per pane."""
from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Sequence

from core.errors import report_contract_violation
from core.load_ops import Direction, LoadKind, LoadOperation
from core.window_cache import WindowedCache

LOG = logging.getLogger(__name__)


@dataclass
class PrefetchConfig:
    max_pending: int = 3
    max_in_flight: int = 3


@dataclass
class PaneQueues:
    pending: deque[LoadOperation] = field(default_factory=deque)
    in_flight: deque[LoadOperation] = field(default_factory=deque)

    def is_below_limits(self, config: PrefetchConfig) -> bool:
        return len(self.pending) < config.max_pending and len(self.in_flight) < config.max_in_flight

    def has_shift_in_flight(self) -> bool:
        return any(op.kind.shifts_window for op in self.in_flight)

    def all_ops(self) -> Iterable[LoadOperation]:
        return itertools.chain(self.pending, self.in_flight)


class LoadScheduler:
    """Queues load operations and decides when they may run.

    A multi-pane operation is appended to every covered pane's queues, so
    each pane sees operations in ``op_id`` order and the oldest operation is
    always at the head of every queue it belongs to.  All methods are meant
    to be called from the update loop only.
    """

    def __init__(self, config: PrefetchConfig | None = None, *, strict: bool = False):
        self.config = config or PrefetchConfig()
        self.strict = bool(strict)
        self._ids = itertools.count(1)
        self._queues: dict[int, PaneQueues] = {}
        # op_id -> panes still holding the operation in their pending queue
        self._pending_panes: dict[int, set[int]] = {}
        # op_id -> panes that still want the result
        self._dispatched: dict[int, set[int]] = {}
        self._dropped = 0

    # ------------------------------------------------------------------
    def configure(self, config: PrefetchConfig) -> None:
        self.config = config

    def queues(self, pane_index: int) -> PaneQueues:
        queues = self._queues.get(pane_index)
        if queues is None:
            queues = PaneQueues()
            self._queues[pane_index] = queues
        return queues

    def create(
        self,
        kind: LoadKind,
        pane_indices: Sequence[int],
        targets: Sequence[Optional[int]] = (),
        positions: Sequence[tuple[int, int]] = (),
    ) -> LoadOperation:
        return LoadOperation(
            op_id=next(self._ids),
            kind=kind,
            pane_indices=tuple(pane_indices),
            targets=tuple(targets),
            positions=tuple(positions),
        )

    @property
    def dropped(self) -> int:
        return self._dropped

    def is_idle(self) -> bool:
        return not self._dispatched and all(
            not q.pending and not q.in_flight for q in self._queues.values()
        )

    # ------------------------------------------------------------------
    # Enqueue
    def is_blocking(self, op: LoadOperation, caches: Mapping[int, WindowedCache]) -> bool:
        """True when applying ``op`` could push a pane's offset out of bounds."""
        direction = op.direction
        if direction is None:
            return False
        for pane_index in op.pane_indices:
            cache = caches.get(pane_index)
            if cache is None:
                continue
            k = cache.cache_count
            offset = cache.current_offset
            head = self.queues(pane_index).in_flight
            head_direction = head[0].direction if head else None
            if direction is Direction.NEXT:
                if offset == k and head_direction is Direction.PREVIOUS:
                    return True
                if offset == -k:
                    return True
            else:
                if offset == -k and head_direction is Direction.NEXT:
                    return True
                if offset == k:
                    return True
        return False

    def is_queued(self, op: LoadOperation) -> bool:
        for pane_index in op.pane_indices:
            for queued in self.queues(pane_index).all_ops():
                if queued.same_request(op):
                    return True
        return False

    def has_pending_for(self, pane_index: int, global_index: int) -> bool:
        """True when some queued or running operation will load ``global_index``."""
        for op in self.queues(pane_index).all_ops():
            if op.kind is LoadKind.LOAD_POS:
                if any(index == global_index for index, _slot in op.positions):
                    return True
            elif op.target_for(pane_index) == global_index:
                return True
        return False

    def can_accept(self, pane_indices: Iterable[int]) -> bool:
        return all(self.queues(idx).is_below_limits(self.config) for idx in pane_indices)

    def enqueue(self, op: LoadOperation, caches: Mapping[int, WindowedCache]) -> bool:
        if self.is_queued(op):
            LOG.debug("Skipping duplicate %s for panes %s", op.kind.value, op.pane_indices)
            return False
        if self.is_blocking(op, caches):
            LOG.debug("Rejected blocking %s for panes %s", op.kind.value, op.pane_indices)
            return False
        if op.kind.shifts_window and not self.can_accept(op.pane_indices):
            self._dropped += 1
            LOG.debug("Queue full, dropping %s for panes %s", op.kind.value, op.pane_indices)
            return False
        for pane_index in op.pane_indices:
            self.queues(pane_index).pending.append(op)
        self._pending_panes[op.op_id] = set(op.pane_indices)
        return True

    # ------------------------------------------------------------------
    # Dispatch / completion
    def dispatch(self) -> list[LoadOperation]:
        """Move every operation that may run now to in-flight, oldest first."""
        ready: list[LoadOperation] = []
        while True:
            heads = {
                q.pending[0].op_id: q.pending[0] for q in self._queues.values() if q.pending
            }
            if not heads:
                break
            progressed = False
            for op_id in sorted(heads):
                op = heads[op_id]
                if not self._is_dispatchable(op):
                    continue
                panes = self._pending_panes.pop(op.op_id, set())
                for pane_index in panes:
                    queues = self.queues(pane_index)
                    queues.pending.popleft()
                    queues.in_flight.append(op)
                self._dispatched[op.op_id] = set(panes)
                ready.append(op)
                progressed = True
                break
            if not progressed:
                break
        return ready

    def _is_dispatchable(self, op: LoadOperation) -> bool:
        for pane_index in self._pending_panes.get(op.op_id, ()):
            queues = self.queues(pane_index)
            if not queues.pending or queues.pending[0].op_id != op.op_id:
                return False
            if op.kind.shifts_window and queues.has_shift_in_flight():
                return False
        return True

    def is_live(self, op: LoadOperation, pane_index: int) -> bool:
        return pane_index in self._dispatched.get(op.op_id, ())

    def complete(self, op: LoadOperation) -> tuple[int, ...]:
        """Retire ``op`` and return the panes its results still apply to."""
        interested = self._dispatched.pop(op.op_id, None)
        if interested is None:
            report_contract_violation(
                f"completion for operation {op.op_id} ({op.kind.value}) that was never dispatched",
                strict=self.strict,
            )
            return ()
        for pane_index in op.pane_indices:
            queues = self.queues(pane_index)
            try:
                queues.in_flight.remove(op)
            except ValueError:
                pass
        return tuple(idx for idx in op.pane_indices if idx in interested)

    def was_dispatched(self, op: LoadOperation) -> bool:
        return op.op_id in self._dispatched

    # ------------------------------------------------------------------
    # Cancellation
    def cancel(self, pane_index: int, kinds: Iterable[LoadKind] | None = None) -> list[LoadOperation]:
        """Drop the pane's queued and running operations, optionally only ``kinds``.

        Running work is left to finish; its completion no longer applies to
        this pane.
        """
        wanted = set(kinds) if kinds is not None else None
        queues = self.queues(pane_index)
        cancelled: list[LoadOperation] = []
        for queue in (queues.pending, queues.in_flight):
            keep: deque[LoadOperation] = deque()
            for op in queue:
                if wanted is None or op.kind in wanted:
                    cancelled.append(op)
                else:
                    keep.append(op)
            queue.clear()
            queue.extend(keep)
        for op in cancelled:
            waiting = self._pending_panes.get(op.op_id)
            if waiting is not None:
                waiting.discard(pane_index)
                if not waiting:
                    del self._pending_panes[op.op_id]
            interested = self._dispatched.get(op.op_id)
            if interested is not None:
                interested.discard(pane_index)
        if cancelled:
            LOG.debug(
                "Cancelled %d operations for pane %d", len(cancelled), pane_index
            )
        return cancelled

    def cancel_direction(self, pane_index: int, direction: Direction) -> list[LoadOperation]:
        return self.cancel(
            pane_index, (LoadKind.load_for(direction), LoadKind.shift_for(direction))
        )

    def reset(self) -> None:
        for pane_index in list(self._queues):
            self.cancel(pane_index)
        self._queues.clear()
