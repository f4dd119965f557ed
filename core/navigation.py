"""Multi-pane navigation: stepping, skating and completion routing.

The :class:`Navigator` is driven by a single update loop.  Every call into
it (``tick``, ``navigate``, slider operations) happens on that loop, so the
caches and queues it owns are never shared with the decode threads; those
only talk back through :class:`core.decode_worker.DecodeWorker` events.
"""
from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from core.backends import BackendKind, CachedImage, DecodedImage, TextureDevice, create_backend
from core.decode_worker import DecodeWorker, WorkerEvent
from core.errors import NavigationEdge, report_contract_violation
from core.image_source import FileImageSource, ImageSource, resolve_path
from core.load_ops import Direction, LoadKind, LoadOperation, LoadResult, PreviewEvent
from core.pane import Pane
from core.prefetch import LoadScheduler, PrefetchConfig
from core.slider import SliderController
from core.timing import NavigationTiming, scoped
from core.window_cache import WindowedCache

LOG = logging.getLogger(__name__)


def default_scrub_throttle_s() -> float:
    # Scrub decodes only need throttling where the platform event loop floods
    # slider updates faster than they can be decoded.
    return 0.1 if sys.platform.startswith("linux") else 0.0


@dataclass
class NavigationSettings:
    cache_count: int = 5
    prefetch: PrefetchConfig = field(default_factory=PrefetchConfig)
    backend: BackendKind = BackendKind.CPU
    decode_threads: int = 4
    scrub_throttle_s: float = field(default_factory=default_scrub_throttle_s)
    loading_indicator_delay_s: float = 0.3
    decode_retry_s: float = 1.0
    slider_dual: bool = False
    strict_contracts: bool = False


class Navigator:
    def __init__(
        self,
        settings: NavigationSettings | None = None,
        *,
        pane_count: int = 2,
        worker=None,
        texture_device: TextureDevice | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or NavigationSettings()
        self.scheduler = LoadScheduler(self.settings.prefetch, strict=self.settings.strict_contracts)
        self._owns_worker = worker is None
        self.worker = worker or DecodeWorker(max_workers=self.settings.decode_threads)
        self.texture_device = texture_device
        self.panes = [Pane(idx) for idx in range(max(1, int(pane_count)))]
        self.timing = NavigationTiming()
        self.slider = SliderController(self, throttle_s=self.settings.scrub_throttle_s)
        self.master_slider_value = 0
        self.skate_direction: Direction | None = None
        self._queued_step: Direction | None = None
        self._clock = clock
        self._failures: dict[tuple[int, int], float] = {}

    # ------------------------------------------------------------------
    # Pane management
    def now(self) -> float:
        return self._clock()

    def pane(self, pane_index: int) -> Pane:
        if not 0 <= pane_index < len(self.panes):
            raise IndexError(f"pane {pane_index} out of range")
        return self.panes[pane_index]

    def loaded_panes(self) -> list[Pane]:
        return [pane for pane in self.panes if pane.dir_loaded]

    def selected_panes(self) -> list[Pane]:
        return [pane for pane in self.panes if pane.dir_loaded and pane.is_selected]

    def caches(self) -> Mapping[int, WindowedCache]:
        return {pane.index: pane.cache for pane in self.panes if pane.cache is not None}

    def max_num_files(self) -> int:
        return max((pane.num_files for pane in self.loaded_panes()), default=0)

    def set_pane_count(self, count: int) -> None:
        count = max(1, int(count))
        while len(self.panes) > count:
            self.close_pane(len(self.panes) - 1)
            self.panes.pop()
        while len(self.panes) < count:
            self.panes.append(Pane(len(self.panes)))
        self._sync_slider(self.loaded_panes())

    def open_path(self, pane_index: int, path: str | Path, *, backend_kind: BackendKind | str | None = None) -> Pane:
        source, paths, initial_index = resolve_path(path)
        return self.open_directory(
            pane_index, paths, initial_index, source=source, backend_kind=backend_kind
        )

    def open_directory(
        self,
        pane_index: int,
        image_paths: Sequence[str],
        initial_index: int = 0,
        *,
        source: ImageSource | None = None,
        backend_kind: BackendKind | str | None = None,
    ) -> Pane:
        """Create a fresh window for ``image_paths`` in ``pane_index``."""
        if not image_paths:
            raise ValueError("image_paths must not be empty")
        pane = self.pane(pane_index)
        if source is None:
            source = FileImageSource(Path(image_paths[0]).parent)
        kind = BackendKind.parse(backend_kind) if backend_kind is not None else self.settings.backend
        self._install_cache(pane, image_paths, initial_index, source, kind)
        LOG.info(
            "Pane %d: opened %d images from %s at index %d",
            pane_index,
            len(image_paths),
            getattr(source, "label", source),
            pane.current_index,
        )
        return pane

    def close_pane(self, pane_index: int) -> None:
        pane = self.pane(pane_index)
        self.scheduler.cancel(pane_index)
        self._forget_failures(pane_index)
        pane.detach()
        self._sync_slider(self.loaded_panes())

    def select_pane(self, pane_index: int, selected: bool = True) -> None:
        self.pane(pane_index).is_selected = bool(selected)

    def set_cache_count(self, cache_count: int) -> None:
        if cache_count < 1:
            raise ValueError("cache_count must be at least 1")
        self.settings = replace(self.settings, cache_count=int(cache_count))
        self._rebuild_all()

    def set_backend(self, kind: BackendKind | str, *, texture_device: TextureDevice | None = None) -> None:
        if texture_device is not None:
            self.texture_device = texture_device
        self.settings = replace(self.settings, backend=BackendKind.parse(kind))
        self._rebuild_all()

    def configure_prefetch(self, config: PrefetchConfig) -> None:
        self.settings = replace(self.settings, prefetch=config)
        self.scheduler.configure(config)

    def set_slider_dual(self, enabled: bool) -> None:
        self.settings = replace(self.settings, slider_dual=bool(enabled))
        self._sync_slider(self.loaded_panes())

    def _rebuild_all(self) -> None:
        for pane in self.loaded_panes():
            assert pane.cache is not None
            self._install_cache(
                pane, pane.cache.image_paths, pane.cache.current_index, pane.source, self.settings.backend
            )

    def _install_cache(
        self,
        pane: Pane,
        image_paths: Sequence[str],
        initial_index: int,
        source: ImageSource | None,
        kind: BackendKind,
    ) -> None:
        self.scheduler.cancel(pane.index)
        self._forget_failures(pane.index)
        backend = create_backend(kind, source, image_paths, device=self.texture_device)
        cache = WindowedCache(
            image_paths,
            self.settings.cache_count,
            initial_index=initial_index,
            strict=self.settings.strict_contracts,
        )
        pane.attach(cache, backend, source)
        loads = cache.reposition(cache.current_index)
        pane.mark_render_miss(self.now())
        self._enqueue_load_pos(pane, loads)
        self._sync_slider(self.loaded_panes())

    # ------------------------------------------------------------------
    # Update loop
    def tick(self, now: float | None = None) -> bool:
        """Process arrived completions, advance a skate and dispatch work.

        Returns ``True`` when something visible may have changed.
        """
        now = self.now() if now is None else now
        changed = False
        events = self.worker.drain()
        if events:
            with scoped(self.timing.update):
                for event in events:
                    self.handle_event(event)
            changed = True
        if self.skate_direction is not None:
            changed = self.step(self.skate_direction, now=now) or changed
        elif self._queued_step is not None:
            if self.step(self._queued_step, now=now):
                self._queued_step = None
                changed = True
        for pane in self.loaded_panes():
            if pane.cache is not None and pane.cache.current_payload() is None:
                self._repair_holes(pane, now)
        self.dispatch()
        return changed

    def dispatch(self) -> list[LoadOperation]:
        ops = self.scheduler.dispatch()
        for op in ops:
            backends = {
                idx: self.panes[idx].backend
                for idx in op.pane_indices
                if idx < len(self.panes) and self.panes[idx].backend is not None
            }
            self.worker.submit(op, backends)
        return ops

    def enqueue(self, op: LoadOperation) -> bool:
        return self.scheduler.enqueue(op, self.caches())

    # ------------------------------------------------------------------
    # Stepping
    def navigate(self, direction: Direction | int) -> bool:
        """Single step in ``direction`` across the selected panes.

        A step that cannot render yet is remembered and retried by
        :meth:`tick` once the missing image arrives.
        """
        direction = Direction(direction)
        if self.skate_direction is not None and self.skate_direction is not direction:
            self.stop_skate()
        moved = self.step(direction)
        self._queued_step = None if moved else direction
        return moved

    def start_skate(self, direction: Direction | int) -> None:
        direction = Direction(direction)
        self._queued_step = None
        self.skate_direction = direction

    def stop_skate(self) -> None:
        self.skate_direction = None

    def clear_queued_step(self) -> None:
        self._queued_step = None

    @property
    def is_skating(self) -> bool:
        return self.skate_direction is not None

    def _note_direction(self, pane: Pane, direction: Direction) -> None:
        """Drop loads queued for the way ``pane`` was heading before it reversed."""
        previous = pane.last_direction
        pane.last_direction = direction
        if previous is None or previous is direction:
            return
        cancelled = self.scheduler.cancel_direction(pane.index, previous)
        if cancelled:
            LOG.debug(
                "Pane %d reversed to %s; dropped %d queued loads",
                pane.index,
                direction.name,
                len(cancelled),
            )

    def step(self, direction: Direction, *, now: float | None = None) -> bool:
        """Advance every active pane by one image if all of them are ready.

        Panes move in lock-step: if any active pane lacks its adjacent image
        nobody moves, the missing images are requested and the miss is
        recorded for the loading indicator.
        """
        now = self.now() if now is None else now
        active = [pane for pane in self.panes if pane.is_active(direction)]
        if not active:
            return False
        for pane in active:
            self._note_direction(pane, direction)
        config = self.scheduler.config
        not_cached = [
            pane
            for pane in active
            if not pane.is_cached(direction, self.scheduler.queues(pane.index), config)
        ]
        if not_cached:
            for pane in not_cached:
                self._repair_holes(pane, now)
                pane.mark_render_miss(now)
            self._prefetch(direction, not_cached)
            return False

        with scoped(self.timing.render):
            for pane in active:
                cache = pane.cache
                assert cache is not None
                try:
                    moved = cache.render_next() if direction is Direction.NEXT else cache.render_prev()
                except NavigationEdge:
                    moved = False
                if moved:
                    pane.sync_current_image()
                    pane.preview = None
        self.timing.frame_rate.record(now)
        self._prefetch(direction, active)
        self._sync_slider(active)
        return True

    def _prefetch(self, direction: Direction, panes: Iterable[Pane]) -> LoadOperation | None:
        """Request the image just past the window edge for every pane that needs one."""
        pane_indices: list[int] = []
        targets: list[int | None] = []
        any_load = False
        for pane in panes:
            cache = pane.cache
            if cache is None:
                continue
            if direction is Direction.NEXT:
                wants_shift = cache.current_offset >= 0
                target = cache.next_index_to_load()
                in_range = target < cache.num_files
            else:
                wants_shift = cache.current_offset <= 0
                target = cache.prev_index_to_load()
                in_range = target >= 0
            if not wants_shift:
                continue
            if in_range and not self._recently_failed(pane.index, target):
                pane_indices.append(pane.index)
                targets.append(target)
                any_load = True
            elif not in_range and not cache.at_edge(int(direction)):
                pane_indices.append(pane.index)
                targets.append(None)
        if not pane_indices:
            return None
        kind = LoadKind.load_for(direction) if any_load else LoadKind.shift_for(direction)
        op = self.scheduler.create(kind, pane_indices, targets)
        if self.enqueue(op):
            return op
        return None

    def _repair_holes(self, pane: Pane, now: float) -> LoadOperation | None:
        """Queue a backfill for holes nobody is loading, e.g. after a failed decode."""
        cache = pane.cache
        if cache is None:
            return None
        current = cache.current_slot
        missing = [
            (index, slot)
            for index, slot in cache.holes()
            if not self.scheduler.has_pending_for(pane.index, index)
            and not self._recently_failed(pane.index, index, now)
        ]
        if not missing:
            return None
        missing.sort(key=lambda item: abs(item[1] - current))
        return self._enqueue_load_pos(pane, missing)

    def _enqueue_load_pos(self, pane: Pane, positions: Sequence[tuple[int, int]]) -> LoadOperation | None:
        if not positions:
            return None
        op = self.scheduler.create(LoadKind.LOAD_POS, (pane.index,), positions=positions)
        if self.enqueue(op):
            return op
        return None

    # ------------------------------------------------------------------
    # Completions
    def handle_event(self, event: WorkerEvent) -> None:
        if isinstance(event, PreviewEvent):
            self.slider.handle_preview(event)
            return
        op = event.op
        if event.final:
            panes = self.scheduler.complete(op)
        else:
            if not self.scheduler.was_dispatched(op):
                report_contract_violation(
                    f"partial completion for operation {op.op_id} that is not running",
                    strict=self.settings.strict_contracts,
                )
                return
            panes = tuple(
                idx for idx in op.pane_indices if self.scheduler.is_live(op, idx)
            )
        if not panes:
            LOG.debug("Discarding results of cancelled operation %d (%s)", op.op_id, op.kind.value)
            return
        for pane_index in panes:
            pane = self.panes[pane_index] if pane_index < len(self.panes) else None
            if pane is None or pane.cache is None:
                continue
            if op.kind is LoadKind.LOAD_POS:
                for result in event.results:
                    if result.pane_index == pane_index:
                        self._apply_fill(pane, result)
            elif event.final:
                self._apply_shift(op, pane, event.result_for(pane_index))
            if pane.current_image is None:
                pane.sync_current_image()
            pane.settle_render_miss(pane.last_direction)

    def _apply_shift(self, op: LoadOperation, pane: Pane, result: LoadResult | None) -> None:
        cache = pane.cache
        assert cache is not None
        direction = op.direction
        target = op.target_for(pane.index)
        if not cache.can_shift(int(direction)):
            # The pane rendered back to the far edge after this was queued.
            LOG.debug(
                "Pane %d: stale %s for image %s (offset %d)",
                pane.index,
                op.kind.value,
                target,
                cache.current_offset,
            )
            return
        try:
            if target is None:
                if direction is Direction.NEXT:
                    cache.move_next_edge()
                else:
                    cache.move_prev_edge()
                return
            expected = (
                cache.next_index_to_load() if direction is Direction.NEXT else cache.prev_index_to_load()
            )
            if target != expected:
                LOG.debug(
                    "Pane %d: stale %s for image %d (expected %d)",
                    pane.index,
                    op.kind.value,
                    target,
                    expected,
                )
                return
            payload = None
            if result is not None and result.ok:
                payload = self._to_payload(pane, result.decoded)
            else:
                self._record_failure(pane, target, result)
            if direction is Direction.NEXT:
                cache.move_next(payload)
            else:
                cache.move_prev(payload)
        except NavigationEdge:
            LOG.debug("Pane %d: %s reached the directory edge", pane.index, op.kind.value)

    def _apply_fill(self, pane: Pane, result: LoadResult) -> None:
        cache = pane.cache
        assert cache is not None
        if cache.slot_of(result.global_index) is None:
            LOG.debug("Pane %d: image %d no longer in the window", pane.index, result.global_index)
            return
        if not result.ok:
            self._record_failure(pane, result.global_index, result)
            return
        payload = self._to_payload(pane, result.decoded)
        slot = cache.fill(result.global_index, payload, result.slot)
        if slot is not None and slot == cache.current_slot:
            pane.sync_current_image()
            if not pane.scrubbing:
                pane.preview = None

    def _to_payload(self, pane: Pane, decoded: DecodedImage | None) -> CachedImage | None:
        if decoded is None or pane.backend is None:
            return None
        with scoped(self.timing.decode):
            return pane.backend.to_payload(decoded)

    def _record_failure(self, pane: Pane, global_index: int, result: LoadResult | None) -> None:
        reason = result.error if result is not None else "no result"
        LOG.warning("Pane %d: failed to load image %d: %s", pane.index, global_index, reason)
        self._failures[(pane.index, global_index)] = self.now()

    def _recently_failed(self, pane_index: int, global_index: int, now: float | None = None) -> bool:
        failed_at = self._failures.get((pane_index, global_index))
        if failed_at is None:
            return False
        now = self.now() if now is None else now
        if now - failed_at >= self.settings.decode_retry_s:
            del self._failures[(pane_index, global_index)]
            return False
        return True

    def _forget_failures(self, pane_index: int) -> None:
        for key in [key for key in self._failures if key[0] == pane_index]:
            del self._failures[key]

    # ------------------------------------------------------------------
    # Presentation state
    def _sync_slider(self, panes: Sequence[Pane]) -> None:
        for pane in self.loaded_panes():
            if not pane.scrubbing:
                pane.slider_value = pane.current_index
        if self.settings.slider_dual and len(self.loaded_panes()) > 1:
            return
        candidates = [pane for pane in panes if pane.dir_loaded] or self.loaded_panes()
        if not candidates:
            self.master_slider_value = 0
            return
        reference = max(candidates, key=lambda pane: pane.num_files)
        self.master_slider_value = reference.current_index

    def is_loading(self, pane_index: int, now: float | None = None) -> bool:
        now = self.now() if now is None else now
        return self.pane(pane_index).is_loading(now, self.settings.loading_indicator_delay_s)

    def displayed_image(self, pane_index: int) -> CachedImage | None:
        return self.pane(pane_index).displayed_image()

    def close(self) -> None:
        self.stop_skate()
        self.scheduler.reset()
        for pane in self.panes:
            pane.detach()
        if self._owns_worker:
            self.worker.close()
