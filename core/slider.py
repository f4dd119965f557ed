"""Slider scrubbing and direct jumps.

Scrubbing decodes one low-resolution preview per pane and never touches the
cache window.  Releasing the slider (or jumping programmatically) discards
all queued work for the affected panes and rebuilds their windows around the
new position.
"""
from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Callable, Iterable

from core.load_ops import LoadKind, PreviewEvent
from core.view_window import clamp_position

if TYPE_CHECKING:  # pragma: no cover - typing only
    from core.navigation import Navigator
    from core.pane import Pane

LOG = logging.getLogger(__name__)


class SliderController:
    def __init__(self, navigator: "Navigator", *, throttle_s: float = 0.0):
        self._nav = navigator
        self.throttle_s = max(0.0, float(throttle_s))
        self._last_accepted: float | None = None
        self._generations = itertools.count(1)
        self.accepted = 0
        self.throttled = 0

    def _targets(self, pane_index: int | None, *, selected_only: bool = False) -> list["Pane"]:
        if pane_index is not None:
            pane = self._nav.pane(pane_index)
            return [pane] if pane.dir_loaded else []
        if selected_only:
            return self._nav.selected_panes()
        return self._nav.loaded_panes()

    # ------------------------------------------------------------------
    def scrub(self, pane_index: int | None, pos: int, now: float | None = None) -> bool:
        """Request a preview of ``pos``; returns ``False`` when throttled."""
        now = self._nav.now() if now is None else now
        if self._last_accepted is not None and now - self._last_accepted < self.throttle_s:
            self.throttled += 1
            return False
        panes = self._targets(pane_index)
        if not panes:
            return False
        self._last_accepted = now
        self.accepted += 1
        for pane in panes:
            assert pane.backend is not None
            target = clamp_position(pos, pane.num_files)
            pane.scrubbing = True
            pane.preview_target = target
            pane.slider_value = target
            self._nav.worker.submit_preview(
                pane.index, target, next(self._generations), pane.backend, submitted_at=now
            )
        if pane_index is None:
            self._nav.master_slider_value = clamp_position(pos, self._nav.max_num_files())
        return True

    def handle_preview(self, event: PreviewEvent) -> bool:
        if not 0 <= event.pane_index < len(self._nav.panes):
            return False
        pane = self._nav.panes[event.pane_index]
        if not pane.dir_loaded or not pane.scrubbing or pane.preview_target != event.pos:
            LOG.debug(
                "Pane %d: dropping superseded preview for %d", event.pane_index, event.pos
            )
            return False
        if event.decoded is None:
            LOG.warning("Pane %d: preview of image %d failed: %s", pane.index, event.pos, event.error)
            return False
        assert pane.backend is not None
        pane.preview = pane.backend.to_payload(event.decoded)
        return True

    # ------------------------------------------------------------------
    def release(self, pane_index: int | None, pos: int) -> None:
        """Commit the slider position: rebuild the window around ``pos``."""
        self._last_accepted = None
        self._jump_each(self._targets(pane_index), lambda pane: pos)
        if pane_index is None:
            self._nav.master_slider_value = clamp_position(pos, max(1, self._nav.max_num_files()))

    def jump(self, pane_index: int | None, pos: int) -> None:
        self.release(pane_index, pos)

    def jump_first(self, pane_index: int | None = None) -> None:
        self._jump_each(self._targets(pane_index, selected_only=True), lambda pane: 0)
        self._resync_master(pane_index)

    def jump_last(self, pane_index: int | None = None) -> None:
        self._jump_each(
            self._targets(pane_index, selected_only=True), lambda pane: pane.num_files - 1
        )
        self._resync_master(pane_index)

    def _resync_master(self, pane_index: int | None) -> None:
        if pane_index is None or not self._nav.settings.slider_dual:
            panes = self._nav.loaded_panes()
            if panes:
                reference = max(panes, key=lambda pane: pane.num_files)
                self._nav.master_slider_value = reference.current_index

    def _jump_each(self, panes: Iterable["Pane"], position_for: Callable[["Pane"], int]) -> None:
        nav = self._nav
        nav.clear_queued_step()
        now = nav.now()
        for pane in panes:
            cache = pane.cache
            if cache is None:
                continue
            target = clamp_position(position_for(pane), pane.num_files)
            preview = pane.preview if pane.preview_target == target else None
            pane.clear_preview()
            nav.scheduler.cancel(pane.index)
            pane.last_direction = None
            loads = cache.reposition(target)
            pane.slider_value = target
            if not pane.sync_current_image():
                pane.current_image = None
                # Keep the matching preview on screen until the full image lands.
                pane.preview = preview
                pane.render_miss_at = None
                pane.mark_render_miss(now)
            if loads:
                op = nav.scheduler.create(LoadKind.LOAD_POS, (pane.index,), positions=loads)
                nav.enqueue(op)
            LOG.debug(
                "Pane %d: jumped to %d (offset %d, %d slots to load)",
                pane.index,
                target,
                cache.current_offset,
                len(loads),
            )
