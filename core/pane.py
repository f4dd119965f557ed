"""Per-pane state the presentation layer reads from."""
from __future__ import annotations

import logging
from typing import Sequence

from core.backends import CachedImage, ImageBackend
from core.image_source import ImageSource
from core.load_ops import Direction
from core.prefetch import PaneQueues, PrefetchConfig
from core.window_cache import WindowedCache

LOG = logging.getLogger(__name__)


class Pane:
    def __init__(self, index: int):
        self.index = index
        self.cache: WindowedCache | None = None
        self.backend: ImageBackend | None = None
        self.source: ImageSource | None = None
        self.is_selected = True
        # Last payload handed to the presenter; survives holes in the window.
        self.current_image: CachedImage | None = None
        self.preview: CachedImage | None = None
        self.preview_target: int | None = None
        self.scrubbing = False
        self.slider_value = 0
        self.render_miss_at: float | None = None
        # Direction of the last step this pane took; reset by jumps.
        self.last_direction: Direction | None = None

    # ------------------------------------------------------------------
    @property
    def dir_loaded(self) -> bool:
        return self.cache is not None and self.backend is not None

    @property
    def num_files(self) -> int:
        return self.cache.num_files if self.cache is not None else 0

    @property
    def current_index(self) -> int:
        return self.cache.current_index if self.cache is not None else 0

    @property
    def current_offset(self) -> int:
        return self.cache.current_offset if self.cache is not None else 0

    @property
    def image_paths(self) -> Sequence[str]:
        return self.cache.image_paths if self.cache is not None else ()

    def current_path(self) -> str | None:
        return self.cache.current_path() if self.cache is not None else None

    def displayed_image(self) -> CachedImage | None:
        """Preview while scrubbing, otherwise the committed image."""
        if self.preview is not None:
            return self.preview
        return self.current_image

    # ------------------------------------------------------------------
    def attach(
        self,
        cache: WindowedCache,
        backend: ImageBackend,
        source: ImageSource | None,
    ) -> None:
        self.detach(close_source=source is not self.source)
        self.cache = cache
        self.backend = backend
        self.source = source
        self.slider_value = cache.current_index

    def detach(self, *, close_source: bool = True) -> None:
        source = self.source if close_source else None
        self.cache = None
        self.backend = None
        self.source = None
        self.current_image = None
        self.clear_preview()
        self.render_miss_at = None
        self.last_direction = None
        self.slider_value = 0
        if source is not None:
            try:
                source.close()
            except OSError as exc:
                LOG.warning("Failed to close image source %s: %s", getattr(source, "label", source), exc)

    def clear_preview(self) -> None:
        self.preview = None
        self.preview_target = None
        self.scrubbing = False

    # ------------------------------------------------------------------
    def is_active(self, direction: Direction) -> bool:
        if not self.is_selected or self.cache is None:
            return False
        return not self.cache.at_edge(int(direction))

    def is_cached(self, direction: Direction, queues: PaneQueues, config: PrefetchConfig) -> bool:
        """True when the adjacent image is decoded and the queues have room."""
        cache = self.cache
        if cache is None:
            return False
        slot = cache.current_slot + int(direction)
        return cache.is_filled(slot) and queues.is_below_limits(config)

    def sync_current_image(self) -> bool:
        """Pick up the payload in the current slot; returns ``True`` if one is present."""
        if self.cache is None:
            return False
        payload = self.cache.current_payload()
        if payload is None:
            return False
        self.current_image = payload
        self.render_miss_at = None
        return True

    def settle_render_miss(self, direction: Direction | None) -> bool:
        """Clear a recorded miss once the image the user was waiting for is here."""
        cache = self.cache
        if self.render_miss_at is None or cache is None:
            return False
        if cache.current_payload() is None:
            return False
        if direction is not None and not cache.at_edge(int(direction)):
            if not cache.is_filled(cache.current_slot + int(direction)):
                return False
        self.render_miss_at = None
        return True

    def mark_render_miss(self, now: float) -> None:
        if self.render_miss_at is None:
            self.render_miss_at = now

    def is_loading(self, now: float, delay_s: float) -> bool:
        return self.render_miss_at is not None and (now - self.render_miss_at) >= delay_s

    def __repr__(self) -> str:
        return f"Pane(index={self.index}, cache={self.cache!r}, selected={self.is_selected})"
