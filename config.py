from __future__ import annotations

import configparser
import logging
from dataclasses import dataclass, field
from pathlib import Path

from core.backends import BackendKind
from core.navigation import NavigationSettings, default_scrub_throttle_s
from core.prefetch import PrefetchConfig

LOG = logging.getLogger(__name__)

PANE_LAYOUTS = ("single", "dual")
CANVAS_BACKENDS = ("pyqtgraph", "vispy")


@dataclass
class ViewerConfig:
    cache_count: int = 5
    max_loading_queue_size: int = 3
    max_being_loaded_queue_size: int = 3
    backend: str = "cpu"
    decode_threads: int = 4
    scrub_throttle_ms: float = field(default_factory=lambda: default_scrub_throttle_s() * 1000.0)
    loading_indicator_delay_ms: float = 300.0
    tick_interval_ms: int = 8
    strict_contracts: bool = False
    slider_dual: bool = False
    pane_layout: str = "single"
    canvas_backend: str = "pyqtgraph"
    window_width: int = 1200
    window_height: int = 800
    show_footer: bool = True
    ini_path: Path | None = None

    @classmethod
    def load(cls, ini_path: str | Path | None = None) -> "ViewerConfig":
        cfg = cls()
        path = Path(ini_path or "config.ini")
        if path.exists():
            parser = configparser.ConfigParser()
            try:
                parser.read(path)
            except configparser.Error as exc:
                LOG.warning("Ignoring unreadable config %s: %s", path, exc)
                cfg.ini_path = path
                return cfg

            cache_section = parser["cache"] if "cache" in parser else None
            if cache_section:
                cfg.cache_count = _positive(
                    _get(cache_section.getint, "cache_count", cfg.cache_count), cfg.cache_count
                )
                cfg.max_loading_queue_size = _positive(
                    _get(cache_section.getint, "max_loading_queue_size", cfg.max_loading_queue_size),
                    cfg.max_loading_queue_size,
                )
                cfg.max_being_loaded_queue_size = _positive(
                    _get(
                        cache_section.getint,
                        "max_being_loaded_queue_size",
                        cfg.max_being_loaded_queue_size,
                    ),
                    cfg.max_being_loaded_queue_size,
                )
                backend = cache_section.get("backend", fallback=cfg.backend).strip().lower()
                if backend in {kind.value for kind in BackendKind}:
                    cfg.backend = backend
                cfg.decode_threads = _positive(
                    _get(cache_section.getint, "decode_threads", cfg.decode_threads), cfg.decode_threads
                )

            nav_section = parser["navigation"] if "navigation" in parser else None
            if nav_section:
                throttle = _get(nav_section.getfloat, "scrub_throttle_ms", cfg.scrub_throttle_ms)
                cfg.scrub_throttle_ms = max(0.0, throttle)
                delay = _get(
                    nav_section.getfloat, "loading_indicator_delay_ms", cfg.loading_indicator_delay_ms
                )
                cfg.loading_indicator_delay_ms = max(0.0, delay)
                cfg.tick_interval_ms = _positive(
                    _get(nav_section.getint, "tick_interval_ms", cfg.tick_interval_ms),
                    cfg.tick_interval_ms,
                )
                cfg.strict_contracts = _get(
                    nav_section.getboolean, "strict_contracts", cfg.strict_contracts
                )
                cfg.slider_dual = _get(nav_section.getboolean, "slider_dual", cfg.slider_dual)

            ui_section = parser["ui"] if "ui" in parser else None
            if ui_section:
                layout = ui_section.get("pane_layout", fallback=cfg.pane_layout).strip().lower()
                if layout in PANE_LAYOUTS:
                    cfg.pane_layout = layout
                canvas = ui_section.get("canvas_backend", fallback=cfg.canvas_backend).strip().lower()
                if canvas in CANVAS_BACKENDS:
                    cfg.canvas_backend = canvas
                cfg.window_width = _positive(
                    _get(ui_section.getint, "window_width", cfg.window_width), cfg.window_width
                )
                cfg.window_height = _positive(
                    _get(ui_section.getint, "window_height", cfg.window_height), cfg.window_height
                )
                cfg.show_footer = _get(ui_section.getboolean, "show_footer", cfg.show_footer)
        cfg.ini_path = path
        return cfg

    @property
    def pane_count(self) -> int:
        return 2 if self.pane_layout == "dual" else 1

    def prefetch_config(self) -> PrefetchConfig:
        return PrefetchConfig(
            max_pending=self.max_loading_queue_size,
            max_in_flight=self.max_being_loaded_queue_size,
        )

    def navigation_settings(self) -> NavigationSettings:
        return NavigationSettings(
            cache_count=self.cache_count,
            prefetch=self.prefetch_config(),
            backend=BackendKind.parse(self.backend),
            decode_threads=self.decode_threads,
            scrub_throttle_s=self.scrub_throttle_ms / 1000.0,
            loading_indicator_delay_s=self.loading_indicator_delay_ms / 1000.0,
            slider_dual=self.slider_dual,
            strict_contracts=self.strict_contracts,
        )

    def save(self) -> None:
        if self.ini_path is None:
            return
        parser = configparser.ConfigParser()
        parser["cache"] = {
            "cache_count": str(self.cache_count),
            "max_loading_queue_size": str(self.max_loading_queue_size),
            "max_being_loaded_queue_size": str(self.max_being_loaded_queue_size),
            "backend": self.backend,
            "decode_threads": str(self.decode_threads),
        }
        parser["navigation"] = {
            "scrub_throttle_ms": f"{self.scrub_throttle_ms:.1f}",
            "loading_indicator_delay_ms": f"{self.loading_indicator_delay_ms:.1f}",
            "tick_interval_ms": str(self.tick_interval_ms),
            "strict_contracts": "true" if self.strict_contracts else "false",
            "slider_dual": "true" if self.slider_dual else "false",
        }
        parser["ui"] = {
            "pane_layout": self.pane_layout,
            "canvas_backend": self.canvas_backend,
            "window_width": str(self.window_width),
            "window_height": str(self.window_height),
            "show_footer": "true" if self.show_footer else "false",
        }
        with self.ini_path.open("w") as fh:
            parser.write(fh)


def _get(getter, key: str, default):
    try:
        return getter(key, fallback=default)
    except ValueError:
        LOG.warning("Invalid value for %s in config; using %r", key, default)
        return default


def _positive(value: int, default: int) -> int:
    return value if value > 0 else default
