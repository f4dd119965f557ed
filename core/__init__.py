"""Core package exports for the image viewer application."""

# Re-export commonly used modules for convenience.
from . import (
    backends,
    decode_worker,
    errors,
    image_source,
    load_ops,
    navigation,
    pane,
    prefetch,
    slider,
    timing,
    view_window,
    window_cache,
)

__all__ = [
    "backends",
    "decode_worker",
    "errors",
    "image_source",
    "load_ops",
    "navigation",
    "pane",
    "prefetch",
    "slider",
    "timing",
    "view_window",
    "window_cache",
]
