"""Image canvas protocol and the pyqtgraph implementation for CPU payloads."""

from __future__ import annotations

from typing import Protocol

import numpy as np
import pyqtgraph as pg
from PySide6 import QtWidgets

from core.backends import CachedImage


class ImageCanvasBackend(Protocol):
    """Contract implemented by the widgets that present a pane's image."""

    @property
    def widget(self) -> QtWidgets.QWidget:  # pragma: no cover - Qt accessor
        """Return the Qt widget hosting the canvas."""

    def accepts(self, payload: CachedImage) -> bool:
        """Whether ``payload`` can be shown without conversion."""

    def show_payload(self, payload: CachedImage | None) -> None:
        """Display ``payload`` or clear the canvas when ``None``."""

    def set_background(self, color: str) -> None:
        """Apply the canvas background color."""


class PyqtgraphImageBackend(ImageCanvasBackend):
    """CPU presenter drawing RGBA arrays through a pyqtgraph ImageItem."""

    def __init__(self, parent: QtWidgets.QWidget | None = None) -> None:
        self._layout = pg.GraphicsLayoutWidget(parent)
        self._layout.ci.setContentsMargins(0, 0, 0, 0)
        self._view = self._layout.addViewBox(lockAspect=True, enableMenu=False)
        self._view.invertY(True)
        self._view.setMouseEnabled(x=False, y=False)
        self._image = pg.ImageItem(axisOrder="row-major")
        self._view.addItem(self._image)
        self._shape: tuple[int, int] | None = None
        self._shown_index: int | None = None

    # ImageCanvasBackend -------------------------------------------------
    @property
    def widget(self) -> QtWidgets.QWidget:  # pragma: no cover - trivial
        return self._layout

    def accepts(self, payload: CachedImage) -> bool:
        return isinstance(payload.data, np.ndarray)

    def show_payload(self, payload: CachedImage | None) -> None:
        if payload is None or not self.accepts(payload):
            self._image.clear()
            self._shape = None
            self._shown_index = None
            return
        pixels = payload.data
        self._image.setImage(pixels, autoLevels=False, levels=(0, 255))
        shape = (int(pixels.shape[1]), int(pixels.shape[0]))
        if shape != self._shape:
            self._shape = shape
            self._view.setRange(xRange=(0, shape[0]), yRange=(0, shape[1]), padding=0.0)
        self._shown_index = payload.global_index

    def set_background(self, color: str) -> None:
        self._layout.setBackground(color)

    @property
    def shown_index(self) -> int | None:
        return self._shown_index
