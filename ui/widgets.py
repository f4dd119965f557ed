from __future__ import annotations

import os

from PySide6 import QtCore, QtWidgets

from core.backends import CachedImage
from ui.image_backend import ImageCanvasBackend


class PaneView(QtWidgets.QFrame):
    """One image pane: canvas, loading badge, footer and optional own slider."""

    sliderMoved = QtCore.Signal(int, int)
    sliderReleased = QtCore.Signal(int, int)
    selectionToggled = QtCore.Signal(int, bool)

    def __init__(
        self,
        index: int,
        canvas: ImageCanvasBackend,
        *,
        show_footer: bool = True,
        parent: QtWidgets.QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.index = index
        self.canvas = canvas
        self.setFrameShape(QtWidgets.QFrame.StyledPanel)
        self.setObjectName(f"paneView{index}")

        self.selectBox = QtWidgets.QCheckBox(f"Pane {index + 1}", self)
        self.selectBox.setChecked(True)
        self.selectBox.toggled.connect(lambda checked: self.selectionToggled.emit(self.index, checked))

        self.loadingLabel = QtWidgets.QLabel("Loading…", self)
        self.loadingLabel.setObjectName("loadingBadge")
        self.loadingLabel.setVisible(False)

        header = QtWidgets.QHBoxLayout()
        header.setContentsMargins(6, 2, 6, 2)
        header.addWidget(self.selectBox)
        header.addStretch(1)
        header.addWidget(self.loadingLabel)

        self.slider = QtWidgets.QSlider(QtCore.Qt.Horizontal, self)
        self.slider.setRange(0, 0)
        self.slider.setVisible(False)
        self.slider.setFocusPolicy(QtCore.Qt.NoFocus)
        self.slider.sliderMoved.connect(lambda value: self.sliderMoved.emit(self.index, value))
        self.slider.sliderReleased.connect(
            lambda: self.sliderReleased.emit(self.index, self.slider.value())
        )

        self.footerLabel = QtWidgets.QLabel("", self)
        self.footerLabel.setTextInteractionFlags(QtCore.Qt.TextSelectableByMouse)
        self.footerLabel.setVisible(show_footer)

        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(2)
        layout.addLayout(header)
        layout.addWidget(canvas.widget, 1)
        layout.addWidget(self.slider)
        layout.addWidget(self.footerLabel)

    def set_canvas(self, canvas: ImageCanvasBackend) -> None:
        layout = self.layout()
        old = self.canvas.widget
        layout.replaceWidget(old, canvas.widget)
        old.setParent(None)
        old.deleteLater()
        self.canvas = canvas

    def show_image(self, payload: CachedImage | None) -> None:
        self.canvas.show_payload(payload)

    def set_loading(self, loading: bool) -> None:
        if self.loadingLabel.isVisible() != loading:
            self.loadingLabel.setVisible(loading)

    def set_slider_visible(self, visible: bool) -> None:
        self.slider.setVisible(visible)

    def set_slider_state(self, maximum: int, value: int) -> None:
        if self.slider.isSliderDown():
            return
        blocker = QtCore.QSignalBlocker(self.slider)
        self.slider.setRange(0, max(0, maximum))
        self.slider.setValue(value)
        del blocker

    def set_footer(self, path: str | None, index: int, total: int, payload: CachedImage | None) -> None:
        if path is None:
            self.footerLabel.setText("")
            return
        parts = [os.path.basename(path), f"{index + 1}/{total}"]
        if payload is not None:
            parts.append(payload.metadata.resolution_string())
            parts.append(payload.metadata.file_size_string())
        self.footerLabel.setText("  ·  ".join(parts))

    def set_footer_visible(self, visible: bool) -> None:
        self.footerLabel.setVisible(visible)
