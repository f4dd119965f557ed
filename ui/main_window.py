# ui/main_window.py
from __future__ import annotations

import logging
import os
from dataclasses import replace
from typing import Sequence

from PySide6 import QtCore, QtGui, QtWidgets

from config import ViewerConfig
from core.backends import BackendKind
from core.load_ops import Direction
from core.navigation import Navigator
from ui.gpu_canvas import VispyImageCanvas, VispyTextureDevice
from ui.image_backend import ImageCanvasBackend, PyqtgraphImageBackend
from ui.widgets import PaneView


LOG = logging.getLogger(__name__)

CANVAS_BACKGROUND = "#10141a"
NEXT_KEYS = (QtCore.Qt.Key_Right, QtCore.Qt.Key_D)
PREVIOUS_KEYS = (QtCore.Qt.Key_Left, QtCore.Qt.Key_A)


class MainWindow(QtWidgets.QMainWindow):
    directoryOpened = QtCore.Signal(int, str)

    def __init__(
        self,
        *,
        config: ViewerConfig | None = None,
        navigator: Navigator | None = None,
        paths: Sequence[str] = (),
    ):
        super().__init__()
        self._config = config or ViewerConfig()
        self._texture_device: VispyTextureDevice | None = None
        self._gpu_failure_reason: str | None = None
        self._use_gpu = self._init_gpu()

        settings = self._config.navigation_settings()
        settings = replace(
            settings, backend=BackendKind.GPU if self._use_gpu else BackendKind.CPU
        )
        self.navigator = navigator or Navigator(
            settings,
            pane_count=self._config.pane_count,
            texture_device=self._texture_device,
        )
        self._pane_views: list[PaneView] = []
        self._shown_payloads: dict[int, int | None] = {}
        self._skate_key: int | None = None

        self._build_ui()
        self._connect_signals()
        self._sync_pane_views()

        self._tick_timer = QtCore.QTimer(self)
        self._tick_timer.setTimerType(QtCore.Qt.PreciseTimer)
        self._tick_timer.setInterval(max(1, int(self._config.tick_interval_ms)))
        self._tick_timer.timeout.connect(self._on_tick)
        self._tick_timer.start()

        for pane_index, path in enumerate(paths):
            if pane_index >= len(self.navigator.panes):
                break
            self.open_path(pane_index, path)

    # ------------------------------------------------------------------
    # Setup
    def _init_gpu(self) -> bool:
        wants_gpu = (
            self._config.backend == BackendKind.GPU.value
            or self._config.canvas_backend == "vispy"
        )
        if not wants_gpu:
            return False
        probe = VispyImageCanvas.capability_probe()
        if not probe.available:
            self._gpu_failure_reason = probe.reason
            LOG.warning("GPU canvas unavailable (%s); using pyqtgraph", probe.reason)
            return False
        try:
            self._texture_device = VispyTextureDevice()
        except RuntimeError as exc:
            self._gpu_failure_reason = str(exc)
            LOG.warning("Failed to create texture device: %s", exc)
            return False
        LOG.info("Using GPU canvas (%s)", probe.renderer or "unknown renderer")
        return True

    def _make_canvas(self) -> ImageCanvasBackend:
        if self._use_gpu and self._texture_device is not None:
            canvas = VispyImageCanvas(self._texture_device)
        else:
            canvas = PyqtgraphImageBackend()
        canvas.set_background(CANVAS_BACKGROUND)
        return canvas

    def _build_ui(self):
        self.setWindowTitle("Skateview")
        self.setAcceptDrops(True)
        self.resize(self._config.window_width, self._config.window_height)

        toolbar = QtWidgets.QToolBar("Main", self)
        toolbar.setMovable(False)
        self.addToolBar(toolbar)
        self.openAction = toolbar.addAction("Open…")
        self.openSecondAction = toolbar.addAction("Open in pane 2…")
        toolbar.addSeparator()
        self.dualLayoutAction = toolbar.addAction("Dual pane")
        self.dualLayoutAction.setCheckable(True)
        self.dualLayoutAction.setChecked(self._config.pane_count == 2)
        self.dualSliderAction = toolbar.addAction("Independent sliders")
        self.dualSliderAction.setCheckable(True)
        self.dualSliderAction.setChecked(self._config.slider_dual)
        self.footerAction = toolbar.addAction("Footer")
        self.footerAction.setCheckable(True)
        self.footerAction.setChecked(self._config.show_footer)

        central = QtWidgets.QWidget(self)
        layout = QtWidgets.QVBoxLayout(central)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(4)

        self.paneSplitter = QtWidgets.QSplitter(QtCore.Qt.Horizontal, central)
        self.paneSplitter.setChildrenCollapsible(False)
        layout.addWidget(self.paneSplitter, 1)

        slider_row = QtWidgets.QHBoxLayout()
        self.masterSlider = QtWidgets.QSlider(QtCore.Qt.Horizontal, central)
        self.masterSlider.setRange(0, 0)
        self.masterSlider.setFocusPolicy(QtCore.Qt.NoFocus)
        self.positionLabel = QtWidgets.QLabel("0 / 0", central)
        self.positionLabel.setMinimumWidth(90)
        self.positionLabel.setAlignment(QtCore.Qt.AlignRight | QtCore.Qt.AlignVCenter)
        slider_row.addWidget(self.masterSlider, 1)
        slider_row.addWidget(self.positionLabel)
        layout.addLayout(slider_row)

        self.setCentralWidget(central)
        self.fpsLabel = QtWidgets.QLabel("", self)
        self.statusBar().addPermanentWidget(self.fpsLabel)
        self.setFocusPolicy(QtCore.Qt.StrongFocus)

    def _connect_signals(self):
        self.openAction.triggered.connect(lambda: self._prompt_open(0))
        self.openSecondAction.triggered.connect(lambda: self._prompt_open(1))
        self.dualLayoutAction.toggled.connect(self._set_dual_layout)
        self.dualSliderAction.toggled.connect(self._set_slider_dual)
        self.footerAction.toggled.connect(self._set_footer_visible)
        self.masterSlider.sliderMoved.connect(lambda value: self._on_slider_moved(None, value))
        self.masterSlider.sliderReleased.connect(
            lambda: self._on_slider_released(None, self.masterSlider.value())
        )

        self._shortcuts: list[QtGui.QShortcut] = []
        self._shortcuts.append(QtGui.QShortcut(QtGui.QKeySequence("Ctrl+O"), self, activated=lambda: self._prompt_open(0)))
        self._shortcuts.append(QtGui.QShortcut(QtGui.QKeySequence("Ctrl+Shift+O"), self, activated=lambda: self._prompt_open(1)))
        self._shortcuts.append(QtGui.QShortcut(QtGui.QKeySequence("Tab"), self, activated=lambda: self.dualLayoutAction.toggle()))

    def _sync_pane_views(self) -> None:
        count = len(self.navigator.panes)
        while len(self._pane_views) > count:
            view = self._pane_views.pop()
            self._shown_payloads.pop(view.index, None)
            view.setParent(None)
            view.deleteLater()
        while len(self._pane_views) < count:
            index = len(self._pane_views)
            view = PaneView(index, self._make_canvas(), show_footer=self._config.show_footer)
            view.sliderMoved.connect(self._on_slider_moved)
            view.sliderReleased.connect(self._on_slider_released)
            view.selectionToggled.connect(self._on_pane_selection_toggled)
            self.paneSplitter.addWidget(view)
            self._pane_views.append(view)
        self.openSecondAction.setEnabled(count > 1)
        self._apply_slider_mode()
        self._refresh_views()

    # ------------------------------------------------------------------
    # Opening
    def _prompt_open(self, pane_index: int) -> None:
        if pane_index >= len(self.navigator.panes):
            return
        path = QtWidgets.QFileDialog.getExistingDirectory(self, "Select image folder")
        if path:
            self.open_path(pane_index, path)

    def open_path(self, pane_index: int, path: str | os.PathLike) -> bool:
        try:
            self.navigator.open_path(pane_index, path)
        except (OSError, ValueError) as exc:
            LOG.warning("Could not open %s: %s", path, exc)
            self.statusBar().showMessage(f"Could not open {path}: {exc}", 5000)
            return False
        self._shown_payloads.pop(pane_index, None)
        self.directoryOpened.emit(pane_index, str(path))
        self.statusBar().showMessage(f"Opened {path}", 3000)
        self._refresh_views()
        return True

    def dragEnterEvent(self, event: QtGui.QDragEnterEvent) -> None:  # pragma: no cover - GUI only
        if event.mimeData().hasUrls():
            event.acceptProposedAction()

    def dropEvent(self, event: QtGui.QDropEvent) -> None:  # pragma: no cover - GUI only
        urls = [url.toLocalFile() for url in event.mimeData().urls() if url.isLocalFile()]
        if not urls:
            return
        target = self._pane_at(event.position().toPoint())
        self.open_path(target, urls[0])
        event.acceptProposedAction()

    def _pane_at(self, pos: QtCore.QPoint) -> int:
        for view in self._pane_views:
            local = view.mapFrom(self, pos)
            if view.rect().contains(local):
                return view.index
        return 0

    # ------------------------------------------------------------------
    # Keyboard navigation
    def keyPressEvent(self, event: QtGui.QKeyEvent) -> None:
        key = event.key()
        direction = self._direction_for_key(key)
        if direction is None:
            super().keyPressEvent(event)
            return
        modifiers = event.modifiers()
        if modifiers & (QtCore.Qt.ControlModifier | QtCore.Qt.MetaModifier):
            if not event.isAutoRepeat():
                if direction is Direction.NEXT:
                    self.navigator.slider.jump_last()
                else:
                    self.navigator.slider.jump_first()
        elif modifiers & QtCore.Qt.ShiftModifier:
            if not event.isAutoRepeat() or self._skate_key != key:
                self._skate_key = key
                self.navigator.start_skate(direction)
        else:
            self.navigator.navigate(direction)
        self._refresh_views()
        event.accept()

    def keyReleaseEvent(self, event: QtGui.QKeyEvent) -> None:
        if event.isAutoRepeat():
            event.accept()
            return
        key = event.key()
        if key == self._skate_key or key == QtCore.Qt.Key_Shift:
            self._skate_key = None
            self.navigator.stop_skate()
            event.accept()
            return
        super().keyReleaseEvent(event)

    @staticmethod
    def _direction_for_key(key: int) -> Direction | None:
        if key in NEXT_KEYS:
            return Direction.NEXT
        if key in PREVIOUS_KEYS:
            return Direction.PREVIOUS
        return None

    # ------------------------------------------------------------------
    # Sliders and toggles
    def _on_slider_moved(self, pane_index: int | None, value: int) -> None:
        self.navigator.slider.scrub(pane_index, value)
        self._update_position_label()

    def _on_slider_released(self, pane_index: int | None, value: int) -> None:
        self.navigator.slider.release(pane_index, value)
        self._refresh_views()

    def _on_pane_selection_toggled(self, pane_index: int, checked: bool) -> None:
        self.navigator.select_pane(pane_index, checked)

    def _set_dual_layout(self, enabled: bool) -> None:
        self._config.pane_layout = "dual" if enabled else "single"
        self.navigator.set_pane_count(self._config.pane_count)
        self._sync_pane_views()

    def _set_slider_dual(self, enabled: bool) -> None:
        self._config.slider_dual = bool(enabled)
        self.navigator.set_slider_dual(enabled)
        self._apply_slider_mode()

    def _apply_slider_mode(self) -> None:
        dual = self._config.slider_dual and len(self._pane_views) > 1
        self.masterSlider.setVisible(not dual)
        for view in self._pane_views:
            view.set_slider_visible(dual)

    def _set_footer_visible(self, visible: bool) -> None:
        self._config.show_footer = bool(visible)
        for view in self._pane_views:
            view.set_footer_visible(visible)

    # ------------------------------------------------------------------
    # Update loop
    def _on_tick(self) -> None:
        try:
            self.navigator.tick()
        except Exception:  # pragma: no cover - keep the event loop alive
            LOG.exception("Navigation tick failed")
        self._refresh_views()

    def _refresh_views(self) -> None:
        nav = self.navigator
        now = nav.now()
        for view in self._pane_views:
            pane = nav.panes[view.index] if view.index < len(nav.panes) else None
            if pane is None:
                continue
            payload = pane.displayed_image()
            token = id(payload) if payload is not None else None
            if self._shown_payloads.get(view.index, -1) != token:
                view.show_image(payload)
                self._shown_payloads[view.index] = token
            view.set_loading(nav.is_loading(view.index, now))
            view.set_footer(pane.current_path(), pane.current_index, pane.num_files, pane.current_image)
            view.set_slider_state(pane.num_files - 1, pane.slider_value)
        if not self.masterSlider.isSliderDown():
            blocker = QtCore.QSignalBlocker(self.masterSlider)
            self.masterSlider.setRange(0, max(0, nav.max_num_files() - 1))
            self.masterSlider.setValue(nav.master_slider_value)
            del blocker
        self._update_position_label()
        fps = nav.timing.frame_rate.fps()
        self.fpsLabel.setText(f"{fps:5.1f} fps" if nav.is_skating else "")

    def _update_position_label(self) -> None:
        total = self.navigator.max_num_files()
        value = self.masterSlider.value() if self.masterSlider.isSliderDown() else self.navigator.master_slider_value
        self.positionLabel.setText(f"{value + 1 if total else 0} / {total}")

    @property
    def pane_views(self) -> list[PaneView]:
        return list(self._pane_views)

    @property
    def uses_gpu(self) -> bool:
        return self._use_gpu

    def closeEvent(self, event):
        self._tick_timer.stop()
        self.navigator.close()
        if self._texture_device is not None:
            self._texture_device.close()
            self._texture_device = None
        self._config.window_width = self.width()
        self._config.window_height = self.height()
        self._config.save()
        super().closeEvent(event)
