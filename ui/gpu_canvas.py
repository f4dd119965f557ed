"""GPU image canvas and shared texture device built on VisPy."""

from __future__ import annotations

import contextlib
import logging
import threading
from dataclasses import dataclass

import numpy as np
from PySide6 import QtCore, QtGui, QtWidgets

from core.backends import CachedImage, TextureHandle

LOG = logging.getLogger(__name__)


try:  # pragma: no cover - import guarded for optional dependency
    from vispy import app as _vispy_app
    from vispy import gloo
except Exception:  # pragma: no cover - handled by MainWindow fallback
    _vispy_app = None
    gloo = None  # type: ignore


_VERTEX_SHADER = """
attribute vec2 a_position;
attribute vec2 a_texcoord;
uniform vec2 u_scale;
varying vec2 v_texcoord;
void main() {
    gl_Position = vec4(a_position * u_scale, 0.0, 1.0);
    v_texcoord = a_texcoord;
}
"""

_FRAGMENT_SHADER = """
uniform sampler2D u_texture;
varying vec2 v_texcoord;
void main() {
    gl_FragColor = texture2D(u_texture, v_texcoord);
}
"""


@dataclass(frozen=True, slots=True)
class VispyCapability:
    """Result of probing VisPy/OpenGL readiness."""

    available: bool
    reason: str | None = None
    max_texture_size: int = 0
    vendor: str | None = None
    renderer: str | None = None


def _use_pyside6() -> None:
    try:
        _vispy_app.use_app("pyside6")
    except RuntimeError:
        # Already initialised – safe to ignore.
        pass


class VispyTextureDevice:
    """Texture allocator shared by every pane's GPU backend.

    The device owns a hidden canvas whose context is shared with every
    :class:`VispyImageCanvas`, so a texture uploaded for one pane can be
    drawn by any of them.
    """

    def __init__(self) -> None:
        if _vispy_app is None or gloo is None:
            raise RuntimeError("VisPy is not available")
        _use_pyside6()
        self._root = _vispy_app.Canvas(show=False, size=(4, 4))
        self._lock = threading.Lock()
        self.uploads = 0

    @property
    def context(self):
        return self._root.context

    def upload(self, pixels: np.ndarray) -> TextureHandle:
        pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
        height, width = pixels.shape[:2]
        with self._lock:
            texture = gloo.Texture2D(pixels, interpolation="linear")
            self.uploads += 1
        return TextureHandle(texture=texture, width=int(width), height=int(height), nbytes=int(pixels.nbytes))

    def close(self) -> None:
        with contextlib.suppress(Exception):
            self._root.close()


class _TextureCanvas(_vispy_app.Canvas if _vispy_app is not None else object):  # type: ignore[misc]
    def __init__(self, device: VispyTextureDevice) -> None:
        super().__init__(keys=None, show=False, shared=device.context)
        self._program = gloo.Program(_VERTEX_SHADER, _FRAGMENT_SHADER)
        self._program["a_position"] = np.array(
            [[-1.0, -1.0], [-1.0, 1.0], [1.0, -1.0], [1.0, 1.0]], dtype=np.float32
        )
        self._program["a_texcoord"] = np.array(
            [[0.0, 1.0], [0.0, 0.0], [1.0, 1.0], [1.0, 0.0]], dtype=np.float32
        )
        self._program["u_scale"] = (1.0, 1.0)
        self._handle: TextureHandle | None = None
        self._background = (0.06, 0.08, 0.1, 1.0)

    def set_handle(self, handle: TextureHandle | None) -> None:
        self._handle = handle
        if handle is not None:
            self._program["u_texture"] = handle.texture
        self._update_scale()
        self.update()

    def set_background(self, rgba: tuple[float, float, float, float]) -> None:
        self._background = rgba
        self.update()

    def on_resize(self, event) -> None:  # pragma: no cover - GUI only
        gloo.set_viewport(0, 0, *event.physical_size)
        self._update_scale()

    def on_draw(self, event) -> None:  # pragma: no cover - GUI only
        gloo.clear(color=self._background)
        if self._handle is not None:
            self._program.draw("triangle_strip")

    def _update_scale(self) -> None:
        handle = self._handle
        width, height = self.size
        if handle is None or width <= 0 or height <= 0:
            return
        canvas_aspect = width / float(height)
        image_aspect = handle.width / float(handle.height)
        if image_aspect > canvas_aspect:
            self._program["u_scale"] = (1.0, canvas_aspect / image_aspect)
        else:
            self._program["u_scale"] = (image_aspect / canvas_aspect, 1.0)


class VispyImageCanvas(QtWidgets.QWidget):
    """Draws texture-backed payloads produced by the GPU backend."""

    @classmethod
    def capability_probe(cls) -> VispyCapability:
        """Attempt to create a minimal canvas to gauge readiness."""

        if _vispy_app is None or gloo is None:
            return VispyCapability(False, reason="VisPy import failed")
        _use_pyside6()
        try:
            canvas = _vispy_app.Canvas(show=False, size=(4, 4))
        except Exception as exc:  # pragma: no cover - headless or driver issues
            LOG.debug("VisPy capability probe failed to create canvas: %s", exc)
            return VispyCapability(False, reason=str(exc))
        try:
            info = getattr(canvas.context, "gl_info", {}) or {}
            max_size = 0
            shared = getattr(canvas.context, "shared", None)
            parser = getattr(shared, "parser", None)
            limits = getattr(parser, "_limits", None)
            if isinstance(limits, dict):
                value = limits.get("max_texture_size")
                if isinstance(value, (int, float)) and value > 0:
                    max_size = int(value)
            return VispyCapability(
                True,
                max_texture_size=max_size or 8192,
                vendor=info.get("vendor") if isinstance(info, dict) else None,
                renderer=info.get("renderer") if isinstance(info, dict) else None,
            )
        except Exception as exc:  # pragma: no cover - driver specific
            LOG.debug("VisPy capability probe failed: %s", exc)
            return VispyCapability(False, reason=str(exc))
        finally:
            with contextlib.suppress(Exception):
                canvas.close()

    def __init__(self, device: VispyTextureDevice, parent: QtWidgets.QWidget | None = None) -> None:
        super().__init__(parent)
        if _vispy_app is None or gloo is None:
            raise RuntimeError("VisPy is not available")
        self._canvas = _TextureCanvas(device)
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        layout.addWidget(self._canvas.native)
        self.setSizePolicy(
            QtWidgets.QSizePolicy.Expanding,
            QtWidgets.QSizePolicy.Expanding,
        )
        self._shown_index: int | None = None

    def sizeHint(self) -> QtCore.QSize:  # pragma: no cover - simple geometry hint
        return QtCore.QSize(960, 720)

    # ImageCanvasBackend -------------------------------------------------
    @property
    def widget(self) -> QtWidgets.QWidget:  # pragma: no cover - trivial
        return self

    def accepts(self, payload: CachedImage) -> bool:
        return isinstance(payload.data, TextureHandle)

    def show_payload(self, payload: CachedImage | None) -> None:
        if payload is None or not self.accepts(payload):
            self._canvas.set_handle(None)
            self._shown_index = None
            return
        self._canvas.set_handle(payload.data)
        self._shown_index = payload.global_index

    def set_background(self, color: str) -> None:
        qcolor = QtGui.QColor(color)
        self._canvas.set_background((qcolor.redF(), qcolor.greenF(), qcolor.blueF(), 1.0))

    @property
    def shown_index(self) -> int | None:
        return self._shown_index
