"""Decode backends producing cache payloads for the CPU and GPU presenters.

A backend is picked once per directory open.  Decoding (``decode`` and
``decode_preview``) runs on the decode pool and must be thread-safe;
``to_payload`` runs on the update loop, which is where the GPU variant
uploads pixels into a texture on the shared device.
"""
from __future__ import annotations

import enum
import io
import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import numpy as np
from PIL import Image, UnidentifiedImageError

from core.errors import DecodeError
from core.image_source import ImageSource

LOG = logging.getLogger(__name__)

MAX_TEXTURE_SIZE = 8192
PREVIEW_SIZE = (1280, 720)


class BackendKind(enum.Enum):
    CPU = "cpu"
    GPU = "gpu"

    @classmethod
    def parse(cls, value: "str | BackendKind") -> "BackendKind":
        if isinstance(value, BackendKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown backend {value!r}; expected 'cpu' or 'gpu'") from None


@dataclass(frozen=True, slots=True)
class ImageMetadata:
    width: int
    height: int
    file_size: int

    def resolution_string(self) -> str:
        return f"{self.width}x{self.height}"

    def file_size_string(self) -> str:
        size = self.file_size
        if size < 1024:
            return f"{size} B"
        if size < 1024 * 1024:
            return f"{size / 1024.0:.1f} KB"
        return f"{size / (1024.0 * 1024.0):.1f} MB"


@dataclass(frozen=True, slots=True)
class DecodedImage:
    """RGBA pixels produced off the update loop."""

    global_index: int
    pixels: np.ndarray
    metadata: ImageMetadata

    @property
    def nbytes(self) -> int:
        return int(self.pixels.nbytes)


@dataclass(frozen=True, slots=True)
class TextureHandle:
    """Opaque reference to pixels resident on the texture device."""

    texture: Any
    width: int
    height: int
    nbytes: int


@dataclass(frozen=True, slots=True)
class CachedImage:
    """Payload stored in a cache slot."""

    kind: BackendKind
    global_index: int
    data: np.ndarray | TextureHandle
    metadata: ImageMetadata

    @property
    def width(self) -> int:
        return self.metadata.width

    @property
    def height(self) -> int:
        return self.metadata.height

    @property
    def nbytes(self) -> int:
        data = self.data
        if isinstance(data, TextureHandle):
            return data.nbytes
        return int(data.nbytes)


class TextureDevice(Protocol):
    """Texture allocator shared by every pane."""

    def upload(self, pixels: np.ndarray) -> TextureHandle:
        """Copy ``pixels`` (H x W x 4 uint8) into a new texture."""


def _fit_within(width: int, height: int, limit: int) -> tuple[int, int]:
    scale = min(limit / float(width), limit / float(height))
    return max(1, int(width * scale)), max(1, int(height * scale))


def decode_image_bytes(
    data: bytes,
    *,
    label: str = "<memory>",
    max_size: int = MAX_TEXTURE_SIZE,
    target_size: tuple[int, int] | None = None,
) -> np.ndarray:
    """Decode encoded bytes to an RGBA ``uint8`` array.

    Images wider or taller than ``max_size`` are scaled down with Lanczos to
    fit. When ``target_size`` is given the image is resized exactly to it.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if target_size is not None:
                img = img.resize(target_size, Image.Resampling.BILINEAR)
            elif img.width > max_size or img.height > max_size:
                new_size = _fit_within(img.width, img.height, max_size)
                LOG.warning(
                    "Image %s is %dx%d, larger than %d px; resizing to %dx%d",
                    label,
                    img.width,
                    img.height,
                    max_size,
                    new_size[0],
                    new_size[1],
                )
                img = img.resize(new_size, Image.Resampling.LANCZOS)
            rgba = img.convert("RGBA")
            return np.asarray(rgba, dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise DecodeError(label, str(exc)) from exc


class ImageBackend:
    """Shared decode path; subclasses decide what a payload holds."""

    kind: BackendKind = BackendKind.CPU

    def __init__(self, source: ImageSource, image_paths: Sequence[str]):
        self.source = source
        self.image_paths = tuple(image_paths)

    def _read(self, global_index: int) -> tuple[str, bytes, int]:
        if global_index < 0 or global_index >= len(self.image_paths):
            raise DecodeError(str(global_index), "index out of range")
        path = self.image_paths[global_index]
        try:
            data = self.source.read_bytes(path)
        except (OSError, KeyError, ValueError) as exc:
            raise DecodeError(path, str(exc)) from exc
        return path, data, len(data)

    def decode(self, global_index: int) -> DecodedImage:
        path, data, size = self._read(global_index)
        pixels = decode_image_bytes(data, label=path)
        height, width = pixels.shape[:2]
        return DecodedImage(global_index, pixels, ImageMetadata(width, height, size))

    def decode_preview(self, global_index: int) -> DecodedImage:
        path, data, size = self._read(global_index)
        pixels = decode_image_bytes(data, label=path, target_size=PREVIEW_SIZE)
        height, width = pixels.shape[:2]
        return DecodedImage(global_index, pixels, ImageMetadata(width, height, size))

    def to_payload(self, decoded: DecodedImage) -> CachedImage:
        raise NotImplementedError


class CpuBackend(ImageBackend):
    """Keeps decoded RGBA bytes in host memory."""

    kind = BackendKind.CPU

    def to_payload(self, decoded: DecodedImage) -> CachedImage:
        return CachedImage(self.kind, decoded.global_index, decoded.pixels, decoded.metadata)


class GpuBackend(ImageBackend):
    """Uploads decoded pixels through a shared :class:`TextureDevice`."""

    kind = BackendKind.GPU

    def __init__(self, source: ImageSource, image_paths: Sequence[str], device: TextureDevice):
        super().__init__(source, image_paths)
        self.device = device

    def to_payload(self, decoded: DecodedImage) -> CachedImage:
        handle = self.device.upload(decoded.pixels)
        return CachedImage(self.kind, decoded.global_index, handle, decoded.metadata)


def create_backend(
    kind: BackendKind | str,
    source: ImageSource,
    image_paths: Sequence[str],
    *,
    device: TextureDevice | None = None,
) -> ImageBackend:
    kind = BackendKind.parse(kind)
    if kind is BackendKind.GPU:
        if device is not None:
            return GpuBackend(source, image_paths, device)
        LOG.warning("GPU backend requested without a texture device; using CPU decode")
    return CpuBackend(source, image_paths)
