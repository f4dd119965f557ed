import io
import zipfile

import numpy as np
import pytest
from PIL import Image

from core.backends import (
    PREVIEW_SIZE,
    BackendKind,
    CpuBackend,
    GpuBackend,
    ImageMetadata,
    TextureHandle,
    create_backend,
    decode_image_bytes,
)
from core.errors import DecodeError
from core.image_source import ArchiveImageSource, FileImageSource, list_image_paths


def _png_bytes(size=(8, 6), color=(255, 0, 0), mode="RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeTextureDevice:
    def __init__(self):
        self.uploads = []

    def upload(self, pixels):
        self.uploads.append(pixels.shape)
        height, width = pixels.shape[:2]
        return TextureHandle(texture=object(), width=width, height=height, nbytes=int(pixels.nbytes))


def test_decode_returns_rgba_uint8():
    pixels = decode_image_bytes(_png_bytes())
    assert pixels.shape == (6, 8, 4)
    assert pixels.dtype == np.uint8
    assert tuple(pixels[0, 0]) == (255, 0, 0, 255)


def test_decode_keeps_alpha_channel():
    pixels = decode_image_bytes(_png_bytes(color=(0, 0, 255, 128), mode="RGBA"))
    assert pixels[0, 0, 3] == 128


def test_oversized_image_is_scaled_to_fit():
    pixels = decode_image_bytes(_png_bytes(size=(40, 20)), max_size=10)
    assert pixels.shape == (5, 10, 4)


def test_preview_is_resized_exactly():
    pixels = decode_image_bytes(_png_bytes(), target_size=PREVIEW_SIZE)
    assert pixels.shape == (720, 1280, 4)


def test_garbage_bytes_raise_decode_error():
    with pytest.raises(DecodeError) as excinfo:
        decode_image_bytes(b"not an image", label="broken.png")
    assert excinfo.value.path == "broken.png"


def test_cpu_backend_decodes_from_source(image_dir):
    paths = list_image_paths(image_dir)
    backend = CpuBackend(FileImageSource(image_dir), paths)
    decoded = backend.decode(2)
    assert decoded.global_index == 2
    assert decoded.metadata.resolution_string() == "4x3"
    assert decoded.metadata.file_size > 0

    payload = backend.to_payload(decoded)
    assert payload.kind is BackendKind.CPU
    assert payload.data is decoded.pixels
    assert payload.nbytes == 4 * 3 * 4


def test_backend_reports_missing_and_out_of_range(image_dir):
    paths = list_image_paths(image_dir)
    backend = CpuBackend(FileImageSource(image_dir), paths + [str(image_dir / "gone.png")])
    with pytest.raises(DecodeError):
        backend.decode(len(paths))
    with pytest.raises(DecodeError):
        backend.decode(99)


def test_read_from_closed_archive_is_decode_error(tmp_path, image_dir):
    archive = tmp_path / "book.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.write(image_dir / "img_1.png", arcname="img_1.png")
    source = ArchiveImageSource(archive, preload_limit=0)
    backend = CpuBackend(source, source.member_names())
    assert backend.decode(0).global_index == 0

    source.close()
    with pytest.raises(DecodeError) as excinfo:
        backend.decode(0)
    assert excinfo.value.path == "img_1.png"


def test_gpu_backend_uploads_on_payload(image_dir):
    device = FakeTextureDevice()
    backend = create_backend("gpu", FileImageSource(image_dir), list_image_paths(image_dir), device=device)
    assert isinstance(backend, GpuBackend)
    payload = backend.to_payload(backend.decode(0))
    assert payload.kind is BackendKind.GPU
    assert isinstance(payload.data, TextureHandle)
    assert (payload.width, payload.height) == (4, 3)
    assert device.uploads == [(3, 4, 4)]


def test_gpu_without_device_falls_back_to_cpu(image_dir):
    backend = create_backend(BackendKind.GPU, FileImageSource(image_dir), list_image_paths(image_dir))
    assert isinstance(backend, CpuBackend)


def test_backend_kind_parse():
    assert BackendKind.parse(" GPU ") is BackendKind.GPU
    assert BackendKind.parse(BackendKind.CPU) is BackendKind.CPU
    with pytest.raises(ValueError):
        BackendKind.parse("metal")


def test_metadata_strings():
    assert ImageMetadata(10, 20, 512).file_size_string() == "512 B"
    assert ImageMetadata(10, 20, 2048).file_size_string() == "2.0 KB"
    assert ImageMetadata(10, 20, 3 * 1024 * 1024).file_size_string() == "3.0 MB"
    assert ImageMetadata(1920, 1080, 0).resolution_string() == "1920x1080"
