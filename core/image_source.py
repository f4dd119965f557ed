"""Directory and archive enumeration plus raw byte access for image files."""
from __future__ import annotations

import logging
import os
import threading
import zipfile
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from natsort import natsorted, ns

LOG = logging.getLogger(__name__)

IMAGE_EXTENSIONS: tuple[str, ...] = (".jpg", ".jpeg", ".png")
ARCHIVE_EXTENSIONS: tuple[str, ...] = (".zip",)
# Archives below this size are read into memory when opened.
ARCHIVE_PRELOAD_LIMIT = 256 * 1024 * 1024


def is_image_name(name: str, extensions: Iterable[str] = IMAGE_EXTENSIONS) -> bool:
    return os.path.splitext(name)[1].lower() in tuple(extensions)


def natural_sort(names: Iterable[str]) -> list[str]:
    """Order names the way a file browser would: ``img2`` before ``img10``."""
    return natsorted(names, alg=ns.PATH | ns.IGNORECASE)


def list_image_paths(
    directory: str | Path, extensions: Iterable[str] = IMAGE_EXTENSIONS
) -> list[str]:
    directory = Path(directory)
    if not directory.is_dir():
        raise NotADirectoryError(str(directory))
    exts = tuple(ext.lower() for ext in extensions)
    found = [
        str(entry)
        for entry in directory.iterdir()
        if entry.is_file() and is_image_name(entry.name, exts)
    ]
    return natural_sort(found)


def file_index(image_paths: Sequence[str], path: str | Path) -> int | None:
    """Return the position of ``path`` in ``image_paths`` matching by file name."""
    name = Path(path).name
    for idx, candidate in enumerate(image_paths):
        if Path(candidate).name == name:
            return idx
    return None


class ImageSource(Protocol):
    """Byte provider used by the decode backends."""

    label: str

    def read_bytes(self, path: str) -> bytes:
        """Return the encoded bytes of ``path``."""

    def file_size(self, path: str) -> int:
        """Return the encoded size of ``path`` in bytes."""

    def close(self) -> None:
        """Release any handles held by the source."""


class FileImageSource:
    """Reads images straight from the filesystem."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.label = str(self.directory)

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as fh:
            return fh.read()

    def file_size(self, path: str) -> int:
        return os.path.getsize(path)

    def close(self) -> None:
        return None


class ArchiveImageSource:
    """Reads image members out of a zip archive.

    ``zipfile.ZipFile`` shares one file handle between members, so reads are
    serialised behind a lock. Archives smaller than ``preload_limit`` are read
    completely on open and served from memory afterwards.
    """

    def __init__(self, archive_path: str | Path, *, preload_limit: int = ARCHIVE_PRELOAD_LIMIT):
        self.archive_path = Path(archive_path)
        self.label = str(self.archive_path)
        self._lock = threading.RLock()
        self._zip = zipfile.ZipFile(self.archive_path)
        self._preloaded: dict[str, bytes] = {}
        self._sizes = {
            info.filename: info.file_size for info in self._zip.infolist() if not info.is_dir()
        }
        total = sum(self._sizes[name] for name in self.member_names())
        if total <= preload_limit:
            for name in self.member_names():
                self._preloaded[name] = self._zip.read(name)
            LOG.debug(
                "Preloaded %d archive members (%.1f MB) from %s",
                len(self._preloaded),
                total / (1024 * 1024),
                self.archive_path,
            )

    def member_names(self) -> list[str]:
        return natural_sort(name for name in self._sizes if is_image_name(name))

    def read_bytes(self, path: str) -> bytes:
        data = self._preloaded.get(path)
        if data is not None:
            return data
        with self._lock:
            return self._zip.read(path)

    def file_size(self, path: str) -> int:
        return int(self._sizes.get(path, 0))

    def close(self) -> None:
        with self._lock:
            self._preloaded.clear()
            self._zip.close()


def resolve_path(path: str | Path) -> tuple[ImageSource, list[str], int]:
    """Resolve a user supplied path into ``(source, image_paths, initial_index)``.

    Directories open at their first image, image files open their parent
    directory positioned at that file and zip archives list their members.
    """
    path = Path(path)
    if path.is_dir():
        paths = list_image_paths(path)
        if not paths:
            raise FileNotFoundError(f"No supported images in {path}")
        return FileImageSource(path), paths, 0
    if path.is_file() and path.suffix.lower() in ARCHIVE_EXTENSIONS:
        source = ArchiveImageSource(path)
        members = source.member_names()
        if not members:
            source.close()
            raise FileNotFoundError(f"No supported images in archive {path}")
        return source, members, 0
    if path.is_file() and is_image_name(path.name):
        paths = list_image_paths(path.parent)
        index = file_index(paths, path)
        return FileImageSource(path.parent), paths, index or 0
    raise FileNotFoundError(f"Unsupported path: {path}")
