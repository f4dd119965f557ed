import io
import zipfile
from pathlib import Path

import pytest
from PIL import Image

from core.image_source import (
    ArchiveImageSource,
    FileImageSource,
    file_index,
    is_image_name,
    list_image_paths,
    natural_sort,
    resolve_path,
)


def test_natural_sort_orders_numbers_and_ignores_case():
    names = ["img10.png", "img2.png", "IMG1.png"]
    assert natural_sort(names) == ["IMG1.png", "img2.png", "img10.png"]


def test_is_image_name():
    assert is_image_name("a.PNG")
    assert is_image_name("b.jpeg")
    assert not is_image_name("notes.txt")
    assert not is_image_name("archive.zip")


def test_list_image_paths_filters_and_sorts(tmp_path: Path):
    for name in ("frame10.png", "frame2.JPG", "frame1.jpeg", "readme.txt"):
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "sub.png").mkdir()
    names = [Path(p).name for p in list_image_paths(tmp_path)]
    assert names == ["frame1.jpeg", "frame2.JPG", "frame10.png"]


def test_list_image_paths_requires_directory(tmp_path: Path):
    with pytest.raises(NotADirectoryError):
        list_image_paths(tmp_path / "missing")


def test_file_index_matches_by_name():
    paths = ["/a/img_1.png", "/a/img_2.png"]
    assert file_index(paths, "/elsewhere/img_2.png") == 1
    assert file_index(paths, "img_9.png") is None


def test_resolve_directory(image_dir):
    source, paths, index = resolve_path(image_dir)
    assert isinstance(source, FileImageSource)
    assert len(paths) == 10
    assert Path(paths[-1]).name == "img_10.png"
    assert index == 0


def test_resolve_image_file_opens_parent_at_file(image_dir):
    source, paths, index = resolve_path(image_dir / "img_4.png")
    assert index == 3
    assert source.read_bytes(paths[index]) == (image_dir / "img_4.png").read_bytes()


def test_resolve_rejects_unsupported_paths(tmp_path: Path):
    empty = tmp_path / "empty"
    empty.mkdir()
    with pytest.raises(FileNotFoundError):
        resolve_path(empty)
    text = tmp_path / "notes.txt"
    text.write_text("hi")
    with pytest.raises(FileNotFoundError):
        resolve_path(text)


def _make_archive(path: Path, image_dir: Path) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name in ("img_10.png", "img_2.png", "img_1.png"):
            zf.write(image_dir / name, arcname=f"pages/{name}")
        zf.writestr("pages/info.txt", "not an image")
    return path


@pytest.mark.parametrize("preload_limit", [0, 1 << 30])
def test_archive_source_lists_and_reads_members(tmp_path: Path, image_dir, preload_limit):
    archive = _make_archive(tmp_path / "book.zip", image_dir)
    source = ArchiveImageSource(archive, preload_limit=preload_limit)
    try:
        members = source.member_names()
        assert members == ["pages/img_1.png", "pages/img_2.png", "pages/img_10.png"]
        data = source.read_bytes(members[1])
        assert data == (image_dir / "img_2.png").read_bytes()
        assert source.file_size(members[1]) == len(data)
        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (4, 3)
    finally:
        source.close()


def test_resolve_archive(tmp_path: Path, image_dir):
    archive = _make_archive(tmp_path / "book.zip", image_dir)
    source, paths, index = resolve_path(archive)
    try:
        assert isinstance(source, ArchiveImageSource)
        assert paths[0] == "pages/img_1.png"
        assert index == 0
    finally:
        source.close()
