import json
from pathlib import Path

import pytest

from exif_writer import InvalidOperationError, UnsupportedFormatError


class FakeTagged:
    def __init__(self, path):
        self.path = Path(path)
        self.suffix = self.path.suffix
        self.when = None


class FakeWriter:
    """
    Stands in for ExifWriter. Behaviour is picked by file suffix:
    `.mov` is unsupported, `.bad` fails with an invalid operation,
    `.boom` raises an unexpected error on save. Everything else gets a
    `|taken=<iso>` marker appended on save.
    """

    def __init__(self):
        self.opened = []
        self.saved = []

    def open_for_tagging(self, path):
        path = Path(path)
        self.opened.append(path)
        if path.suffix == ".mov":
            raise UnsupportedFormatError(f"{path.name}: video")
        return FakeTagged(path)

    def set_capture_time(self, tagged, when):
        if tagged.suffix == ".bad":
            raise InvalidOperationError(f"{tagged.path.name}: broken tags")
        tagged.when = when

    def save(self, tagged):
        if tagged.suffix == ".boom":
            raise RuntimeError("disk on fire")
        with tagged.path.open("ab") as f:
            f.write(f"|taken={tagged.when.isoformat()}".encode())
        self.saved.append(tagged.path)


@pytest.fixture
def fake_writer():
    return FakeWriter()


def write_sidecar(media: Path, timestamp="1577836800", **extra) -> Path:
    meta = {"title": media.name, **extra}
    if timestamp is not None:
        meta["photoTakenTime"] = {"timestamp": timestamp, "formatted": "whatever"}
    sidecar = media.with_name(media.name + ".json")
    sidecar.write_text(json.dumps(meta), encoding="utf-8")
    return sidecar


def add_media(folder: Path, name: str, timestamp="1577836800", content=b"media") -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    media = folder / name
    media.write_bytes(content)
    if timestamp is not False:
        write_sidecar(media, timestamp)
    return media


def snapshot(root: Path) -> dict:
    """relative path -> bytes (None for directories)"""
    if not root.exists():
        return {}
    return {
        p.relative_to(root).as_posix(): (p.read_bytes() if p.is_file() else None)
        for p in sorted(root.rglob("*"))
    }


@pytest.fixture
def takeout(tmp_path):
    """A small Takeout-like tree under tmp_path/Takeout."""
    root = tmp_path / "Takeout"
    add_media(root / "Photos from 2020", "photo.jpg", "1577836800")
    add_media(root / "Photos from 2020", "clip.mov", "1577836800")
    add_media(root / "Photos from 2021", "IMG_0001.jpg", "1609459200")
    add_media(root / "Photos from 2021", "note.txt", timestamp=False)
    add_media(root / "Photos from 2021" / "nested", "broken.bad", "1609459200")
    (root / "Empty album").mkdir(parents=True)
    return root
