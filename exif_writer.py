"""
Capture-time writer backed by piexif and Pillow.

JPEG and WebP get their EXIF segment swapped in place with piexif.insert,
which leaves the image data untouched. PNG and HEIC/HEIF have no piexif
insert support, so they are re-saved through Pillow with the new EXIF
block (HEIF losslessly). Anything Pillow cannot identify, and any image
format outside that list, is reported as unsupported.
"""

import logging
import struct
import warnings
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import piexif
from PIL import Image, ImageFile, UnidentifiedImageError
from pillow_heif import register_heif_opener

logger = logging.getLogger(__name__)

# Ensure PIL can load truncated images
ImageFile.LOAD_TRUNCATED_IMAGES = True
# Initialize HEIC opener
register_heif_opener()

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

# Pillow format name -> how the new EXIF block gets into the file.
# MPO is what Pillow calls most phone JPEGs.
INSERT_FORMATS = {"JPEG", "MPO", "WEBP"}
RESAVE_FORMATS = {"PNG", "HEIF"}
WRITABLE_FORMATS = INSERT_FORMATS | RESAVE_FORMATS

# What piexif raises on data it cannot make sense of
_PIEXIF_DATA_ERRORS = (
    piexif.InvalidImageDataError,
    ValueError,
    KeyError,
    TypeError,
    struct.error,
)


class MetadataWriteError(Exception):
    """Base class for failures the merge step knows how to recover from."""


class UnsupportedFormatError(MetadataWriteError):
    pass


class InvalidOperationError(MetadataWriteError):
    pass


def empty_exif() -> dict:
    return {"0th": {}, "Exif": {}, "GPS": {}, "Interop": {}, "1st": {}, "thumbnail": None}


@contextmanager
def unbounded_pixels():
    """Lift Pillow's decompression-bomb limit; panoramas are legitimate here."""
    saved = Image.MAX_IMAGE_PIXELS
    Image.MAX_IMAGE_PIXELS = None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", Image.DecompressionBombWarning)
            yield
    finally:
        Image.MAX_IMAGE_PIXELS = saved


@dataclass
class TaggableFile:
    path: Path
    format: str
    exif: dict = field(default_factory=empty_exif)
    image: Optional[Image.Image] = None
    has_exif: bool = True


class ExifWriter:

    def open_for_tagging(self, path) -> TaggableFile:
        path = Path(path)
        try:
            with unbounded_pixels(), Image.open(path) as img:
                fmt = img.format
                if fmt in RESAVE_FORMATS:
                    img.load()
                    # detached copy keeps pixels + info after the file closes
                    return TaggableFile(path=path, format=fmt, image=img.copy())
                has_exif = bool(img.info.get("exif"))
        except UnidentifiedImageError as e:
            raise UnsupportedFormatError(f"{path.name}: not a recognised image ({e})") from e

        if fmt not in WRITABLE_FORMATS:
            raise UnsupportedFormatError(f"{path.name}: cannot write EXIF to {fmt} files")
        return TaggableFile(path=path, format=fmt, has_exif=has_exif)

    def set_capture_time(self, tagged: TaggableFile, when: datetime) -> None:
        """Set DateTimeOriginal, DateTimeDigitized and DateTime to `when`."""
        try:
            tagged.exif = self._load_exif(tagged)
        except _PIEXIF_DATA_ERRORS as e:
            raise InvalidOperationError(f"{tagged.path.name}: unreadable EXIF ({e})") from e

        encoded_ts = when.strftime(EXIF_DATETIME_FORMAT).encode("ascii")
        tagged.exif.setdefault("0th", {})[piexif.ImageIFD.DateTime] = encoded_ts
        tagged.exif.setdefault("Exif", {})[piexif.ExifIFD.DateTimeOriginal] = encoded_ts
        tagged.exif["Exif"][piexif.ExifIFD.DateTimeDigitized] = encoded_ts

    def save(self, tagged: TaggableFile) -> None:
        try:
            exif_bytes = piexif.dump(tagged.exif)
        except _PIEXIF_DATA_ERRORS as e:
            raise InvalidOperationError(f"{tagged.path.name}: cannot encode EXIF ({e})") from e

        if tagged.format in INSERT_FORMATS:
            try:
                piexif.insert(exif_bytes, str(tagged.path))
            except piexif.InvalidImageDataError as e:
                raise InvalidOperationError(f"{tagged.path.name}: {e}") from e
        else:
            self._resave(tagged, exif_bytes)
        logger.debug("Wrote EXIF to %s (%s)", tagged.path, tagged.format)

    def _load_exif(self, tagged: TaggableFile) -> dict:
        if tagged.format in INSERT_FORMATS:
            # piexif.load refuses WebP files that have no EXIF chunk yet
            if tagged.format == "WEBP" and not tagged.has_exif:
                return empty_exif()
            return piexif.load(str(tagged.path))
        raw = tagged.image.info.get("exif") if tagged.image is not None else None
        return piexif.load(raw) if raw else empty_exif()

    def _resave(self, tagged: TaggableFile, exif_bytes: bytes) -> None:
        params = {"exif": exif_bytes}
        if tagged.format == "HEIF":
            params["quality"] = -1  # lossless
        try:
            tagged.image.save(tagged.path, format=tagged.format, **params)
        except ValueError as e:
            raise InvalidOperationError(f"{tagged.path.name}: {e}") from e
