"""
Mirror a Takeout folder into `<folder>_merged`, stamping each media file with
the capture time from its `<name>.json` sidecar. Files the writer cannot tag
are copied, together with their sidecar, into `<folder>_bad` instead.

Reruns are safe: anything already present in either output tree is skipped.
"""

import logging
import os
import shutil
import tempfile
from collections import Counter
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from exif_writer import ExifWriter, MetadataWriteError
from takeout_sidecar import (
    is_sidecar,
    read_taken_timestamp,
    sidecar_path_for,
    taken_time_from_timestamp,
)

logger = logging.getLogger(__name__)

MERGED_SUFFIX = "_merged"
BAD_SUFFIX = "_bad"
PARTIAL_PREFIX = ".partial-"


class Outcome(str, Enum):
    SKIPPED_NO_SIDECAR = "skipped-no-sidecar"
    SKIPPED_ALREADY_PROCESSED = "skipped-already-processed"
    SKIPPED_UNPARSEABLE_TIMESTAMP = "skipped-unparseable-timestamp"
    MERGED = "merged"
    QUARANTINED = "quarantined"


def output_roots(folder) -> tuple[Path, Path]:
    """/photos/Takeout -> (/photos/Takeout_merged, /photos/Takeout_bad)"""
    root = Path(os.path.abspath(folder))
    return (root.with_name(root.name + MERGED_SUFFIX),
            root.with_name(root.name + BAD_SUFFIX))


def partial_path_for(target: Path) -> Path:
    """
    Reserve a fresh hidden working file beside `target`. mkstemp picks a name
    no existing file has, so it cannot clash with another mirrored file.
    """
    fd, name = tempfile.mkstemp(prefix=PARTIAL_PREFIX, suffix=target.suffix,
                                dir=str(target.parent))
    os.close(fd)
    return Path(name)


class FolderMerger:
    """Walks one input tree; the three roots are fixed for its lifetime."""

    def __init__(self, input_root, writer=None):
        if not str(input_root).strip():
            raise ValueError("input folder must not be empty")
        self.input_root = Path(os.path.abspath(input_root))
        self.merged_root, self.bad_root = output_roots(self.input_root)
        self.writer = writer if writer is not None else ExifWriter()
        self.counts = Counter()
        self._progress = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def mirror(self, path: Path, root: Path) -> Path:
        return root / Path(os.path.abspath(path)).relative_to(self.input_root)

    def merged_path(self, path: Path) -> Path:
        return self.mirror(path, self.merged_root)

    def bad_path(self, path: Path) -> Path:
        return self.mirror(path, self.bad_root)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def run(self, progress: Optional[Callable[[], object]] = None) -> Counter:
        """Process the whole input tree and return outcome counts."""
        self._progress = progress
        try:
            self.walk(self.input_root)
        finally:
            self._progress = None
        return self.counts

    def walk(self, folder) -> None:
        if not str(folder).strip():
            raise ValueError("folder must not be empty")
        folder = Path(folder)
        if not folder.is_dir():
            raise ValueError(f"Folder not found '{folder}'")

        logger.debug("Traverse folder: %s", folder)
        # mirrored even when nothing inside ends up merged
        self.merged_path(folder).mkdir(parents=True, exist_ok=True)

        entries = sorted(folder.iterdir())
        for child in entries:
            if child.is_dir():
                self.walk(child)

        for file_path in entries:
            if not file_path.is_file() or is_sidecar(file_path):
                continue
            self.counts[self.merge(file_path)] += 1
            if self._progress:
                self._progress()

    # ------------------------------------------------------------------
    # Merge step
    # ------------------------------------------------------------------

    def merge(self, media_path) -> Outcome:
        media_path = Path(media_path)
        sidecar = sidecar_path_for(media_path)
        if not sidecar.is_file():
            logger.warning("%s: %s (no %s)", Outcome.SKIPPED_NO_SIDECAR.value,
                           media_path, sidecar.name)
            return Outcome.SKIPPED_NO_SIDECAR

        target = self.merged_path(media_path)
        if target.exists() or self.bad_path(media_path).exists():
            logger.debug("%s: %s", Outcome.SKIPPED_ALREADY_PROCESSED.value, media_path)
            return Outcome.SKIPPED_ALREADY_PROCESSED

        timestamp = read_taken_timestamp(sidecar)
        try:
            taken = taken_time_from_timestamp(timestamp) if timestamp is not None else None
        except OverflowError:
            taken = None
        if taken is None:
            # Neither tree gets a copy; this log line is the only trace.
            logger.info("%s: %s (photoTakenTime.timestamp missing or invalid in %s)",
                        Outcome.SKIPPED_UNPARSEABLE_TIMESTAMP.value, media_path, sidecar.name)
            return Outcome.SKIPPED_UNPARSEABLE_TIMESTAMP

        try:
            self._write_tagged_copy(media_path, target, taken)
        except MetadataWriteError as e:
            if not self.quarantine(media_path, reason=f"{type(e).__name__}: {e}"):
                return Outcome.SKIPPED_ALREADY_PROCESSED
            return Outcome.QUARANTINED

        logger.info("%s: %s -> %s (taken %s)", Outcome.MERGED.value, media_path,
                    target, taken.isoformat())
        return Outcome.MERGED

    def _write_tagged_copy(self, media_path: Path, target: Path, taken) -> None:
        """Tag a copy beside `target` and rename it into place once saved."""
        target.parent.mkdir(parents=True, exist_ok=True)
        partial = partial_path_for(target)
        try:
            shutil.copy2(media_path, partial)
            tagged = self.writer.open_for_tagging(partial)
            self.writer.set_capture_time(tagged, taken)
            self.writer.save(tagged)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        os.replace(partial, target)

    # ------------------------------------------------------------------
    # Fault segregation
    # ------------------------------------------------------------------

    def quarantine(self, media_path, reason: str = "") -> bool:
        """Copy the untouched media file and its sidecar into the bad tree."""
        media_path = Path(media_path)
        target = self.bad_path(media_path)
        if target.exists():
            logger.debug("%s: %s already in bad folder",
                         Outcome.SKIPPED_ALREADY_PROCESSED.value, media_path)
            return False

        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(media_path, target)
        sidecar = sidecar_path_for(media_path)
        shutil.copy2(sidecar, sidecar_path_for(target))
        logger.warning("%s: %s -> %s (%s)", Outcome.QUARANTINED.value, media_path,
                       target, reason or "metadata write failed")
        return True
