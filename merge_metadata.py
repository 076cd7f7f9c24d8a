#!/usr/bin/env python3
"""
Merge Google Takeout sidecar capture times into media files.

    python merge_metadata.py --folder "/photos/Takeout/Google Photos"

writes tagged copies to "/photos/Takeout/Google Photos_merged", untaggable
files (plus their .json) to "..._bad", and appends a run log to
"..._merged/log.txt". Safe to rerun: finished files are skipped.
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from folder_merger import FolderMerger, Outcome

LOG_FILE_NAME = "log.txt"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Write Google Takeout photoTakenTime into a mirrored copy of a media folder")
    p.add_argument("--folder", "-f", required=True,
                   help="Set folder to scan files recursively.")
    p.add_argument("--verbose", "-v", action="store_true",
                   help="Show debug output on the console (log.txt always has it)")
    p.add_argument("--no-progress", action="store_true",
                   help="Hide the progress bar")
    return p


def console_level(verbose: bool) -> int:
    return logging.DEBUG if verbose else logging.INFO


def configure_logging(log_path: Path, verbose: bool = False) -> None:
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    console = logging.StreamHandler()
    console.setLevel(console_level(verbose))
    logging.basicConfig(
        level=logging.DEBUG,
        format=LOG_FORMAT,
        handlers=[file_handler, console],
        force=True,
    )


def set_console_level(level: int) -> None:
    # logging_redirect_tqdm swaps in its own console handler without our level
    for handler in logging.getLogger().handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)

# ---------------------------------------------------------------------------

def log_summary(counts) -> None:
    logger.info("--- Summary ---")
    for outcome in Outcome:
        logger.info("  %-30s %d", outcome.value, counts.get(outcome, 0))
    logger.info("  %-30s %d", "total", sum(counts.values()))


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.folder.strip():
        parser.error("--folder must not be empty")
    folder = Path(args.folder).expanduser()
    if not folder.is_dir():
        parser.error(f"Folder not found '{folder}'")

    merger = FolderMerger(folder)
    merger.merged_root.mkdir(parents=True, exist_ok=True)
    configure_logging(merger.merged_root / LOG_FILE_NAME, verbose=args.verbose)

    logger.info("Begin processing: %s", datetime.now())
    logger.info("Input: %s", merger.input_root)
    logger.info("Merged output: %s", merger.merged_root)
    logger.info("Bad output: %s", merger.bad_root)

    with logging_redirect_tqdm(), tqdm(desc="Merging", unit="file",
                                       disable=True if args.no_progress else None) as bar:
        set_console_level(console_level(args.verbose))
        counts = merger.run(progress=bar.update)

    log_summary(counts)
    logger.info("Finished processing: %s", datetime.now())
    return 0

# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())

# **Usage (1 sentence)**
# Run `python merge_metadata.py -f <takeout folder> [-v]` to copy every media file that has a
# `<name>.json` sidecar into `<folder>_merged` with its EXIF capture time set from
# `photoTakenTime.timestamp`, parking anything that can't be tagged in `<folder>_bad`.
