"""
Google Takeout sidecar handling.

Every media file exported by Takeout may have a companion `<name>.json`
next to it. The only field read here is `photoTakenTime.timestamp`, a
string of Unix epoch seconds, e.g.

    {"photoTakenTime": {"timestamp": "1577836800", "formatted": "..."}}
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

SIDECAR_SUFFIX = ".json"

# Takeout timestamps are seconds, not milliseconds
EPOCH = datetime(1970, 1, 1)


def is_sidecar(path: Path) -> bool:
    return path.name.endswith(SIDECAR_SUFFIX)


def sidecar_path_for(media_path: Path) -> Path:
    """IMG_0001.jpg -> IMG_0001.jpg.json, in the same folder."""
    media_path = Path(media_path)
    return media_path.with_name(media_path.name + SIDECAR_SUFFIX)


def parse_timestamp(value) -> Optional[int]:
    # bool is an int subclass; JSON true/false is never a timestamp
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return None
    try:
        return int(value.strip(), 10)
    except ValueError:
        return None


def read_taken_timestamp(json_path: Path) -> Optional[int]:
    """Return photoTakenTime.timestamp as int seconds, or None if unusable."""
    with Path(json_path).open("r", encoding="utf-8") as f:
        try:
            meta = json.load(f)
        except ValueError:
            return None

    if not isinstance(meta, dict):
        return None
    taken = meta.get("photoTakenTime")
    if not isinstance(taken, dict):
        return None
    return parse_timestamp(taken.get("timestamp"))


def taken_time_from_timestamp(seconds: int) -> datetime:
    """
    Epoch seconds -> naive calendar datetime, no timezone adjustment.

    Raises OverflowError when the result falls outside datetime's range.
    """
    return EPOCH + timedelta(seconds=seconds)
