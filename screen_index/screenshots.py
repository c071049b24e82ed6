"""Screenshot discovery in a capture directory.

Captures are named YYYYMMDD_HHMMSSmmm.<ext> in local time, e.g.
20240115_093012345.jpg. Anything else in the directory is ignored.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import config as cfg

_NAME_RE = re.compile(r"^(\d{8})_(\d{6})(\d{3})$")


@dataclass
class Screenshot:
    path: Path
    filename: str
    timestamp: int  # epoch ms
    date: str  # YYYY-MM-DD
    time: str  # HH:MM:SS


def parse_screenshot(path: Path) -> Screenshot | None:
    path = Path(path)
    if path.suffix.lower() not in cfg.SCREENSHOT_EXTENSIONS:
        return None
    m = _NAME_RE.match(path.stem)
    if not m:
        return None
    try:
        dt = datetime.strptime(m.group(1) + m.group(2), "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return Screenshot(
        path=path,
        filename=path.name,
        timestamp=int(dt.timestamp()) * 1000 + int(m.group(3)),
        date=dt.strftime("%Y-%m-%d"),
        time=dt.strftime("%H:%M:%S"),
    )


def list_screenshots(directory: Path) -> list[Screenshot]:
    """All parseable screenshots in directory, oldest first."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    shots = [s for p in directory.iterdir() if p.is_file() and (s := parse_screenshot(p))]
    shots.sort(key=lambda s: (s.timestamp, s.filename))
    return shots


def screenshots_after(directory: Path, timestamp: int | None) -> list[Screenshot]:
    shots = list_screenshots(directory)
    if timestamp is None:
        return shots
    return [s for s in shots if s.timestamp > timestamp]
