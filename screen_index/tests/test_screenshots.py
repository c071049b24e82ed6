import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from screenshots import list_screenshots, parse_screenshot, screenshots_after


def test_parse_screenshot():
    shot = parse_screenshot(Path("/tmp/shots/20240115_093012345.jpg"))
    assert shot.filename == "20240115_093012345.jpg"
    assert shot.date == "2024-01-15"
    assert shot.time == "09:30:12"
    expected = int(datetime(2024, 1, 15, 9, 30, 12).timestamp()) * 1000 + 345
    assert shot.timestamp == expected


def test_parse_rejects_other_names():
    assert parse_screenshot(Path("notes.txt")) is None
    assert parse_screenshot(Path("screenshot.jpg")) is None
    assert parse_screenshot(Path("20241399_093012345.jpg")) is None
    assert parse_screenshot(Path("20240115_093012345.gif")) is None


def test_list_sorted_and_filtered(tmp_path: Path):
    for name in ("20240115_093012345.jpg", "20240114_120000000.png", "readme.md", "20240116_000000001.jpeg"):
        (tmp_path / name).write_bytes(b"x")
    (tmp_path / "20240117_000000000.jpg").mkdir()

    shots = list_screenshots(tmp_path)
    assert [s.filename for s in shots] == [
        "20240114_120000000.png",
        "20240115_093012345.jpg",
        "20240116_000000001.jpeg",
    ]


def test_screenshots_after(tmp_path: Path):
    for name in ("20240114_120000000.jpg", "20240115_093012345.jpg"):
        (tmp_path / name).write_bytes(b"x")
    first = list_screenshots(tmp_path)[0]

    assert [s.filename for s in screenshots_after(tmp_path, first.timestamp)] == ["20240115_093012345.jpg"]
    assert len(screenshots_after(tmp_path, None)) == 2


def test_missing_directory(tmp_path: Path):
    assert list_screenshots(tmp_path / "nope") == []
