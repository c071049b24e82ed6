import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import config as cfg
from dedup import DedupIndex
from phash import HashComputationError

ZERO = "0" * 64


def _flip(bits: int) -> str:
    """A 256-bit hash with the lowest `bits` bits set."""
    return format((1 << bits) - 1, "064x")


def _make_index(tmp_path: Path, hashes: dict[str, str], **kwargs) -> DedupIndex:
    def fake_hash(path):
        name = Path(path).name
        if name not in hashes:
            raise HashComputationError(f"cannot read {name}")
        return hashes[name]

    return DedupIndex(tmp_path, hash_fn=fake_hash, **kwargs)


def test_near_duplicate_detected(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": ZERO, "b.jpg": _flip(1)})

    first = index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1000)
    second = index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2000)

    assert not first.is_duplicate
    assert second.is_duplicate
    assert second.similar_to == "a.jpg"
    # duplicates are still recorded
    assert index.has_hash("b.jpg")


def test_threshold_boundary(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": ZERO, "b.jpg": _flip(25), "c.jpg": _flip(200)})

    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    assert index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2).is_duplicate

    index2 = _make_index(tmp_path / "other", {"a.jpg": ZERO, "c.jpg": _flip(200)})
    index2.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    assert not index2.check_and_add(tmp_path / "c.jpg", "c.jpg", 2).is_duplicate


def test_just_over_threshold_is_not_duplicate(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": ZERO, "b.jpg": _flip(26)})
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    assert not index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2).is_duplicate


def test_known_filename_short_circuits(tmp_path: Path):
    calls = []

    def fake_hash(path):
        calls.append(path)
        return ZERO

    index = DedupIndex(tmp_path, hash_fn=fake_hash)
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    again = index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)

    assert not again.is_duplicate
    assert again.hash == ZERO
    assert len(calls) == 1
    assert len(index) == 1


def test_hash_failure_fails_open(tmp_path: Path):
    index = _make_index(tmp_path, {})
    result = index.check_and_add(tmp_path / "x.jpg", "x.jpg", 1)

    assert not result.is_duplicate
    assert result.hash == ""
    assert len(index) == 0


def test_only_recent_window_is_compared(tmp_path: Path):
    hashes = {"old.jpg": ZERO, "new.jpg": _flip(1)}
    far = ["f" * 64, "0f" * 32, "f0" * 32]
    for i, h in enumerate(far):
        hashes[f"mid{i}.jpg"] = h
    index = _make_index(tmp_path, hashes, recent_window=3)

    index.check_and_add(tmp_path / "old.jpg", "old.jpg", 1)
    for i in range(3):
        index.check_and_add(tmp_path / f"mid{i}.jpg", f"mid{i}.jpg", 10 + i)

    # old.jpg has fallen out of the 3-entry window
    result = index.check_and_add(tmp_path / "new.jpg", "new.jpg", 100)
    assert not result.is_duplicate
    assert [e.filename for e in index.find_similar(_flip(1), exclude_filename="new.jpg")] == ["old.jpg"]


def test_fifo_cap_evicts_oldest(tmp_path: Path):
    distinct = [ZERO, "f" * 64, "0f" * 32, "f0" * 32]
    hashes = {f"{i}.jpg": h for i, h in enumerate(distinct)}
    index = _make_index(tmp_path, hashes, max_entries=3)

    for i in range(4):
        index.check_and_add(tmp_path / f"{i}.jpg", f"{i}.jpg", i)

    assert len(index) == 3
    assert not index.has_hash("0.jpg")
    assert [e.filename for e in index.entries] == ["1.jpg", "2.jpg", "3.jpg"]


def test_persists_and_reloads(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": ZERO})
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 42)

    reloaded = DedupIndex(tmp_path)
    assert reloaded.get_hash("a.jpg") == ZERO
    assert reloaded.entries[0].timestamp == 42

    data = json.loads((tmp_path / cfg.PHASH_FILE).read_text())
    assert data["version"] == cfg.PHASH_VERSION
    assert data["hash_size"] == cfg.HASH_SIZE


def test_version_mismatch_starts_empty(tmp_path: Path):
    doc = {"version": 999, "hash_size": cfg.HASH_SIZE, "entries": [{"filename": "a.jpg", "hash": ZERO, "timestamp": 1}]}
    (tmp_path / cfg.PHASH_FILE).write_text(json.dumps(doc))
    assert len(DedupIndex(tmp_path)) == 0


def test_hash_size_mismatch_starts_empty(tmp_path: Path):
    doc = {"version": cfg.PHASH_VERSION, "hash_size": 8, "entries": [{"filename": "a.jpg", "hash": "0" * 16, "timestamp": 1}]}
    (tmp_path / cfg.PHASH_FILE).write_text(json.dumps(doc))
    assert len(DedupIndex(tmp_path)) == 0


def test_corrupt_file_starts_empty(tmp_path: Path):
    (tmp_path / cfg.PHASH_FILE).write_text("{not json")
    index = DedupIndex(tmp_path)
    assert len(index) == 0
    assert index.get_hash("a.jpg") is None


def test_mismatched_width_never_similar(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": "0" * 16, "b.jpg": ZERO})
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    assert not index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2).is_duplicate


def test_stats(tmp_path: Path):
    index = _make_index(tmp_path, {"a.jpg": ZERO})
    assert index.stats() == {"total_hashes": 0, "index_size_bytes": 0}

    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)
    stats = index.stats()
    assert stats["total_hashes"] == 1
    assert stats["index_size_bytes"] > 0


def test_failed_save_leaves_index_unchanged(tmp_path: Path, monkeypatch):
    index = _make_index(tmp_path, {"a.jpg": ZERO, "b.jpg": "f" * 64})
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)

    def fail():
        raise OSError("disk full")

    monkeypatch.setattr(index, "_save", fail)
    with pytest.raises(OSError):
        index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2)

    assert not index.has_hash("b.jpg")
    assert [e.filename for e in index.entries] == ["a.jpg"]
    assert not DedupIndex(tmp_path).has_hash("b.jpg")

    monkeypatch.undo()
    retry = index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2)
    assert retry.hash == "f" * 64
    assert index.has_hash("b.jpg")


def test_failed_save_restores_evicted_entry(tmp_path: Path, monkeypatch):
    index = _make_index(tmp_path, {"a.jpg": ZERO, "b.jpg": "f" * 64}, max_entries=1)
    index.check_and_add(tmp_path / "a.jpg", "a.jpg", 1)

    def fail():
        raise OSError("disk full")

    monkeypatch.setattr(index, "_save", fail)
    with pytest.raises(OSError):
        index.check_and_add(tmp_path / "b.jpg", "b.jpg", 2)

    assert index.get_hash("a.jpg") == ZERO
    assert len(index) == 1
