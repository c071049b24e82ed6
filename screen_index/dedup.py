"""Persistent perceptual-hash index used to skip near-duplicate screenshots."""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable

import config as cfg
from phash import HashComputationError, compute_hash, hamming_distance, similarity_threshold

logger = logging.getLogger(__name__)


@dataclass
class PhashEntry:
    filename: str
    hash: str
    timestamp: int


@dataclass
class DedupResult:
    is_duplicate: bool
    hash: str
    similar_to: str | None = None


class DedupIndex:
    def __init__(
        self,
        data_dir: Path | None = None,
        max_entries: int | None = None,
        recent_window: int | None = None,
        hash_size: int | None = None,
        hash_fn: Callable[[Path], str] | None = None,
    ):
        self._data_dir = data_dir or cfg.DATA_DIR
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._path = self._data_dir / cfg.PHASH_FILE
        self._max_entries = max_entries if max_entries is not None else cfg.DEDUP_MAX_ENTRIES
        self._recent_window = recent_window if recent_window is not None else cfg.DEDUP_RECENT_WINDOW
        self._hash_size = hash_size or cfg.HASH_SIZE
        self._hash_fn = hash_fn or (lambda path: compute_hash(path, self._hash_size))

        self._entries: list[PhashEntry] = self._load()
        self._by_filename: dict[str, PhashEntry] = {e.filename: e for e in self._entries}

    # -- persistence --

    def _load(self) -> list[PhashEntry]:
        if not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text())
            if data.get("version") != cfg.PHASH_VERSION or data.get("hash_size") != self._hash_size:
                logger.warning(
                    "Dedup index %s has version %s / hash size %s, starting empty",
                    self._path, data.get("version"), data.get("hash_size"),
                )
                return []
            return [PhashEntry(**e) for e in data.get("entries", [])]
        except (json.JSONDecodeError, OSError, TypeError, AttributeError):
            logger.warning("Corrupt dedup index %s, starting empty", self._path)
            return []

    def _save(self) -> None:
        data = {
            "version": cfg.PHASH_VERSION,
            "hash_size": self._hash_size,
            "entries": [asdict(e) for e in self._entries],
        }
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self._path)

    # -- lookups --

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[PhashEntry]:
        return list(self._entries)

    def has_hash(self, filename: str) -> bool:
        return filename in self._by_filename

    def get_hash(self, filename: str) -> str | None:
        entry = self._by_filename.get(filename)
        return entry.hash if entry else None

    def find_similar(self, hash_hex: str, exclude_filename: str | None = None) -> list[PhashEntry]:
        """Every stored entry within the similarity threshold of hash_hex."""
        threshold = similarity_threshold(hash_hex)
        return [
            e for e in self._entries
            if e.filename != exclude_filename and hamming_distance(hash_hex, e.hash) <= threshold
        ]

    # -- mutation --

    def _append(self, entry: PhashEntry) -> None:
        self._entries.append(entry)
        self._by_filename[entry.filename] = entry
        while len(self._entries) > self._max_entries:
            evicted = self._entries.pop(0)
            self._by_filename.pop(evicted.filename, None)

    def check_and_add(self, image_path: Path, filename: str, timestamp: int) -> DedupResult:
        """Classify a new screenshot against recent ones and record its hash.

        Already-known filenames short-circuit as non-duplicates. A screenshot
        that cannot be hashed is let through without dedup protection.
        Duplicates are still recorded so later captures compare against them.
        """
        known = self.get_hash(filename)
        if known is not None:
            return DedupResult(is_duplicate=False, hash=known)

        try:
            hash_hex = self._hash_fn(image_path)
        except HashComputationError as e:
            logger.warning("Could not compute hash for %s: %s", filename, e)
            return DedupResult(is_duplicate=False, hash="")

        threshold = similarity_threshold(hash_hex)
        similar_to = None
        window = self._entries[max(0, len(self._entries) - self._recent_window):]
        for recent in window:
            if hamming_distance(hash_hex, recent.hash) <= threshold:
                similar_to = recent.filename
                break

        prior_entries, prior_by_filename = list(self._entries), dict(self._by_filename)
        self._append(PhashEntry(filename=filename, hash=hash_hex, timestamp=timestamp))
        try:
            self._save()
        except OSError:
            self._entries, self._by_filename = prior_entries, prior_by_filename
            raise

        if similar_to is not None:
            logger.debug("%s is a near-duplicate of %s", filename, similar_to)
            return DedupResult(is_duplicate=True, hash=hash_hex, similar_to=similar_to)
        return DedupResult(is_duplicate=False, hash=hash_hex)

    def stats(self) -> dict:
        return {
            "total_hashes": len(self._entries),
            "index_size_bytes": self._path.stat().st_size if self._path.exists() else 0,
        }
