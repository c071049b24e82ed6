"""SQLite + FTS5 store for activity entries.

Each entry is kept twice in the `entries` table: typed columns for filtering
and sorting, and the full record as a JSON blob for reconstruction. The
`entries_fts` table is an external-content FTS5 index over the text columns,
kept in sync by triggers so every write to `entries` reaches the search view
inside the same transaction.
"""

import json
import logging
import re
import sqlite3
import time
from pathlib import Path

import config as cfg
from entries import ActivityEntry

logger = logging.getLogger(__name__)


class IndexWriteError(Exception):
    """A write to the search database failed and was rolled back."""


FTS_COLUMNS = (
    "filename",
    "app_name",
    "window_title",
    "url",
    "domain",
    "page_title",
    "video_title",
    "video_channel",
    "current_file",
    "file_path",
    "project_name",
    "last_command",
    "ssh_host",
    "communication_channel",
    "communication_recipient",
    "document_title",
    "activity",
    "summary",
    "details",
    "tags",
)

ENTRY_COLUMNS = (
    "filename",
    "timestamp",
    "date",
    "time",
    "app_name",
    "app_category",
    "window_title",
    "url",
    "domain",
    "page_title",
    "page_type",
    "video_platform",
    "video_title",
    "video_channel",
    "ide_name",
    "current_file",
    "file_path",
    "language",
    "project_name",
    "git_branch",
    "terminal_cwd",
    "last_command",
    "ssh_host",
    "communication_app",
    "communication_channel",
    "communication_recipient",
    "document_app",
    "document_title",
    "activity",
    "summary",
    "details",
    "tags",
    "is_continuation",
    "raw_json",
)

_INTEGER_COLUMNS = {"timestamp", "is_continuation"}
_NOT_NULL_COLUMNS = {"timestamp", "date", "time"}


def _column_def(name: str) -> str:
    if name == "filename":
        return "filename TEXT PRIMARY KEY"
    kind = "INTEGER" if name in _INTEGER_COLUMNS else "TEXT"
    suffix = " NOT NULL" if name in _NOT_NULL_COLUMNS else ""
    return f"{name} {kind}{suffix}"


def _fts_values(prefix: str) -> str:
    return ", ".join(f"{prefix}.{c}" for c in FTS_COLUMNS)


_FTS_COLS = ", ".join(FTS_COLUMNS)

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS entries (
    {", ".join(_column_def(c) for c in ENTRY_COLUMNS)}
);
CREATE INDEX IF NOT EXISTS idx_entries_timestamp ON entries(timestamp);
CREATE INDEX IF NOT EXISTS idx_entries_date ON entries(date);
CREATE INDEX IF NOT EXISTS idx_entries_app ON entries(app_name);

CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
    {_FTS_COLS},
    content='entries',
    content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS entries_ai AFTER INSERT ON entries BEGIN
    INSERT INTO entries_fts(rowid, {_FTS_COLS})
    VALUES (NEW.rowid, {_fts_values("NEW")});
END;

CREATE TRIGGER IF NOT EXISTS entries_ad AFTER DELETE ON entries BEGIN
    INSERT INTO entries_fts(entries_fts, rowid, {_FTS_COLS})
    VALUES ('delete', OLD.rowid, {_fts_values("OLD")});
END;

CREATE TRIGGER IF NOT EXISTS entries_au AFTER UPDATE ON entries BEGIN
    INSERT INTO entries_fts(entries_fts, rowid, {_FTS_COLS})
    VALUES ('delete', OLD.rowid, {_fts_values("OLD")});
    INSERT INTO entries_fts(rowid, {_FTS_COLS})
    VALUES (NEW.rowid, {_fts_values("NEW")});
END;
"""

_DROP = """
DROP TRIGGER IF EXISTS entries_ai;
DROP TRIGGER IF EXISTS entries_ad;
DROP TRIGGER IF EXISTS entries_au;
DROP TABLE IF EXISTS entries_fts;
DROP TABLE IF EXISTS entries;
"""

_UPSERT = (
    f"INSERT INTO entries ({', '.join(ENTRY_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in ENTRY_COLUMNS)}) "
    "ON CONFLICT(filename) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in ENTRY_COLUMNS if c != "filename")
)

_QUOTES_RE = re.compile(r"['\"]")
_WORD_RE = re.compile(r"\w")


def build_match_query(query: str) -> str:
    """Turn free text into an FTS5 expression: every token as a prefix, OR-ed.

    Quote characters are stripped and tokens without any word character are
    dropped. Returns "" when nothing searchable remains.
    """
    tokens = [t for t in _QUOTES_RE.sub("", query).split() if _WORD_RE.search(t)]
    return " OR ".join(f'"{t}"*' for t in tokens)


def _get(group, attr: str):
    return getattr(group, attr) if group is not None else None


def _row(entry: ActivityEntry) -> tuple:
    values = {
        "filename": entry.filename,
        "timestamp": entry.timestamp,
        "date": entry.date,
        "time": entry.time,
        "app_name": _get(entry.app, "name"),
        "app_category": _get(entry.app, "category"),
        "window_title": _get(entry.app, "window_title"),
        "url": _get(entry.browser, "url"),
        "domain": _get(entry.browser, "domain"),
        "page_title": _get(entry.browser, "page_title"),
        "page_type": _get(entry.browser, "page_type"),
        "video_platform": _get(entry.video, "platform"),
        "video_title": _get(entry.video, "title"),
        "video_channel": _get(entry.video, "channel"),
        "ide_name": _get(entry.ide, "name"),
        "current_file": _get(entry.ide, "current_file"),
        "file_path": _get(entry.ide, "file_path"),
        "language": _get(entry.ide, "language"),
        "project_name": _get(entry.ide, "project_name"),
        "git_branch": _get(entry.ide, "git_branch"),
        "terminal_cwd": _get(entry.terminal, "cwd"),
        "last_command": _get(entry.terminal, "last_command"),
        "ssh_host": _get(entry.terminal, "ssh_host"),
        "communication_app": _get(entry.communication, "app"),
        "communication_channel": _get(entry.communication, "channel"),
        "communication_recipient": _get(entry.communication, "recipient"),
        "document_app": _get(entry.document, "app"),
        "document_title": _get(entry.document, "document_title"),
        "activity": entry.activity,
        "summary": entry.summary,
        "details": entry.details,
        "tags": ", ".join(entry.tags),
        "is_continuation": 1 if entry.is_continuation else 0,
        "raw_json": json.dumps(entry.to_dict()),
    }
    return tuple(values[c] for c in ENTRY_COLUMNS)


def _entries(rows) -> list[ActivityEntry]:
    return [ActivityEntry.from_dict(json.loads(r[0])) for r in rows]


class SearchIndex:
    def __init__(self, db_path: Path | None = None):
        self._db_path = db_path or cfg.DATA_DIR / cfg.SEARCH_DB_FILE
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = self._open()
        self._initialize()

    # -- setup --

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={cfg.BUSY_TIMEOUT_MS}")
            conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            conn.close()
            raise
        return conn

    def _open(self) -> sqlite3.Connection:
        try:
            return self._connect()
        except sqlite3.DatabaseError:
            logger.warning("SQLite open failed for %s, removing stale WAL files", self._db_path, exc_info=True)
            for suffix in ("-wal", "-shm"):
                Path(str(self._db_path) + suffix).unlink(missing_ok=True)

        try:
            return self._connect()
        except sqlite3.DatabaseError:
            aside = self._db_path.with_name(f"{self._db_path.name}.corrupt-{int(time.time())}")
            logger.warning("Search database %s is unreadable, moving it to %s", self._db_path, aside)
            if self._db_path.exists():
                self._db_path.replace(aside)
            return self._connect()

    def _initialize(self) -> None:
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version not in (0, cfg.SCHEMA_VERSION):
            logger.warning(
                "Search index schema version %d != %d, starting empty", version, cfg.SCHEMA_VERSION,
            )
            self._conn.executescript(_DROP)
        self._conn.executescript(_SCHEMA)
        self._conn.execute(f"PRAGMA user_version={cfg.SCHEMA_VERSION}")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # -- writes --

    def _write(self, action: str, fn) -> None:
        try:
            with self._conn:
                fn(self._conn)
        except sqlite3.Error as e:
            raise IndexWriteError(f"{action} failed: {e}") from e

    def index_entry(self, entry: ActivityEntry) -> None:
        """Insert or replace the entry keyed by its filename."""
        self._write(f"Indexing {entry.filename}", lambda c: c.execute(_UPSERT, _row(entry)))

    def index_entries(self, entries: list[ActivityEntry]) -> None:
        """Upsert a batch in one transaction: all of it lands or none of it."""
        rows = [_row(e) for e in entries]
        self._write(f"Indexing {len(rows)} entries", lambda c: c.executemany(_UPSERT, rows))

    def delete_entry(self, filename: str) -> None:
        self._write(
            f"Deleting {filename}",
            lambda c: c.execute("DELETE FROM entries WHERE filename = ?", (filename,)),
        )

    def clear(self) -> None:
        self._write("Clearing index", lambda c: c.execute("DELETE FROM entries"))

    def rebuild_index(self) -> None:
        """Recompute the full-text view from the structured records."""
        self._write(
            "Rebuilding full-text index",
            lambda c: c.execute("INSERT INTO entries_fts(entries_fts) VALUES ('rebuild')"),
        )

    def reindex_all(self, entries: list[ActivityEntry]) -> None:
        """Replace the whole index with entries, atomically."""
        rows = [_row(e) for e in entries]

        def _reindex(conn: sqlite3.Connection) -> None:
            conn.execute("DELETE FROM entries")
            conn.executemany(_UPSERT, rows)
            conn.execute("INSERT INTO entries_fts(entries_fts) VALUES ('rebuild')")

        self._write("Reindexing", _reindex)
        logger.info("Reindexed %d entries", len(rows))

    # -- full-text search --

    def _match(self, query: str, rank_expr: str, limit: int) -> list[ActivityEntry]:
        match = build_match_query(query)
        if not match:
            return []
        rows = self._conn.execute(
            f"""SELECT e.raw_json, {rank_expr} AS score
                FROM entries_fts
                JOIN entries e ON e.rowid = entries_fts.rowid
                WHERE entries_fts MATCH ?
                ORDER BY score, e.rowid
                LIMIT ?""",
            (match, limit),
        ).fetchall()
        return _entries(rows)

    def search(self, query: str, limit: int = cfg.DEFAULT_SEARCH_LIMIT) -> list[ActivityEntry]:
        """Prefix-match every query token across all text fields, best bm25 first."""
        return self._match(query, "bm25(entries_fts)", limit)

    def search_weighted(self, query: str, limit: int = cfg.DEFAULT_SEARCH_LIMIT) -> list[ActivityEntry]:
        """Like search(), but each field's contribution is scaled by FTS_WEIGHTS."""
        weights = ", ".join(str(float(cfg.FTS_WEIGHTS.get(c, 1.0))) for c in FTS_COLUMNS)
        return self._match(query, f"bm25(entries_fts, {weights})", limit)

    # -- filters --

    def get_by_date(self, date: str) -> list[ActivityEntry]:
        rows = self._conn.execute(
            "SELECT raw_json FROM entries WHERE date = ? ORDER BY timestamp, rowid", (date,),
        ).fetchall()
        return _entries(rows)

    def get_by_date_range(self, start_date: str, end_date: str) -> list[ActivityEntry]:
        """Entries with start_date <= date <= end_date, oldest first."""
        rows = self._conn.execute(
            "SELECT raw_json FROM entries WHERE date >= ? AND date <= ? ORDER BY timestamp, rowid",
            (start_date, end_date),
        ).fetchall()
        return _entries(rows)

    def get_by_app(self, app_name: str) -> list[ActivityEntry]:
        """Entries for one app, most recent first."""
        rows = self._conn.execute(
            "SELECT raw_json FROM entries WHERE app_name = ? ORDER BY timestamp DESC, rowid DESC",
            (app_name,),
        ).fetchall()
        return _entries(rows)

    def get_entry(self, filename: str) -> ActivityEntry | None:
        row = self._conn.execute(
            "SELECT raw_json FROM entries WHERE filename = ?", (filename,),
        ).fetchone()
        return _entries([row])[0] if row else None

    def has_entry(self, filename: str) -> bool:
        row = self._conn.execute("SELECT 1 FROM entries WHERE filename = ?", (filename,)).fetchone()
        return row is not None

    def get_apps(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT app_name FROM entries WHERE app_name IS NOT NULL ORDER BY app_name"
        ).fetchall()
        return [r[0] for r in rows]

    def get_dates(self) -> list[str]:
        """Distinct dates, newest first."""
        rows = self._conn.execute("SELECT DISTINCT date FROM entries ORDER BY date DESC").fetchall()
        return [r[0] for r in rows]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM entries").fetchone()[0]

    def get_stats(self) -> dict:
        page_count = self._conn.execute("PRAGMA page_count").fetchone()[0]
        page_size = self._conn.execute("PRAGMA page_size").fetchone()[0]
        return {
            "entries": self.count(),
            "apps": len(self.get_apps()),
            "dates": len(self.get_dates()),
            "db_size_bytes": page_count * page_size,
        }
