"""Ingestion coordinator: one screenshot at a time through dedup, extraction
and indexing, plus the rolling context, rollups and rule feedback flows."""

import json
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

import config as cfg
from dedup import DedupIndex
from entries import ActivityEntry
from extractor import ExtractionError, Extractor, FeedbackInterpreter
from rules import FeedbackResult, RulesStore, UndoResult, format_indexing_rules, show_history, show_rules
from screenshots import Screenshot, screenshots_after
from search_index import SearchIndex

logger = logging.getLogger(__name__)


class ScreenshotState(Enum):
    RECEIVED = "received"
    DEDUPED = "deduped"
    EXTRACTED = "extracted"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    INDEXED = "indexed"


@dataclass
class ProcessResult:
    filename: str
    state: ScreenshotState
    entry: ActivityEntry | None = None
    similar_to: str | None = None


@dataclass
class BatchResult:
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.indexed + self.skipped + self.failed


@dataclass
class SyncResult:
    synced: int
    skipped: int


@dataclass
class ActivityContext:
    entries: list[ActivityEntry] = field(default_factory=list)
    last_processed: str | None = None
    last_timestamp: int | None = None
    recent_summary: str = ""
    processed_count: int = 0


class IngestionCoordinator:
    """Owns the stores of one data directory and feeds screenshots through them.

    Screenshots are processed strictly in submission order. Rollups (running
    summary, profile) run on a background thread and never fail ingestion.
    """

    def __init__(
        self,
        extractor: Extractor,
        data_dir: Path | None = None,
        interpreter: FeedbackInterpreter | None = None,
        dedup: DedupIndex | None = None,
        search_index: SearchIndex | None = None,
        rules: RulesStore | None = None,
        profile_updater: Callable[[list[ActivityEntry]], None] | None = None,
        screenshots_dir: Path | None = None,
        context_window: int = cfg.CONTEXT_WINDOW,
        summary_interval: int = cfg.SUMMARY_INTERVAL,
        profile_interval: int = cfg.PROFILE_INTERVAL,
    ):
        self._data_dir = data_dir or cfg.DATA_DIR
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._extractor = extractor
        self._interpreter = interpreter if interpreter is not None else extractor
        self._dedup = dedup if dedup is not None else DedupIndex(self._data_dir)
        self._search_index = (
            search_index if search_index is not None else SearchIndex(self._data_dir / cfg.SEARCH_DB_FILE)
        )
        self._rules = rules if rules is not None else RulesStore(self._data_dir)
        self._profile_updater = profile_updater
        self._screenshots_dir = screenshots_dir or cfg.SCREENSHOTS_DIR
        self._context_window = context_window
        self._summary_interval = summary_interval
        self._profile_interval = profile_interval

        self._context_path = self._data_dir / cfg.CONTEXT_FILE
        self._context_lock = threading.Lock()
        self._context = self._load_context()

        self._rollup_lock = threading.Lock()
        self._rollup_thread: threading.Thread | None = None

    @property
    def search_index(self) -> SearchIndex:
        return self._search_index

    @property
    def dedup(self) -> DedupIndex:
        return self._dedup

    @property
    def context(self) -> ActivityContext:
        return self._context

    # -- context persistence --

    def _load_context(self) -> ActivityContext:
        if not self._context_path.exists():
            return ActivityContext()
        try:
            data = json.loads(self._context_path.read_text())
            return ActivityContext(
                entries=[ActivityEntry.from_dict(e) for e in data.get("entries", [])],
                last_processed=data.get("last_processed"),
                last_timestamp=data.get("last_timestamp"),
                recent_summary=data.get("recent_summary") or "",
                processed_count=int(data.get("processed_count", 0)),
            )
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Corrupt %s, starting with empty context", self._context_path.name)
            return ActivityContext()

    def _save_context(self) -> None:
        ctx = self._context
        data = {
            "entries": [e.to_dict() for e in ctx.entries],
            "last_processed": ctx.last_processed,
            "last_timestamp": ctx.last_timestamp,
            "recent_summary": ctx.recent_summary,
            "processed_count": ctx.processed_count,
        }
        tmp = self._context_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self._context_path)

    def recent_context(self) -> str:
        """Short text of the last few entries, fed to the extractor for continuity."""
        recent = self._context.entries[-self._context_window:] if self._context_window > 0 else []
        if not recent:
            return "No previous activity recorded."

        lines = []
        for e in recent:
            line = f"- [{e.time}] {e.app_name or 'Unknown'}: {e.activity}"
            if e.is_continuation:
                line += " (continuation)"
            if e.browser and e.browser.url:
                line += f"\n    URL: {e.browser.url}"
            if e.video and e.video.title:
                line += f'\n    Video: "{e.video.title}" by {e.video.channel or "unknown"}'
            if e.ide and (e.ide.file_path or e.ide.current_file):
                line += f"\n    File: {e.ide.file_path or e.ide.current_file}"
            if e.terminal and e.terminal.last_command:
                line += f"\n    Command: {e.terminal.last_command}"
            lines.append(line)

        summary = self._context.recent_summary or "Starting new session."
        return (
            f"Recent activity (last {len(recent)} screenshots):\n"
            + "\n".join(lines)
            + f"\n\nRunning summary: {summary}"
        )

    # -- ingestion --

    def process_screenshot(self, screenshot: Screenshot) -> ProcessResult:
        """Dedup, extract and index one screenshot.

        Raises ExtractionError if the extractor fails; nothing is indexed then.
        IndexWriteError from the search index propagates unchanged.
        """
        dedup = self._dedup.check_and_add(screenshot.path, screenshot.filename, screenshot.timestamp)

        if dedup.is_duplicate:
            logger.debug("Skipping %s (similar to %s)", screenshot.filename, dedup.similar_to)
            with self._context_lock:
                self._mark_processed(screenshot)
                self._save_context()
            return ProcessResult(
                screenshot.filename, ScreenshotState.SKIPPED_DUPLICATE, similar_to=dedup.similar_to,
            )

        try:
            image_bytes = Path(screenshot.path).read_bytes()
        except OSError as e:
            raise ExtractionError(f"Cannot read {screenshot.path}: {e}") from e

        rules_prompt = format_indexing_rules(self._rules.load())
        analysis = self._extractor.extract(image_bytes, self.recent_context(), rules_prompt)

        entry = ActivityEntry.from_analysis(
            screenshot.filename, screenshot.timestamp, screenshot.date, screenshot.time, analysis,
        )
        self._search_index.index_entry(entry)

        with self._context_lock:
            self._context.entries.append(entry)
            del self._context.entries[: -cfg.CONTEXT_MAX_ENTRIES]
            self._context.processed_count += 1
            self._mark_processed(screenshot)
            self._save_context()
            count = self._context.processed_count

        self._schedule_rollups(count)
        return ProcessResult(screenshot.filename, ScreenshotState.INDEXED, entry=entry)

    def _mark_processed(self, screenshot: Screenshot) -> None:
        self._context.last_processed = screenshot.filename
        if self._context.last_timestamp is None or screenshot.timestamp > self._context.last_timestamp:
            self._context.last_timestamp = screenshot.timestamp

    def process_batch(self, screenshots: list[Screenshot]) -> BatchResult:
        result = BatchResult()
        for i, shot in enumerate(screenshots, start=1):
            try:
                outcome = self.process_screenshot(shot)
            except ExtractionError as e:
                logger.warning("Extraction failed for %s: %s", shot.filename, e)
                result.failed += 1
                result.failures.append((shot.filename, str(e)))
                continue
            if outcome.state is ScreenshotState.SKIPPED_DUPLICATE:
                result.skipped += 1
            else:
                result.indexed += 1
            if i % 10 == 0:
                logger.info("Processed %d/%d screenshots", i, len(screenshots))

        logger.info(
            "Batch done: %d indexed, %d duplicates skipped, %d failed",
            result.indexed, result.skipped, result.failed,
        )
        return result

    def pending_screenshots(self, directory: Path | None = None) -> list[Screenshot]:
        return screenshots_after(directory or self._screenshots_dir, self._context.last_timestamp)

    def process_pending(self, directory: Path | None = None, limit: int | None = None) -> BatchResult:
        """Process screenshots newer than the last processed one, oldest first."""
        pending = self.pending_screenshots(directory)
        if limit is not None:
            pending = pending[:limit]
        return self.process_batch(pending)

    # -- rollups --

    def _schedule_rollups(self, count: int) -> None:
        want_summary = self._summary_interval > 0 and count % self._summary_interval == 0
        want_profile = (
            self._profile_updater is not None
            and self._profile_interval > 0
            and count % self._profile_interval == 0
        )
        if not (want_summary or want_profile):
            return
        if self._rollup_thread is not None and self._rollup_thread.is_alive():
            logger.debug("Rollup still running, skipping the one due at %d", count)
            return

        summary_entries = list(self._context.entries[-cfg.SUMMARY_WINDOW:]) if want_summary else None
        profile_entries = list(self._context.entries[-cfg.CONTEXT_MAX_ENTRIES:]) if want_profile else None
        self._rollup_thread = threading.Thread(
            target=self._run_rollups,
            args=(summary_entries, profile_entries),
            name="rollup",
            daemon=True,
        )
        self._rollup_thread.start()

    def _run_rollups(self, summary_entries, profile_entries) -> None:
        if not self._rollup_lock.acquire(blocking=False):
            return
        try:
            if summary_entries:
                try:
                    summary = self._extractor.summarize(summary_entries)
                    with self._context_lock:
                        self._context.recent_summary = summary
                        self._save_context()
                    logger.info("Updated running summary")
                except Exception:
                    logger.exception("Summary rollup failed")
            if profile_entries:
                try:
                    self._profile_updater(profile_entries)
                except Exception:
                    logger.exception("Profile rollup failed")
        finally:
            self._rollup_lock.release()

    def wait_for_rollups(self, timeout: float | None = None) -> None:
        if self._rollup_thread is not None:
            self._rollup_thread.join(timeout)

    # -- rules --

    def process_feedback(self, feedback: str) -> FeedbackResult:
        """Interpret free-form feedback and apply the resulting rule edit."""
        try:
            interpretation = self._interpreter.interpret(self._rules.load(), feedback)
        except ExtractionError as e:
            return FeedbackResult(success=False, message=f"Could not interpret feedback: {e}")
        return self._rules.apply_feedback(feedback, interpretation)

    def undo_last_change(self) -> UndoResult:
        return self._rules.undo_last_change()

    def show_rules(self) -> str:
        return show_rules(self._rules.load())

    def show_history(self) -> str:
        return show_history(self._rules.load_history())

    # -- maintenance --

    def sync_to_search_index(self) -> SyncResult:
        """Index context entries the search index is missing."""
        missing = [e for e in self._context.entries if not self._search_index.has_entry(e.filename)]
        if missing:
            self._search_index.index_entries(missing)
            logger.info("Synced %d entries to search index", len(missing))
        return SyncResult(synced=len(missing), skipped=len(self._context.entries) - len(missing))

    def status(self) -> dict:
        stats = self._search_index.get_stats()
        return {
            "entries": stats["entries"],
            "apps": stats["apps"],
            "dates": stats["dates"],
            "db_size_bytes": stats["db_size_bytes"],
            "dedup_hashes": self._dedup.stats()["total_hashes"],
            "processed_count": self._context.processed_count,
            "last_processed": self._context.last_processed,
            "recent_summary": self._context.recent_summary,
        }

    def close(self) -> None:
        self.wait_for_rollups()
        self._search_index.close()
