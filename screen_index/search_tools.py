"""Search tools over a SearchIndex, rendered as text for an agent.

Every tool returns a ToolResult carrying the match count and the rendered text.
"""

import re
from dataclasses import dataclass

import config as cfg
from entries import ActivityEntry
from search_index import SearchIndex

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class ToolResult:
    count: int
    text: str


def validate_date(value: str) -> str:
    value = value.strip()
    if not _DATE_RE.match(value):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD")
    return value


def format_entry(i: int, e: ActivityEntry) -> str:
    parts = [
        f"[{i}] {e.date} {e.time} - {e.app_name or 'Unknown'}",
        f"Screenshot: {e.filename}",
        f"Activity: {e.activity}",
    ]
    if e.browser and e.browser.url:
        parts.append(f"URL: {e.browser.url}")
    if e.browser and e.browser.page_title:
        parts.append(f"Page: {e.browser.page_title}")
    if e.video and e.video.title:
        parts.append(f"Video: {e.video.title} by {e.video.channel or 'unknown'}")
    if e.ide and (e.ide.file_path or e.ide.current_file):
        parts.append(f"File: {e.ide.file_path or e.ide.current_file}")
    if e.ide and e.ide.project_name:
        parts.append(f"Project: {e.ide.project_name}")
    if e.terminal and e.terminal.last_command:
        parts.append(f"Command: {e.terminal.last_command}")
    if e.summary:
        parts.append(f"Summary: {e.summary[:cfg.SUMMARY_PREVIEW_CHARS]}...")
    parts.append(f"Tags: {', '.join(e.tags)}")
    return "\n  ".join(parts)


def format_entries(entries: list[ActivityEntry], max_entries: int = cfg.MAX_RENDERED_ENTRIES) -> str:
    if not entries:
        return "No entries found."
    text = "\n\n".join(format_entry(i, e) for i, e in enumerate(entries[:max_entries]))
    if len(entries) > max_entries:
        text += f"\n\n... and {len(entries) - max_entries} more entries"
    return text


def _result(entries: list[ActivityEntry]) -> ToolResult:
    return ToolResult(count=len(entries), text=format_entries(entries))


def search_fulltext(index: SearchIndex, query: str, limit: int | None = None) -> ToolResult:
    return _result(index.search_weighted(query, limit or cfg.TOOL_SEARCH_LIMIT))


def search_by_date(index: SearchIndex, date: str) -> ToolResult:
    return _result(index.get_by_date(validate_date(date)))


def search_by_date_range(index: SearchIndex, start_date: str, end_date: str) -> ToolResult:
    return _result(index.get_by_date_range(validate_date(start_date), validate_date(end_date)))


def search_by_app(index: SearchIndex, app_name: str) -> ToolResult:
    return _result(index.get_by_app(app_name))


def _keyword_text(e: ActivityEntry) -> str:
    fields = [
        e.activity,
        e.summary,
        e.browser.url if e.browser else None,
        e.browser.page_title if e.browser else None,
        e.video.title if e.video else None,
        e.ide.current_file if e.ide else None,
        e.terminal.last_command if e.terminal else None,
        " ".join(e.tags),
    ]
    return " ".join(f for f in fields if f).lower()


def search_combined(
    index: SearchIndex,
    start_date: str | None = None,
    end_date: str | None = None,
    keywords: str | None = None,
    app_name: str | None = None,
) -> ToolResult:
    """Date range and/or keywords, optionally narrowed to one app.

    With a date range the keywords filter the range by substring; without
    one the keywords drive a weighted full-text search.
    """
    has_range = bool(start_date and end_date)
    if has_range:
        results = index.get_by_date_range(validate_date(start_date), validate_date(end_date))
    elif keywords:
        results = index.search_weighted(keywords, cfg.COMBINED_SEARCH_LIMIT)
    elif app_name:
        needle = app_name.lower()
        results = [e for app in index.get_apps() if needle in app.lower() for e in index.get_by_app(app)]
        results.sort(key=lambda e: e.timestamp, reverse=True)
    else:
        results = []

    if app_name and results:
        needle = app_name.lower()
        results = [e for e in results if needle in e.app_name.lower()]

    if has_range and keywords and results:
        words = keywords.lower().split()
        results = [e for e in results if any(w in _keyword_text(e) for w in words)]

    return _result(results)


def list_apps(index: SearchIndex) -> ToolResult:
    apps = index.get_apps()
    return ToolResult(count=len(apps), text="\n".join(apps) if apps else "No apps indexed yet.")


def list_dates(index: SearchIndex) -> ToolResult:
    dates = index.get_dates()
    return ToolResult(count=len(dates), text="\n".join(dates) if dates else "No dates indexed yet.")


def get_index_stats(index: SearchIndex) -> ToolResult:
    stats = index.get_stats()
    text = (
        f"Indexed entries: {stats['entries']}\n"
        f"Unique apps: {stats['apps']}\n"
        f"Unique dates: {stats['dates']}\n"
        f"Database size: {stats['db_size_bytes'] / 1024:.1f} KB"
    )
    return ToolResult(count=stats["entries"], text=text)
