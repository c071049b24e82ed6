import logging

from mcp.server.fastmcp import FastMCP

import search_tools
from config import DATA_DIR
from coordinator import IngestionCoordinator
from extractor import OpenAIExtractor
from search_tools import ToolResult

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

mcp = FastMCP("screen-index")

_coordinator: IngestionCoordinator | None = None


def get_coordinator() -> IngestionCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = IngestionCoordinator(OpenAIExtractor(), DATA_DIR)
    return _coordinator


def _render(result: ToolResult, noun: str = "entries") -> str:
    return f"{result.count} {noun}\n\n{result.text}"


# -- Search tools --


@mcp.tool()
def search_fulltext(query: str, limit: int = 30) -> str:
    """Fast full-text search across all indexed activities.

    Searches activity descriptions, summaries, URLs, page titles, video
    titles, file paths, commands and tags. Results are ranked with the
    descriptive fields weighted highest.

    Args:
        query: Search keywords (e.g. "typescript sandbox", "github PR").
        limit: Max results to return (default 30).
    """
    index = get_coordinator().search_index
    return _render(search_tools.search_fulltext(index, query, limit))


@mcp.tool()
def search_by_date(date: str) -> str:
    """Get all activities for a specific date, oldest first.

    Args:
        date: Date in YYYY-MM-DD format.
    """
    try:
        result = search_tools.search_by_date(get_coordinator().search_index, date)
    except ValueError as e:
        return str(e)
    return _render(result)


@mcp.tool()
def search_by_date_range(start_date: str, end_date: str) -> str:
    """Get all activities within a date range (both ends inclusive).

    Use for time periods like "last week" or "in January".

    Args:
        start_date: Start date (YYYY-MM-DD).
        end_date: End date (YYYY-MM-DD).
    """
    try:
        result = search_tools.search_by_date_range(get_coordinator().search_index, start_date, end_date)
    except ValueError as e:
        return str(e)
    return _render(result)


@mcp.tool()
def search_by_app(app_name: str) -> str:
    """Get all activities for one application, most recent first.

    Args:
        app_name: Exact application name (see list_apps), e.g. "Chrome".
    """
    return _render(search_tools.search_by_app(get_coordinator().search_index, app_name))


@mcp.tool()
def search_combined(
    start_date: str = "", end_date: str = "", keywords: str = "", app_name: str = "",
) -> str:
    """Combine a date range with keywords and/or an app filter.

    Example: "last month's articles about typescript" becomes a date range
    plus keywords "typescript article".

    Args:
        start_date: Optional start date (YYYY-MM-DD).
        end_date: Optional end date (YYYY-MM-DD).
        keywords: Optional search keywords.
        app_name: Optional app name filter (substring, case-insensitive).
    """
    try:
        result = search_tools.search_combined(
            get_coordinator().search_index,
            start_date=start_date.strip() or None,
            end_date=end_date.strip() or None,
            keywords=keywords.strip() or None,
            app_name=app_name.strip() or None,
        )
    except ValueError as e:
        return str(e)
    return _render(result)


@mcp.tool()
def list_apps() -> str:
    """List all applications that have been indexed."""
    return _render(search_tools.list_apps(get_coordinator().search_index), "apps")


@mcp.tool()
def list_dates() -> str:
    """List all dates that have indexed activities, newest first."""
    return _render(search_tools.list_dates(get_coordinator().search_index), "dates")


@mcp.tool()
def get_index_stats() -> str:
    """Statistics about the search index: entries, apps, dates, size."""
    return search_tools.get_index_stats(get_coordinator().search_index).text


# -- Ingestion --


@mcp.tool()
def process_screenshots(limit: int = 0) -> str:
    """Index screenshots captured since the last processed one.

    Near-duplicates of recent screenshots are skipped without calling the model.

    Args:
        limit: Max screenshots to process this call (0 = all pending).
    """
    result = get_coordinator().process_pending(limit=limit or None)
    if result.total == 0:
        return "No new screenshots."
    lines = [
        f"Processed {result.total} screenshots: {result.indexed} indexed, "
        f"{result.skipped} duplicates skipped, {result.failed} failed."
    ]
    for filename, error in result.failures:
        lines.append(f"  {filename}: {error}")
    return "\n".join(lines)


@mcp.tool()
def get_status() -> str:
    """Indexing status: entries, last processed screenshot, running summary."""
    s = get_coordinator().status()
    return (
        f"Indexed entries: {s['entries']}\n"
        f"Unique apps: {s['apps']}\n"
        f"Unique dates: {s['dates']}\n"
        f"Database size: {s['db_size_bytes'] / 1024:.1f} KB\n"
        f"Dedup hashes: {s['dedup_hashes']}\n"
        f"Last processed: {s['last_processed'] or 'none'}\n"
        f"Recent summary: {s['recent_summary'] or 'none yet'}"
    )


# -- Learned rules --


@mcp.tool()
def update_rules(feedback: str) -> str:
    """Teach the indexer with natural-language feedback.

    The feedback becomes an indexing, search or exclude rule that applies to
    screenshots processed from now on.

    Args:
        feedback: E.g. "For Obsidian, extract the vault name" or
            "don't index system notifications".
    """
    result = get_coordinator().process_feedback(feedback)
    return result.message


@mcp.tool()
def show_rules() -> str:
    """Show the current learned rules by category."""
    return get_coordinator().show_rules()


@mcp.tool()
def show_rule_history() -> str:
    """Show the rule change history, newest first."""
    return get_coordinator().show_history()


@mcp.tool()
def undo_rule_change() -> str:
    """Undo the most recent rule change."""
    return get_coordinator().undo_last_change().message


if __name__ == "__main__":
    mcp.run(transport="stdio")
