import os
from pathlib import Path

DATA_DIR = Path(
    os.environ.get("SCREEN_INDEX_DATA_DIR", Path.home() / ".config" / "screen-index")
).resolve()

SCREENSHOTS_DIR = Path(
    os.environ.get("SCREEN_INDEX_SCREENSHOTS_DIR", DATA_DIR / "screenshots")
).resolve()

PHASH_FILE = "phash-index.json"
SEARCH_DB_FILE = "activity-index.db"
RULES_FILE = "learned-rules.json"
RULES_HISTORY_FILE = "learned-rules-history.json"
CONTEXT_FILE = "activity-context.json"

SCREENSHOT_EXTENSIONS = {".jpg", ".jpeg", ".png"}

# -- perceptual hash --

HASH_SIZE = 16  # 16x16 blocks -> 256 bits -> 64 hex chars
HASH_BANDS = 4
# 25 of 256 bits. Scaled to whatever bit length the hash actually has.
HAMMING_THRESHOLD_FRACTION = 25 / 256

# -- dedup index --

PHASH_VERSION = 1
DEDUP_RECENT_WINDOW = 100
DEDUP_MAX_ENTRIES = 10000

# -- coordinator --

CONTEXT_WINDOW = 5
CONTEXT_MAX_ENTRIES = 100
SUMMARY_INTERVAL = 10
SUMMARY_WINDOW = 20
PROFILE_INTERVAL = 100  # 0 disables

# -- search index --

SCHEMA_VERSION = 1
BUSY_TIMEOUT_MS = 10000

DEFAULT_SEARCH_LIMIT = 50
TOOL_SEARCH_LIMIT = 30
COMBINED_SEARCH_LIMIT = 100
MAX_RENDERED_ENTRIES = 20
SUMMARY_PREVIEW_CHARS = 150

# bm25 weight per FTS column, in column order. Descriptive text outranks
# titles and URLs, which outrank paths and commands, which outrank filenames.
FTS_WEIGHTS = {
    "filename": 0.0,
    "app_name": 2.0,
    "window_title": 2.0,
    "url": 3.0,
    "domain": 2.0,
    "page_title": 3.0,
    "video_title": 3.0,
    "video_channel": 2.0,
    "current_file": 1.0,
    "file_path": 1.0,
    "project_name": 2.0,
    "last_command": 1.0,
    "ssh_host": 1.0,
    "communication_channel": 1.0,
    "communication_recipient": 1.0,
    "document_title": 2.0,
    "activity": 5.0,
    "summary": 4.0,
    "details": 2.0,
    "tags": 1.0,
}

# -- extractor --

EXTRACTION_MODEL = os.environ.get("SCREEN_INDEX_MODEL", "gpt-4o-mini")
EXTRACTION_MAX_TOKENS = 1500
