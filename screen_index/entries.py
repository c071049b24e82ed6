"""Activity entries: the unit stored in the search index.

Optional groups (app, browser, video, ...) are present only when that aspect
of the screen was detected. A group whose fields are all empty is dropped.
"""

from dataclasses import asdict, dataclass, field, fields


@dataclass
class AppInfo:
    name: str | None = None
    window_title: str | None = None
    category: str | None = None


@dataclass
class BrowserInfo:
    url: str | None = None
    domain: str | None = None
    page_title: str | None = None
    page_type: str | None = None


@dataclass
class VideoInfo:
    platform: str | None = None
    title: str | None = None
    channel: str | None = None
    duration: str | None = None


@dataclass
class IdeInfo:
    name: str | None = None
    current_file: str | None = None
    file_path: str | None = None
    language: str | None = None
    project_name: str | None = None
    git_branch: str | None = None


@dataclass
class TerminalInfo:
    cwd: str | None = None
    last_command: str | None = None
    ssh_host: str | None = None


@dataclass
class CommunicationInfo:
    app: str | None = None
    channel: str | None = None
    recipient: str | None = None


@dataclass
class DocumentInfo:
    app: str | None = None
    document_title: str | None = None


GROUPS = {
    "app": AppInfo,
    "browser": BrowserInfo,
    "video": VideoInfo,
    "ide": IdeInfo,
    "terminal": TerminalInfo,
    "communication": CommunicationInfo,
    "document": DocumentInfo,
}


def clean_group(cls, data):
    """Build a group from a mapping, or None when every field is empty.

    Unknown keys are ignored and values are coerced to strings.
    """
    if data is None:
        return None
    if isinstance(data, cls):
        data = asdict(data)
    if not isinstance(data, dict):
        return None
    kwargs = {}
    for f in fields(cls):
        value = data.get(f.name)
        if value is None or value == "":
            continue
        kwargs[f.name] = str(value)
    return cls(**kwargs) if kwargs else None


def _parse_bool(raw) -> bool:
    """Model replies sometimes carry booleans as strings ("false")."""
    if isinstance(raw, str):
        return raw.strip().lower() in ("true", "yes", "1")
    return raw is True or (isinstance(raw, int) and raw == 1)


def _clean_tags(raw) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(t).strip() for t in raw if str(t).strip()]


@dataclass
class AnalysisResult:
    """Structured fields the extractor reads off one screenshot."""

    app: AppInfo | None = None
    browser: BrowserInfo | None = None
    video: VideoInfo | None = None
    ide: IdeInfo | None = None
    terminal: TerminalInfo | None = None
    communication: CommunicationInfo | None = None
    document: DocumentInfo | None = None
    activity: str = ""
    summary: str = ""
    details: str = ""
    tags: list[str] = field(default_factory=list)
    is_continuation: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisResult":
        groups = {name: clean_group(group_cls, data.get(name)) for name, group_cls in GROUPS.items()}
        return cls(
            **groups,
            activity=str(data.get("activity") or ""),
            summary=str(data.get("summary") or ""),
            details=str(data.get("details") or ""),
            tags=_clean_tags(data.get("tags")),
            is_continuation=_parse_bool(data.get("is_continuation")),
        )


@dataclass
class ActivityEntry:
    filename: str
    timestamp: int
    date: str
    time: str
    app: AppInfo | None = None
    browser: BrowserInfo | None = None
    video: VideoInfo | None = None
    ide: IdeInfo | None = None
    terminal: TerminalInfo | None = None
    communication: CommunicationInfo | None = None
    document: DocumentInfo | None = None
    activity: str = ""
    summary: str = ""
    details: str = ""
    tags: list[str] = field(default_factory=list)
    is_continuation: bool = False

    @property
    def app_name(self) -> str:
        return self.app.name if self.app and self.app.name else ""

    @classmethod
    def from_analysis(
        cls, filename: str, timestamp: int, date: str, time: str, analysis: AnalysisResult,
    ) -> "ActivityEntry":
        groups = {name: clean_group(group_cls, getattr(analysis, name)) for name, group_cls in GROUPS.items()}
        return cls(
            filename=filename,
            timestamp=timestamp,
            date=date,
            time=time,
            **groups,
            activity=analysis.activity,
            summary=analysis.summary,
            details=analysis.details,
            tags=list(analysis.tags),
            is_continuation=analysis.is_continuation,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in GROUPS:
            if data[name] is None:
                del data[name]
            else:
                data[name] = {k: v for k, v in data[name].items() if v is not None}
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ActivityEntry":
        groups = {name: clean_group(group_cls, data.get(name)) for name, group_cls in GROUPS.items()}
        return cls(
            filename=data["filename"],
            timestamp=int(data["timestamp"]),
            date=data["date"],
            time=data["time"],
            **groups,
            activity=data.get("activity") or "",
            summary=data.get("summary") or "",
            details=data.get("details") or "",
            tags=_clean_tags(data.get("tags")),
            is_continuation=_parse_bool(data.get("is_continuation")),
        )
