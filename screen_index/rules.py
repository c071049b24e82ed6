"""Learned rules: the feedback-driven part of the extraction prompt.

The current rule set is a materialized snapshot in learned-rules.json. Every
edit is also appended to learned-rules-history.json together with the full
snapshot it replaced, so undo restores the previous rules exactly.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

import config as cfg

logger = logging.getLogger(__name__)

CATEGORIES = ("indexing", "search", "exclude")
ACTIONS = ("add", "remove", "modify")


@dataclass
class RuleSet:
    indexing: list[str] = field(default_factory=list)
    search: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "RuleSet":
        data = data or {}
        return cls(**{c: [str(r) for r in data.get(c) or []] for c in CATEGORIES})

    def is_empty(self) -> bool:
        return not (self.indexing or self.search or self.exclude)


@dataclass
class RuleChange:
    timestamp: int
    feedback: str
    action: str
    category: str
    rule: str
    previous_rule: str | None = None
    rule_index: int | None = None
    previous_rules: dict | None = None


@dataclass
class Interpretation:
    """What the feedback interpreter made of a piece of user feedback."""

    understood: bool
    interpretation: str = ""
    action: str = "none"
    category: str = "indexing"
    rule_index: int | None = None
    previous_rule: str | None = None
    new_rule: str | None = None
    updated_rules: dict | None = None


@dataclass
class FeedbackResult:
    success: bool
    message: str
    rules_changed: bool = False


@dataclass
class UndoResult:
    success: bool
    message: str


def _now_ms() -> int:
    return int(time.time() * 1000)


class RulesStore:
    def __init__(self, data_dir: Path | None = None):
        self._data_dir = data_dir or cfg.DATA_DIR
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._rules_path = self._data_dir / cfg.RULES_FILE
        self._history_path = self._data_dir / cfg.RULES_HISTORY_FILE

    @staticmethod
    def _atomic_write_text(path: Path, data: str) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(data)
        tmp.replace(path)

    # -- snapshot --

    def load(self) -> RuleSet:
        if not self._rules_path.exists():
            return RuleSet()
        try:
            return RuleSet.from_dict(json.loads(self._rules_path.read_text()))
        except (json.JSONDecodeError, OSError, TypeError, AttributeError):
            logger.warning("Corrupt %s, using empty rules", self._rules_path.name)
            return RuleSet()

    def save(self, rules: RuleSet) -> None:
        self._atomic_write_text(self._rules_path, json.dumps(asdict(rules), indent=2))

    # -- history --

    def load_history(self) -> list[RuleChange]:
        if not self._history_path.exists():
            return []
        try:
            data = json.loads(self._history_path.read_text())
            return [RuleChange(**c) for c in data.get("changes", [])]
        except (json.JSONDecodeError, OSError, TypeError, AttributeError):
            logger.warning("Corrupt %s, starting with empty history", self._history_path.name)
            return []

    def _save_history(self, changes: list[RuleChange]) -> None:
        data = {"changes": [asdict(c) for c in changes]}
        self._atomic_write_text(self._history_path, json.dumps(data, indent=2))

    def record_change(self, change: RuleChange) -> None:
        """Append a change to the history log.

        The change should carry previous_rules, the snapshot it replaces,
        otherwise it cannot be undone.
        """
        self._save_history(self.load_history() + [change])

    # -- edits --

    def apply_change(
        self,
        feedback: str,
        action: str,
        category: str,
        rule: str,
        new_rules: RuleSet,
        previous_rule: str | None = None,
        rule_index: int | None = None,
    ) -> RuleChange:
        """Record the change, then make new_rules the current snapshot.

        History is written first; if the snapshot write fails the history is
        put back so the log never references a change that did not happen.
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown rule action: {action}")
        if category not in CATEGORIES:
            raise ValueError(f"Unknown rule category: {category}")

        history = self.load_history()
        change = RuleChange(
            timestamp=_now_ms(),
            feedback=feedback,
            action=action,
            category=category,
            rule=rule,
            previous_rule=previous_rule,
            rule_index=rule_index,
            previous_rules=asdict(self.load()),
        )
        self._save_history(history + [change])
        try:
            self.save(new_rules)
        except OSError:
            self._save_history(history)
            raise
        logger.info("%s %s rule: %s", action, category, rule)
        return change

    def apply_feedback(self, feedback: str, interpretation: Interpretation) -> FeedbackResult:
        if not interpretation.understood:
            return FeedbackResult(
                success=False,
                message=f"Could not understand feedback: {interpretation.interpretation}",
            )
        if interpretation.action == "none":
            return FeedbackResult(success=True, message=interpretation.interpretation)
        if interpretation.action not in ACTIONS or interpretation.category not in CATEGORIES:
            return FeedbackResult(
                success=False,
                message=f"Unsupported rule edit: {interpretation.action} {interpretation.category}",
            )

        current = self.load()
        updated = interpretation.updated_rules or {}
        new_rules = RuleSet.from_dict(
            {c: updated.get(c) if updated.get(c) is not None else getattr(current, c) for c in CATEGORIES}
        )
        rule = interpretation.new_rule or interpretation.previous_rule or ""
        self.apply_change(
            feedback=feedback,
            action=interpretation.action,
            category=interpretation.category,
            rule=rule,
            new_rules=new_rules,
            previous_rule=interpretation.previous_rule,
            rule_index=interpretation.rule_index,
        )
        verb = {"add": "Added", "remove": "Removed", "modify": "Modified"}[interpretation.action]
        return FeedbackResult(
            success=True,
            message=f'{interpretation.interpretation}\n\n{verb} {interpretation.category} rule: "{rule}"',
            rules_changed=True,
        )

    def undo_last_change(self) -> UndoResult:
        """Restore the snapshot from before the newest change and drop that change."""
        history = self.load_history()
        if not history:
            return UndoResult(success=False, message="No rule changes to undo.")

        last = history[-1]
        if last.previous_rules is None:
            return UndoResult(
                success=False,
                message=f'Cannot undo {last.action} {last.category} rule "{last.rule}": no prior snapshot recorded.',
            )

        # Snapshot first: a crash before the history write leaves a change whose
        # previous_rules already match the current rules, so undoing it again is harmless.
        self.save(RuleSet.from_dict(last.previous_rules))
        self._save_history(history[:-1])
        logger.info("Undid %s %s rule: %s", last.action, last.category, last.rule)
        return UndoResult(
            success=True,
            message=f'Undid {last.action} {last.category} rule: "{last.rule}"',
        )


# -- rendering --


def _bullets(rules: list[str]) -> str:
    return "\n".join(f"- {r}" for r in rules)


def format_indexing_rules(rules: RuleSet) -> str:
    """Prompt fragment appended to the extraction prompt."""
    parts = []
    if rules.indexing:
        parts.append("LEARNED INDEXING RULES (follow these when extracting):\n" + _bullets(rules.indexing))
    if rules.exclude:
        parts.append("EXCLUDE RULES (do NOT extract or tag these):\n" + _bullets(rules.exclude))
    return "\n\n" + "\n\n".join(parts) if parts else ""


def format_search_rules(rules: RuleSet) -> str:
    if not rules.search:
        return ""
    return "\n\nLEARNED SEARCH RULES (synonyms and matching hints):\n" + _bullets(rules.search)


def format_rules(rules: RuleSet) -> str:
    return format_indexing_rules(rules) + format_search_rules(rules)


def show_rules(rules: RuleSet) -> str:
    if rules.is_empty():
        return "No learned rules yet. Give feedback to teach the indexer."

    lines = ["Current Learned Rules:", ""]
    sections = (
        ("INDEXING RULES (what to extract):", rules.indexing),
        ("EXCLUDE RULES (what to skip):", rules.exclude),
        ("SEARCH RULES (synonyms/matching):", rules.search),
    )
    for title, items in sections:
        if items:
            lines.append(title)
            lines.extend(f"  {i}. {r}" for i, r in enumerate(items, start=1))
            lines.append("")
    return "\n".join(lines).rstrip()


def show_history(changes: list[RuleChange]) -> str:
    if not changes:
        return "No rule changes recorded yet."

    lines = ["Rules Change History:", ""]
    for change in reversed(changes):
        when = datetime.fromtimestamp(change.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
        lines.append(f"[{when}] {change.action.upper()} {change.category}")
        lines.append(f'  Rule: "{change.rule}"')
        lines.append(f'  Feedback: "{change.feedback}"')
        if change.previous_rule:
            lines.append(f'  Previous: "{change.previous_rule}"')
        lines.append("")
    return "\n".join(lines).rstrip()
