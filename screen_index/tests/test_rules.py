import json
import sys
from dataclasses import asdict
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import config as cfg
from rules import (
    Interpretation,
    RuleChange,
    RuleSet,
    RulesStore,
    format_indexing_rules,
    format_rules,
    format_search_rules,
    show_history,
    show_rules,
)


def _add(store: RulesStore, category: str, rule: str) -> RuleChange:
    current = store.load()
    new = RuleSet(**asdict(current))
    getattr(new, category).append(rule)
    return store.apply_change(f"please {rule}", "add", category, rule, new)


def test_missing_file_loads_empty(tmp_path: Path):
    store = RulesStore(tmp_path)
    assert store.load() == RuleSet()
    assert store.load_history() == []


def test_corrupt_files_load_empty(tmp_path: Path):
    (tmp_path / cfg.RULES_FILE).write_text("[[[")
    (tmp_path / cfg.RULES_HISTORY_FILE).write_text("nope")
    store = RulesStore(tmp_path)
    assert store.load() == RuleSet()
    assert store.load_history() == []


def test_save_and_load(tmp_path: Path):
    store = RulesStore(tmp_path)
    rules = RuleSet(indexing=["extract vault name"], search=["CLI means terminal"], exclude=["notifications"])
    store.save(rules)
    assert RulesStore(tmp_path).load() == rules


def test_apply_change_records_history_with_snapshot(tmp_path: Path):
    store = RulesStore(tmp_path)
    change = _add(store, "indexing", "extract vault name")

    assert store.load().indexing == ["extract vault name"]
    history = store.load_history()
    assert len(history) == 1
    assert history[0] == change
    assert history[0].previous_rules == asdict(RuleSet())


def test_apply_change_rejects_unknown_category(tmp_path: Path):
    store = RulesStore(tmp_path)
    with pytest.raises(ValueError):
        store.apply_change("x", "add", "colors", "blue", RuleSet())
    assert store.load_history() == []


def test_snapshot_failure_restores_history(tmp_path: Path, monkeypatch):
    store = RulesStore(tmp_path)
    _add(store, "indexing", "first")

    def fail(rules):
        raise OSError("disk full")

    monkeypatch.setattr(store, "save", fail)
    with pytest.raises(OSError):
        store.apply_change("x", "add", "search", "second", RuleSet(search=["second"]))

    assert len(store.load_history()) == 1
    assert store.load().indexing == ["first"]


def test_undo_restores_exact_prior_snapshot(tmp_path: Path):
    store = RulesStore(tmp_path)
    _add(store, "indexing", "one")
    before = store.load()
    _add(store, "exclude", "two")

    result = store.undo_last_change()

    assert result.success
    assert "two" in result.message
    assert store.load() == before
    assert len(store.load_history()) == 1


def test_undo_twice_then_empty(tmp_path: Path):
    store = RulesStore(tmp_path)
    _add(store, "indexing", "one")

    assert store.undo_last_change().success
    assert store.load() == RuleSet()

    rules_bytes = (tmp_path / cfg.RULES_FILE).read_bytes()
    result = store.undo_last_change()
    assert not result.success
    assert (tmp_path / cfg.RULES_FILE).read_bytes() == rules_bytes


def test_undo_without_snapshot_fails(tmp_path: Path):
    store = RulesStore(tmp_path)
    store.record_change(RuleChange(timestamp=1, feedback="f", action="add", category="search", rule="r"))
    result = store.undo_last_change()
    assert not result.success
    assert len(store.load_history()) == 1


def test_apply_feedback_add(tmp_path: Path):
    store = RulesStore(tmp_path)
    interp = Interpretation(
        understood=True,
        interpretation="User wants Obsidian vault names",
        action="add",
        category="indexing",
        new_rule="For Obsidian, extract vault name",
        updated_rules={"indexing": ["For Obsidian, extract vault name"]},
    )
    result = store.apply_feedback("track obsidian vaults", interp)

    assert result.success and result.rules_changed
    assert 'Added indexing rule: "For Obsidian, extract vault name"' in result.message
    assert store.load().indexing == ["For Obsidian, extract vault name"]
    assert store.load_history()[0].feedback == "track obsidian vaults"


def test_apply_feedback_missing_categories_keep_current(tmp_path: Path):
    store = RulesStore(tmp_path)
    store.save(RuleSet(search=["CLI means terminal"]))
    interp = Interpretation(
        understood=True, action="add", category="exclude", new_rule="notifications",
        updated_rules={"exclude": ["notifications"]},
    )
    store.apply_feedback("skip notifications", interp)
    assert store.load() == RuleSet(search=["CLI means terminal"], exclude=["notifications"])


def test_apply_feedback_not_understood(tmp_path: Path):
    store = RulesStore(tmp_path)
    result = store.apply_feedback("???", Interpretation(understood=False, interpretation="unclear"))
    assert not result.success
    assert not result.rules_changed
    assert store.load_history() == []


def test_apply_feedback_action_none(tmp_path: Path):
    store = RulesStore(tmp_path)
    result = store.apply_feedback("thanks", Interpretation(understood=True, interpretation="No change needed", action="none"))
    assert result.success
    assert not result.rules_changed
    assert not (tmp_path / cfg.RULES_HISTORY_FILE).exists()


def test_format_indexing_rules():
    assert format_indexing_rules(RuleSet()) == ""
    text = format_indexing_rules(RuleSet(indexing=["a"], exclude=["b"], search=["c"]))
    assert "- a" in text
    assert "- b" in text
    assert "- c" not in text


def test_format_rules_includes_search():
    assert format_search_rules(RuleSet()) == ""
    text = format_rules(RuleSet(indexing=["a"], search=["c"]))
    assert "- a" in text and "- c" in text


def test_show_rules():
    assert "No learned rules" in show_rules(RuleSet())
    text = show_rules(RuleSet(indexing=["x", "y"]))
    assert "1. x" in text
    assert "2. y" in text


def test_show_history_newest_first(tmp_path: Path):
    store = RulesStore(tmp_path)
    _add(store, "indexing", "older")
    _add(store, "search", "newer")

    text = show_history(store.load_history())
    assert text.index("newer") < text.index("older")
    assert "ADD search" in text
    assert show_history([]) == "No rule changes recorded yet."


def test_history_file_is_json(tmp_path: Path):
    store = RulesStore(tmp_path)
    _add(store, "indexing", "one")
    data = json.loads((tmp_path / cfg.RULES_HISTORY_FILE).read_text())
    assert data["changes"][0]["rule"] == "one"
