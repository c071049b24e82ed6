"""Turns a screenshot into structured fields, and feedback into rule edits.

The coordinator only depends on the Extractor / FeedbackInterpreter
protocols; OpenAIExtractor is the implementation the server wires in.
"""

import base64
import json
import logging
from dataclasses import asdict
from typing import Protocol

from openai import OpenAI, OpenAIError

import config as cfg
from entries import ActivityEntry, AnalysisResult
from rules import Interpretation, RuleSet

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    pass


class Extractor(Protocol):
    def extract(self, image_bytes: bytes, context_text: str, rules_prompt: str) -> AnalysisResult: ...

    def summarize(self, entries: list[ActivityEntry]) -> str: ...


class FeedbackInterpreter(Protocol):
    def interpret(self, rules: RuleSet, feedback: str) -> Interpretation: ...


SYSTEM_PROMPT = """You are indexing screenshots for a personal activity search engine. Think like the person who took this screenshot: what terms would THEY use later to find this moment?

Extract structured metadata, including only the groups that apply:

1. app (required): name, window_title, category (browser/ide/terminal/media/communication/productivity/design/system/other)
2. browser: url, domain, page_title, page_type (video/article/social/search/documentation/code/email/chat/shopping/other)
3. video: platform, title, channel, duration
4. ide: name, current_file, file_path, language, project_name, git_branch
5. terminal: cwd, last_command, ssh_host
6. communication: app, channel, recipient
7. document: app, document_title

Respond with JSON only (no markdown):
{
  "app": {"name": "App", "window_title": "Title", "category": "browser"},
  "browser": {"url": "full url", "domain": "domain.com", "page_title": "Title", "page_type": "article"},
  "video": {"platform": "YouTube", "title": "Full Video Title", "channel": "Channel", "duration": "12:34"},
  "ide": {"name": "VS Code", "current_file": "file.ts", "file_path": "/full/path", "language": "TypeScript", "project_name": "project"},
  "terminal": {"cwd": "/path", "last_command": "npm run build"},
  "communication": {"app": "Slack", "channel": "#channel", "recipient": "Person"},
  "document": {"app": "Notion", "document_title": "Title"},
  "activity": "Specific searchable description of what the user is doing",
  "summary": "Key searchable content: titles, names, projects, technologies. 1-2 sentences.",
  "details": "Other visible specifics worth searching for",
  "tags": ["searchable", "terms", "projects", "technologies", "people"],
  "is_continuation": false
}

Focus on searchability:
- Extract the exact URL, article title, video title, repo name, file path.
- Tags are search terms: project names, technologies, concepts, people.
- Skip window chrome and generic UI; describe the content.

Separate overlapping UI layers. The app and its metadata describe the main
window only. Notifications, call popups, picture-in-picture video and system
alerts belong in summary or tags, never in the main metadata."""

SUMMARY_PROMPT = """Based on these recent activity entries, provide a brief 2-3 sentence summary of what the user has been working on:

{lines}

Respond with just the summary text, no JSON."""

FEEDBACK_PROMPT = """You are helping improve an activity indexing system. The user has provided feedback about how the system should work better.

CURRENT LEARNED RULES:
{rules}

USER FEEDBACK:
"{feedback}"

There are THREE types of rules:
1. "indexing": how to extract or tag information (e.g. "For Obsidian, extract vault name and wiki links")
2. "search": search behavior such as synonyms (e.g. "'CLI' should match 'terminal', 'command line'")
3. "exclude": things to skip (e.g. "Don't index system notifications")

Decide whether the user wants to ADD, REMOVE or MODIFY a rule, and in which category.

Return JSON only (no markdown):
{{
  "understood": true,
  "interpretation": "What you understood from the feedback",
  "action": "add" | "remove" | "modify" | "none",
  "category": "indexing" | "search" | "exclude",
  "rule_index": null or 0-based index of the rule to modify/remove,
  "previous_rule": "the old rule text if modifying or removing",
  "new_rule": "the rule text to add, or the new text if modifying",
  "updated_rules": {{"indexing": [], "search": [], "exclude": []}}
}}"""


def parse_json_reply(text: str) -> dict:
    """Parse a model reply that should be a JSON object.

    Tolerates markdown code fences and prose around the object.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else ""
        cleaned = cleaned.rsplit("```", 1)[0]
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end < start:
        raise ExtractionError(f"No JSON object in reply: {text[:200]!r}")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Invalid JSON in reply: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError("Reply JSON is not an object")
    return data


def _sniff_mime(image_bytes: bytes) -> str:
    if image_bytes.startswith(b"\x89PNG"):
        return "image/png"
    return "image/jpeg"


class OpenAIExtractor:
    def __init__(self, model: str | None = None, max_tokens: int | None = None):
        self._model = model or cfg.EXTRACTION_MODEL
        self._max_tokens = max_tokens or cfg.EXTRACTION_MAX_TOKENS
        self._openai = OpenAI()

    def _complete(self, messages: list[dict]) -> str:
        try:
            response = self._openai.chat.completions.create(
                model=self._model,
                messages=messages,
                max_tokens=self._max_tokens,
            )
        except OpenAIError as e:
            raise ExtractionError(f"OpenAI request failed: {e}") from e
        if not response.choices:
            raise ExtractionError("Empty response from model")
        text = response.choices[0].message.content
        if not text:
            raise ExtractionError("Empty response from model")
        return text

    def extract(self, image_bytes: bytes, context_text: str, rules_prompt: str) -> AnalysisResult:
        data_url = f"data:{_sniff_mime(image_bytes)};base64,{base64.b64encode(image_bytes).decode()}"
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT + rules_prompt},
            {
                "role": "user",
                "content": [
                    {
                        "type": "text",
                        "text": f"Previous context:\n{context_text}\n\nExtract all structured information from this screenshot.",
                    },
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            },
        ]
        return AnalysisResult.from_dict(parse_json_reply(self._complete(messages)))

    def summarize(self, entries: list[ActivityEntry]) -> str:
        lines = "\n".join(f"- [{e.date} {e.time}] {e.app_name}: {e.activity}" for e in entries)
        messages = [{"role": "user", "content": SUMMARY_PROMPT.format(lines=lines)}]
        return self._complete(messages).strip()

    def interpret(self, rules: RuleSet, feedback: str) -> Interpretation:
        prompt = FEEDBACK_PROMPT.format(rules=json.dumps(asdict(rules), indent=2), feedback=feedback)
        data = parse_json_reply(self._complete([{"role": "user", "content": prompt}]))
        rule_index = data.get("rule_index")
        return Interpretation(
            understood=bool(data.get("understood", False)),
            interpretation=str(data.get("interpretation") or ""),
            action=str(data.get("action") or "none"),
            category=str(data.get("category") or "indexing"),
            rule_index=rule_index if isinstance(rule_index, int) else None,
            previous_rule=data.get("previous_rule") or None,
            new_rule=data.get("new_rule") or None,
            updated_rules=data.get("updated_rules") if isinstance(data.get("updated_rules"), dict) else None,
        )
