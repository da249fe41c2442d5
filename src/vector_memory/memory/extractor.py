"""
Fact extraction for long-term memory.

Asks the model for explicitly stated facts as JSON and parses whatever comes
back. Extraction is best-effort: a malformed reply or a failed model call
yields an empty list so the surrounding store operation is never blocked.
"""

import json
import logging
import re

from .models import Category, Fact

logger = logging.getLogger(__name__)

FACT_EXTRACTION_PROMPT = """Extract discrete facts from this conversation for long-term memory storage.
Categories: fact, preference, event, relationship, commitment

Output as a JSON object:
{"facts": [{"category": "...", "content": "...", "summary": "..."}]}

Only extract clearly stated information, no assumptions."""

_JSON_BLOCK_RE = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)


def make_summary(content: str, max_chars: int = 100) -> str:
    """Truncate content to a short summary."""
    if len(content) > max_chars:
        return content[:max_chars] + "..."
    return content


def _load_json(raw: str):
    """Parse JSON from a reply, tolerating markdown code fences and chatter."""
    raw = raw.strip()
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    match = _JSON_BLOCK_RE.search(raw)
    if not match:
        raise ValueError("no JSON found in reply")
    return json.loads(match.group())


def parse_facts(raw: str, summary_max_chars: int = 100) -> list[Fact]:
    """
    Parse a model reply into facts.

    Accepts ``{"facts": [...]}`` or a bare list. Items without content are
    skipped and unknown categories fall back to ``fact``.

    Raises ValueError (or JSONDecodeError) when no JSON can be parsed.
    """
    parsed = _load_json(raw)
    if isinstance(parsed, dict):
        parsed = parsed.get("facts", [])
    if not isinstance(parsed, list):
        raise ValueError(f"expected a list of facts, got {type(parsed).__name__}")

    facts = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        content = str(item.get("content") or "").strip()
        if not content:
            continue
        try:
            category = Category(str(item.get("category", "")).strip().lower())
        except ValueError:
            category = Category.FACT
        summary = str(item.get("summary") or "").strip() or make_summary(content, summary_max_chars)
        facts.append(Fact(category=category, content=content, summary=summary))
    return facts


class FactExtractor:
    """Splits free text into categorized facts."""

    def __init__(self, completer, temperature: float = 0.2, summary_max_chars: int = 100):
        self._completer = completer
        self.temperature = temperature
        self.summary_max_chars = summary_max_chars

    def extract(self, conversation: str) -> list[Fact]:
        """Extract facts; returns [] on any model or parse failure."""
        if not conversation or not conversation.strip():
            return []
        try:
            raw = self._completer.complete(
                FACT_EXTRACTION_PROMPT,
                conversation,
                temperature=self.temperature,
            )
        except Exception as e:  # any collaborator failure degrades to no facts
            logger.warning("Fact extraction request failed: %s", e)
            return []

        try:
            facts = parse_facts(raw or "", self.summary_max_chars)
        except (ValueError, TypeError) as e:
            logger.warning("Failed to parse extracted facts: %s", e)
            return []

        logger.info("Extracted %d facts", len(facts))
        return facts
