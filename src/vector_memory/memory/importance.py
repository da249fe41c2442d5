"""
Importance scoring for individual messages.

Common cases are scored by keyword heuristics, checked in priority order.
Only messages no heuristic recognises are sent to the model, and its answer
is clamped to [0, 1].
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .models import Message

logger = logging.getLogger(__name__)

IMPORTANCE_SYSTEM_PROMPT = (
    "Rate the importance of this message for long-term memory retention (0.0-1.0). "
    "Consider: decisions, facts, preferences, commitments. Respond with only a number."
)

_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?")


@dataclass(frozen=True)
class KeywordRule:
    name: str
    markers: tuple[str, ...]
    score: float


# First match wins.
DEFAULT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("secret", ("password", "key", "secret"), 0.95),
    KeywordRule("explicit", ("important", "remember"), 0.9),
    KeywordRule("decision", ("decision", "agreed"), 0.85),
    KeywordRule("urgency", ("deadline", "must"), 0.8),
)

DEFAULT_ACKNOWLEDGEMENTS: tuple[str, ...] = ("ok", "yes", "no", "thanks", "sure", "got it")


def parse_score(text: str, default: float = 0.5) -> float:
    """Parse the first number in a model reply and clamp it to [0, 1]."""
    match = _NUMBER_RE.search(text or "")
    if not match:
        return default
    try:
        value = float(match.group())
    except ValueError:
        return default
    return max(0.0, min(1.0, value))


@dataclass
class ImportanceScorer:
    """Scores how worth remembering a message is, from 0 to 1."""

    completer: Optional[object] = None
    rules: tuple[KeywordRule, ...] = DEFAULT_RULES
    short_length: int = 20
    short_score: float = 0.3
    acknowledgements: tuple[str, ...] = DEFAULT_ACKNOWLEDGEMENTS
    acknowledgement_score: float = 0.2
    fallback_score: float = 0.5
    _ack_re: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        alternatives = "|".join(re.escape(a) for a in self.acknowledgements)
        self._ack_re = re.compile(rf"^(?:{alternatives})$", re.IGNORECASE)

    def heuristic_score(self, content: str) -> Optional[float]:
        """Score from keyword rules alone; None when no rule applies."""
        lowered = content.lower()
        for rule in self.rules:
            if any(marker in lowered for marker in rule.markers):
                logger.debug("Importance rule %r matched", rule.name)
                return rule.score
        if len(content) < self.short_length:
            return self.short_score
        if self._ack_re.match(content):
            return self.acknowledgement_score
        return None

    def score(self, message) -> float:
        """
        Score a message.

        Raises CollaboratorError when the model is needed and its call fails.
        """
        message = Message.coerce(message)
        heuristic = self.heuristic_score(message.content)
        if heuristic is not None:
            return heuristic

        if self.completer is None:
            return self.fallback_score

        reply = self.completer.complete(
            IMPORTANCE_SYSTEM_PROMPT,
            f"Role: {message.role.value}\nContent: {message.content}",
            temperature=0,
            max_output_tokens=10,
        ) or ""
        if not _NUMBER_RE.search(reply):
            logger.warning("Unparseable importance reply %r, using %.2f", reply, self.fallback_score)
            return self.fallback_score
        return parse_score(reply, default=self.fallback_score)
