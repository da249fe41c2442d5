"""
Conversation compressor.

Turns a list of messages into a token-bounded narrative summary plus a list
of key points. The model is asked for a two-section reply:

    SUMMARY: <narrative>
    KEY_POINTS:
    - <point>
    - <point>

The reply is parsed leniently: a missing ``SUMMARY:`` marker or an empty
summary makes the whole reply the summary, and missing key points give an
empty list. There is no retry; a poor summary is a quality problem, not an
error.
"""

import logging
import math
import re
from typing import Iterable, Optional

from .exceptions import InvalidInputError
from .models import CompressionResult, Message
from .token_budget import estimate_tokens

logger = logging.getLogger(__name__)

COMPRESSION_SYSTEM_PROMPT = """You are a memory compression engine. Compress the following conversation while preserving:
1. Key decisions and outcomes
2. Important facts and data mentioned
3. User preferences and requirements
4. Action items and commitments
5. Emotional context when relevant

Output format:
SUMMARY: [compressed narrative, ~{target_tokens} tokens]
KEY_POINTS:
- [point 1]
- [point 2]
..."""

_SUMMARY_RE = re.compile(r"SUMMARY:\s*(.*?)(?=KEY_POINTS:|$)", re.IGNORECASE | re.DOTALL)
_KEY_POINTS_RE = re.compile(r"KEY_POINTS:\s*(.*)$", re.IGNORECASE | re.DOTALL)
_BULLET_RE = re.compile(r"^\s*[-*•]\s*")


def messages_to_text(messages: Iterable[Message]) -> str:
    """Render messages as ``role: content`` blocks separated by blank lines."""
    return "\n\n".join(m.to_line() for m in messages)


def compression_ratio(original_tokens: int, compressed_tokens: int) -> int:
    """Percentage of tokens saved; 0 when there was nothing to compress."""
    if original_tokens <= 0:
        return 0
    return round((1 - compressed_tokens / original_tokens) * 100)


def parse_compression(text: str) -> tuple[str, list[str]]:
    """Split a model reply into (summary, key_points)."""
    text = text or ""
    summary_match = _SUMMARY_RE.search(text)
    if not summary_match:
        return text.strip(), []

    summary = summary_match.group(1).strip() or text.strip()
    key_points: list[str] = []
    key_points_match = _KEY_POINTS_RE.search(text, summary_match.start())
    if key_points_match:
        for line in key_points_match.group(1).splitlines():
            point = _BULLET_RE.sub("", line).strip()
            if point:
                key_points.append(point)
    return summary, key_points


class ConversationCompressor:
    """Compresses conversation history while preserving key information."""

    def __init__(
        self,
        completer,
        default_target_ratio: float = 0.3,
        temperature: float = 0.3,
        output_headroom: int = 200,
    ):
        self._completer = completer
        self.default_target_ratio = default_target_ratio
        self.temperature = temperature
        self.output_headroom = output_headroom

    def compress(
        self,
        messages: list,
        target_ratio: Optional[float] = None,
    ) -> CompressionResult:
        """
        Compress messages to roughly ``target_ratio`` of their token count.

        Raises:
            InvalidInputError: no messages, or target_ratio outside (0, 1].
            CollaboratorError: the completion call failed.
        """
        if not messages:
            raise InvalidInputError("messages must not be empty")
        ratio = self.default_target_ratio if target_ratio is None else target_ratio
        if not 0 < ratio <= 1:
            raise InvalidInputError(f"target_ratio must be in (0, 1], got {ratio}")

        conversation = messages_to_text(Message.coerce(m) for m in messages)
        original_tokens = estimate_tokens(conversation)
        target_tokens = math.ceil(original_tokens * ratio)

        reply = self._completer.complete(
            COMPRESSION_SYSTEM_PROMPT.format(target_tokens=target_tokens),
            conversation,
            temperature=self.temperature,
            max_output_tokens=target_tokens + self.output_headroom,
        )

        compressed, key_points = parse_compression(reply)
        compressed_tokens = estimate_tokens(compressed)
        result = CompressionResult(
            compressed=compressed,
            original_tokens=original_tokens,
            compressed_tokens=compressed_tokens,
            ratio=compression_ratio(original_tokens, compressed_tokens),
            key_points=key_points,
        )
        logger.info(
            "Compressed %d messages: %d -> %d tokens (%d%% saved, %d key points)",
            len(messages),
            original_tokens,
            compressed_tokens,
            result.ratio,
            len(key_points),
        )
        return result
