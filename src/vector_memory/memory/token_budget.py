"""
Token estimation.

Budgets are policed on every candidate during retrieval, so the estimate is
a character heuristic rather than a tokenizer call.
"""

import math

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: ~4 chars per token, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_message_tokens(msg) -> int:
    """Estimate tokens for a message rendered as a ``role: content`` line."""
    return estimate_tokens(msg.to_line())
