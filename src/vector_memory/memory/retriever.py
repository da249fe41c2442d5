"""
Context retriever.

Given a query and two candidate pools, picks the memories most relevant to
the query and packs them into a token budget.

Scoring:
  - relevance = cosine(query_embedding, memory.embedding) * memory.importance
  - the query is embedded exactly once; memories carry stored embeddings

Packing (greedy, in relevance order):
  - short-term first, within ``max_tokens * short_term_budget_ratio`` and
    only above ``short_term_min_relevance``
  - then long-term, sharing the same running token count, within
    ``max_tokens`` and only above ``long_term_min_relevance``
  - a candidate that does not fit is skipped and the scan continues

Expired short-term memories are dropped before scoring even if the store has
not removed them yet.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, Optional, Sequence

from .exceptions import InvalidInputError
from .models import MemoryContext, MemoryRecord, utcnow
from .token_budget import estimate_tokens

logger = logging.getLogger(__name__)

NO_MEMORIES_PROMPT = "(No relevant memories found)"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0 for vectors of different length or zero norm."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / math.sqrt(norm_a * norm_b)


def relevance(query_embedding: Sequence[float], memory: MemoryRecord) -> float:
    """Similarity to the query weighted by stored importance."""
    return cosine_similarity(query_embedding, memory.embedding) * memory.importance


def rank(
    query_embedding: Sequence[float],
    memories: Iterable[MemoryRecord],
) -> list[tuple[float, MemoryRecord]]:
    """Score memories and sort by descending relevance (stable for ties)."""
    scored = [(relevance(query_embedding, m), m) for m in memories]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return scored


class ContextRetriever:
    """Ranks stored memories against a query and packs them into a budget."""

    def __init__(
        self,
        embedder,
        short_term_budget_ratio: float = 0.4,
        short_term_min_relevance: float = 0.3,
        long_term_min_relevance: float = 0.2,
    ):
        self._embedder = embedder
        self.short_term_budget_ratio = short_term_budget_ratio
        self.short_term_min_relevance = short_term_min_relevance
        self.long_term_min_relevance = long_term_min_relevance

    def retrieve(
        self,
        query: str,
        short_term: Iterable[MemoryRecord],
        long_term: Iterable[MemoryRecord],
        max_tokens: int = 2000,
        now: Optional[datetime] = None,
    ) -> MemoryContext:
        """
        Select the memories most relevant to ``query`` within ``max_tokens``.

        An empty context is a valid result meaning nothing was relevant enough.

        Raises:
            InvalidInputError: max_tokens is not positive.
            CollaboratorError: embedding the query failed.
        """
        if max_tokens <= 0:
            raise InvalidInputError(f"max_tokens must be positive, got {max_tokens}")

        now = now or utcnow()
        live_short_term = [m for m in short_term if not m.is_expired(now)]
        long_term = list(long_term)

        query_embedding = self._embedder.embed(query)
        scored_short = rank(query_embedding, live_short_term)
        scored_long = rank(query_embedding, long_term)

        context = MemoryContext()
        current_tokens = 0

        short_budget = max_tokens * self.short_term_budget_ratio
        for score, memory in scored_short:
            tokens = estimate_tokens(memory.content)
            if current_tokens + tokens <= short_budget and score > self.short_term_min_relevance:
                context.short_term.append(memory.content)
                context.relevance_scores.append(score)
                context.memory_ids.append(memory.id)
                current_tokens += tokens

        for score, memory in scored_long:
            tokens = estimate_tokens(memory.content)
            if current_tokens + tokens <= max_tokens and score > self.long_term_min_relevance:
                context.long_term.append(memory.content)
                context.relevance_scores.append(score)
                context.memory_ids.append(memory.id)
                current_tokens += tokens

        logger.debug(
            "Selected %d/%d short-term and %d/%d long-term memories (%d/%d tokens)",
            len(context.short_term),
            len(scored_short),
            len(context.long_term),
            len(scored_long),
            current_tokens,
            max_tokens,
        )
        return context


def build_injection_prompt(context: MemoryContext) -> str:
    """Render selected memories as a prompt section for the calling agent."""
    parts = []
    if context.long_term:
        parts.append("## Long-term Memory (Established Facts)")
        parts.append("\n".join(f"{i}. {m}" for i, m in enumerate(context.long_term, 1)))
    if context.short_term:
        parts.append("\n## Recent Context")
        parts.append("\n".join(f"{i}. {m}" for i, m in enumerate(context.short_term, 1)))
    if not parts:
        return NO_MEMORIES_PROMPT
    return "\n".join(parts)
