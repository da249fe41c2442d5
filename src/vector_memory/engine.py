"""
Memory engine

Caller-facing operations for agent memory:

- compress: summarize a conversation into a narrative plus key points
- store_memory: persist short-term (expiring) or long-term (durable) memories,
  or extract facts from a conversation into long-term memory
- retrieve_context: pick the memories relevant to a query within a token
  budget and render them as an injection prompt
- delete_memories / check_limits / score_importance / extract_facts

Every consuming or mutating operation is gated by the caller's tier before it
runs. The tier name and monthly usage totals are resolved by the caller.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional

from dotenv import load_dotenv

from .memory import (
    Category,
    CompressionResult,
    ContextRetriever,
    ConversationCompressor,
    Fact,
    FactExtractor,
    ImportanceScorer,
    InvalidInputError,
    LimitCheck,
    MemoryConfig,
    MemoryContext,
    MemoryKind,
    MemoryRecord,
    MemoryStore,
    Message,
    QuotaExceededError,
    Source,
    TIER_LIMITS,
    TierLimits,
    build_injection_prompt,
    check_limits,
    create_completer,
    create_embedder,
    create_store,
    estimate_tokens,
    short_term_expiry,
)
from .memory.extractor import make_summary
from .memory.models import utcnow

logger = logging.getLogger(__name__)


# .env overrides the process environment
load_dotenv(override=True)


@dataclass
class InjectionResult:
    """Retrieved context plus the prompt text to inject into the agent."""

    context: MemoryContext
    injection_prompt: str
    token_count: int

    def to_dict(self) -> dict:
        return {
            "context": self.context.to_dict(),
            "injectionPrompt": self.injection_prompt,
            "tokenCount": self.token_count,
        }


class MemoryEngine:
    """
    Agent memory engine.

    Usage:
        engine = MemoryEngine()
        engine.store_memory("agent-1", "User prefers dark mode", kind="long", tier="pro")
        result = engine.retrieve_context("agent-1", "what theme should I use?", tier="pro")
        print(result.injection_prompt)

    Collaborators default to LangChain models built from ``MemoryConfig`` and
    a store chosen by ``DATABASE_URL``; pass stubs to run without a provider.
    """

    def __init__(
        self,
        config: Optional[MemoryConfig] = None,
        completer=None,
        embedder=None,
        store: Optional[MemoryStore] = None,
        tier_limits: Mapping[str, TierLimits] = TIER_LIMITS,
    ):
        self.config = config or MemoryConfig.from_env()
        self.completer = completer or create_completer(self.config)
        self.embedder = embedder or create_embedder(self.config)
        self.store = store or create_store(os.getenv("DATABASE_URL"))
        self.tier_limits = tier_limits

        self.compressor = ConversationCompressor(
            self.completer,
            default_target_ratio=self.config.default_target_ratio,
            temperature=self.config.compression_temperature,
            output_headroom=self.config.compression_output_headroom,
        )
        self.importance_scorer = ImportanceScorer(completer=self.completer)
        self.fact_extractor = FactExtractor(
            self.completer,
            summary_max_chars=self.config.summary_max_chars,
        )
        self.retriever = ContextRetriever(
            self.embedder,
            short_term_budget_ratio=self.config.short_term_budget_ratio,
            short_term_min_relevance=self.config.short_term_min_relevance,
            long_term_min_relevance=self.config.long_term_min_relevance,
        )

    # ── Tier policy ──

    def check_limits(self, tier: Optional[str], usage: Optional[Mapping[str, int]] = None) -> LimitCheck:
        return check_limits(tier, usage, self.tier_limits)

    def _require(self, tier: Optional[str], usage: Mapping[str, int]) -> None:
        check = self.check_limits(tier, usage)
        if not check.allowed:
            logger.info("Refused by tier %s: %s", tier, check.reason)
            raise QuotaExceededError(check.reason, check)

    # ── Scoring / extraction ──

    def score_importance(self, message) -> float:
        return self.importance_scorer.score(message)

    def score_messages(self, messages: list) -> list[float]:
        """Importance score for each message, in order."""
        return [self.importance_scorer.score(m) for m in messages]

    def extract_facts(self, text: str) -> list[Fact]:
        return self.fact_extractor.extract(text)

    # ── Compression ──

    def compress(
        self,
        messages: list,
        target_ratio: Optional[float] = None,
        tier: Optional[str] = None,
        monthly_tokens: int = 0,
    ) -> CompressionResult:
        """
        Compress a conversation after checking the tier's monthly token quota.

        Raises:
            InvalidInputError: no messages, or a bad target ratio.
            QuotaExceededError: the monthly token quota would be exceeded.
            CollaboratorError: the summarization call failed.
        """
        if not messages:
            raise InvalidInputError("messages must not be empty")
        messages = [Message.coerce(m) for m in messages]
        incoming = sum(estimate_tokens(m.content) for m in messages)
        self._require(tier, {"tokens": monthly_tokens + incoming})
        return self.compressor.compress(messages, target_ratio)

    # ── Storage ──

    def store_memory(
        self,
        agent_id: str,
        content: str,
        kind: str = "short",
        category: str = "fact",
        importance: Optional[float] = None,
        ttl_hours: Optional[float] = None,
        tier: Optional[str] = None,
        monthly_tokens: int = 0,
        now: Optional[datetime] = None,
    ) -> list[MemoryRecord]:
        """
        Store memories for an agent.

        Args:
            agent_id: Owning agent.
            content: Memory text, or a conversation when kind="extract".
            kind: "short", "long" or "extract".
            category: Long-term category (ignored for other kinds).
            importance: 0..1; ``config.default_importance`` when omitted.
            ttl_hours: Short-term lifetime, capped by the tier's retention window.
            tier: Caller's tier name.
            monthly_tokens: Tokens already used this month.

        Returns the stored records (several for "extract", possibly none).
        """
        if not agent_id or not content:
            raise InvalidInputError("agent_id and content are required")
        self._require(tier, {"tokens": monthly_tokens + estimate_tokens(content)})
        now = now or utcnow()

        if kind == "short":
            return [self._store_short_term(agent_id, content, importance, ttl_hours, tier, now)]
        if kind == "long":
            return [self._store_long_term(agent_id, content, category, importance, tier, now)]
        if kind == "extract":
            return self._store_extracted(agent_id, content, tier, now)
        raise InvalidInputError(f"Invalid memory kind: {kind!r}")

    def _resolve_importance(self, importance: Optional[float]) -> float:
        if importance is None:
            return self.config.default_importance
        return max(0.0, min(1.0, float(importance)))

    def _store_short_term(self, agent_id, content, importance, ttl_hours, tier, now) -> MemoryRecord:
        ttl = self.config.default_ttl_hours if ttl_hours is None else ttl_hours
        record = MemoryRecord(
            agent_id=agent_id,
            kind=MemoryKind.SHORT,
            content=content,
            embedding=self.embedder.embed(content),
            importance=self._resolve_importance(importance),
            created_at=now,
            last_accessed=now,
            expires_at=short_term_expiry(tier, ttl, now, self.tier_limits),
        )
        self.store.add(record)
        logger.info("Stored short-term memory %s for agent %s (expires %s)",
                    record.id, agent_id, record.expires_at.isoformat())
        return record

    def _store_long_term(self, agent_id, content, category, importance, tier, now) -> MemoryRecord:
        try:
            category = Category(category)
        except ValueError as e:
            raise InvalidInputError(f"Invalid category: {category!r}") from e
        self._require(tier, {"memories": self.store.count_long_term(agent_id)})
        record = MemoryRecord(
            agent_id=agent_id,
            kind=MemoryKind.LONG,
            content=content,
            embedding=self.embedder.embed(content),
            importance=self._resolve_importance(importance),
            created_at=now,
            last_accessed=now,
            category=category,
            summary=make_summary(content, self.config.summary_max_chars),
            source=Source.USER_PROVIDED,
        )
        self.store.add(record)
        logger.info("Stored long-term %s memory %s for agent %s",
                    record.category.value, record.id, agent_id)
        return record

    def _store_extracted(self, agent_id, conversation, tier, now) -> list[MemoryRecord]:
        facts = self.fact_extractor.extract(conversation)
        stored = []
        for fact in facts:
            check = self.check_limits(tier, {"memories": self.store.count_long_term(agent_id)})
            if not check.allowed:
                logger.warning(
                    "Stopped storing extracted facts for agent %s after %d of %d: %s",
                    agent_id, len(stored), len(facts), check.reason,
                )
                break
            record = MemoryRecord(
                agent_id=agent_id,
                kind=MemoryKind.LONG,
                content=fact.content,
                embedding=self.embedder.embed(fact.content),
                importance=self.config.extracted_fact_importance,
                created_at=now,
                last_accessed=now,
                category=fact.category,
                summary=fact.summary,
                source=Source.AUTO_EXTRACTED,
            )
            self.store.add(record)
            stored.append(record)
        logger.info("Stored %d extracted facts for agent %s", len(stored), agent_id)
        return stored

    def delete_memories(
        self,
        agent_id: str,
        memory_id: Optional[str] = None,
        kind: str = "all",
    ) -> int:
        """Delete one memory or every memory of ``kind`` ("short", "long", "all")."""
        if not agent_id:
            raise InvalidInputError("agent_id is required")
        if kind not in ("short", "long", "all"):
            raise InvalidInputError(f"Invalid memory kind: {kind!r}")
        deleted = self.store.delete(agent_id, memory_id=memory_id, kind=kind)
        logger.info("Deleted %d memories for agent %s (kind=%s)", deleted, agent_id, kind)
        return deleted

    # ── Retrieval ──

    def retrieve_context(
        self,
        agent_id: str,
        query: str,
        max_tokens: Optional[int] = None,
        tier: Optional[str] = None,
        monthly_tokens: int = 0,
        now: Optional[datetime] = None,
    ) -> InjectionResult:
        """
        Retrieve the agent's memories relevant to ``query``.

        Selected memories have their access counters bumped.
        """
        if not agent_id or not query:
            raise InvalidInputError("agent_id and query are required")
        self._require(tier, {"tokens": monthly_tokens + estimate_tokens(query)})
        now = now or utcnow()
        budget = self.config.default_max_tokens if max_tokens is None else max_tokens

        short_term = self.store.list_short_term(
            agent_id, now=now, limit=self.config.short_term_candidate_limit
        )
        long_term = self.store.list_long_term(
            agent_id, limit=self.config.long_term_candidate_limit
        )
        context = self.retriever.retrieve(query, short_term, long_term, budget, now=now)
        if context.memory_ids:
            self.store.touch(context.memory_ids, now=now)

        prompt = build_injection_prompt(context)
        logger.info(
            "Retrieved %d short-term and %d long-term memories for agent %s",
            len(context.short_term), len(context.long_term), agent_id,
        )
        return InjectionResult(
            context=context,
            injection_prompt=prompt,
            token_count=estimate_tokens(prompt),
        )
