"""
Tests for the memory engine facade, stores and LangChain adapters.
"""

import json
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from conftest import make_completer, make_embedder
from vector_memory import MemoryEngine
from vector_memory.memory.collaborators import (
    ChatModelCompleter,
    EmbeddingsEmbedder,
    create_completer,
)
from vector_memory.memory.config import MemoryConfig
from vector_memory.memory.exceptions import (
    CollaboratorError,
    InvalidInputError,
    QuotaExceededError,
)
from vector_memory.memory.models import Category, MemoryKind, MemoryRecord, Message, Source
from vector_memory.memory.retriever import NO_MEMORIES_PROMPT
from vector_memory.memory.store import InMemoryMemoryStore, PostgresMemoryStore, create_store
from vector_memory.memory.tiers import LimitCheck, TierLimits
from vector_memory.memory.token_budget import estimate_tokens

VECTORS = {
    "favorite color": (1.0, 0.0, 0.0),
    "User's favorite color is blue": (1.0, 0.0, 0.0),
    "User mentioned blue again today": (0.9, 0.1, 0.0),
    "Discussed weekend hiking plans": (0.0, 1.0, 0.0),
}


def _engine(reply="", vectors=None, tier_limits=None):
    kwargs = {}
    if tier_limits is not None:
        kwargs["tier_limits"] = tier_limits
    return MemoryEngine(
        config=MemoryConfig(),
        completer=make_completer(reply),
        embedder=make_embedder(vectors if vectors is not None else VECTORS),
        store=InMemoryMemoryStore(),
        **kwargs,
    )


# ── Compression Tests ──


class TestEngineCompress:
    def test_compress(self):
        engine = _engine("SUMMARY: talked about tea\nKEY_POINTS:\n- likes tea")
        result = engine.compress(
            [{"role": "user", "content": "I really like green tea in the morning"}],
            tier="pro",
        )
        assert result.compressed == "talked about tea"
        assert result.key_points == ["likes tea"]
        assert result.to_dict()["keyPoints"] == ["likes tea"]

    def test_monthly_token_quota(self):
        engine = _engine("SUMMARY: x")
        with pytest.raises(QuotaExceededError) as exc:
            engine.compress(
                [Message(role="user", content="hello")],
                tier="free",
                monthly_tokens=49_999,
            )
        assert exc.value.reason == "Monthly token limit reached (50000)"
        assert isinstance(exc.value.limit_check, LimitCheck)
        engine.completer.complete.assert_not_called()

    def test_enterprise_has_no_token_quota(self):
        engine = _engine("SUMMARY: x")
        result = engine.compress(
            [Message(role="user", content="hello")], tier="enterprise", monthly_tokens=10**12
        )
        assert result.compressed == "x"

    def test_empty_messages(self):
        with pytest.raises(InvalidInputError):
            _engine().compress([], tier="pro")

    def test_invalid_role(self):
        engine = _engine("SUMMARY: x")
        with pytest.raises(InvalidInputError):
            engine.compress([{"role": "tool", "content": "result"}], tier="pro")
        engine.completer.complete.assert_not_called()

    def test_score_messages(self):
        engine = _engine("0.4")
        scores = engine.score_messages([
            Message(role="user", content="my password is swordfish"),
            Message(role="assistant", content="ok"),
            Message(role="user", content="Can you describe how tides work on Earth?"),
        ])
        assert scores == [0.95, 0.3, 0.4]


# ── Storage Tests ──


class TestEngineStore:
    def test_short_term_expiry_capped_by_tier(self, now):
        engine = _engine()
        [record] = engine.store_memory(
            "agent-1", "Discussed weekend hiking plans",
            kind="short", importance=0.6, ttl_hours=72, tier="free", now=now,
        )
        assert record.kind is MemoryKind.SHORT
        assert record.expires_at == now + timedelta(hours=24)
        assert record.embedding == [0.0, 1.0, 0.0]
        assert record.importance == 0.6

    def test_short_term_default_ttl(self, now):
        engine = _engine()
        [record] = engine.store_memory(
            "agent-1", "Discussed weekend hiking plans", importance=0.5, tier="pro", now=now
        )
        assert record.expires_at == now + timedelta(hours=24)

    def test_default_importance_when_omitted(self, now):
        engine = _engine("0.1")
        [short] = engine.store_memory(
            "agent-1", "The API key rotates every Monday", tier="pro", now=now
        )
        [long] = engine.store_memory(
            "agent-1", "The user likes to hike on weekends in the hills",
            kind="long", tier="pro", now=now,
        )
        assert short.importance == 0.5
        assert long.importance == 0.5
        engine.completer.complete.assert_not_called()

    def test_default_importance_from_config(self, now):
        engine = _engine()
        engine.config.default_importance = 0.6
        [record] = engine.store_memory("agent-1", "Remember the blue theme", tier="pro", now=now)
        assert record.importance == 0.6

    def test_long_term(self, now):
        engine = _engine()
        content = "User's favorite color is blue. " + "x" * 120
        [record] = engine.store_memory(
            "agent-1", content, kind="long", category="preference", importance=0.8,
            tier="pro", now=now,
        )
        assert record.kind is MemoryKind.LONG
        assert record.category is Category.PREFERENCE
        assert record.source is Source.USER_PROVIDED
        assert record.summary == content[:100] + "..."
        assert record.expires_at is None
        assert engine.store.count_long_term("agent-1") == 1

    def test_long_term_count_cap(self, now):
        table = {"free": TierLimits(1, 100, 50_000, 1, 2)}
        engine = _engine(tier_limits=table)
        for i in range(2):
            engine.store_memory("agent-1", f"fact number {i}", kind="long", importance=0.5, now=now)
        with pytest.raises(QuotaExceededError, match="Long-term memory limit reached"):
            engine.store_memory("agent-1", "one fact too many", kind="long", importance=0.5, now=now)
        assert engine.store.count_long_term("agent-1") == 2

    def test_extract(self, now):
        reply = json.dumps({"facts": [
            {"category": "preference", "content": "Prefers email", "summary": "Email"},
            {"category": "commitment", "content": "Will send report Friday", "summary": "Report"},
        ]})
        engine = _engine(reply)
        records = engine.store_memory(
            "agent-1", "User: email me. I'll send the report Friday.",
            kind="extract", tier="pro", now=now,
        )
        assert [r.content for r in records] == ["Prefers email", "Will send report Friday"]
        assert all(r.source is Source.AUTO_EXTRACTED for r in records)
        assert all(r.importance == 0.7 for r in records)
        assert records[1].category is Category.COMMITMENT

    def test_extract_stops_at_cap(self, now):
        facts = [{"category": "fact", "content": f"fact {i}", "summary": f"f{i}"} for i in range(3)]
        table = {"free": TierLimits(1, 100, 50_000, 1, 2)}
        engine = _engine(json.dumps(facts), tier_limits=table)
        records = engine.store_memory("agent-1", "long conversation", kind="extract", now=now)
        assert len(records) == 2

    def test_extract_malformed_reply(self, now):
        engine = _engine("I could not find any facts, sorry!")
        assert engine.store_memory("agent-1", "User: hi", kind="extract", tier="pro", now=now) == []
        assert engine.extract_facts("User: hi") == []

    def test_invalid_kind_and_category(self):
        engine = _engine()
        with pytest.raises(InvalidInputError):
            engine.store_memory("agent-1", "text", kind="medium", importance=0.5, tier="pro")
        with pytest.raises(InvalidInputError):
            engine.store_memory("agent-1", "text", kind="long", category="gossip", importance=0.5, tier="pro")

    def test_missing_content(self):
        with pytest.raises(InvalidInputError):
            _engine().store_memory("agent-1", "", tier="pro")

    def test_embedding_failure_propagates(self):
        engine = _engine()
        engine.embedder.embed.side_effect = CollaboratorError("embedding service down")
        with pytest.raises(CollaboratorError):
            engine.store_memory("agent-1", "something", importance=0.5, tier="pro")
        assert engine.store.list_short_term("agent-1") == []

    def test_delete(self, now):
        engine = _engine()
        [short] = engine.store_memory("agent-1", "Discussed weekend hiking plans", importance=0.5, tier="pro", now=now)
        engine.store_memory("agent-1", "User's favorite color is blue", kind="long", importance=0.5, tier="pro", now=now)
        engine.store_memory("agent-2", "User's favorite color is blue", kind="long", importance=0.5, tier="pro", now=now)

        assert engine.delete_memories("agent-1", memory_id=short.id, kind="short") == 1
        assert engine.delete_memories("agent-1", kind="all") == 1
        assert engine.store.count_long_term("agent-2") == 1
        with pytest.raises(InvalidInputError):
            engine.delete_memories("agent-1", kind="medium")


# ── Retrieval Tests ──


class TestEngineRetrieve:
    def _seed(self, engine, now):
        engine.store_memory("agent-1", "User's favorite color is blue",
                            kind="long", category="preference", importance=0.9, tier="pro", now=now)
        engine.store_memory("agent-1", "User mentioned blue again today",
                            importance=0.8, tier="pro", now=now)
        engine.store_memory("agent-1", "Discussed weekend hiking plans",
                            importance=0.9, tier="pro", now=now)

    def test_retrieve_context(self, now):
        engine = _engine()
        self._seed(engine, now)
        result = engine.retrieve_context("agent-1", "favorite color", tier="pro", now=now + timedelta(hours=1))

        assert result.context.short_term == ["User mentioned blue again today"]
        assert result.context.long_term == ["User's favorite color is blue"]
        assert result.injection_prompt.startswith("## Long-term Memory (Established Facts)\n1. User's favorite color is blue")
        assert "## Recent Context\n1. User mentioned blue again today" in result.injection_prompt
        assert result.token_count == estimate_tokens(result.injection_prompt)
        assert set(result.to_dict()) == {"context", "injectionPrompt", "tokenCount"}

    def test_selected_memories_touched(self, now):
        engine = _engine()
        self._seed(engine, now)
        later = now + timedelta(hours=1)
        result = engine.retrieve_context("agent-1", "favorite color", tier="pro", now=later)
        for memory_id in result.context.memory_ids:
            record = engine.store.get(memory_id)
            assert record.access_count == 1
            assert record.last_accessed == later
        hiking = [r for r in engine.store.list_short_term("agent-1", now=later)
                  if r.content.startswith("Discussed")]
        assert hiking[0].access_count == 0

    def test_expired_memories_not_retrieved(self, now):
        engine = _engine()
        engine.store_memory("agent-1", "User mentioned blue again today",
                            importance=0.9, tier="free", now=now - timedelta(days=2))
        result = engine.retrieve_context("agent-1", "favorite color", tier="free", now=now)
        assert result.context.short_term == []
        assert result.injection_prompt == NO_MEMORIES_PROMPT

    def test_other_agents_isolated(self, now):
        engine = _engine()
        self._seed(engine, now)
        result = engine.retrieve_context("agent-2", "favorite color", tier="pro", now=now)
        assert result.context.is_empty()

    def test_token_quota(self, now):
        engine = _engine()
        with pytest.raises(QuotaExceededError):
            engine.retrieve_context("agent-1", "favorite color", tier="free", monthly_tokens=50_000)
        engine.embedder.embed.assert_not_called()

    def test_missing_query(self):
        with pytest.raises(InvalidInputError):
            _engine().retrieve_context("agent-1", "", tier="pro")


# ── Store Tests ──


def _record(agent_id="agent-1", kind=MemoryKind.SHORT, **kwargs):
    return MemoryRecord(agent_id=agent_id, content="c", kind=kind, embedding=[1.0], **kwargs)


class TestInMemoryStore:
    def test_list_short_term_live_and_ordered(self, now):
        store = InMemoryMemoryStore()
        old = store.add(_record(expires_at=now + timedelta(hours=1), last_accessed=now - timedelta(hours=2)))
        recent = store.add(_record(expires_at=now + timedelta(hours=1), last_accessed=now))
        store.add(_record(expires_at=now - timedelta(minutes=1)))
        assert [r.id for r in store.list_short_term("agent-1", now=now)] == [recent.id, old.id]
        assert len(store.list_short_term("agent-1", now=now, limit=1)) == 1

    def test_purge_expired(self, now):
        store = InMemoryMemoryStore()
        store.add(_record(expires_at=now - timedelta(minutes=1)))
        store.add(_record(expires_at=now + timedelta(minutes=1)))
        store.add(_record(kind=MemoryKind.LONG, category="fact", source="user-provided"))
        assert store.purge_expired(now) == 1
        assert store.purge_expired(now) == 0

    def test_touch_unknown_ids(self, now):
        store = InMemoryMemoryStore()
        record = store.add(_record(expires_at=now + timedelta(hours=1)))
        assert store.touch([record.id, "missing"], now=now) == 1
        assert store.get(record.id).access_count == 1


class TestPostgresStore:
    def _conn(self):
        conn = MagicMock()
        cur = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cur
        return conn, cur

    def test_setup_creates_tables(self):
        conn, cur = self._conn()
        PostgresMemoryStore(conn)
        statements = " ".join(call.args[0] for call in cur.execute.call_args_list)
        assert "CREATE EXTENSION IF NOT EXISTS vector" in statements
        assert "short_term_memories" in statements
        assert "long_term_memories" in statements

    def test_setup_failure_is_not_fatal(self):
        conn, cur = self._conn()
        cur.execute.side_effect = RuntimeError("permission denied")
        PostgresMemoryStore(conn)

    def test_count_long_term(self):
        conn, cur = self._conn()
        store = PostgresMemoryStore(conn)
        cur.fetchone.return_value = {"n": 7}
        assert store.count_long_term("agent-1") == 7

    def test_list_long_term_rows(self, now):
        conn, cur = self._conn()
        store = PostgresMemoryStore(conn)
        cur.fetchall.return_value = [{
            "id": "m1", "agent_id": "agent-1", "content": "likes tea",
            "embedding": [0.5, 0.5], "importance": 0.7,
            "created_at": now, "last_accessed": now, "access_count": 2,
            "category": "preference", "summary": "tea", "source": "auto-extracted",
        }]
        [record] = store.list_long_term("agent-1")
        assert record.category is Category.PREFERENCE
        assert record.source is Source.AUTO_EXTRACTED
        assert record.embedding == [0.5, 0.5]

    def test_query_errors_propagate(self):
        conn, cur = self._conn()
        store = PostgresMemoryStore(conn)
        cur.execute.side_effect = RuntimeError("connection lost")
        with pytest.raises(RuntimeError):
            store.count_long_term("agent-1")

    def test_create_store_without_url(self):
        assert isinstance(create_store(None), InMemoryMemoryStore)


# ── Collaborator Adapter Tests ──


class TestCollaborators:
    def test_chat_model_completer(self):
        mock_llm = MagicMock()
        mock_llm.bind.return_value.invoke.return_value = MagicMock(content="SUMMARY: ok")
        completer = ChatModelCompleter(mock_llm)

        assert completer.complete("system", "user text", temperature=0.3, max_output_tokens=50) == "SUMMARY: ok"
        mock_llm.bind.assert_called_once_with(temperature=0.3, max_tokens=50)
        [messages] = mock_llm.bind.return_value.invoke.call_args[0]
        assert isinstance(messages[0], SystemMessage)
        assert isinstance(messages[1], HumanMessage)
        assert messages[1].content == "user text"

    def test_chat_model_list_content(self):
        mock_llm = MagicMock()
        mock_llm.bind.return_value.invoke.return_value = MagicMock(
            content=[{"type": "text", "text": "0."}, {"type": "text", "text": "8"}]
        )
        assert ChatModelCompleter(mock_llm).complete("s", "u", temperature=0) == "0.8"

    def test_chat_model_failure_wrapped(self):
        mock_llm = MagicMock()
        mock_llm.bind.return_value.invoke.side_effect = TimeoutError("slow")
        with pytest.raises(CollaboratorError) as exc:
            ChatModelCompleter(mock_llm).complete("s", "u", temperature=0)
        assert isinstance(exc.value.__cause__, TimeoutError)

    def test_embeddings_embedder(self):
        mock_embeddings = MagicMock()
        mock_embeddings.embed_query.return_value = [1, 2]
        assert EmbeddingsEmbedder(mock_embeddings).embed("text") == [1.0, 2.0]

    def test_embeddings_failure_wrapped(self):
        mock_embeddings = MagicMock()
        mock_embeddings.embed_query.side_effect = RuntimeError("quota")
        with pytest.raises(CollaboratorError):
            EmbeddingsEmbedder(mock_embeddings).embed("text")

    def test_create_completer(self):
        config = MemoryConfig(chat_model="gpt-4o-mini", api_key="sk-test", chat_model_provider="openai")
        with patch("langchain.chat_models.init_chat_model") as init_chat_model:
            completer = create_completer(config)
        assert isinstance(completer, ChatModelCompleter)
        args, kwargs = init_chat_model.call_args
        assert args == ("gpt-4o-mini",)
        assert kwargs["model_provider"] == "openai"
        assert kwargs["api_key"] == "sk-test"
