"""
Memory record stores.

Two implementations of the same small interface:

  - InMemoryMemoryStore: process-local, used when no database is configured
  - PostgresMemoryStore: psycopg connection, embeddings in pgvector columns

Stores are plain key-scoped CRUD. Expiry is enforced by the queries that
list short-term memories; ``purge_expired`` only reclaims space.
"""

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from .models import MemoryKind, MemoryRecord, utcnow

logger = logging.getLogger(__name__)

_TABLES = {
    MemoryKind.SHORT: "short_term_memories",
    MemoryKind.LONG: "long_term_memories",
}


def _kinds(kind) -> tuple[MemoryKind, ...]:
    if kind in (None, "all"):
        return (MemoryKind.SHORT, MemoryKind.LONG)
    return (MemoryKind(kind),)


class MemoryStore:
    """Interface shared by the record stores."""

    def add(self, record: MemoryRecord) -> MemoryRecord:
        raise NotImplementedError

    def list_short_term(
        self, agent_id: str, now: Optional[datetime] = None, limit: int = 50
    ) -> list[MemoryRecord]:
        """Live short-term memories, most recently accessed first."""
        raise NotImplementedError

    def list_long_term(self, agent_id: str, limit: int = 100) -> list[MemoryRecord]:
        """Long-term memories, most recently accessed first."""
        raise NotImplementedError

    def count_long_term(self, agent_id: str) -> int:
        raise NotImplementedError

    def touch(self, memory_ids: Iterable[str], now: Optional[datetime] = None) -> int:
        """Bump access count and last-accessed time; returns records updated."""
        raise NotImplementedError

    def delete(
        self, agent_id: str, memory_id: Optional[str] = None, kind: str = "all"
    ) -> int:
        """Delete one memory, or all of an agent's memories of ``kind``."""
        raise NotImplementedError

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        raise NotImplementedError


class InMemoryMemoryStore(MemoryStore):
    """Dict-backed store; a lock keeps counter updates atomic."""

    def __init__(self):
        self._records: dict[str, MemoryRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: MemoryRecord) -> MemoryRecord:
        with self._lock:
            self._records[record.id] = record
        return record

    def get(self, memory_id: str) -> Optional[MemoryRecord]:
        return self._records.get(memory_id)

    def _select(self, agent_id: str, kind: MemoryKind) -> list[MemoryRecord]:
        with self._lock:
            return [
                r for r in self._records.values()
                if r.agent_id == agent_id and r.kind is kind
            ]

    def list_short_term(self, agent_id, now=None, limit=50):
        now = now or utcnow()
        records = [r for r in self._select(agent_id, MemoryKind.SHORT) if not r.is_expired(now)]
        records.sort(key=lambda r: r.last_accessed, reverse=True)
        return records[:limit]

    def list_long_term(self, agent_id, limit=100):
        records = self._select(agent_id, MemoryKind.LONG)
        records.sort(key=lambda r: r.last_accessed, reverse=True)
        return records[:limit]

    def count_long_term(self, agent_id):
        return len(self._select(agent_id, MemoryKind.LONG))

    def touch(self, memory_ids, now=None):
        now = now or utcnow()
        updated = 0
        with self._lock:
            for memory_id in memory_ids:
                record = self._records.get(memory_id)
                if record is not None:
                    record.mark_accessed(now)
                    updated += 1
        return updated

    def delete(self, agent_id, memory_id=None, kind="all"):
        kinds = _kinds(kind)
        with self._lock:
            doomed = [
                r.id for r in self._records.values()
                if r.agent_id == agent_id
                and r.kind in kinds
                and (memory_id is None or r.id == memory_id)
            ]
            for rid in doomed:
                del self._records[rid]
        return len(doomed)

    def purge_expired(self, now=None):
        now = now or utcnow()
        with self._lock:
            doomed = [r.id for r in self._records.values() if r.is_expired(now)]
            for rid in doomed:
                del self._records[rid]
        return len(doomed)


class PostgresMemoryStore(MemoryStore):
    """
    PostgreSQL store using pgvector for embedding columns.

    Expects a psycopg connection opened with ``autocommit=True`` and
    ``row_factory=dict_row``. Query errors propagate to the caller.
    """

    def __init__(self, pg_conn):
        self._pg_conn = pg_conn
        self._setup_tables()

    def _setup_tables(self):
        """Create memory tables with the pgvector extension."""
        try:
            with self._pg_conn.cursor() as cur:
                cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS short_term_memories (
                        id TEXT PRIMARY KEY,
                        agent_id TEXT NOT NULL,
                        content TEXT NOT NULL,
                        embedding vector,
                        importance REAL NOT NULL DEFAULT 0.5,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        last_accessed TIMESTAMPTZ NOT NULL DEFAULT now(),
                        access_count INT NOT NULL DEFAULT 0,
                        expires_at TIMESTAMPTZ NOT NULL
                    )
                """)
                cur.execute("""
                    CREATE TABLE IF NOT EXISTS long_term_memories (
                        id TEXT PRIMARY KEY,
                        agent_id TEXT NOT NULL,
                        content TEXT NOT NULL,
                        embedding vector,
                        importance REAL NOT NULL DEFAULT 0.5,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        last_accessed TIMESTAMPTZ NOT NULL DEFAULT now(),
                        access_count INT NOT NULL DEFAULT 0,
                        category TEXT NOT NULL DEFAULT 'fact',
                        summary TEXT NOT NULL DEFAULT '',
                        source TEXT NOT NULL DEFAULT 'user-provided'
                    )
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_short_term_agent_expiry
                    ON short_term_memories (agent_id, expires_at)
                """)
                cur.execute("""
                    CREATE INDEX IF NOT EXISTS idx_long_term_agent
                    ON long_term_memories (agent_id)
                """)
        except Exception as e:
            logger.warning("Failed to setup memory tables: %s", e)

    def add(self, record: MemoryRecord) -> MemoryRecord:
        with self._pg_conn.cursor() as cur:
            if record.is_short_term:
                cur.execute(
                    """
                    INSERT INTO short_term_memories
                        (id, agent_id, content, embedding, importance,
                         created_at, last_accessed, access_count, expires_at)
                    VALUES (%s, %s, %s, %s::vector, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.id, record.agent_id, record.content, record.embedding,
                        record.importance, record.created_at, record.last_accessed,
                        record.access_count, record.expires_at,
                    ),
                )
            else:
                cur.execute(
                    """
                    INSERT INTO long_term_memories
                        (id, agent_id, content, embedding, importance,
                         created_at, last_accessed, access_count,
                         category, summary, source)
                    VALUES (%s, %s, %s, %s::vector, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.id, record.agent_id, record.content, record.embedding,
                        record.importance, record.created_at, record.last_accessed,
                        record.access_count, record.category.value,
                        record.summary, record.source.value,
                    ),
                )
        return record

    @staticmethod
    def _row_to_record(row: dict, kind: MemoryKind) -> MemoryRecord:
        if kind is MemoryKind.SHORT:
            extra = {"expires_at": row["expires_at"]}
        else:
            extra = {
                "category": row["category"],
                "summary": row["summary"],
                "source": row["source"],
            }
        return MemoryRecord(
            id=row["id"],
            agent_id=row["agent_id"],
            kind=kind,
            content=row["content"],
            embedding=[float(x) for x in (row.get("embedding") or [])],
            importance=float(row["importance"]),
            created_at=row["created_at"],
            last_accessed=row["last_accessed"],
            access_count=row["access_count"],
            **extra,
        )

    def list_short_term(self, agent_id, now=None, limit=50):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, agent_id, content, embedding::real[] AS embedding,
                       importance, created_at, last_accessed, access_count, expires_at
                FROM short_term_memories
                WHERE agent_id = %s AND expires_at > %s
                ORDER BY last_accessed DESC
                LIMIT %s
                """,
                (agent_id, now or utcnow(), limit),
            )
            rows = cur.fetchall()
        return [self._row_to_record(r, MemoryKind.SHORT) for r in rows]

    def list_long_term(self, agent_id, limit=100):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                """
                SELECT id, agent_id, content, embedding::real[] AS embedding,
                       importance, created_at, last_accessed, access_count,
                       category, summary, source
                FROM long_term_memories
                WHERE agent_id = %s
                ORDER BY last_accessed DESC
                LIMIT %s
                """,
                (agent_id, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_record(r, MemoryKind.LONG) for r in rows]

    def count_long_term(self, agent_id):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "SELECT count(*) AS n FROM long_term_memories WHERE agent_id = %s",
                (agent_id,),
            )
            row = cur.fetchone()
        return int(row["n"]) if row else 0

    def touch(self, memory_ids, now=None):
        ids = list(memory_ids)
        if not ids:
            return 0
        updated = 0
        with self._pg_conn.cursor() as cur:
            for table in _TABLES.values():
                cur.execute(
                    f"""
                    UPDATE {table}
                    SET access_count = access_count + 1, last_accessed = %s
                    WHERE id = ANY(%s)
                    """,
                    (now or utcnow(), ids),
                )
                updated += cur.rowcount
        return updated

    def delete(self, agent_id, memory_id=None, kind="all"):
        deleted = 0
        with self._pg_conn.cursor() as cur:
            for k in _kinds(kind):
                if memory_id:
                    cur.execute(
                        f"DELETE FROM {_TABLES[k]} WHERE agent_id = %s AND id = %s",
                        (agent_id, memory_id),
                    )
                else:
                    cur.execute(
                        f"DELETE FROM {_TABLES[k]} WHERE agent_id = %s",
                        (agent_id,),
                    )
                deleted += cur.rowcount
        return deleted

    def purge_expired(self, now=None):
        with self._pg_conn.cursor() as cur:
            cur.execute(
                "DELETE FROM short_term_memories WHERE expires_at <= %s",
                (now or utcnow(),),
            )
            return cur.rowcount


def create_store(database_url: Optional[str] = None) -> MemoryStore:
    """
    PostgreSQL store when ``database_url`` is set, in-memory otherwise.

    A database that cannot be reached falls back to the in-memory store with
    a warning, so the engine stays usable without external services.
    """
    if database_url:
        try:
            from psycopg import Connection
            from psycopg.rows import dict_row

            conn = Connection.connect(
                database_url,
                autocommit=True,
                prepare_threshold=0,
                row_factory=dict_row,
            )
            return PostgresMemoryStore(conn)
        except Exception as e:
            logger.warning(
                "Failed to connect to PostgreSQL: %s. Falling back to in-memory store.", e
            )
    return InMemoryMemoryStore()
