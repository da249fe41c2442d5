"""
Memory data structures.

Short-term and long-term memories share one record type tagged by ``kind``;
the tier-specific fields are only meaningful for their own kind.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from .exceptions import InvalidInputError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MemoryKind(str, Enum):
    SHORT = "short"
    LONG = "long"


class Category(str, Enum):
    FACT = "fact"
    PREFERENCE = "preference"
    EVENT = "event"
    RELATIONSHIP = "relationship"
    COMMITMENT = "commitment"


class Source(str, Enum):
    USER_PROVIDED = "user-provided"
    AUTO_EXTRACTED = "auto-extracted"


# LangChain message class → role
_LANGCHAIN_ROLES = {
    "HumanMessage": Role.USER,
    "AIMessage": Role.ASSISTANT,
    "SystemMessage": Role.SYSTEM,
}


@dataclass
class Message:
    """A single conversational utterance fed to compression or scoring."""

    role: Role
    content: str
    importance: Optional[float] = None

    def __post_init__(self):
        try:
            self.role = Role(self.role)
        except ValueError as e:
            raise InvalidInputError(f"Invalid role: {self.role!r}") from e
        self.content = "" if self.content is None else str(self.content)

    def to_line(self) -> str:
        return f"{self.role.value}: {self.content}"

    @classmethod
    def from_langchain(cls, msg) -> "Message":
        """Convert a LangChain message (Human/AI/System) into a Message."""
        role = _LANGCHAIN_ROLES.get(type(msg).__name__.replace("Chunk", ""), Role.USER)
        content = msg.content
        if isinstance(content, list):
            parts = []
            for block in content:
                if isinstance(block, str):
                    parts.append(block)
                elif isinstance(block, dict) and block.get("type") == "text":
                    parts.append(block.get("text", ""))
            content = "\n".join(p for p in parts if p)
        return cls(role=role, content=str(content or ""))

    @classmethod
    def coerce(cls, value) -> "Message":
        """Accept a Message, a ``{"role", "content"}`` dict, or a LangChain message."""
        if isinstance(value, Message):
            return value
        if isinstance(value, dict):
            return cls(
                role=value.get("role", Role.USER),
                content=value.get("content"),
                importance=value.get("importance"),
            )
        return cls.from_langchain(value)


@dataclass
class MemoryRecord:
    """A stored memory owned by one agent."""

    agent_id: str
    content: str
    kind: MemoryKind = MemoryKind.SHORT
    embedding: list[float] = field(default_factory=list)
    importance: float = 0.5
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: datetime = field(default_factory=utcnow)
    access_count: int = 0

    # short-term only
    expires_at: Optional[datetime] = None

    # long-term only
    category: Optional[Category] = None
    summary: str = ""
    source: Optional[Source] = None

    def __post_init__(self):
        self.kind = MemoryKind(self.kind)
        if self.category is not None:
            self.category = Category(self.category)
        if self.source is not None:
            self.source = Source(self.source)

    @property
    def is_short_term(self) -> bool:
        return self.kind is MemoryKind.SHORT

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Long-term memories never expire; short-term ones expire at ``expires_at``."""
        if not self.is_short_term or self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())

    def mark_accessed(self, now: Optional[datetime] = None) -> None:
        """Update access timestamp and count."""
        self.last_accessed = now or utcnow()
        self.access_count += 1

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "agent_id": self.agent_id,
            "kind": self.kind.value,
            "content": self.content,
            "importance": self.importance,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
            "access_count": self.access_count,
        }
        if self.is_short_term:
            data["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        else:
            data["category"] = self.category.value if self.category else None
            data["summary"] = self.summary
            data["source"] = self.source.value if self.source else None
        return data


@dataclass
class Fact:
    """A discrete fact extracted from conversation text."""

    category: Category
    content: str
    summary: str

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category.value,
            "content": self.content,
            "summary": self.summary,
        }


@dataclass
class CompressionResult:
    compressed: str
    original_tokens: int
    compressed_tokens: int
    ratio: int  # percent saved
    key_points: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "compressed": self.compressed,
            "originalTokens": self.original_tokens,
            "compressedTokens": self.compressed_tokens,
            "ratio": self.ratio,
            "keyPoints": list(self.key_points),
        }


@dataclass
class MemoryContext:
    """
    Memories selected for a query.

    ``relevance_scores`` and ``memory_ids`` are aligned with the emission
    order: every short-term entry first, then every long-term entry.
    """

    short_term: list[str] = field(default_factory=list)
    long_term: list[str] = field(default_factory=list)
    relevance_scores: list[float] = field(default_factory=list)
    memory_ids: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.short_term and not self.long_term

    def to_dict(self) -> dict[str, Any]:
        return {
            "shortTerm": list(self.short_term),
            "longTerm": list(self.long_term),
            "relevanceScores": list(self.relevance_scores),
        }
