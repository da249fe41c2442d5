"""
Two-tier agent memory with budgeted retrieval.

- Short-term memories expire after a tier-bounded TTL
- Long-term memories are categorized facts kept until deleted

Conversations are compressed into a summary plus key points, messages are
scored for importance, and retrieval ranks memories by embedding similarity
weighted by importance before packing them into a token budget (~40% for
short-term context, the rest for long-term facts).
"""

from .collaborators import (
    ChatModelCompleter,
    Completer,
    Embedder,
    EmbeddingsEmbedder,
    create_completer,
    create_embedder,
)
from .config import MemoryConfig
from .exceptions import (
    CollaboratorError,
    InvalidInputError,
    MemoryEngineError,
    QuotaExceededError,
)
from .extractor import FactExtractor
from .importance import ImportanceScorer
from .models import (
    Category,
    CompressionResult,
    Fact,
    MemoryContext,
    MemoryKind,
    MemoryRecord,
    Message,
    Role,
    Source,
)
from .retriever import ContextRetriever, build_injection_prompt, cosine_similarity
from .store import InMemoryMemoryStore, MemoryStore, PostgresMemoryStore, create_store
from .summarizer import ConversationCompressor
from .tiers import (
    TIER_LIMITS,
    LimitCheck,
    TierLimits,
    check_limits,
    get_tier_limits,
    short_term_expiry,
)
from .token_budget import estimate_message_tokens, estimate_tokens

__all__ = [
    "Category",
    "ChatModelCompleter",
    "CollaboratorError",
    "Completer",
    "CompressionResult",
    "ContextRetriever",
    "ConversationCompressor",
    "Embedder",
    "EmbeddingsEmbedder",
    "Fact",
    "FactExtractor",
    "ImportanceScorer",
    "InMemoryMemoryStore",
    "InvalidInputError",
    "LimitCheck",
    "MemoryConfig",
    "MemoryContext",
    "MemoryEngineError",
    "MemoryKind",
    "MemoryRecord",
    "MemoryStore",
    "Message",
    "PostgresMemoryStore",
    "QuotaExceededError",
    "Role",
    "Source",
    "TIER_LIMITS",
    "TierLimits",
    "build_injection_prompt",
    "check_limits",
    "cosine_similarity",
    "create_completer",
    "create_embedder",
    "create_store",
    "estimate_message_tokens",
    "estimate_tokens",
    "get_tier_limits",
    "short_term_expiry",
]
