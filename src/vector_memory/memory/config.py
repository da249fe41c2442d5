"""
Memory engine configuration.

Packing thresholds and heuristic scores are empirically chosen, so they live
here as tunable parameters instead of literals in the algorithms.
"""

import os
from dataclasses import dataclass

DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class MemoryConfig:
    """Configuration for compression, retrieval and storage."""

    # Collaborators
    chat_model: str = DEFAULT_CHAT_MODEL
    chat_model_provider: str = ""  # empty = let init_chat_model infer it
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_provider: str = "openai"
    api_key: str = ""
    base_url: str = ""
    request_timeout: float = 30.0

    # Compression
    default_target_ratio: float = 0.3
    compression_temperature: float = 0.3
    compression_output_headroom: int = 200  # extra output tokens over target

    # Retrieval packing
    default_max_tokens: int = 2000
    short_term_budget_ratio: float = 0.4
    short_term_min_relevance: float = 0.3
    long_term_min_relevance: float = 0.2
    short_term_candidate_limit: int = 50
    long_term_candidate_limit: int = 100

    # Storage
    default_ttl_hours: float = 24
    default_importance: float = 0.5
    extracted_fact_importance: float = 0.7
    summary_max_chars: int = 100

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Load configuration from environment variables."""
        return cls(
            chat_model=os.getenv("MEMORY_CHAT_MODEL", DEFAULT_CHAT_MODEL),
            chat_model_provider=os.getenv("MEMORY_CHAT_MODEL_PROVIDER", ""),
            embedding_model=os.getenv("MEMORY_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_provider=os.getenv("MEMORY_EMBEDDING_PROVIDER", "openai"),
            api_key=os.getenv("API_KEY") or os.getenv("OPENAI_API_KEY") or "",
            base_url=os.getenv("API_BASE_URL") or os.getenv("OPENAI_BASE_URL") or "",
            request_timeout=_env_float("MEMORY_REQUEST_TIMEOUT", 30.0),
            default_target_ratio=_env_float("MEMORY_TARGET_RATIO", 0.3),
            default_max_tokens=_env_int("MEMORY_MAX_TOKENS", 2000),
            short_term_budget_ratio=_env_float("MEMORY_SHORT_TERM_BUDGET_RATIO", 0.4),
            short_term_min_relevance=_env_float("MEMORY_SHORT_TERM_MIN_RELEVANCE", 0.3),
            long_term_min_relevance=_env_float("MEMORY_LONG_TERM_MIN_RELEVANCE", 0.2),
            short_term_candidate_limit=_env_int("MEMORY_SHORT_TERM_CANDIDATES", 50),
            long_term_candidate_limit=_env_int("MEMORY_LONG_TERM_CANDIDATES", 100),
            default_ttl_hours=_env_float("MEMORY_DEFAULT_TTL_HOURS", 24),
            default_importance=_env_float("MEMORY_DEFAULT_IMPORTANCE", 0.5),
            extracted_fact_importance=_env_float("MEMORY_EXTRACTED_IMPORTANCE", 0.7),
        )
