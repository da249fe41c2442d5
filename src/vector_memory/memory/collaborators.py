"""
Summarization and embedding collaborators.

The engine only ever needs two functions from a model provider:

  - complete(system_prompt, user_text, temperature, max_output_tokens) -> text
  - embed(text) -> vector

Anything with those methods can be passed in (tests use MagicMock stubs).
The LangChain adapters below back them with ``init_chat_model`` and
``init_embeddings`` so any provider LangChain supports can be configured.
"""

import logging
from typing import Optional, Protocol

from langchain_core.messages import HumanMessage, SystemMessage

from .config import MemoryConfig
from .exceptions import CollaboratorError

logger = logging.getLogger(__name__)


class Completer(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_text: str,
        temperature: float,
        max_output_tokens: Optional[int] = None,
    ) -> str: ...


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def _response_text(response) -> str:
    """Extract plain text from a chat model response."""
    content = response.content if hasattr(response, "content") else response
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return str(content or "")


class ChatModelCompleter:
    """Completer backed by a LangChain chat model."""

    def __init__(self, llm):
        self._llm = llm

    def complete(
        self,
        system_prompt: str,
        user_text: str,
        temperature: float,
        max_output_tokens: Optional[int] = None,
    ) -> str:
        bind_kwargs = {"temperature": temperature}
        if max_output_tokens:
            bind_kwargs["max_tokens"] = max_output_tokens
        try:
            llm = self._llm.bind(**bind_kwargs)
            response = llm.invoke([
                SystemMessage(content=system_prompt),
                HumanMessage(content=user_text),
            ])
        except Exception as e:
            raise CollaboratorError(f"Completion request failed: {e}") from e
        return _response_text(response)


class EmbeddingsEmbedder:
    """Embedder backed by a LangChain ``Embeddings`` model."""

    def __init__(self, embeddings):
        self._embeddings = embeddings

    def embed(self, text: str) -> list[float]:
        try:
            vector = self._embeddings.embed_query(text)
        except Exception as e:
            raise CollaboratorError(f"Embedding request failed: {e}") from e
        return [float(x) for x in vector]


def create_completer(config: MemoryConfig) -> ChatModelCompleter:
    """Build a chat model completer from configuration."""
    from langchain.chat_models import init_chat_model

    init_kwargs = {"timeout": config.request_timeout}
    if config.api_key:
        init_kwargs["api_key"] = config.api_key
    if config.base_url:
        init_kwargs["base_url"] = config.base_url

    provider_kwargs = {}
    if config.chat_model_provider:
        provider_kwargs["model_provider"] = config.chat_model_provider

    llm = init_chat_model(config.chat_model, **provider_kwargs, **init_kwargs)
    logger.info("Chat model ready: %s", config.chat_model)
    return ChatModelCompleter(llm)


def create_embedder(config: MemoryConfig) -> EmbeddingsEmbedder:
    """Build an embeddings embedder from configuration."""
    from langchain.embeddings import init_embeddings

    init_kwargs = {}
    if config.api_key:
        init_kwargs["api_key"] = config.api_key
    if config.base_url:
        init_kwargs["base_url"] = config.base_url

    embeddings = init_embeddings(
        config.embedding_model,
        provider=config.embedding_provider or None,
        **init_kwargs,
    )
    logger.info("Embedding model ready: %s", config.embedding_model)
    return EmbeddingsEmbedder(embeddings)
