"""
Shared test setup.

Adds ``src`` to sys.path so tests import the package without installing it,
and provides deterministic stub collaborators.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add the src directory to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

DEFAULT_VECTOR = [0.0, 0.0, 1.0]


def make_embedder(vectors: dict, default=None) -> MagicMock:
    """Embedder stub returning fixed vectors per text."""
    embedder = MagicMock()
    embedder.embed.side_effect = lambda text: list(vectors.get(text, default or DEFAULT_VECTOR))
    return embedder


def make_completer(reply: str = "") -> MagicMock:
    """Completer stub that always returns ``reply``."""
    completer = MagicMock()
    completer.complete.return_value = reply
    return completer


@pytest.fixture
def now():
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def completer():
    return make_completer()


@pytest.fixture
def embedder():
    return make_embedder({})
