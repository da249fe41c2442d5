"""Persistent, size-bounded memory for AI agents."""

from .engine import InjectionResult, MemoryEngine

__all__ = ["InjectionResult", "MemoryEngine"]

__version__ = "0.1.0"
