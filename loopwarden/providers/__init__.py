"""
Providers - Agentic CLI Adapters
================================

Adapters wrap the coding CLI a loop drives (claude, codex, ...) behind one
interface, selected by name from a registry.

Usage:
    from loopwarden.providers import create_provider, SessionOptions

    provider = create_provider("codex")
    argv = [provider.get_binary(), *provider.build_session_args(
        SessionOptions(prompt="Fix the failing tests", model="opus")
    )]
"""

from typing import Callable

from loopwarden.providers.base import (
    AnalysisOptions,
    ProviderAdapter,
    ProviderCapabilities,
    SessionOptions,
)
from loopwarden.providers.claude import ClaudeAdapter
from loopwarden.providers.codex import CodexAdapter
from loopwarden.providers.invoke import ProviderInvocationError, run_analysis, stream_session


class UnknownProviderError(Exception):
    """No adapter is registered under the requested name."""

    def __init__(self, name: str, available: list[str]):
        super().__init__(f"Unknown provider: {name}. Available providers: {', '.join(available)}")
        self.name = name
        self.available = available


_registry: dict[str, Callable[[], ProviderAdapter]] = {}


def register_provider(name: str, factory: Callable[[], ProviderAdapter]) -> None:
    _registry[name.lower()] = factory


def create_provider(name: str) -> ProviderAdapter:
    """
    Build an adapter by name (case-insensitive).

    Raises:
        UnknownProviderError: If nothing is registered under name
    """
    factory = _registry.get(name.lower())
    if factory is None:
        raise UnknownProviderError(name, list_providers())
    return factory()


def list_providers() -> list[str]:
    return list(_registry)


def has_provider(name: str) -> bool:
    return name.lower() in _registry


register_provider("claude", ClaudeAdapter)
register_provider("codex", CodexAdapter)


__all__ = [
    "AnalysisOptions",
    "ProviderAdapter",
    "ProviderCapabilities",
    "SessionOptions",
    "ClaudeAdapter",
    "CodexAdapter",
    "UnknownProviderError",
    "ProviderInvocationError",
    "run_analysis",
    "stream_session",
    "register_provider",
    "create_provider",
    "list_providers",
    "has_provider",
]
