"""Backend abstraction layer for sauna.

Defines the canonical event stream, the Provider and InteractiveSession
protocols, and provider selection. Backends yield ProviderEvent instances
that the renderer consumes without knowing which backend produced them.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Protocol

from sauna.config import DEFAULT_PROVIDER, PROVIDER_NAMES

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass
class SummaryInfo:
    """Token usage and timing for a completed session."""

    input_tokens: int
    output_tokens: int
    num_turns: int
    duration_ms: int


@dataclass
class TextDelta:
    """Streamed agent text. Never empty."""

    text: str


@dataclass
class ToolStart:
    """A tool invocation was announced."""

    name: str


@dataclass
class ToolEnd:
    """A tool invocation finished, with an optional one-line detail."""

    name: str
    detail: str | None = None


@dataclass
class ResultEvent:
    """Terminal event of a session or turn.

    A successful result carries a summary; a failed one carries errors.
    """

    success: bool
    summary: SummaryInfo | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, summary: SummaryInfo) -> ResultEvent:
        return cls(success=True, summary=summary)

    @classmethod
    def failed(cls, errors: list[str] | None = None) -> ResultEvent:
        return cls(success=False, errors=list(errors or []))


@dataclass
class ErrorEvent:
    """A non-terminal error reported by the backend."""

    message: str


ProviderEvent = TextDelta | ToolStart | ToolEnd | ResultEvent | ErrorEvent


@dataclass
class SessionConfig:
    """Configuration for a single-shot session."""

    prompt: str
    model: str | None = None
    context: list[str] = field(default_factory=list)


@dataclass
class InteractiveSessionConfig:
    """Configuration for a multi-turn session. The first message arrives via send()."""

    model: str | None = None
    context: list[str] = field(default_factory=list)


class SessionPhase(Enum):
    """Lifecycle of an interactive session."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    CLOSED = "closed"


class UnknownProviderError(ValueError):
    """Raised when an explicitly requested provider does not exist."""

    def __init__(self, name: str):
        self.name = name
        valid = ", ".join(PROVIDER_NAMES)
        super().__init__(f'Unknown provider "{name}". Valid providers: {valid}')


class ProviderUnavailableError(RuntimeError):
    """Raised when a session is requested from a provider that cannot run."""


class SessionClosedError(RuntimeError):
    """Raised when sending to an interactive session after close()."""


class InteractiveSession(Protocol):
    """A stateful multi-turn conversation.

    The REPL drives the turn loop::

        await session.send(user_input)
        async for event in session.stream():
            ...

    stream() yields one turn's events and ends after the ResultEvent.
    """

    session_id: str | None
    phase: SessionPhase

    async def send(self, message: str) -> None: ...

    def stream(self) -> AsyncIterator[ProviderEvent]: ...

    async def close(self) -> None: ...


class Provider(Protocol):
    """Contract every agent backend implements."""

    name: str
    install_hint: str

    def is_available(self) -> bool: ...

    def resolve_model(self, alias: str | None = None) -> str | None: ...

    def known_aliases(self) -> Mapping[str, str]: ...

    def create_session(self, config: SessionConfig) -> AsyncIterator[ProviderEvent]: ...

    def create_interactive_session(
        self, config: InteractiveSessionConfig
    ) -> InteractiveSession: ...


_CLAUDE_MODEL_RE = re.compile(r"^claude-")
_CODEX_MODEL_RE = re.compile(r"^(?:gpt-|codex-|o\d)")


def get_providers() -> Mapping[str, Provider]:
    """Return the read-only registry of provider singletons, keyed by name."""
    from sauna.backends.claude import CLAUDE_PROVIDER
    from sauna.backends.codex import CODEX_PROVIDER

    return MappingProxyType({
        CLAUDE_PROVIDER.name: CLAUDE_PROVIDER,
        CODEX_PROVIDER.name: CODEX_PROVIDER,
    })


def resolve_provider(provider_name: str | None = None, model: str | None = None) -> Provider:
    """Select a provider from an explicit name or by inferring it from the model.

    Only selects; availability is checked separately by the caller so that a
    bad provider name and missing credentials stay distinguishable.

    Args:
        provider_name: Explicit provider choice, e.g. from ``--provider``.
        model: Requested model name or alias.

    Returns:
        The matching Provider singleton.

    Raises:
        UnknownProviderError: If provider_name is given but not registered.

    """
    providers = get_providers()

    if provider_name is not None:
        provider = providers.get(provider_name)
        if provider is None:
            raise UnknownProviderError(provider_name)
        return provider

    if model:
        claude = providers["claude"]
        codex = providers["codex"]
        if _CLAUDE_MODEL_RE.match(model) or model in claude.known_aliases():
            return claude
        if _CODEX_MODEL_RE.match(model) or model in codex.known_aliases():
            return codex

    return providers[DEFAULT_PROVIDER]


__all__ = [
    "ErrorEvent",
    "InteractiveSession",
    "InteractiveSessionConfig",
    "Provider",
    "ProviderEvent",
    "ProviderUnavailableError",
    "ResultEvent",
    "SessionClosedError",
    "SessionConfig",
    "SessionPhase",
    "SummaryInfo",
    "TextDelta",
    "ToolEnd",
    "ToolStart",
    "UnknownProviderError",
    "get_providers",
    "resolve_provider",
]
