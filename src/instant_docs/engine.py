"""Document engine collaborator surface.

The document engine (sync protocol, local storage, rendering) is external.
This module only describes what the coordinator consumes from it and the
events it delivers back. Descriptors are opaque handles owned by the engine
and are compared by identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Protocol, Union


class EngineError(Exception):
    """Base exception for document engine errors."""

    pass


class AccessDeniedError(EngineError):
    """Access to the document was permanently revoked."""

    pass


class UserCancelledError(EngineError):
    """An operation was cancelled locally; only signals that a sync ended."""

    pass


class DocumentDescriptor(Protocol):
    """One downloaded or downloadable layer, as handed out by the engine."""

    @property
    def identifier(self) -> str: ...

    @property
    def layer_name(self) -> str: ...

    @property
    def is_downloaded(self) -> bool: ...

    def download(self, token: str) -> None:
        """Begin downloading with a token. Raises EngineError if it cannot start."""
        ...

    def reauthenticate(self, token: str) -> None: ...

    def remove_local_storage(self) -> None:
        """Purge this layer's local data. Raises EngineError."""
        ...


@dataclass(frozen=True, eq=False)
class EngineEvent:
    descriptor: DocumentDescriptor


@dataclass(frozen=True, eq=False)
class DownloadFinished(EngineEvent):
    pass


@dataclass(frozen=True, eq=False)
class DownloadFailed(EngineEvent):
    error: Exception


@dataclass(frozen=True, eq=False)
class SyncFailed(EngineEvent):
    error: Exception


@dataclass(frozen=True, eq=False)
class AuthenticationNeeded(EngineEvent):
    pass


@dataclass(frozen=True, eq=False)
class ReauthenticationSucceeded(EngineEvent):
    token: str


@dataclass(frozen=True, eq=False)
class ReauthenticationFailed(EngineEvent):
    error: Exception


AnyEngineEvent = Union[
    DownloadFinished,
    DownloadFailed,
    SyncFailed,
    AuthenticationNeeded,
    ReauthenticationSucceeded,
    ReauthenticationFailed,
]

EventHandler = Callable[[EngineEvent], None]


class DocumentEngine(Protocol):
    """The engine client. Events may be delivered from any thread."""

    def descriptor_for_token(self, token: str) -> DocumentDescriptor:
        """Resolve a token to its descriptor. Raises EngineError."""
        ...

    def remove_local_storage(self) -> None:
        """Purge all local data; invalidates every descriptor. Raises EngineError."""
        ...

    def set_listener(self, handler: EventHandler | None) -> None:
        """Register the single event handler."""
        ...
