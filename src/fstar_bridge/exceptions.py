"""Exception hierarchy for the F* IDE bridge."""

from __future__ import annotations


class BridgeError(RuntimeError):
    """Base class for failures talking to an F* IDE subprocess."""

    def __init__(self, message: str, *, uri: str | None = None):
        super().__init__(message)
        self.uri = uri


class SessionSpawnError(BridgeError):
    """The F* executable could not be started for a document."""


class SessionTransportError(BridgeError):
    """A running F* session stopped accepting input."""


class NeverThrown(RuntimeError):
    """Raised by `never()` when a path assumed unreachable is reached.

    `env` carries the keyword payload passed to `never()` so the failing
    state is visible in logs.
    """

    def __init__(self, message: str, *, env: dict[str, object] | None = None):
        super().__init__(message)
        self.env = dict(env or {})
