"""Error taxonomy — fatal, transient transport, and user-input failures."""
from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


# ── Fatal: the process must exit ─────────────────────────────────────

class FatalError(BridgeError):
    """The bridge cannot continue; shut down and exit non-zero."""


class StartupError(FatalError):
    """A startup step (connect, login, team/channel lookup, join) failed."""


class StateError(FatalError):
    """The persisted state could not be read or written."""


class ReconnectExhausted(FatalError):
    """The event stream could not be re-established within the retry ceiling."""


# ── Transient: report and carry on ───────────────────────────────────

class TransportError(BridgeError):
    """A remote call to Mattermost or Twitter failed.

    ``status`` is the HTTP status code when the server answered, else ``None``.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class StreamClosed(TransportError):
    """The push-event stream ended or could not be opened."""


# ── User input ───────────────────────────────────────────────────────

class UserInputError(BridgeError):
    """A chat command was malformed; the message is replied verbatim."""
