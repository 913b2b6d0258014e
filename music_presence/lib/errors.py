"""Exception hierarchy for music-presence.

None of these are fatal to the service: the poll loop logs them and the
next tick re-evaluates from scratch.
"""


class PresenceError(Exception):
    """Base exception for all music-presence errors."""

    pass


class BridgeError(PresenceError):
    """The AppleScript bridge to the media player failed."""

    pass


class FetchError(PresenceError):
    """An HTTP fetch failed (network error, timeout, or non-200 status)."""

    def __init__(self, message: str, url: str = "", status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status


class ResolutionError(PresenceError):
    """A station name could not be resolved to a station id."""

    pass


class SendError(PresenceError):
    """The presence service rejected an activity update."""

    pass


class SessionStateError(PresenceError):
    """An operation was attempted in a session state that does not allow it."""

    pass


class ConfigurationError(PresenceError):
    """Errors related to configuration."""

    pass
