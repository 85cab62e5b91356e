"""
Exception taxonomy for the welcome bot.

Connector failures carry the HTTP status code when the platform returned one,
so throttling (429) and permission problems (403) can be told apart in logs.
"""
from typing import Iterable, Optional


class WelcomeBotError(Exception):
    """Base class for welcome bot errors."""
    pass


class ConfigurationError(WelcomeBotError, ValueError):
    """Required configuration is missing or invalid at startup."""

    def __init__(self, message: str, missing: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class ConnectorError(WelcomeBotError):
    """A call to the Bot Connector service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_throttled(self) -> bool:
        return self.status_code == 429


class ChannelOpenFailure(ConnectorError):
    """Creating the 1:1 conversation with a recipient failed."""
    pass


class DeliveryFailure(ConnectorError):
    """The conversation exists but the message was rejected."""
    pass


class EnumerationFailure(ConnectorError):
    """Listing the members of a team or conversation failed."""
    pass


class RecorderFailure(WelcomeBotError):
    """The membership state recorder could not persist a change."""
    pass


class InvalidActivityError(WelcomeBotError, ValueError):
    """An inbound activity body could not be read as a Bot Framework activity."""
    pass
