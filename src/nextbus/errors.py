"""
Error types for the NextBus client.

Every fallible step raises a subclass of NextBusError:
- BuildRequestError: the parameters don't fit the command (no network call made)
- TransportError: the HTTP GET failed (connection, status, or read failure)
- DecodeError: the response could not be turned into a domain aggregate
"""
from typing import Optional


class NextBusError(Exception):
    """Base class for all NextBus client failures."""


class BuildRequestError(NextBusError):
    """Parameter set violates the rules of its command."""

    def __init__(self, message: str = "Error building request"):
        super().__init__(message)


class TransportError(NextBusError):
    """
    HTTP transport failure.

    The underlying requests exception (if any) is chained as __cause__.
    """

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class DecodeError(NextBusError):
    """Response XML is malformed, or a required attribute is missing/invalid."""

    def __init__(self, message: str = "Error parsing XML"):
        super().__init__(message)


class ServerError(DecodeError):
    """The feed answered with an <Error> element instead of data."""

    def __init__(self, message: str, should_retry: bool = False):
        super().__init__(message)
        self.should_retry = should_retry
