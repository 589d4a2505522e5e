"""Errors raised by the client core."""

from __future__ import annotations


class CoreError(Exception):
    """Base class of every error raised by the client core."""


class ConfigError(CoreError):
    """A configuration field is missing or invalid."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"invalid config: {field}: {reason}")


class ConnectError(CoreError):
    """The client failed to connect to the server."""

    def __init__(self, err: BaseException) -> None:
        self.err = err
        super().__init__(f"connect error: {err}")
        self.__cause__ = err


class AuthError(CoreError):
    """The server rejected the client's authentication."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"authentication error, HTTP status code: {status_code}")


class DialError(CoreError):
    """The server rejected a TCP or UDP dial request."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"dial error: {message}")


class ClosedError(CoreError):
    """The connection to the server has been closed."""

    def __init__(self, err: BaseException | None = None) -> None:
        self.err = err
        if err is None:
            super().__init__("connection closed")
        else:
            super().__init__(f"connection closed: {err}")
            self.__cause__ = err


class ProtocolError(CoreError):
    """A peer sent a malformed or unexpected request, response or message."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"protocol error: {message}")