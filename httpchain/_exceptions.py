"""
Exception hierarchy:

    HTTPChainError
    ├── BodyEncodingError
    ├── RequestBuildError
    ├── RequestConsumedError
    ├── TransportError
    │   ├── RequestTimedOut
    │   └── RequestCancelled
    ├── ResponseError
    ├── ScopeReleased
    └── EndOfStream  (also an EOFError)
"""

from __future__ import annotations

import typing

import httpx

if typing.TYPE_CHECKING:
    from ._scope import Scope

__all__ = [
    "BodyEncodingError",
    "EndOfStream",
    "HTTPChainError",
    "RequestBuildError",
    "RequestCancelled",
    "RequestConsumedError",
    "RequestTimedOut",
    "ResponseError",
    "ScopeReleased",
    "TransportError",
    "map_transport_error",
]


class HTTPChainError(Exception):
    """Base class for every error raised by httpchain."""


class BodyEncodingError(HTTPChainError):
    """The request body could not be encoded."""


class RequestBuildError(HTTPChainError):
    """The outbound request could not be constructed (bad method or URL)."""


class RequestConsumedError(HTTPChainError):
    """A request was executed more than once."""


class TransportError(HTTPChainError):
    """Dispatching the request, or reading its response, failed."""

    def __init__(
        self,
        message: str,
        *,
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        self.method = method
        self.url = url
        self.reason = message
        if method is not None and url is not None:
            message = f'{method} "{url}": {message}'
        super().__init__(message)

    def bind(self, method: str, url: str) -> TransportError:
        """Return a copy of this error tagged with the request it aborted."""
        return type(self)(self.reason, method=method, url=url)


class RequestTimedOut(TransportError):
    def __init__(
        self,
        message: str = "request timed out",
        *,
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message, method=method, url=url)


class RequestCancelled(TransportError):
    def __init__(
        self,
        message: str = "request cancelled",
        *,
        method: str | None = None,
        url: str | None = None,
    ) -> None:
        super().__init__(message, method=method, url=url)


class ScopeReleased(HTTPChainError):
    """Cause recorded by a scope that was released by its owner."""

    def __init__(self, message: str = "scope released") -> None:
        super().__init__(message)


class EndOfStream(HTTPChainError, EOFError):
    """No more data can be read from a response stream."""

    def __init__(self, message: str = "end of stream") -> None:
        super().__init__(message)


class ResponseError(HTTPChainError):
    """A completed exchange whose status code is outside ``[200, 400)``.

    Produced by :meth:`httpchain.Response.is_error`; the execution methods
    never raise it on their own.
    """

    def __init__(
        self,
        status: str,
        status_code: int,
        headers: httpx.Headers,
        body: bytes,
    ) -> None:
        self.status = status
        self.status_code = status_code
        self.headers = headers
        self.body = body
        super().__init__(body.decode("utf-8", errors="replace"))

    def body_string(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def __repr__(self) -> str:
        return f"<ResponseError [{self.status_code}]>"


def map_transport_error(
    exc: BaseException | None,
    scope: Scope | None,
    method: str,
    url: str,
) -> TransportError:
    """Classify a dispatch or read failure.

    When the execution scope is done, its cause wins: a deadline becomes
    :class:`RequestTimedOut`, anything else :class:`RequestCancelled`.  A
    transport-level timeout is :class:`RequestTimedOut` as well.
    """
    if scope is not None and scope.done():
        cause = scope.cause
        if isinstance(cause, TransportError):
            return cause.bind(method, url)
        return RequestCancelled(str(cause), method=method, url=url)
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimedOut(method=method, url=url)
    if exc is None:
        return TransportError("request failed", method=method, url=url)
    return TransportError(str(exc) or type(exc).__name__, method=method, url=url)
