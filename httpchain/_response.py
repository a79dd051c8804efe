from __future__ import annotations

import datetime
import io
import json as _json
import threading
import typing
from typing import Protocol

import httpx

from ._exceptions import EndOfStream, ResponseError, map_transport_error
from ._scope import Scope

__all__ = [
    "Response",
    "ResponseStream",
    "ResponseUnmarshaler",
    "StreamReceiver",
]

T = typing.TypeVar("T")
T_co = typing.TypeVar("T_co", covariant=True)


class ResponseUnmarshaler(Protocol[T_co]):
    """Anything with an ``unmarshal(response)`` method.

    Plain callables ``(Response) -> T`` are accepted wherever an unmarshaler
    is expected.
    """

    def unmarshal(self, response: Response) -> T_co: ...


class StreamReceiver(Protocol[T_co]):
    """Anything with a ``recv(reader)`` method.

    Plain callables ``(io.BufferedReader) -> T`` are accepted wherever a
    receiver is expected.
    """

    def recv(self, reader: io.BufferedReader) -> T_co: ...


def status_line(response: httpx.Response) -> str:
    return f"{response.status_code} {response.reason_phrase}".rstrip()


class _ResponseHeader:
    _status: str
    _status_code: int
    _headers: httpx.Headers

    @property
    def status(self) -> str:
        """Status line without the protocol, e.g. ``"200 OK"``."""
        return self._status

    @property
    def status_code(self) -> int:
        return self._status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._headers

    def get_header(self, key: str) -> str:
        """First value of header ``key``, or ``""``."""
        values = self._headers.get_list(key)
        return values[0] if values else ""


class Response(_ResponseHeader):
    """A completed exchange whose body has been read into memory."""

    def __init__(
        self,
        status: str,
        status_code: int,
        headers: httpx.Headers,
        body: bytes,
        *,
        url: str = "",
        elapsed: datetime.timedelta | None = None,
    ) -> None:
        self._status = status
        self._status_code = status_code
        self._headers = headers
        self._body = body
        self._url = url
        self._elapsed = elapsed if elapsed is not None else datetime.timedelta(0)

    @property
    def url(self) -> str:
        return self._url

    @property
    def elapsed(self) -> datetime.timedelta:
        return self._elapsed

    def body_raw(self) -> bytes:
        return self._body

    def body_string(self) -> str:
        return self._body.decode("utf-8", errors="replace")

    def json(self, **kwargs: typing.Any) -> typing.Any:
        return _json.loads(self._body, **kwargs)

    def is_error(self) -> ResponseError | None:
        """Return a :class:`ResponseError` when the status code is outside
        ``[200, 400)``, ``None`` otherwise."""
        if self._status_code < 200 or self._status_code >= 400:
            return ResponseError(
                self._status, self._status_code, self._headers, self._body
            )
        return None

    def raise_for_status(self) -> Response:
        error = self.is_error()
        if error is not None:
            raise error
        return self

    def unmarshal(
        self,
        unmarshaler: ResponseUnmarshaler[T] | typing.Callable[[Response], T],
    ) -> T:
        if hasattr(unmarshaler, "unmarshal"):
            return unmarshaler.unmarshal(self)  # type: ignore[union-attr]
        return unmarshaler(self)  # type: ignore[operator]

    def __repr__(self) -> str:
        return f"<Response [{self._status}]>"


class _BodyReader(io.RawIOBase):
    """Raw, unbuffered reader over a live :class:`httpx.Response` body."""

    def __init__(self, response: httpx.Response) -> None:
        self._chunks = response.iter_bytes()
        self._pending = b""
        self._eof = False

    @property
    def eof(self) -> bool:
        """The live body has no more chunks."""
        return self._eof

    def readable(self) -> bool:
        return True

    def readinto(self, buffer: typing.Any) -> int:
        while not self._pending and not self._eof:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                self._eof = True
        size = min(len(buffer), len(self._pending))
        buffer[:size] = self._pending[:size]
        self._pending = self._pending[size:]
        return size


class ResponseStream(_ResponseHeader):
    """A response whose body is still being received.

    The stream keeps the connection and the request's execution scope alive
    until :meth:`close` is called.  Use it as a context manager::

        with request.do_stream() as stream:
            for chunk in stream:
                ...
    """

    def __init__(
        self,
        response: httpx.Response,
        *,
        scope: Scope | None = None,
        release: typing.Callable[[], None] | None = None,
        method: str = "",
        url: str = "",
    ) -> None:
        self._status = status_line(response)
        self._status_code = response.status_code
        self._headers = response.headers
        self._response: httpx.Response | None = response
        self._raw = _BodyReader(response)
        self._reader = io.BufferedReader(self._raw)
        self._scope = scope
        self._release = release
        self._method = method
        self._url = url
        self._lock = threading.Lock()
        self._closed = False
        self._eof = False

    @property
    def url(self) -> str:
        return self._url

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def reader(self) -> io.BufferedReader:
        return self._reader

    def _check(self) -> None:
        if self._closed:
            raise EndOfStream("stream is closed")
        if self._eof:
            raise EndOfStream()
        scope = self._scope
        if scope is not None and scope.done():
            raise map_transport_error(None, scope, self._method, self._url)

    def recv(self, n: int) -> bytes:
        """Return between 1 and ``n`` bytes.

        Raises :class:`EndOfStream` once all data was received or the stream
        was closed.
        """
        self._check()
        try:
            data = self._reader.read1(n)
        except httpx.RequestError as exc:
            raise map_transport_error(exc, self._scope, self._method, self._url) from exc
        except ValueError as exc:
            # The reader was closed underneath us.
            raise EndOfStream(str(exc)) from exc
        if not data:
            self._end_of_data()
            raise EndOfStream()
        return data

    def recv_func(
        self,
        receiver: StreamReceiver[T] | typing.Callable[[io.BufferedReader], T],
    ) -> T:
        """Hand the buffered reader to ``receiver`` and return its result.

        The reader signals end of data the usual way (an empty ``bytes``);
        receivers raise :class:`EndOfStream` to stop a receive loop.
        """
        self._check()
        try:
            if hasattr(receiver, "recv"):
                result = receiver.recv(self._reader)  # type: ignore[union-attr]
            else:
                result = receiver(self._reader)  # type: ignore[operator]
        except httpx.RequestError as exc:
            raise map_transport_error(exc, self._scope, self._method, self._url) from exc
        except EOFError:
            self._end_of_data()
            raise
        if self._drained():
            self._end_of_data()
        return result

    def _drained(self) -> bool:
        if self._closed or self._reader.closed or not self._raw.eof:
            return False
        return not self._reader.peek(1)

    def _end_of_data(self) -> None:
        # A body cut short by a cancelled or expired scope is not a clean end.
        scope = self._scope
        if not self._closed and scope is not None and scope.done():
            raise map_transport_error(None, scope, self._method, self._url)
        self._eof = True

    def __iter__(self) -> typing.Iterator[bytes]:
        while True:
            try:
                yield self.recv(io.DEFAULT_BUFFER_SIZE)
            except EndOfStream:
                return

    def close(self) -> None:
        """Release the connection and the execution scope.  Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            response, self._response = self._response, None
            release, self._release = self._release, None

        try:
            if response is not None:
                response.close()
        finally:
            if release is not None:
                release()

    def __enter__(self) -> ResponseStream:
        return self

    def __exit__(self, *args: typing.Any) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<ResponseStream [{self._status}] {state}>"
