from __future__ import annotations

import concurrent.futures
import datetime
import re
import socket
import threading
import time
import typing

import anyio
import anyio.to_thread
import httpx

from . import _bodies
from ._bodies import CONTENT_TYPE_TEXT_EVENT_STREAM, MultipartFile
from ._exceptions import (
    BodyEncodingError,
    RequestBuildError,
    RequestConsumedError,
    RequestTimedOut,
    TransportError,
    map_transport_error,
)
from ._logging import dump_request, dump_response
from ._response import Response, ResponseStream, status_line
from ._scope import Scope, to_seconds
from ._values import (
    HeaderTypes,
    QueryParamTypes,
    add_header,
    add_headers,
    add_query_param,
    add_query_params,
    set_header,
    set_headers,
    set_query_param,
    set_query_params,
)

if typing.TYPE_CHECKING:
    from ._client import Client

__all__ = ["Request"]

_METHOD_TOKEN = re.compile(r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+")


def join_url(base_url: str, path: str) -> str:
    """Join ``base_url`` and ``path`` with exactly one slash between them."""
    base = base_url.rstrip("/")
    path = path.lstrip("/")
    if base and path:
        return f"{base}/{path}"
    return base or path


class _SocketInterrupter:
    """Shuts down the socket of an in-flight request when its scope ends.

    The socket is learned from the connection trace (fresh connections) or
    from the response's ``network_stream`` extension.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._interrupted = False

    def trace(self, event_name: str, info: dict[str, typing.Any]) -> None:
        if event_name in (
            "connection.connect_tcp.complete",
            "connection.start_tls.complete",
        ):
            self.attach(info.get("return_value"))

    def attach(self, stream: typing.Any) -> None:
        if stream is None:
            return
        sock = stream.get_extra_info("socket")
        with self._lock:
            self._sock = sock
            interrupted = self._interrupted
        if interrupted:
            self._shutdown(sock)

    def interrupt(self, cause: BaseException) -> None:
        with self._lock:
            self._interrupted = True
            sock = self._sock
        self._shutdown(sock)

    @staticmethod
    def _shutdown(sock: socket.socket | None) -> None:
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already closed.
            pass


class Request:
    """A single HTTP request, configured by chained setters and executed
    once with :meth:`do`, :meth:`do_ctx`, :meth:`do_async`, :meth:`ado` or
    :meth:`do_stream`.

    Requests are created by :meth:`httpchain.Client.new_request` and start
    out with a private copy of the client's headers, query parameters,
    timeout and logging settings.
    """

    def __init__(self, client: Client) -> None:
        self._client = client
        self._method = "GET"
        self._base_url = client.base_url
        self._path = ""
        self._headers = client.headers.copy()
        self._query_params = httpx.QueryParams(client.query_params)
        self._timeout = client.timeout
        self._body: bytes | None = None
        self._body_error: BaseException | None = None
        self._scope: Scope | None = None
        self._consumed = False
        self._debug = client.debug
        self._debug_include_body = client.debug_include_body
        self._log_enabled = client.log_enabled

    # ---------------------------------------------------------------------
    # Builder
    # ---------------------------------------------------------------------

    @property
    def method(self) -> str:
        return self._method

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def path(self) -> str:
        return self._path

    @property
    def url(self) -> str:
        return join_url(self._base_url, self._path)

    @property
    def headers(self) -> httpx.Headers:
        return self._headers

    @property
    def query_params(self) -> httpx.QueryParams:
        return self._query_params

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def scope(self) -> Scope | None:
        """The execution scope, once execution has started."""
        return self._scope

    def set_debug(self, debug: bool, include_body: bool = False) -> Request:
        self._debug = debug
        self._debug_include_body = include_body
        return self

    def set_log_enabled(self, enabled: bool) -> Request:
        self._log_enabled = enabled
        return self

    def set_method(self, method: str) -> Request:
        """Set the method; an empty string keeps the current one."""
        if method:
            self._method = method.upper()
        return self

    def set_base_url(self, base_url: str) -> Request:
        self._base_url = base_url
        return self

    def set_path(self, path: str) -> Request:
        self._path = path
        return self

    def set_headers(self, headers: HeaderTypes) -> Request:
        self._headers = set_headers(self._headers, headers)
        return self

    def set_header(self, key: str, value: str) -> Request:
        self._headers = set_header(self._headers, key, value)
        return self

    def add_headers(self, headers: HeaderTypes) -> Request:
        self._headers = add_headers(self._headers, headers)
        return self

    def add_header(self, key: str, value: str) -> Request:
        self._headers = add_header(self._headers, key, value)
        return self

    def set_query_params(self, params: QueryParamTypes) -> Request:
        self._query_params = set_query_params(self._query_params, params)
        return self

    def set_query_param(self, key: str, value: typing.Any) -> Request:
        self._query_params = set_query_param(self._query_params, key, value)
        return self

    def add_query_params(self, params: QueryParamTypes) -> Request:
        self._query_params = add_query_params(self._query_params, params)
        return self

    def add_query_param(self, key: str, value: typing.Any) -> Request:
        self._query_params = add_query_param(self._query_params, key, value)
        return self

    def set_timeout(self, timeout: float | datetime.timedelta | None) -> Request:
        """Bound the whole execution to ``timeout`` seconds; ``0`` or less
        disables the bound."""
        self._timeout = to_seconds(timeout)
        return self

    # ---------------------------------------------------------------------
    # Bodies
    # ---------------------------------------------------------------------

    def _set_body(
        self,
        encode: typing.Callable[..., tuple[bytes, str | None]],
        *args: typing.Any,
        wrap_errors: bool = True,
    ) -> Request:
        self._body = None
        self._body_error = None
        try:
            content, content_type = encode(*args)
        except BodyEncodingError as exc:
            self._body_error = exc
            return self
        except Exception as exc:
            if wrap_errors:
                error = BodyEncodingError(str(exc) or type(exc).__name__)
                error.__cause__ = exc
                self._body_error = error
            else:
                self._body_error = exc
            return self

        self._body = content
        if content_type is not None:
            self.set_header("Content-Type", content_type)
        return self

    def body_raw(self, content: bytes | bytearray | str) -> Request:
        return self._set_body(_bodies.encode_raw, content)

    def body_json(self, data: typing.Any) -> Request:
        return self._set_body(_bodies.encode_json, data)

    def body_xml(self, data: typing.Any, root: str = "root") -> Request:
        return self._set_body(_bodies.encode_xml, data, root)

    def body_form_urlencoded(self, data: typing.Any) -> Request:
        return self._set_body(_bodies.encode_form_urlencoded, data)

    def body_multipart_form(
        self,
        fields: typing.Mapping[str, typing.Any] | None,
        *files: MultipartFile,
    ) -> Request:
        return self._set_body(_bodies.encode_multipart_form, fields, files)

    def body_custom(self, producer: typing.Callable[[], typing.Any]) -> Request:
        """Use the bytes returned by ``producer()`` as the body.

        An exception raised by ``producer`` is stored and raised unchanged
        when the request is executed.
        """
        return self._set_body(_bodies.encode_custom, producer, wrap_errors=False)

    # ---------------------------------------------------------------------
    # Execution
    # ---------------------------------------------------------------------

    def _outbound_url(self, url: str) -> httpx.URL:
        if self._body_error is not None:
            raise self._body_error

        if not _METHOD_TOKEN.fullmatch(self._method):
            raise RequestBuildError(f"Invalid method {self._method!r}.")

        try:
            outbound_url = httpx.URL(url)
        except httpx.InvalidURL as exc:
            raise RequestBuildError(f"Invalid URL {url!r}: {exc}") from exc
        if outbound_url.scheme not in ("http", "https") or not outbound_url.host:
            raise RequestBuildError(
                f"Request URL {url!r} is missing an 'http://' or 'https://' protocol."
            )

        # Replace-by-key: every key named by the request replaces the values
        # the URL already carries for it.
        if self._query_params:
            outbound_url = outbound_url.copy_merge_params(self._query_params)
        return outbound_url

    def _ensure_unconsumed(self) -> None:
        if self._consumed:
            raise RequestConsumedError("A request can only be executed once.")

    def _start(self, parent: Scope) -> Scope:
        self._ensure_unconsumed()
        self._consumed = True

        if self._timeout > 0:
            self._scope = Scope.with_timeout(parent, self._timeout, RequestTimedOut())
        else:
            self._scope = parent
        return self._scope

    def _release(self) -> None:
        # The caller's own scope is never released on their behalf.
        if self._scope is not None and self._timeout > 0:
            self._scope.cancel()

    def _fail(self, exc: BaseException | None, url: str) -> TransportError:
        error = map_transport_error(exc, self._scope, self._method, url)
        self._log_failure(error)
        return error

    def _dispatch(
        self, parent: Scope | None
    ) -> tuple[httpx.Response, httpx.Request, typing.Callable[[], None], float]:
        """Build, send and classify.

        Returns the live response, the outbound request, the function that
        detaches the socket interrupter from the scope, and the start time.
        """
        url = self.url
        outbound_url = self._outbound_url(url)
        scope = self._start(parent or Scope.background())

        transport = self._client.transport
        remaining = scope.remaining()
        interrupter = _SocketInterrupter()
        try:
            request = transport.build_request(
                self._method,
                outbound_url,
                headers=self._headers,
                content=self._body,
                timeout=(
                    httpx.Timeout(remaining)
                    if remaining is not None
                    else httpx.USE_CLIENT_DEFAULT
                ),
                extensions={"trace": interrupter.trace},
            )
        except (httpx.InvalidURL, UnicodeEncodeError, TypeError) as exc:
            self._release()
            raise RequestBuildError(str(exc)) from exc

        detach = scope.on_cancel(interrupter.interrupt)
        started = time.perf_counter()
        if scope.done():
            detach()
            self._release()
            raise self._fail(None, url)
        try:
            response = transport.send(request, stream=True)
        except httpx.RequestError as exc:
            detach()
            self._release()
            raise self._fail(exc, url) from exc

        interrupter.attach(response.extensions.get("network_stream"))
        return response, request, detach, started

    def do_ctx(self, scope: Scope | None) -> Response:
        """Execute within ``scope`` and read the whole response body.

        The execution scope is released before returning, so the response
        holds no live resources.
        """
        response, request, detach, started = self._dispatch(scope)
        url = self.url
        try:
            content = response.read()
            if self._scope is not None and self._scope.done():
                # The connection was interrupted after the body looked complete.
                raise self._fail(None, url)
        except httpx.RequestError as exc:
            raise self._fail(exc, url) from exc
        finally:
            response.close()
            detach()
            self._release()

        elapsed = datetime.timedelta(seconds=time.perf_counter() - started)
        self._log_success(request, response, elapsed, content)
        return Response(
            status_line(response),
            response.status_code,
            response.headers,
            content,
            url=str(request.url),
            elapsed=elapsed,
        )

    def do(self) -> Response:
        return self.do_ctx(None)

    def do_async(
        self, scope: Scope | None = None
    ) -> concurrent.futures.Future[Response]:
        """Run :meth:`do_ctx` on a new thread; the outcome is delivered once
        through the returned future."""
        future: concurrent.futures.Future[Response] = concurrent.futures.Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(self.do_ctx(scope))
            except Exception as exc:
                future.set_exception(exc)

        thread = threading.Thread(target=run, name="httpchain-do-async", daemon=True)
        thread.start()
        return future

    async def ado(self, scope: Scope | None = None) -> Response:
        """Await the request from async code.

        Cancelling the awaiting task cancels the request's scope, which
        aborts the in-flight call.
        """
        with Scope.with_cancel(scope or Scope.background()) as task_scope:
            try:
                return await anyio.to_thread.run_sync(
                    self.do_ctx, task_scope, abandon_on_cancel=True
                )
            except anyio.get_cancelled_exc_class():
                task_scope.cancel_with("awaiting task was cancelled")
                raise

    def do_stream(self, scope: Scope | None = None) -> ResponseStream:
        """Execute and return as soon as the response headers arrived.

        The execution scope, and therefore the timeout, stays live until the
        returned stream is closed.
        """
        self._ensure_unconsumed()
        self.set_header("Accept", CONTENT_TYPE_TEXT_EVENT_STREAM)
        self.set_header("Cache-Control", "no-cache")
        self.set_header("Connection", "keep-alive")

        response, request, detach, started = self._dispatch(scope)
        elapsed = datetime.timedelta(seconds=time.perf_counter() - started)
        self._log_success(request, response, elapsed, None)

        def release() -> None:
            detach()
            self._release()

        return ResponseStream(
            response,
            scope=self._scope,
            release=release,
            method=self._method,
            url=str(request.url),
        )

    # ---------------------------------------------------------------------
    # Logging
    # ---------------------------------------------------------------------

    def _log_success(
        self,
        request: httpx.Request,
        response: httpx.Response,
        elapsed: datetime.timedelta,
        content: bytes | None,
    ) -> None:
        if not self._log_enabled:
            return

        request_dump = response_dump = None
        if self._debug:
            request_dump = dump_request(request, self._debug_include_body)
            response_dump = dump_response(response, self._debug_include_body, content)

        self._client.request_logger.log(
            self._method,
            response.status_code,
            self.url,
            elapsed,
            request_dump,
            response_dump,
        )

    def _log_failure(self, error: BaseException) -> None:
        if self._log_enabled:
            self._client.request_logger.logger.debug(
                "%s %s failed: %s", self._method, self.url, type(error).__name__
            )

    def __repr__(self) -> str:
        return f"<Request({self._method!r}, {self.url!r})>"
