from __future__ import annotations

import datetime
import logging
import os
import threading
import typing

import httpx

from .__version__ import __title__, __version__
from ._logging import RequestLogger, output_logger
from ._request import Request
from ._scope import to_seconds
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

__all__ = ["Client", "default_client", "new_request"]

USER_AGENT = f"{__title__}/{__version__}"


class Client:
    """Long-lived request configuration.

    Every setter returns the client so calls can be chained::

        client = (
            httpchain.Client()
            .set_base_url("https://api.example.com")
            .set_header("Authorization", f"Bearer {token}")
            .set_timeout(10)
        )
        response = client.new_request().set_path("/users").do()

    Requests copy the client's configuration when they are created; changing
    the client afterwards does not affect them.  Reconfiguring a client while
    other threads create requests from it is not supported.
    """

    def __init__(self, transport: httpx.Client | None = None) -> None:
        self._transport = transport
        self._owns_transport = transport is None
        self._transport_lock = threading.Lock()
        self._base_url = ""
        self._headers = httpx.Headers({"User-Agent": USER_AGENT})
        self._query_params = httpx.QueryParams()
        self._timeout = 0.0
        self._debug = False
        self._debug_include_body = False
        self._log_enabled = True
        self._request_logger = RequestLogger()

    @property
    def transport(self) -> httpx.Client:
        """The :class:`httpx.Client` requests are sent with.

        The default transport has no timeout of its own; requests are bounded
        by their execution scope only.
        """
        if self._transport is None:
            with self._transport_lock:
                if self._transport is None:
                    self._transport = httpx.Client(timeout=None)
        return self._transport

    @property
    def base_url(self) -> str:
        return self._base_url

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
    def debug(self) -> bool:
        return self._debug

    @property
    def debug_include_body(self) -> bool:
        return self._debug_include_body

    @property
    def log_enabled(self) -> bool:
        return self._log_enabled

    @property
    def request_logger(self) -> RequestLogger:
        return self._request_logger

    def set_transport(self, transport: httpx.Client) -> Client:
        """Send requests with ``transport``.

        The client does not close transports it was given.
        """
        self._transport = transport
        self._owns_transport = False
        return self

    def set_base_url(self, base_url: str) -> Client:
        self._base_url = base_url
        return self

    def set_headers(self, headers: HeaderTypes) -> Client:
        self._headers = set_headers(self._headers, headers)
        return self

    def set_header(self, key: str, value: str) -> Client:
        self._headers = set_header(self._headers, key, value)
        return self

    def add_headers(self, headers: HeaderTypes) -> Client:
        self._headers = add_headers(self._headers, headers)
        return self

    def add_header(self, key: str, value: str) -> Client:
        self._headers = add_header(self._headers, key, value)
        return self

    def set_query_params(self, params: QueryParamTypes) -> Client:
        self._query_params = set_query_params(self._query_params, params)
        return self

    def set_query_param(self, key: str, value: typing.Any) -> Client:
        self._query_params = set_query_param(self._query_params, key, value)
        return self

    def add_query_params(self, params: QueryParamTypes) -> Client:
        self._query_params = add_query_params(self._query_params, params)
        return self

    def add_query_param(self, key: str, value: typing.Any) -> Client:
        self._query_params = add_query_param(self._query_params, key, value)
        return self

    def set_timeout(self, timeout: float | datetime.timedelta | None) -> Client:
        self._timeout = to_seconds(timeout)
        return self

    def set_debug(self, debug: bool, include_body: bool = False) -> Client:
        self._debug = debug
        self._debug_include_body = include_body
        return self

    def set_log_enabled(self, enabled: bool) -> Client:
        self._log_enabled = enabled
        return self

    def set_logger(self, logger: logging.Logger) -> Client:
        self._request_logger.logger = logger
        return self

    def set_log_output(self, stream: typing.TextIO) -> Client:
        """Write request log lines to ``stream`` instead of stdout."""
        self._request_logger.logger = output_logger(stream)
        return self

    def set_log_flags(self, flags: int) -> Client:
        """Combine ``LOG_TIME``, ``LOG_UTC``, ``LOG_SHORTFILE`` and
        ``LOG_LONGFILE``."""
        self._request_logger.flags = flags
        return self

    def set_log_time_format(self, time_format: str) -> Client:
        self._request_logger.time_format = time_format
        return self

    def new_request(self) -> Request:
        return Request(self)

    def close(self) -> None:
        if self._owns_transport and self._transport is not None:
            self._transport.close()
            self._transport = None

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *args: typing.Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Client base_url={self._base_url!r}>"


_default_client: Client | None = None
_default_lock = threading.Lock()


def default_client() -> Client:
    """The process-wide client used by :func:`new_request`.

    Created on first use.  ``HTTPCHAIN_DEBUG=1`` turns on debug dumps and
    ``HTTPCHAIN_LOG=0`` turns off request logging.
    """
    global _default_client

    if _default_client is None:
        with _default_lock:
            if _default_client is None:
                client = Client()
                if os.environ.get("HTTPCHAIN_DEBUG", "") in ("1", "true"):
                    client.set_debug(True)
                if os.environ.get("HTTPCHAIN_LOG", "") in ("0", "false"):
                    client.set_log_enabled(False)
                _default_client = client
    return _default_client


def new_request() -> Request:
    return default_client().new_request()
