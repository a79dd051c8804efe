from __future__ import annotations

import datetime
import logging
import os
import sys
import threading
import typing

import httpx

from .__version__ import __title__, __version__

__all__ = [
    "DEFAULT_TIME_FORMAT",
    "LOG_LONGFILE",
    "LOG_SHORTFILE",
    "LOG_TIME",
    "LOG_UTC",
    "RequestLogger",
    "dump_request",
    "dump_response",
]

LOG_SHORTFILE = 1 << 0
LOG_LONGFILE = 1 << 1
LOG_TIME = 1 << 2
LOG_UTC = 1 << 3

DEFAULT_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
_LABEL = f"[{__title__} {__version__}]"

logger = logging.getLogger(__name__)

# Streams are kept alive so their ids are never reused for another stream.
_output_loggers: dict[int, tuple[typing.TextIO, logging.Logger]] = {}
_output_lock = threading.Lock()


def default_logger() -> logging.Logger:
    """The ``httpchain`` logger, writing plain lines to stdout unless the
    application configured handlers of its own."""
    log = logging.getLogger(__title__)
    with _output_lock:
        if not log.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter("%(message)s"))
            log.addHandler(handler)
            log.setLevel(logging.INFO)
            log.propagate = False
    return log


def output_logger(stream: typing.TextIO) -> logging.Logger:
    """A dedicated logger that writes plain lines to ``stream``."""
    with _output_lock:
        entry = _output_loggers.get(id(stream))
        if entry is not None:
            return entry[1]

        log = logging.getLogger(f"{__title__}.output.{id(stream):x}")
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter("%(message)s"))
        log.addHandler(handler)
        log.setLevel(logging.INFO)
        log.propagate = False
        _output_loggers[id(stream)] = (stream, log)
    return log


def _caller() -> tuple[str, int]:
    """File and line of the first stack frame outside this package."""
    frame = sys._getframe(1)
    while frame is not None:
        filename = os.path.abspath(frame.f_code.co_filename)
        if not filename.startswith(_PACKAGE_DIR):
            return filename, frame.f_lineno
        frame = frame.f_back  # type: ignore[assignment]
    return "???", 0


# ---------------------------------------------------------------------------
# Wire dumps
# ---------------------------------------------------------------------------


def _dump_headers(headers: httpx.Headers) -> list[str]:
    encoding = headers.encoding
    return [
        f"{key.decode(encoding)}: {value.decode(encoding)}"
        for key, value in headers.raw
    ]


def _dump_body(content: bytes) -> list[str]:
    return content.decode("utf-8", errors="replace").split("\n")


def dump_request(request: httpx.Request, include_body: bool) -> str:
    target = request.url.raw_path.decode("ascii")
    lines = [f"{request.method} {target} HTTP/1.1", f"Host: {request.url.netloc.decode('ascii')}"]
    lines.extend(
        line for line in _dump_headers(request.headers)
        if not line.lower().startswith("host:")
    )
    lines.append("")
    if include_body:
        lines.extend(_dump_body(request.content))
    return "\n".join(lines)


def dump_response(
    response: httpx.Response, include_body: bool, content: bytes | None = None
) -> str:
    lines = [f"{response.http_version} {response.status_code} {response.reason_phrase}"]
    lines.extend(_dump_headers(response.headers))
    lines.append("")
    if include_body and content is not None:
        lines.extend(_dump_body(content))
    return "\n".join(lines)


def _frame(label: str, dump: str) -> str:
    """Frame ``dump`` with ``label`` spelled downwards in a side column."""
    rule = "-" * 12
    out = [rule]
    lines = dump.split("\n")
    for i, line in enumerate(lines):
        mark = label[i - 1] if 0 < i <= len(label) else " "
        out.append(f"|  {mark}  | {line}")
    for mark in label[len(lines) - 1 :]:
        out.append(f"|  {mark}  | ")
    out.append("|     | ")
    out.append(rule)
    return "\n".join(out)


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------


class RequestLogger:
    """Formats one line per completed request and hands it to a
    :class:`logging.Logger`.

    The line looks like::

        [httpchain 1.0.0] 2024-05-01 10:00:00 | GET | 200 | http://host/path | 1.52ms
    """

    def __init__(
        self,
        logger: logging.Logger | None = None,
        flags: int = LOG_TIME,
        time_format: str = DEFAULT_TIME_FORMAT,
    ) -> None:
        self._logger = logger
        self.flags = flags
        self.time_format = time_format

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = default_logger()
        return self._logger

    @logger.setter
    def logger(self, value: logging.Logger) -> None:
        self._logger = value

    def format(
        self,
        method: str,
        status_code: int,
        url: str,
        elapsed: datetime.timedelta,
        request_dump: str | None = None,
        response_dump: str | None = None,
    ) -> str:
        parts = [_LABEL, " "]
        flags = self.flags

        if flags & LOG_TIME:
            now = datetime.datetime.now(
                datetime.timezone.utc if flags & LOG_UTC else None
            )
            parts.append(now.strftime(self.time_format))
            parts.append(" | ")

        if flags & (LOG_SHORTFILE | LOG_LONGFILE):
            filename, lineno = _caller()
            if flags & LOG_SHORTFILE:
                filename = os.path.basename(filename)
            parts.append(f"{filename}:{lineno} | ")

        parts.append(f"{method} | {status_code} | {url} | {_format_elapsed(elapsed)}")

        if request_dump is not None or response_dump is not None:
            parts.append("\n\n")
            parts.append(_frame("REQUEST", request_dump or ""))
            parts.append("\n\n")
            parts.append(_frame("RESPONSE", response_dump or ""))
            parts.append("\n")

        return "".join(parts)

    def log(self, *args: typing.Any, **kwargs: typing.Any) -> None:
        """Format and emit a line.  Never raises."""
        try:
            self.logger.info(self.format(*args, **kwargs))
        except Exception:
            logger.debug("Could not record request log line", exc_info=True)


def _format_elapsed(elapsed: datetime.timedelta) -> str:
    seconds = elapsed.total_seconds()
    if seconds < 1e-3:
        return f"{seconds * 1e6:.2f}µs"
    if seconds < 1:
        return f"{seconds * 1e3:.2f}ms"
    return f"{seconds:.3f}s"
