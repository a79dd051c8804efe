# ruff: noqa: I001
from .__version__ import __description__, __title__, __version__
from ._bodies import (
    CONTENT_TYPE_FORM_URLENCODED,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_TEXT_EVENT_STREAM,
    CONTENT_TYPE_XML,
    MultipartFile,
)
from ._client import Client, default_client, new_request
from ._exceptions import (
    BodyEncodingError,
    EndOfStream,
    HTTPChainError,
    RequestBuildError,
    RequestCancelled,
    RequestConsumedError,
    RequestTimedOut,
    ResponseError,
    ScopeReleased,
    TransportError,
)
from ._logging import LOG_LONGFILE, LOG_SHORTFILE, LOG_TIME, LOG_UTC
from ._request import Request
from ._response import Response, ResponseStream, ResponseUnmarshaler, StreamReceiver
from ._scope import Scope
from . import sse  # noqa: F401

try:
    from .cli import main
except ImportError:

    def main() -> None:  # type: ignore[misc]
        import sys

        print(
            'The "httpchain" command requires the CLI extra. '
            'Install it with: pip install "httpchain[cli]"',
            file=sys.stderr,
        )
        sys.exit(1)


_EXCLUDED_FROM_ALL = {"cli", "main"}

__all__ = sorted(  # pyright: ignore[reportUnsupportedDunderAll]
    (
        member
        for member in list(vars().keys())
        if (
            not member.startswith("_")
            or member in ["__description__", "__title__", "__version__"]
        )
        and member not in _EXCLUDED_FROM_ALL
    ),
    key=str.casefold,
)
