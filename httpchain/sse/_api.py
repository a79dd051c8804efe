from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from .._request import Request
from .._response import ResponseStream
from .._scope import Scope
from ._decoders import EventDecoder, LineDecoder, SSEError
from ._models import ServerSentEvent


class EventSource:
    def __init__(self, stream: ResponseStream) -> None:
        self._stream = stream

    @property
    def stream(self) -> ResponseStream:
        return self._stream

    def _check_content_type(self) -> None:
        content_type = self._stream.get_header("content-type").partition(";")[0]
        if "text/event-stream" not in content_type:
            raise SSEError(
                "Expected response header Content-Type to contain 'text/event-stream', "
                f"got {content_type!r}"
            )

    def iter_sse(self) -> Iterator[ServerSentEvent]:
        self._check_content_type()
        lines = LineDecoder()
        events = EventDecoder()
        for chunk in self._stream:
            for line in lines.decode(chunk):
                sse = events.decode(line)
                if sse is not None:
                    yield sse
        for line in lines.flush():
            sse = events.decode(line)
            if sse is not None:
                yield sse


def iter_sse(stream: ResponseStream) -> Iterator[ServerSentEvent]:
    """Decode the events of an open :class:`~httpchain.ResponseStream`."""
    return EventSource(stream).iter_sse()


@contextmanager
def connect_sse(
    request: Request, scope: Optional[Scope] = None
) -> Iterator[EventSource]:
    """Execute ``request`` as a stream and close it on exit::

        with connect_sse(client.new_request().set_path("/events")) as source:
            for event in source.iter_sse():
                ...
    """
    with request.do_stream(scope) as stream:
        yield EventSource(stream)
