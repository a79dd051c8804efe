from __future__ import annotations

import codecs
from typing import List, Optional

from .._exceptions import HTTPChainError
from ._models import ServerSentEvent


class SSEError(HTTPChainError):
    """The response is not a valid event stream."""


class LineDecoder:
    """Split a byte stream into lines.

    Only ``\\r\\n``, ``\\r`` and ``\\n`` end a line, as the event-stream
    format requires; ``str.splitlines`` would also split on Unicode
    separators.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._text = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._partial = ""
        self._pending_cr = False

    def decode(self, chunk: bytes) -> List[str]:
        return self._split(self._text.decode(chunk))

    def flush(self) -> List[str]:
        lines = self._split(self._text.decode(b"", final=True))
        if self._partial or self._pending_cr:
            lines.append(self._partial)
        self._partial = ""
        self._pending_cr = False
        return lines

    def _split(self, text: str) -> List[str]:
        lines: List[str] = []
        for char in text:
            if self._pending_cr:
                self._pending_cr = False
                if char == "\n":
                    # Second half of a \r\n pair.
                    continue
            if char == "\r":
                lines.append(self._partial)
                self._partial = ""
                self._pending_cr = True
            elif char == "\n":
                lines.append(self._partial)
                self._partial = ""
            else:
                self._partial += char
        return lines


class EventDecoder:
    """Assemble events from lines.

    See https://html.spec.whatwg.org/multipage/server-sent-events.html#event-stream-interpretation
    """

    def __init__(self) -> None:
        self._event = ""
        self._data: List[str] = []
        self._last_event_id = ""
        self._retry: Optional[int] = None

    def decode(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            if not self._event and not self._data and self._retry is None:
                return None

            sse = ServerSentEvent(
                event=self._event,
                data="\n".join(self._data),
                id=self._last_event_id,
                retry=self._retry,
            )

            # The last event id survives dispatch.
            self._event = ""
            self._data = []
            self._retry = None
            return sse

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)

        return None
