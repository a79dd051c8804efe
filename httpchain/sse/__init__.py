from ._api import EventSource, connect_sse, iter_sse
from ._decoders import SSEError
from ._models import ServerSentEvent

__all__ = [
    "EventSource",
    "connect_sse",
    "iter_sse",
    "ServerSentEvent",
    "SSEError",
]
