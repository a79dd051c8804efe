import asyncio
import email.parser
import email.policy
import json
import os
import socket
import threading
import time
import typing
from urllib.parse import parse_qsl

import pytest
from uvicorn.config import Config
from uvicorn.server import Server

import httpchain


@pytest.fixture
def anyio_backend():
    return "asyncio"


ENVIRONMENT_VARIABLES = {
    "SSL_CERT_FILE",
    "SSL_CERT_DIR",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "ALL_PROXY",
    "NO_PROXY",
    "SSLKEYLOGFILE",
    "HTTPCHAIN_DEBUG",
    "HTTPCHAIN_LOG",
}


@pytest.fixture(scope="function", autouse=True)
def clean_environ():
    """Keeps os.environ clean for every test without having to mock os.environ"""
    original_environ = os.environ.copy()
    os.environ.clear()
    os.environ.update(
        {
            k: v
            for k, v in original_environ.items()
            if k not in ENVIRONMENT_VARIABLES and k.lower() not in ENVIRONMENT_VARIABLES
        }
    )
    yield
    os.environ.clear()
    os.environ.update(original_environ)


Message = typing.Dict[str, typing.Any]
Receive = typing.Callable[[], typing.Awaitable[Message]]
Send = typing.Callable[
    [typing.Dict[str, typing.Any]], typing.Coroutine[None, None, None]
]
Scope = typing.Dict[str, typing.Any]

STREAM_TEXT = "abcdefghijklmnopqrstuvwxyz0123456789"

# Requests seen by the server, excluding /hits itself.
HITS = {"count": 0}


async def app(scope: Scope, receive: Receive, send: Send) -> None:
    assert scope["type"] == "http"
    path = scope["path"]
    if path != "/hits":
        HITS["count"] += 1

    if path.startswith("/ping"):
        await text_response(send, 200, b"pong")
    elif path.startswith("/error"):
        await text_response(send, 500, b"error")
    elif path.startswith("/timeout"):
        await asyncio.sleep(1.0)
        await text_response(send, 200, b"zzz")
    elif path.startswith("/stream"):
        await stream(scope, receive, send)
    elif path.startswith("/sse"):
        await server_sent_events(scope, receive, send)
    elif path.startswith("/echo_headers"):
        await echo_headers(scope, receive, send)
    elif path.startswith("/echo_query"):
        await echo_query(scope, receive, send)
    elif path.startswith("/echo"):
        await echo(scope, receive, send)
    elif path.startswith("/multipart-form"):
        await multipart_form(scope, receive, send)
    elif path.startswith("/status"):
        status_code = int(path.replace("/status/", ""))
        await text_response(send, status_code, b"status")
    elif path.startswith("/hits"):
        await text_response(send, 200, str(HITS["count"]).encode())
    else:
        await text_response(send, 404, b"not found")


async def read_body(receive: Receive) -> bytes:
    body = b""
    more_body = True
    while more_body:
        message = await receive()
        body += message.get("body", b"")
        more_body = message.get("more_body", False)
    return body


async def text_response(
    send: Send,
    status: int,
    body: bytes,
    content_type: bytes = b"text/plain",
) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [[b"content-type", content_type]],
        }
    )
    await send({"type": "http.response.body", "body": body})


async def echo(scope: Scope, receive: Receive, send: Send) -> None:
    """Echo the body, and the first value of every request header."""
    if scope["method"] != "POST":
        await text_response(send, 400, b"error")
        return
    body = await read_body(receive)

    headers: typing.Dict[bytes, bytes] = {}
    for name, value in scope.get("headers", []):
        if name not in (b"content-length", b"host"):
            headers.setdefault(name, value)

    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [[k, v] for k, v in headers.items()],
        }
    )
    await send({"type": "http.response.body", "body": body})


async def echo_headers(scope: Scope, receive: Receive, send: Send) -> None:
    """Every request header, as ``{name: [values]}``."""
    body: typing.Dict[str, typing.List[str]] = {}
    for name, value in scope.get("headers", []):
        body.setdefault(name.decode().lower(), []).append(value.decode())
    await text_response(send, 200, json.dumps(body).encode(), b"application/json")


async def echo_query(scope: Scope, receive: Receive, send: Send) -> None:
    """The query string, as ``[[key, value], ...]``."""
    query = scope.get("query_string", b"").decode()
    pairs = parse_qsl(query, keep_blank_values=True)
    await text_response(send, 200, json.dumps(pairs).encode(), b"application/json")


async def stream(scope: Scope, receive: Receive, send: Send) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [
                [b"content-type", b"text/event-stream"],
                [b"cache-control", b"no-cache"],
            ],
        }
    )
    delay = 0.5 if "slow" in scope.get("query_string", b"").decode() else 0.005
    for char in STREAM_TEXT:
        await send(
            {"type": "http.response.body", "body": char.encode(), "more_body": True}
        )
        await asyncio.sleep(delay)
    await send({"type": "http.response.body", "body": b""})


async def server_sent_events(scope: Scope, receive: Receive, send: Send) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [[b"content-type", b"text/event-stream"]],
        }
    )
    chunks = [
        b": keep-alive\n\n",
        b"event: greeting\nid: 1\ndata: hello\n\n",
        b'data: {"n": 1}\r\n\r',
        b"\ndata: multi\ndata: line\n\n",
    ]
    for chunk in chunks:
        await send({"type": "http.response.body", "body": chunk, "more_body": True})
        await asyncio.sleep(0.005)
    await send({"type": "http.response.body", "body": b""})


async def multipart_form(scope: Scope, receive: Receive, send: Send) -> None:
    body = await read_body(receive)
    content_type = dict(scope["headers"]).get(b"content-type", b"").decode()

    message = email.parser.BytesParser(policy=email.policy.HTTP).parsebytes(
        f"Content-Type: {content_type}\r\n\r\n".encode() + body
    )
    if not message.is_multipart():
        await text_response(send, 500, b"error")
        return

    result: typing.Dict[str, str] = {}
    for part in message.iter_parts():
        name = part.get_param("name", header="content-disposition")
        payload = part.get_payload(decode=True) or b""
        filename = part.get_filename()
        if filename is not None:
            result["filename"] = filename
            result["filecontent"] = payload.decode()
            result["field"] = name
        else:
            result[name] = payload.decode()

    await text_response(send, 200, json.dumps(result).encode(), b"application/json")


class TestServer(Server):
    def install_signal_handlers(self) -> None:
        # Signal handlers can only be installed from the main thread.
        pass

    @property
    def url(self) -> str:
        port = self.servers[0].sockets[0].getsockname()[1]
        return f"http://{self.config.host}:{port}"


def serve_in_thread(server: TestServer) -> typing.Iterator[TestServer]:
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    try:
        deadline = time.monotonic() + 10
        while not server.started:
            if time.monotonic() > deadline:
                raise RuntimeError("Server failed to start within 10 seconds")
            time.sleep(1e-3)
        yield server
    finally:
        server.should_exit = True
        thread.join(timeout=5)


@pytest.fixture(scope="session")
def server() -> typing.Iterator[TestServer]:
    config = Config(
        app=app,
        lifespan="off",
        loop="asyncio",
        host="127.0.0.1",
        port=0,
        timeout_graceful_shutdown=1,
    )
    server = TestServer(config=config)
    yield from serve_in_thread(server)


@pytest.fixture
def client(server: TestServer) -> typing.Iterator[httpchain.Client]:
    with httpchain.Client() as client:
        client.set_base_url(server.url).set_log_enabled(False)
        yield client


@pytest.fixture
def server_hits(server: TestServer) -> typing.Callable[[], int]:
    """Number of requests the server has seen so far."""

    def hits() -> int:
        with httpchain.Client() as client:
            response = (
                client.set_log_enabled(False)
                .new_request()
                .set_base_url(server.url)
                .set_path("/hits")
                .do()
            )
        return int(response.body_string())

    return hits


@pytest.fixture
def close_delimited_server() -> typing.Iterator[str]:
    """Serves one response without a length whose body ends when the
    connection closes.  A byte is sent every half second."""
    listener = socket.create_server(("127.0.0.1", 0))
    stop = threading.Event()

    def serve() -> None:
        try:
            connection, _ = listener.accept()
        except OSError:
            return
        with connection:
            connection.recv(65536)
            try:
                connection.sendall(
                    b"HTTP/1.1 200 OK\r\n"
                    b"Content-Type: text/plain\r\n"
                    b"Connection: close\r\n\r\n"
                )
                for char in STREAM_TEXT:
                    connection.sendall(char.encode())
                    if stop.wait(0.5):
                        return
            except OSError:
                return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    host, port = listener.getsockname()[:2]
    try:
        yield f"http://{host}:{port}"
    finally:
        stop.set()
        listener.close()
        thread.join(timeout=5)
