import asyncio
from typing import Callable, Optional

import httpx
from fastapi import Request

from proxy_gateway.transport.transport import ProxyTransport


class MockProxyTransport(ProxyTransport):
    """Returns a canned response or raises, recording every request."""

    def __init__(
        self,
        fail: bool = False,
        response: Optional[httpx.Response] = None,
        response_factory: Optional[Callable[[], httpx.Response]] = None,
        error: Optional[Exception] = None,
    ):
        self.fail = fail
        self.response = response
        self.response_factory = response_factory
        self.error = error or RuntimeError("mockProxyClient.Do failed")
        self.requests = []
        self.closed = False

    async def execute(self, request: Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            raise self.error
        if self.response_factory is not None:
            return self.response_factory()
        return self.response

    async def aclose(self) -> None:
        self.closed = True


class ChunkedStream(httpx.AsyncByteStream):
    """Async body stream that yields fixed chunks and records closing."""

    def __init__(self, chunks):
        self.chunks = list(chunks)
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class EndlessStream(httpx.AsyncByteStream):
    """Body stream that never ends, like an event stream or a stalled download."""

    def __init__(self, chunk: bytes = b"data: tick\n\n"):
        self.chunk = chunk
        self.chunks_read = 0
        self.closed = False

    async def __aiter__(self):
        while True:
            self.chunks_read += 1
            yield self.chunk
            await asyncio.sleep(0)

    async def aclose(self) -> None:
        self.closed = True


class FailingCloseStream(ChunkedStream):
    """Chunked stream whose ``aclose`` raises."""

    async def aclose(self) -> None:
        self.closed = True
        raise RuntimeError("upstream connection already broken")


def make_request(
    path: str = "/",
    method: str = "GET",
    headers: Optional[list] = None,
    body: bytes = b"",
    query_string: bytes = b"",
    client: tuple = ("192.168.1.100", 51000),
    scheme: str = "http",
    raw_path: Optional[bytes] = None,
) -> Request:
    """Build a real Starlette request around an in-memory ASGI scope."""
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode() if raw_path is None else raw_path,
        "root_path": "",
        "query_string": query_string,
        "headers": [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in (headers or [])
        ],
        "client": client,
        "server": ("proxy.local", 8080),
    }
    sent = False

    async def receive():
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(scope, receive)


class ResponseRecorder:
    """ASGI ``send`` target that collects what a response writes."""

    def __init__(self, fail_on_body: bool = False):
        self.messages = []
        self.fail_on_body = fail_on_body
        self.finished = asyncio.Event()

    async def send(self, message):
        if self.fail_on_body and message["type"] == "http.response.body":
            raise OSError("client disconnected")
        self.messages.append(message)
        if message["type"] == "http.response.body" and not message.get("more_body"):
            self.finished.set()

    @property
    def status(self) -> int:
        return self.messages[0]["status"]

    @property
    def raw_headers(self) -> list:
        return list(self.messages[0]["headers"])

    @property
    def headers(self) -> httpx.Headers:
        return httpx.Headers(self.raw_headers)

    @property
    def body_chunks(self) -> list:
        return [
            m["body"]
            for m in self.messages
            if m["type"] == "http.response.body" and m["body"]
        ]

    @property
    def body(self) -> bytes:
        return b"".join(self.body_chunks)


async def record(response, request: Optional[Request] = None, **kwargs) -> ResponseRecorder:
    """Play a response onto a recorder, the way the ASGI server would."""
    recorder = ResponseRecorder(**kwargs)
    scope = request.scope if request is not None else {"type": "http"}

    async def receive():
        # The client stays connected until the whole response has been sent.
        await recorder.finished.wait()
        return {"type": "http.disconnect"}

    await response(scope, receive, recorder.send)
    return recorder
