import logging

import anyio
import httpx
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from proxy_gateway.utils import iter_raw_body, wire_headers
from proxy_gateway.utils.exception_logging import (
    format_exception_message,
    unwrap_single_exception,
)

logger = logging.getLogger("uvicorn.error")


class ProxiedResponse(Response):
    """
    Plays an upstream ``httpx.Response`` onto the ASGI connection unchanged.

    Status and raw headers go out in a single ``http.response.start`` message,
    then the raw body is copied chunk by chunk while the connection is watched
    for ``http.disconnect``. The upstream response is closed once the copy
    ends: after the last chunk, when ``send`` fails, or when the client goes
    away mid-stream.
    """

    def __init__(self, upstream: httpx.Response) -> None:
        self.upstream = upstream
        self.status_code = upstream.status_code
        self.background = None
        self.raw_headers = wire_headers(upstream)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            async with anyio.create_task_group() as task_group:
                task_group.start_soon(
                    self._listen_for_disconnect, receive, task_group.cancel_scope
                )
                await self._stream(send)
                task_group.cancel_scope.cancel()
        except Exception as e:
            raise unwrap_single_exception(e)
        finally:
            await self._close_upstream()

    async def _stream(self, send: Send) -> None:
        await send(
            {
                "type": "http.response.start",
                "status": self.status_code,
                "headers": self.raw_headers,
            }
        )
        async for chunk in iter_raw_body(self.upstream):
            await send({"type": "http.response.body", "body": chunk, "more_body": True})
        await send({"type": "http.response.body", "body": b"", "more_body": False})

    async def _listen_for_disconnect(
        self, receive: Receive, cancel_scope: anyio.CancelScope
    ) -> None:
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                logger.debug("[Proxy] Client disconnected, abandoning upstream body")
                cancel_scope.cancel()
                return

    async def _close_upstream(self) -> None:
        with anyio.CancelScope(shield=True):
            try:
                await self.upstream.aclose()
            except Exception as close_error:
                logger.warning(
                    "[Proxy] Failed to close upstream response: "
                    f"{format_exception_message(close_error)}"
                )
