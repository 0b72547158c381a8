"""
Request dispatch for the proxy.

``RequestHandler.handle`` either answers the liveness probe itself or hands
the request to a :class:`ProxyTransport` and translates the outcome:

* health path   -> 200 ``OK``
* transport ok  -> upstream status, headers and body, unmodified
* transport err -> 502 ``unable to proxy request - <error>``

Every transport failure collapses to the same 502 with the error text
exposed verbatim. Upstream 4xx/5xx responses are not failures and pass
through. Nothing is retried.
"""

import logging

from fastapi import Request
from fastapi.responses import Response
from opentelemetry import trace
from prometheus_client import Counter

from proxy_gateway.handler.response import ProxiedResponse
from proxy_gateway.transport.transport import ProxyTransport
from proxy_gateway.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from proxy_gateway.vars import HEALTH_PATH

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

HEALTH_BODY = b"OK"
BAD_GATEWAY_PREFIX = "unable to proxy request - "

PROXY_REQUESTS = Counter(
    "proxy_requests_total",
    "Requests handled by the proxy, by outcome",
    ["outcome"],
)


class RequestHandler:
    """Dispatches one inbound request. Holds no per-request state."""

    def __init__(self, proxy_transport: ProxyTransport, health_path: str = HEALTH_PATH):
        self.proxy_transport = proxy_transport
        self.health_path = health_path

    async def handle(self, request: Request) -> Response:
        # Path-only match: any method reaching the health path is answered here.
        if request.url.path == self.health_path:
            PROXY_REQUESTS.labels(outcome="health").inc()
            return Response(content=HEALTH_BODY, status_code=200)

        with tracer.start_as_current_span("proxy_request") as span:
            span.set_attribute("proxy.method", request.method)
            span.set_attribute("proxy.path", request.url.path)

            try:
                upstream = await self.proxy_transport.execute(request)
            except Exception as e:
                return await self._bad_gateway(e, span)

            span.set_attribute("proxy.status_code", upstream.status_code)
            PROXY_REQUESTS.labels(outcome="proxied").inc()
            return ProxiedResponse(upstream)

    async def _bad_gateway(self, error: Exception, span) -> Response:
        await _close_attached_response(error)

        message = format_exception_message(error)
        log_exception_with_details(logger, "[Proxy]", error)
        span.set_attribute("proxy.error", message)
        PROXY_REQUESTS.labels(outcome="bad_gateway").inc()
        return Response(content=f"{BAD_GATEWAY_PREFIX}{message}", status_code=502)


async def _close_attached_response(error: Exception) -> None:
    """
    Close a response carried by the error (e.g. ``httpx.HTTPStatusError``)
    without reading anything from it.
    """
    try:
        response = getattr(error, "response", None)
        if response is not None:
            await response.aclose()
    except Exception as close_error:
        logger.warning(f"[Proxy] Failed to close upstream response: {close_error}")
