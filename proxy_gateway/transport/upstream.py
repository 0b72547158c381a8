import logging
from typing import Dict, List, Optional, Tuple

import httpx
from fastapi import Request

from proxy_gateway.transport.transport import (
    ProxyTransport,
    UpstreamNotConfiguredError,
)
from proxy_gateway.utils import iter_raw_body
from proxy_gateway.vars import (
    CUSTOM_HEADERS,
    LOG_FAILED_REQUESTS,
    PROXY_TIMEOUT,
    STRIP_HEADERS,
    UPSTREAM_URL,
    UPSTREAM_URL_SCHEME,
)

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers describing the original request, rebuilt on every hop
FORWARDED_HEADERS = {
    "x-forwarded-for",
    "x-forwarded-host",
    "x-forwarded-proto",
    "x-real-ip",
}

FAILED_BODY_LOG_LIMIT = 2048


class UpstreamTransport(ProxyTransport):
    """
    Forwards requests to a single upstream over a shared ``httpx.AsyncClient``.

    The upstream is ``UPSTREAM_URL``; when that is empty the inbound ``Host``
    header is used with ``UPSTREAM_URL_SCHEME``. Redirects are passed back to
    the client rather than followed.
    """

    def __init__(
        self,
        upstream_url: Optional[str] = None,
        *,
        upstream_scheme: Optional[str] = None,
        timeout: Optional[float] = None,
        strip_headers: Optional[List[str]] = None,
        custom_headers: Optional[Dict[str, str]] = None,
        log_failed_requests: Optional[bool] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.upstream_url = (
            UPSTREAM_URL if upstream_url is None else upstream_url
        ).rstrip("/")
        self.upstream_scheme = upstream_scheme or UPSTREAM_URL_SCHEME
        self.strip_headers = {
            h.lower() for h in (STRIP_HEADERS if strip_headers is None else strip_headers)
        }
        self.custom_headers = (
            CUSTOM_HEADERS if custom_headers is None else custom_headers
        )
        self.log_failed_requests = (
            LOG_FAILED_REQUESTS if log_failed_requests is None else log_failed_requests
        )
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(PROXY_TIMEOUT if timeout is None else timeout),
            follow_redirects=False,
        )

    def target_url(self, request: Request) -> str:
        """Construct the upstream URL from the inbound path and query."""
        base = self.upstream_url
        if not base:
            host = request.headers.get("host")
            if not host:
                raise UpstreamNotConfiguredError(
                    "no upstream configured: set UPSTREAM_URL or send a Host header"
                )
            base = f"{self.upstream_scheme}://{host}"

        # The undecoded path keeps escapes such as %2F and %3F intact.
        raw_path = request.scope.get("raw_path")
        if raw_path:
            path = raw_path.split(b"?", 1)[0].decode("latin-1")
        else:
            path = request.url.path
        if not path.startswith("/"):
            path = "/" + path

        query_string = str(request.url.query)
        if query_string:
            path = f"{path}?{query_string}"
        return f"{base}{path}"

    def prepare_headers(self, request: Request) -> List[Tuple[str, str]]:
        """
        Headers for the upstream request. Repeated headers keep their order.
        """
        headers = [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
            and name.lower() not in FORWARDED_HEADERS
            and name.lower() != "host"
        ]

        present = {name.lower() for name, _ in headers}
        for name, value in self.custom_headers.items():
            if name.lower() not in present:
                headers.append((name, value))

        client_ip = request.client.host if request.client else "unknown"
        existing_xff = request.headers.get("x-forwarded-for", "")
        headers.append(
            ("x-forwarded-for", f"{existing_xff}, {client_ip}".strip(", "))
        )
        headers.append(("x-forwarded-host", request.headers.get("host", "")))
        headers.append(("x-forwarded-proto", request.url.scheme))
        headers.append(("x-real-ip", client_ip))

        return [
            (name, value)
            for name, value in headers
            if name.lower() not in self.strip_headers
        ]

    async def execute(self, request: Request) -> httpx.Response:
        url = self.target_url(request)
        body = await request.body()

        logger.debug(f"[Proxy] {request.method} {request.url.path} -> {url}")
        upstream_request = self._client.build_request(
            request.method,
            url,
            headers=self.prepare_headers(request),
            content=body,
        )
        response = await self._client.send(upstream_request, stream=True)

        if self.log_failed_requests and response.status_code >= 400:
            response = await self._log_failed_response(request.method, url, response)
        return response

    async def _log_failed_response(
        self, method: str, url: str, response: httpx.Response
    ) -> httpx.Response:
        """Log an error response and hand back an equivalent buffered copy."""
        if response.is_stream_consumed:
            logger.error(
                f"[Proxy] Upstream request failed: {method} {url} -> "
                f"{response.status_code}: {_truncate(response.text)}"
            )
            return response

        try:
            raw = b"".join([chunk async for chunk in iter_raw_body(response)])
        finally:
            await response.aclose()

        logger.error(
            f"[Proxy] Upstream request failed: {method} {url} -> "
            f"{response.status_code}: {_body_preview(response.headers, raw)}"
        )

        # The raw bytes are still content-encoded, so they are re-streamed
        # as-is instead of going through `content=` (which would decode them).
        return httpx.Response(
            status_code=response.status_code,
            headers=response.headers,
            stream=httpx.ByteStream(raw),
            request=response.request,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _body_preview(headers: httpx.Headers, raw: bytes) -> str:
    try:
        text = httpx.Response(200, headers=headers, content=raw).text
    except httpx.DecodingError:
        text = raw.decode("utf-8", errors="replace")
    return _truncate(text)


def _truncate(text: str) -> str:
    if len(text) > FAILED_BODY_LOG_LIMIT:
        return text[:FAILED_BODY_LOG_LIMIT] + "..."
    return text
