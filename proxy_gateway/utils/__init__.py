from typing import AsyncIterator, List, Tuple

import httpx

# Headers that describe the body framing on the wire
BODY_FRAMING_HEADERS = {b"content-encoding", b"content-length", b"transfer-encoding"}


async def iter_raw_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """
    Yield a response body exactly as received on the wire (still
    content-encoded). Responses whose body was already loaded, e.g. built
    with ``httpx.Response(content=...)``, are served from the loaded bytes,
    which httpx has decoded; use :func:`wire_headers` to describe them.
    """
    if response.is_stream_consumed:
        if response.content:
            yield response.content
        return
    async for chunk in response.aiter_raw():
        if chunk:
            yield chunk


def wire_headers(response: httpx.Response) -> List[Tuple[bytes, bytes]]:
    """
    Raw header list matching the bytes :func:`iter_raw_body` yields, with
    lower-case names as ASGI requires.

    Streamed responses keep their headers verbatim. A loaded body is already
    decoded, so when its encoding or declared length no longer matches, the
    framing headers are replaced by the actual ``content-length``.
    """
    raw = [(name.lower(), value) for name, value in response.headers.raw]
    if not response.is_stream_consumed:
        return raw

    length = str(len(response.content)).encode("latin-1")
    declared = response.headers.get("content-length")
    if "content-encoding" not in response.headers and declared in (
        None,
        length.decode("latin-1"),
    ):
        return raw

    headers = [(name, value) for name, value in raw if name not in BODY_FRAMING_HEADERS]
    headers.append((b"content-length", length))
    return headers
