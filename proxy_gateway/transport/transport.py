from abc import ABC, abstractmethod

import httpx
from fastapi import Request

from proxy_gateway.vars import PROXY_TRANSPORT


class ProxyTransportError(Exception):
    """Raised by transports that cannot produce an upstream response."""


class UpstreamNotConfiguredError(ProxyTransportError):
    pass


class ProxyTransport(ABC):
    """
    Executes an inbound request against the upstream.

    Implementations return a streamed, unread ``httpx.Response`` whose body the
    caller is responsible for closing, or raise. A response whose body was
    already loaded is forwarded decoded, with its framing headers rewritten to
    match. A single instance is shared by all concurrent requests.
    """

    @abstractmethod
    async def execute(self, request: Request) -> httpx.Response:
        pass

    async def aclose(self) -> None:
        """Release resources held by the transport."""
        return None


def proxy_transport(name: str = PROXY_TRANSPORT) -> ProxyTransport:
    # Imported here so custom transports can subclass ProxyTransport
    # from this module without a cycle.
    from proxy_gateway.transport import upstream

    cls = getattr(upstream, name, None)
    if isinstance(cls, type) and issubclass(cls, ProxyTransport):
        return cls()
    raise ValueError(f"Unknown proxy transport type: {name}")
