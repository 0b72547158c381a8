from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from proxy_gateway.handler.handler import RequestHandler

router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]


def get_request_handler(request: Request) -> RequestHandler:
    """The handler built by the application lifespan."""
    return request.app.state.request_handler


# Catch-all: the health path is matched inside the handler, not here.
@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_all(
    request: Request,
    path: str,
    handler: RequestHandler = Depends(get_request_handler),
) -> Response:
    return await handler.handle(request)
