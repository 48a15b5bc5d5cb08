"""Raw request body capture for signature verification.

CloudPayments signs the exact bytes it sends. This middleware reads the
body before anything parses it, keeps the bytes on ``request.state`` and
replays the stream so route handlers can still read the body normally.
It also enforces the request body size limit.
"""

import logging

from fastapi import Request, status
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from storefront.api.middleware.error_handler import create_error_response
from storefront.core.config import get_settings

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _too_large(limit: int):
    return create_error_response(
        error_type="request_too_large",
        message=f"Request body exceeds maximum size of {limit} bytes",
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    )


class RawBodyMiddleware:
    """Pure ASGI middleware that buffers and replays request bodies."""

    def __init__(self, app: ASGIApp, max_body_size: int | None = None) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope["method"] not in BODY_METHODS:
            await self.app(scope, receive, send)
            return

        limit = self.max_body_size or get_settings().raw_body_limit_bytes

        content_length = dict(scope.get("headers") or []).get(b"content-length")
        if content_length and content_length.isdigit() and int(content_length) > limit:
            logger.warning("Request body too large: %s bytes (max: %d)", content_length.decode(), limit)
            await _too_large(limit)(scope, receive, send)
            return

        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            body = message.get("body", b"")
            size += len(body)
            if size > limit:
                logger.warning("Request body too large: over %d bytes", limit)
                await _too_large(limit)(scope, receive, send)
                return
            chunks.append(body)
            more_body = message.get("more_body", False)

        raw_body = b"".join(chunks)
        scope.setdefault("state", {})["raw_body"] = raw_body

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": raw_body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)


async def get_raw_body(request: Request) -> bytes:
    """Exact request bytes as received on the wire."""
    raw_body = getattr(request.state, "raw_body", None)
    if raw_body is None:
        raw_body = await request.body()
    return raw_body
