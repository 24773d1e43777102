"""Request-ID middleware -- tags every HTTP request with an ``X-Request-ID``.

Pure ASGI (not BaseHTTPMiddleware), so streaming responses and lifespan
events pass through untouched.  The id lands in ``scope["state"]`` where
the exception handlers and the access log pick it up.
"""

import uuid

from starlette.types import ASGIApp, Receive, Scope, Send


class RequestIDMiddleware:
    """Reuses a client-supplied ``X-Request-ID`` or generates a UUID-4,
    and echoes it on the response."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = (
            headers.get(b"x-request-id", b"").decode() or str(uuid.uuid4())
        )
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_id(message: dict) -> None:
            if message["type"] == "http.response.start":
                raw_headers: list = list(message.get("headers", []))
                raw_headers.append((b"x-request-id", request_id.encode()))
                message = {**message, "headers": raw_headers}
            await send(message)

        await self.app(scope, receive, send_with_id)
