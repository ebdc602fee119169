"""Request ID middleware for per-request log correlation.

Takes the ID from the X-Request-ID header (carrier callbacks and the mail
tracking pixel usually arrive without one, so a UUID is generated), stores it
in ``request.state.request_id``, binds it to the logging context and echoes it
on the response.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from starlette.datastructures import MutableHeaders

from notification_service.infra.logging.context import clear_log_context, set_log_context

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER_NAME = "x-request-id"
MAX_REQUEST_ID_LENGTH = 128


class RequestIDMiddleware:
    """Pure ASGI middleware adding a request ID to every HTTP request.

    Usage:
        app = FastAPI()
        app.add_middleware(RequestIDMiddleware)
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = self._incoming_id(scope) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id
        set_log_context(request_id=request_id, path=scope.get("path"))

        async def send_with_header(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append(HEADER_NAME, request_id)
            await send(message)

        try:
            await self.app(scope, receive, send_with_header)
        finally:
            clear_log_context()

    @staticmethod
    def _incoming_id(scope: Scope) -> str | None:
        for name, value in scope.get("headers", []):
            if name == HEADER_NAME.encode("latin-1"):
                candidate = value.decode("latin-1").strip()
                if candidate and len(candidate) <= MAX_REQUEST_ID_LENGTH:
                    return candidate
        return None


__all__ = ["RequestIDMiddleware"]
