"""
Request context middleware.

Authentication happens upstream (the gateway forwards the signed-in user
as X-User-Id). This middleware binds a request id and the owner id into
structlog's contextvars so every log line of the request carries them.
"""
from uuid import UUID, uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

OWNER_HEADER = "x-user-id"
REQUEST_ID_HEADER = "x-request-id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id

        owner_id = None
        raw_owner = request.headers.get(OWNER_HEADER)
        if raw_owner:
            try:
                owner_id = UUID(raw_owner)
            except ValueError:
                owner_id = None
        request.state.owner_id = owner_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            owner_id=str(owner_id) if owner_id else None,
        )
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
