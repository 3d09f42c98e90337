"""
Request ID 中间件

透传或生成 X-Request-ID，并与客户端IP一起绑定到 structlog 上下文；
同一请求内账本、提供商、结算的日志共享同一 request_id。
"""
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_ID_HEADER = "X-Request-ID"


def resolve_client_ip(request: Request) -> str:
    """X-Forwarded-For 首个地址 > X-Real-IP > 直连地址"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.headers.get("X-Real-IP"):
        return request.headers["X-Real-IP"]
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        request.state.client_ip = resolve_client_ip(request)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, client_ip=request.state.client_ip)

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
