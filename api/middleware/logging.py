"""
访问日志中间件

每个请求记录一条开始与一条结束日志（状态码、耗时毫秒）。
请求体仅在开启时记录，且付款人信息与凭证脱敏；Webhook 原始请求体从不记录。
"""
import json
import time
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

SKIP_PATHS = frozenset({"/health", "/health/ready", "/docs", "/redoc", "/openapi.json"})
MASKED_FIELDS = frozenset({"phone", "phone_number", "account", "email", "name", "api_key", "secret_key", "token"})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def mask_payload(data: Any) -> Any:
    if isinstance(data, dict):
        return {k: "***" if str(k).lower() in MASKED_FIELDS else mask_payload(v) for k, v in data.items()}
    if isinstance(data, list):
        return [mask_payload(v) for v in data]
    return data


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.log_body_by_default = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT and settings.DEBUG
        self.max_body_bytes = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}
        if request.query_params:
            fields["query_params"] = dict(request.query_params)
        body = await self._body_for_log(request)
        if body is not None:
            fields["body"] = body
        logger.info("request_started", **fields)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=self._elapsed_ms(started),
                error_type=type(exc).__name__,
                error=str(exc),
                exc_info=True,
                **fields,
            )
            raise

        duration_ms = self._elapsed_ms(started)
        self._log_completion(response, duration_ms, fields)
        response.headers["X-Process-Time"] = f"{duration_ms / 1000:.3f}"
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)

    def _wants_body(self, request: Request) -> bool:
        if request.method not in BODY_METHODS or "/webhooks/" in request.url.path:
            return False
        # X-Log-Body: true/false 覆盖默认行为
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return self.log_body_by_default

    async def _body_for_log(self, request: Request) -> Optional[Any]:
        if not self._wants_body(request):
            return None
        raw = await request.body()
        if not raw:
            return None
        snippet = raw[: self.max_body_bytes].decode("utf-8", errors="ignore")
        if "application/json" not in request.headers.get("content-type", "").lower():
            return snippet
        try:
            return mask_payload(json.loads(snippet))
        except ValueError:
            return snippet

    @staticmethod
    def _log_completion(response: Response, duration_ms: float, fields: dict) -> None:
        status_code = response.status_code
        if status_code >= 500:
            logger.error("request_server_error", status_code=status_code, duration_ms=duration_ms, **fields)
        elif status_code >= 400:
            logger.warning("request_client_error", status_code=status_code, duration_ms=duration_ms, **fields)
        else:
            logger.info("request_completed", status_code=status_code, duration_ms=duration_ms, **fields)
