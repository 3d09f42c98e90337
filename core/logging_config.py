"""
Structlog 日志配置模块

日志以事件名开头（如 ledger_transition_applied），关键字段以 kv 形式附加，
按 transaction_id / idempotency_reference 即可检索一笔资金流转的完整轨迹。
API 入口 (main.py) 与 Celery 应用各自在启动时调用 configure_logging()。
"""
import json
import logging
from typing import Any, List

import structlog
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter, add_logger_name

from core.config import settings


# 提供商凭证与签名不得出现在日志中
REDACTED_KEYS = frozenset({"api_key", "secret_key", "client_secret", "signature", "authorization", "token"})


def _redact_secrets(_, __, event_dict: dict) -> dict:
    for key in event_dict:
        if key.lower() in REDACTED_KEYS:
            event_dict[key] = "***"
    return event_dict


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", settings.redis.namespace)
    return event_dict


def get_renderer() -> Any:
    """DEBUG 下彩色控制台输出，其余环境输出 JSON"""
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default, **kwargs)

    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """配置 structlog，并把标准库 logging（uvicorn、celery、sqlalchemy）接入同一处理链"""
    pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        add_logger_name,
        TimeStamper(fmt="iso", utc=True),
        _add_service,
        _redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[ProcessorFormatter.remove_processors_meta, get_renderer()],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    # SQL 回显由 DATABASE__ECHO 控制
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
