"""Celery application: reconciliation sweeps and subscription rollover.

Redis serves as broker and result backend (`REDIS__URL`).
"""
from __future__ import annotations

import os

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


CELERY_IMPORTS = (
    "infrastructure.tasks.tasks",
)

configure_logging()
logger = get_logger(__name__)

celery_app = Celery(settings.redis.namespace)

celery_app.conf.update(
    broker_url=settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 任务完成后再确认，worker 异常退出时任务重新入队
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="payments",
    task_default_retry_delay=30,
    # 状态轮询与对账走 payments 队列，计费周期滚动走 billing 队列
    task_queues=(
        Queue("payments"),
        Queue("billing"),
    ),
    task_routes={
        "payments.*": {"queue": "payments"},
        "billing.*": {"queue": "billing"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
)

celery_app.conf.imports = CELERY_IMPORTS

if (settings.ENVIRONMENT or "production").lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True

celery_app.autodiscover_tasks(packages=CELERY_IMPORTS)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        queues=[q.name for q in sender.conf.task_queues],
        beat_tasks=sorted(sender.conf.beat_schedule),
    )
