"""Celery beat schedule configuration.

Intervals come from `payment_settings.reconciliation` so operators can tune
the sweep without touching code.
"""
from __future__ import annotations

from core.settings import payment_settings

_recon = payment_settings.reconciliation

CELERY_BEAT_SCHEDULE = {
    "payments-reconcile-stale": {
        "task": "payments.reconcile_stale",
        "schedule": _recon.sweep_interval_seconds,
        "kwargs": {
            "older_than_seconds": _recon.stale_after_seconds,
            "limit": _recon.sweep_batch_size,
        },
    },
    "billing-roll-over": {
        "task": "billing.roll_over",
        "schedule": _recon.rollover_interval_seconds,
    },
}
