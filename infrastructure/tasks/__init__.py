"""Celery task infrastructure package.

Importing this module wires together the configured Celery app used by the
worker and beat processes.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
