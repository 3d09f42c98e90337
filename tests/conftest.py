"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./test_marketpay.db")
os.environ.setdefault("DEBUG", "false")

import pytest

from fakes import InMemoryStore, ServiceGraph


@pytest.fixture
def services() -> ServiceGraph:
    return ServiceGraph()


@pytest.fixture
def store(services: ServiceGraph) -> InMemoryStore:
    return services.store
