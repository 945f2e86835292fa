"""
FILE: tests/conftest.py
Shared fixtures for portal tests.
"""

from pathlib import Path

import pytest

from src.api.routers.portal import reset_portal_runtime_for_tests
from src.infrastructure.portal import InMemoryPortalRepository
from tests.factories import TEST_TOKEN_SECRET, make_proposal


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if _has_marker(item, "unit") or _has_marker(item, "integration"):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def portal_runtime_test_harness(monkeypatch: pytest.MonkeyPatch):
    """In-memory backend, fixed secret, and a fresh runtime for every test."""

    monkeypatch.setenv("PORTAL_STORE_BACKEND", "IN_MEMORY")
    monkeypatch.setenv("PORTAL_TOKEN_SECRET", TEST_TOKEN_SECRET)
    monkeypatch.setenv("PORTAL_BASE_URL", "https://portal.example.com")
    monkeypatch.delenv("APP_PERSISTENCE_PROFILE", raising=False)
    monkeypatch.delenv("PORTAL_POSTGRES_DSN", raising=False)
    reset_portal_runtime_for_tests()
    yield
    reset_portal_runtime_for_tests()


@pytest.fixture
def repository() -> InMemoryPortalRepository:
    repo = InMemoryPortalRepository()
    repo.save_proposal(make_proposal())
    return repo
