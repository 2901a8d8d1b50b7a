from __future__ import annotations

import os

import pytest

from iam_identity_mapper import config


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep a developer .env from changing backend selection during unit test runs.
    os.environ.setdefault("MAPPER_BACKEND_MODE", "MountedFile")


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    yield
    config._load_settings_cached.cache_clear()
