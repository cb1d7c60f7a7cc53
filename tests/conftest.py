"""Pytest configuration for migration tests."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from .util import FakeHost, FakeSystem, make_settings


@pytest.fixture(autouse=True, scope="session")
def _skip_root_check():
    """Live-mode tests run unprivileged against tmp trees."""
    os.environ["OPENCLAW_MIGRATE_SKIP_ROOT_CHECK"] = "1"
    yield
    os.environ.pop("OPENCLAW_MIGRATE_SKIP_ROOT_CHECK", None)


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def host(system: FakeSystem) -> FakeHost:
    return FakeHost(system)


@pytest.fixture
def settings(tmp_path: Path):
    return make_settings(tmp_path)
