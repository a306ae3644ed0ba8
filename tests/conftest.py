from __future__ import annotations

import asyncio
import contextlib
from unittest.mock import MagicMock

import pytest

from trustate.app import AppContext, build_app_context
from trustate.config import SecuritySettings, Settings
from trustate.middleware import security
from trustate.store.db import SqliteStore


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


@pytest.fixture(autouse=True)
def _reset_shared_rate_limiter() -> None:
    security.get_shared_rate_limiter().reset()
    yield
    security.get_shared_rate_limiter().reset()


@pytest.fixture
def store(tmp_path):
    sqlite_store = SqliteStore(str(tmp_path / "trustate.db"))
    yield sqlite_store
    sqlite_store.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        security=SecuritySettings(
            rate_limit_per_user=10_000,
            rate_limit_per_ip=10_000,
            pairing_attempts_per_minute=10_000,
            verification_requests_per_minute=10_000,
        ),
    )


@pytest.fixture
def providers() -> dict[str, MagicMock]:
    return {
        "storage": MagicMock(),
        "analyzer": MagicMock(),
        "biometrics": MagicMock(),
        "directory": MagicMock(),
    }


@pytest.fixture
def context(settings: Settings, store: SqliteStore, providers) -> AppContext:
    return build_app_context(settings, store, **providers)
