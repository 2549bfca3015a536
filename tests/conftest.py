"""
tests/conftest.py -- Shared test fixtures for the metaverse server.

This module provides:
  - run(): drive a coroutine from a synchronous test
  - store: a fresh MetaverseStore on a per-test SQLite file
  - make_account(): build and persist an account in one call
  - api_client: TestClient over the real app with a patched lifespan and
    seeded accounts (admin, alice, bob) plus an owner token for each

Design: the store uses a file database under tmp_path, not :memory:. The
engine runs on NullPool, so every operation opens a new connection; an
in-memory database would be blank on each one. NullPool also means nothing
is bound to the event loop, so each asyncio.run() call can use the store.

LOGIN_RATE_LIMIT is raised before any app import because the limiter reads
it once at import time and the suites log in more than ten times a minute.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress

os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth import tokens
from entities import accounts
from entities.models import Account, AccountRole
from entities.store import MetaverseStore


def run(coro):
    return asyncio.run(coro)


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def make_account(
    store: MetaverseStore, username: str, password: str = "secret123", admin: bool = False
) -> Account:
    account = accounts.create_account(username, password, f"{username}@example.com")
    if admin:
        account.roles.append(AccountRole.admin.value)
    return await accounts.add_account(store, account)


@pytest.fixture
def store(tmp_path) -> Generator[MetaverseStore, None, None]:
    s = MetaverseStore(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    run(s.init())
    yield s
    run(s.close())


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------

SEED_USERS = {
    "admin": ("adminpass123", True),
    "alice": ("alicepass123", False),
    "bob": ("bobpass123", False),
}


def _patch_lifespan(store: MetaverseStore, seed: dict):
    """Return a lifespan that wires the test store into app.state and seeds it.

    Seeding happens inside the lifespan so it runs on the TestClient's loop.
    The sweep task is a long sleep: a real asyncio.Task is needed for
    .cancel() on shutdown, and the real sweep would race the tests.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        await store.init()
        for name, (password, admin) in SEED_USERS.items():
            account = await make_account(store, name, password, admin)
            token = await tokens.issue_token(store, account.id, ["owner"])
            seed[name] = {"id": account.id, "token": token.token, "password": password}
        app.state.store = store
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.sweep_task
        await store.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, dict], None, None]:
    """Yield (client, seed) where seed[name] = {"id", "token", "password"}.

    One client and one database per test module; tests inside a module must
    not depend on each other's writes.
    """
    db_path = tmp_path_factory.mktemp("api") / "api.db"
    store = MetaverseStore(f"sqlite+aiosqlite:///{db_path}")
    seed: dict = {}
    app.router.lifespan_context = _patch_lifespan(store, seed)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, seed
