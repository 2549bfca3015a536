"""
tests/test_store.py -- Unit tests for entities/store.py.

Covers criteria (equality, case-insensitive, Before/After ranges), paging
order, field updates, single/multi delete, the ValueError guard on unknown
columns, and timezone-aware round-tripping of DateTime columns.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_account, run

from entities.models import AuthToken
from entities.store import ACCOUNTS, TOKENS, After, Before, Pager


def _token(n: int, when: datetime) -> AuthToken:
    return AuthToken(
        id=f"id-{n}",
        token=f"tok-{n}",
        refresh_token=f"ref-{n}",
        account_id="acct",
        scope=["owner"],
        when_created=when,
        expiration_time=when + timedelta(hours=1),
    )


class TestLookup:
    def test_get_object_exact_and_nocase(self, store) -> None:
        run(make_account(store, "Alice"))
        assert run(store.get_object(ACCOUNTS, {"username": "alice"})) is None
        found = run(store.get_object(ACCOUNTS, {"username": "alice"}, nocase=True))
        assert found is not None
        assert found.username == "Alice"

    def test_missing_returns_none(self, store) -> None:
        assert run(store.get_object(ACCOUNTS, {"id": "nope"})) is None

    def test_datetimes_come_back_aware(self, store) -> None:
        account = run(make_account(store, "carol"))
        loaded = run(store.get_object(ACCOUNTS, {"id": account.id}))
        assert loaded.when_created.tzinfo is not None
        assert loaded.when_created == account.when_created

    def test_list_fields_round_trip(self, store) -> None:
        account = run(make_account(store, "dave"))
        loaded = run(store.get_object(ACCOUNTS, {"id": account.id}))
        assert loaded.roles == ["user"]
        assert loaded.friends == []

    def test_unknown_criteria_column_raises(self, store) -> None:
        with pytest.raises(ValueError):
            run(store.get_object(ACCOUNTS, {"no_such_column": 1}))

    def test_unknown_collection_raises(self, store) -> None:
        with pytest.raises(ValueError):
            run(store.get_object("places", {"id": "x"}))


class TestEnumerate:
    def _collect(self, store, criteria=None, pager=None) -> list:
        async def go():
            return [t async for t in store.get_objects(TOKENS, criteria, pager)]

        return run(go())

    def test_ranges_are_strict(self, store) -> None:
        base = datetime(2030, 1, 1, tzinfo=timezone.utc)
        for n in range(3):
            run(store.create_object(TOKENS, _token(n, base + timedelta(minutes=n))))
        middle = base + timedelta(minutes=1)
        assert [t.id for t in self._collect(store, {"when_created": Before(middle)})] == ["id-0"]
        assert [t.id for t in self._collect(store, {"when_created": After(middle)})] == ["id-2"]

    def test_pager_walks_in_creation_order(self, store) -> None:
        base = datetime(2030, 1, 1, tzinfo=timezone.utc)
        for n in (3, 1, 4, 0, 2):
            run(store.create_object(TOKENS, _token(n, base + timedelta(minutes=n))))
        first = self._collect(store, pager=Pager(page=1, per_page=2))
        second = self._collect(store, pager=Pager(page=2, per_page=2))
        third = self._collect(store, pager=Pager(page=3, per_page=2))
        assert [t.id for t in first + second + third] == [f"id-{n}" for n in range(5)]

    def test_pager_offset(self) -> None:
        assert Pager(page=1, per_page=10).offset == 0
        assert Pager(page=3, per_page=10).offset == 20
        assert Pager(page=0, per_page=10).offset == 0


class TestMutation:
    def test_update_object_fields(self, store) -> None:
        account = run(make_account(store, "erin"))
        assert run(store.update_object_fields(ACCOUNTS, {"id": account.id}, {"images_hero": "hero.png"})) == 1
        assert run(store.get_object(ACCOUNTS, {"id": account.id})).images_hero == "hero.png"

    def test_update_unknown_field_raises(self, store) -> None:
        account = run(make_account(store, "frank"))
        with pytest.raises(ValueError):
            run(store.update_object_fields(ACCOUNTS, {"id": account.id}, {"password": "x"}))

    def test_empty_update_is_noop(self, store) -> None:
        assert run(store.update_object_fields(ACCOUNTS, {"id": "x"}, {})) == 0

    def test_delete_one_and_many(self, store) -> None:
        base = datetime(2030, 1, 1, tzinfo=timezone.utc)
        for n in range(3):
            run(store.create_object(TOKENS, _token(n, base)))
        assert run(store.delete_one(TOKENS, {"account_id": "acct"})) is True
        assert run(store.delete_many(TOKENS, {"account_id": "acct"})) == 2
        assert run(store.delete_one(TOKENS, {"account_id": "acct"})) is False

    def test_ping(self, store) -> None:
        assert run(store.ping()) is True
