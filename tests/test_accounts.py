"""
tests/test_accounts.py -- Unit tests for entities/accounts.py.

Covers the account factory, password storage, relationship symmetry
(helpers, reconcile after direct writes, rename), deletion cleanup and the
strict online threshold.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import make_account, run

from auth import tokens
from core.config import get_settings
from entities import accounts, domains


def _reload(store, account):
    return run(accounts.get_account_with_id(store, account.id))


class TestFactory:
    def test_create_account_defaults(self) -> None:
        account = accounts.create_account("Neo", "pw", "Neo@Matrix.IO")
        assert account.email == "neo@matrix.io"
        assert account.roles == ["user"]
        assert account.when_created is not None
        assert account.password_hash and account.password_salt
        assert not accounts.is_admin(account)

    def test_validate_password(self) -> None:
        account = accounts.create_account("neo", "red-pill", "neo@matrix.io")
        assert accounts.validate_password(account, "red-pill")
        assert not accounts.validate_password(account, "blue-pill")

    def test_validate_password_without_hash(self) -> None:
        account = accounts.create_account("neo", "red-pill", "neo@matrix.io")
        account.password_hash = None
        assert not accounts.validate_password(account, "red-pill")

    def test_hash_is_salted(self) -> None:
        a = accounts.create_account("a", "same", "a@x.io")
        b = accounts.create_account("b", "same", "b@x.io")
        assert a.password_hash != b.password_hash


class TestLookup:
    def test_name_or_id(self, store) -> None:
        account = run(make_account(store, "Trinity"))
        assert run(accounts.get_account_with_name_or_id(store, "trinity")).id == account.id
        assert run(accounts.get_account_with_name_or_id(store, account.id)).id == account.id
        assert run(accounts.get_account_with_email(store, "TRINITY@example.com")).id == account.id
        assert run(accounts.get_account_with_name_or_id(store, "morpheus")) is None


class TestRelationships:
    def test_friends_are_symmetric_and_persisted(self, store) -> None:
        a = run(make_account(store, "a"))
        b = run(make_account(store, "b"))
        run(accounts.make_accounts_friends(store, a, b))
        assert _reload(store, a).friends == ["b"]
        assert _reload(store, b).friends == ["a"]

    def test_removing_connection_removes_friendship(self, store) -> None:
        a = run(make_account(store, "a"))
        b = run(make_account(store, "b"))
        run(accounts.make_accounts_connected(store, a, b))
        run(accounts.make_accounts_friends(store, a, b))
        run(accounts.remove_connection(store, a, b))
        for account in (_reload(store, a), _reload(store, b)):
            assert account.friends == []
            assert account.connections == []

    def test_reconcile_after_direct_write(self, store) -> None:
        a = run(make_account(store, "a"))
        b = run(make_account(store, "b"))
        c = run(make_account(store, "c"))
        run(accounts.make_accounts_connected(store, a, c))
        before = {"connections": list(a.connections)}
        a.connections = ["b", "ghost"]
        run(accounts.update_entity_fields(store, a, {"connections": a.connections}))
        run(accounts.reconcile_relationships(store, a, before))
        assert _reload(store, a).connections == ["b"]
        assert _reload(store, b).connections == ["a"]
        assert _reload(store, c).connections == []

    def test_rename_updates_back_references(self, store) -> None:
        a = run(make_account(store, "a"))
        b = run(make_account(store, "b"))
        run(accounts.make_accounts_connected(store, a, b))
        a.username = "alpha"
        run(accounts.update_entity_fields(store, a, {"username": "alpha"}))
        run(accounts.rename_in_relationships(store, a, "a"))
        assert _reload(store, b).connections == ["alpha"]


class TestRemoveAccountContext:
    def test_cleans_references_domains_and_tokens(self, store) -> None:
        a = run(make_account(store, "a"))
        b = run(make_account(store, "b"))
        run(accounts.make_accounts_connected(store, a, b))
        domain = domains.create_domain("owned")
        domain.sponsor_account_id = a.id
        run(domains.add_domain(store, domain))
        token = run(tokens.issue_token(store, a.id, ["owner"]))

        run(accounts.remove_account_context(store, a))
        run(accounts.remove_account(store, a))

        assert _reload(store, a) is None
        assert _reload(store, b).connections == []
        assert run(domains.get_domain_with_id(store, domain.id)) is None
        assert run(tokens.get_token_with_token_id(store, token.id)) is None


class TestOnline:
    def test_threshold_is_strict(self) -> None:
        now = datetime(2030, 6, 1, tzinfo=timezone.utc)
        limit = timedelta(seconds=get_settings().heartbeat_seconds_until_offline)
        account = accounts.create_account("a", "pw", "a@x.io")
        account.time_of_last_heartbeat = now - limit
        assert not accounts.is_online(account, now)
        account.time_of_last_heartbeat = now - limit + timedelta(microseconds=1)
        assert accounts.is_online(account, now)

    def test_never_heartbeated_is_offline(self) -> None:
        assert not accounts.is_online(accounts.create_account("a", "pw", "a@x.io"))
        assert not accounts.is_online(None)

    def test_enumerate_online_only(self, store) -> None:
        fresh = run(make_account(store, "fresh"))
        run(make_account(store, "stale"))
        fresh.time_of_last_heartbeat = datetime.now(timezone.utc)
        run(accounts.update_entity_fields(store, fresh, {"time_of_last_heartbeat": fresh.time_of_last_heartbeat}))

        async def collect(online_only):
            return [a.username async for a in accounts.enumerate_accounts(store, online_only)]

        assert run(collect(True)) == ["fresh"]
        assert sorted(run(collect(False))) == ["fresh", "stale"]
