"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - scope filtering and de-duplication
  - expiration policy: default by scope, -1 infinite, clamp to [1, 1e6] hours
  - has_not_expired boundary (expiration == now is expired)
  - the one-second special admin token
  - lookup, get_valid_token and the expiration sweep
  - authenticate_account success and uniform failure
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from conftest import make_account, run

from auth import tokens
from core.config import get_settings


class TestCreateToken:
    def test_unknown_scopes_dropped_and_duplicates_removed(self) -> None:
        token = tokens.create_token("acct", ["owner", "bogus", "owner", "read"])
        assert token.scope == ["owner", "read"]

    def test_token_with_no_known_scope_still_created(self) -> None:
        token = tokens.create_token("acct", ["bogus"])
        assert token.scope == []
        assert tokens.has_not_expired(token)

    def test_identifiers_are_distinct(self) -> None:
        token = tokens.create_token("acct", ["owner"])
        assert len({token.id, token.token, token.refresh_token}) == 3

    def test_default_lifetime_depends_on_scope(self) -> None:
        settings = get_settings()
        owner = tokens.create_token("acct", ["owner"])
        domain = tokens.create_token("acct", ["domain"])
        assert owner.expiration_time - owner.when_created == timedelta(hours=settings.owner_token_expire_hours)
        assert domain.expiration_time - domain.when_created == timedelta(hours=settings.domain_token_expire_hours)

    def test_default_lifetime_follows_reloaded_settings(self, monkeypatch) -> None:
        monkeypatch.setenv("OWNER_TOKEN_EXPIRE_HOURS", "3")
        get_settings.cache_clear()
        try:
            token = tokens.create_token("acct", ["owner"])
        finally:
            monkeypatch.delenv("OWNER_TOKEN_EXPIRE_HOURS")
            get_settings.cache_clear()
        assert token.expiration_time - token.when_created == timedelta(hours=3)

    def test_minus_one_never_expires(self) -> None:
        token = tokens.create_token("acct", ["owner"], expire_hours=-1)
        assert token.expiration_time.year == 2400

    def test_explicit_hours(self) -> None:
        token = tokens.create_token("acct", ["owner"], expire_hours=5)
        assert token.expiration_time - token.when_created == timedelta(hours=5)

    def test_hours_clamped(self) -> None:
        low = tokens.create_token("acct", ["owner"], expire_hours=-7)
        high = tokens.create_token("acct", ["owner"], expire_hours=10**9)
        assert low.expiration_time - low.when_created == timedelta(hours=1)
        assert high.expiration_time - high.when_created == timedelta(hours=1_000_000)


class TestExpiry:
    def test_boundary_is_expired(self) -> None:
        token = tokens.create_token("acct", ["owner"], expire_hours=1)
        at = token.expiration_time
        assert tokens.has_not_expired(token, now=at - timedelta(microseconds=1))
        assert not tokens.has_not_expired(token, now=at)

    def test_none_is_expired(self) -> None:
        assert not tokens.has_not_expired(None)

    def test_special_admin_token(self) -> None:
        special = tokens.create_special_admin_token()
        assert tokens.is_special_admin_token(special)
        assert special.expiration_time - special.when_created == timedelta(seconds=1)
        assert not tokens.is_special_admin_token(tokens.create_token("acct", ["owner"]))

    def test_expired_special_admin_token_is_not_special(self) -> None:
        special = tokens.create_special_admin_token()
        special.expiration_time = datetime.now(timezone.utc) - timedelta(seconds=1)
        assert not tokens.is_special_admin_token(special)


class TestStoreHelpers:
    def test_issue_and_lookup(self, store) -> None:
        token = run(tokens.issue_token(store, "acct", ["owner"]))
        assert run(tokens.get_token_with_token(store, token.token)).id == token.id
        assert run(tokens.get_token_with_token_id(store, token.id)).token == token.token
        assert run(tokens.get_token_with_refresh_token(store, token.refresh_token)).id == token.id

    def test_get_valid_token_refuses_expired(self, store) -> None:
        token = tokens.create_token("acct", ["owner"])
        token.expiration_time = datetime.now(timezone.utc) - timedelta(seconds=5)
        run(tokens.add_token(store, token))
        assert run(tokens.get_valid_token(store, token.token)) is None
        assert run(tokens.get_valid_token(store, "unknown")) is None
        assert run(tokens.get_valid_token(store, None)) is None

    def test_tokens_for_owner(self, store) -> None:
        run(tokens.issue_token(store, "acct", ["owner"]))
        run(tokens.issue_token(store, "acct", ["domain"]))
        run(tokens.issue_token(store, "other", ["owner"]))

        async def collect():
            return [t async for t in tokens.get_tokens_for_owner(store, "acct")]

        assert len(run(collect())) == 2

    def test_sweep_removes_only_expired(self, store) -> None:
        live = run(tokens.issue_token(store, "acct", ["owner"]))
        dead = tokens.create_token("acct", ["owner"])
        dead.expiration_time = datetime.now(timezone.utc) - timedelta(minutes=1)
        run(tokens.add_token(store, dead))
        assert run(tokens.sweep_expired(store)) == 1
        assert run(tokens.get_token_with_token_id(store, dead.id)) is None
        assert run(tokens.get_token_with_token_id(store, live.id)) is not None

    def test_sweep_twice_deletes_nothing_the_second_time(self, store) -> None:
        dead = tokens.create_token("acct", ["owner"])
        dead.expiration_time = datetime.now(timezone.utc) - timedelta(minutes=1)
        run(tokens.add_token(store, dead))
        assert run(tokens.sweep_expired(store)) == 1
        assert run(tokens.sweep_expired(store)) == 0


class TestAuthenticate:
    def test_success_is_case_insensitive_on_username(self, store) -> None:
        account = run(make_account(store, "Alice", "pw-alice"))
        assert run(tokens.authenticate_account(store, "alice", "pw-alice")).id == account.id

    def test_wrong_password_and_unknown_user_both_none(self, store) -> None:
        run(make_account(store, "bob", "pw-bob"))
        assert run(tokens.authenticate_account(store, "bob", "wrong")) is None
        assert run(tokens.authenticate_account(store, "nobody", "pw-bob")) is None


class TestExpirationPolicyWithoutScopes:
    def test_explicit_hours_with_no_scopes(self) -> None:
        token = tokens.create_token("acct", [], expire_hours=5)
        assert token.expiration_time - token.when_created == timedelta(hours=5)

    def test_two_million_hours_clamps(self) -> None:
        token = tokens.create_token("acct", [], expire_hours=2_000_000)
        assert token.expiration_time - token.when_created == timedelta(hours=1_000_000)
