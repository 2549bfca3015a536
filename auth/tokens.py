"""
auth/tokens.py -- Bearer token lifecycle and password authentication.

Tokens are opaque: token and refresh_token are random UUID strings stored in
the tokens collection, not signed claims. Looking a token up is the only way
to learn who it belongs to, so deleting the record revokes it.

Expiration policy (create_token's expire_hours):
   0  -> default for the scope: domain_token_expire_hours if "domain" is among
         the scopes, owner_token_expire_hours otherwise
  -1  -> effectively infinite (_INFINITE_EXPIRATION)
   N  -> N hours after creation, clamped to [1, 1_000_000]

Validity is strictly expiration_time > now and is re-checked on every use.
The periodic sweep only garbage-collects; a token past its expiration is
refused even if the sweep has not run yet.

Special admin token:
  create_special_admin_token() returns an in-memory token for trusted
  in-process calls. It carries a per-process secret token string, lives one
  second, and points at an account id that does not exist. It is never
  persisted, so it can never be presented over HTTP.

Passwords:
  authenticate_account() always runs a bcrypt comparison, against a dummy
  account when the username is unknown, so response time does not reveal
  whether a username exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from enum import Enum

from core.config import get_settings
from entities import accounts
from entities.models import Account, AuthToken
from entities.store import TOKENS, Before, MetaverseStore, Pager

logger = logging.getLogger("metaverse.auth")


_MIN_EXPIRE_HOURS = 1
_MAX_EXPIRE_HOURS = 1_000_000  # about 114 years
_INFINITE_EXPIRATION = datetime(2400, 1, 1, tzinfo=timezone.utc)
_SPECIAL_ADMIN_TOKEN = str(uuid.uuid4())


class TokenScope(str, Enum):
    owner = "owner"  # a person
    domain = "domain"  # a domain server
    place = "place"  # a place
    read = "read"
    write = "write"

    @classmethod
    def known(cls, scope: str) -> bool:
        return scope in cls._value2member_map_


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Creation and expiration policy
# ---------------------------------------------------------------------------


def compute_default_expiration(scopes: list[str], base: datetime | None = None) -> datetime:
    """Return the default expiration for a token with these scopes."""
    if TokenScope.domain.value in scopes:
        hours = get_settings().domain_token_expire_hours
    else:
        hours = get_settings().owner_token_expire_hours
    return (base or _now()) + timedelta(hours=hours)


def create_token(account_id: str, scopes: list[str], expire_hours: int = 0) -> AuthToken:
    """Build a new, unsaved token for account_id.

    Unknown scopes are dropped silently. A token left with no scopes is
    still valid, it just carries no privileges.
    """
    when_created = _now()
    kept = [s for s in dict.fromkeys(scopes) if TokenScope.known(s)]
    if expire_hours == 0:
        expiration = compute_default_expiration(kept, when_created)
    elif expire_hours == -1:
        expiration = _INFINITE_EXPIRATION
    else:
        hours = min(max(expire_hours, _MIN_EXPIRE_HOURS), _MAX_EXPIRE_HOURS)
        expiration = when_created + timedelta(hours=hours)
    return AuthToken(
        id=str(uuid.uuid4()),
        token=str(uuid.uuid4()),
        refresh_token=str(uuid.uuid4()),
        account_id=account_id,
        scope=kept,
        when_created=when_created,
        expiration_time=expiration,
    )


def has_not_expired(token: AuthToken | None, now: datetime | None = None) -> bool:
    """Return True if token exists and expiration_time is strictly in the future."""
    if token is None or token.expiration_time is None:
        return False
    return token.expiration_time > (now or _now())


def expires_in_seconds(token: AuthToken) -> int:
    return max(int((token.expiration_time - _now()).total_seconds()), 0)


def create_special_admin_token() -> AuthToken:
    """Return the one-second internal admin token. Never persist it."""
    now = _now()
    return AuthToken(
        id=str(uuid.uuid4()),
        token=_SPECIAL_ADMIN_TOKEN,
        refresh_token=str(uuid.uuid4()),
        account_id=str(uuid.uuid4()),  # no such account
        scope=[TokenScope.owner.value],
        when_created=now,
        expiration_time=now + timedelta(seconds=1),
    )


def is_special_admin_token(token: AuthToken | None) -> bool:
    return token is not None and token.token == _SPECIAL_ADMIN_TOKEN and has_not_expired(token)


# ---------------------------------------------------------------------------
# Persistence and lookup
# ---------------------------------------------------------------------------


async def add_token(store: MetaverseStore, token: AuthToken) -> AuthToken:
    return await store.create_object(TOKENS, token)


async def issue_token(store: MetaverseStore, account_id: str, scopes: list[str], expire_hours: int = 0) -> AuthToken:
    """create_token() + add_token()."""
    token = create_token(account_id, scopes, expire_hours)
    await add_token(store, token)
    logger.debug("Tokens: issued token id=%s scope=%s for account %s", token.id, token.scope, account_id)
    return token


async def remove_token(store: MetaverseStore, token: AuthToken) -> bool:
    return await store.delete_one(TOKENS, {"id": token.id})


async def get_token_with_token_id(store: MetaverseStore, token_id: str | None) -> AuthToken | None:
    return await store.get_object(TOKENS, {"id": token_id}) if token_id else None


async def get_token_with_token(store: MetaverseStore, token: str | None) -> AuthToken | None:
    return await store.get_object(TOKENS, {"token": token}) if token else None


async def get_token_with_refresh_token(store: MetaverseStore, refresh_token: str | None) -> AuthToken | None:
    return await store.get_object(TOKENS, {"refresh_token": refresh_token}) if refresh_token else None


async def get_tokens_for_owner(
    store: MetaverseStore, account_id: str, pager: Pager | None = None
) -> AsyncIterator[AuthToken]:
    async for token in store.get_objects(TOKENS, {"account_id": account_id}, pager):
        yield token


async def get_valid_token(store: MetaverseStore, token: str | None) -> AuthToken | None:
    """Look up a token string and return it only if it has not expired.

    Not found and expired are different failures but both come back as None.
    """
    found = await get_token_with_token(store, token)
    if found is None:
        return None
    if not has_not_expired(found):
        logger.debug("Tokens: refused expired token id=%s", found.id)
        return None
    return found


# ---------------------------------------------------------------------------
# Expiration sweep
# ---------------------------------------------------------------------------


async def sweep_expired(store: MetaverseStore, now: datetime | None = None) -> int:
    """Delete every persisted token whose expiration has passed. Returns the count."""
    deleted = await store.delete_many(TOKENS, {"expiration_time": Before(now or _now())})
    if deleted:
        logger.info("Tokens: expired %d tokens", deleted)
    return deleted


async def token_sweep_loop(store: MetaverseStore, interval_seconds: int | None = None) -> None:
    """Run sweep_expired() forever, every interval_seconds.

    Started as an asyncio task in the API lifespan and cancelled on shutdown;
    CancelledError from asyncio.sleep unwinds the coroutine. A failing sweep
    is logged and retried on the next tick.
    """
    interval = interval_seconds or get_settings().token_sweep_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_expired(store)
        except Exception:
            logger.exception("Tokens: expiration sweep failed")


# ---------------------------------------------------------------------------
# Password authentication (constant-time)
# ---------------------------------------------------------------------------

_DUMMY_ACCOUNT = accounts.create_account("timing-dummy", "metaverse_timing_dummy", "dummy@invalid")


async def authenticate_account(store: MetaverseStore, username: str, password: str) -> Account | None:
    """Return the account if username/password match, None on any failure.

    Always runs bcrypt, against _DUMMY_ACCOUNT when the username is unknown,
    so an attacker cannot enumerate usernames by timing.
    """
    account = await accounts.get_account_with_username(store, username)
    if account is None:
        accounts.validate_password(_DUMMY_ACCOUNT, password)
        return None
    if not accounts.validate_password(account, password):
        return None
    return account
