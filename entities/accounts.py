"""
entities/accounts.py -- Account lookups, factory, passwords and relationships.

Passwords:
  Each account carries its own salt (bcrypt.gensalt()) in password_salt and
  bcrypt.hashpw(password, salt) in password_hash. Keeping the salt in its own
  column is what makes the logical "password" field fan out into two physical
  fields (see auth/fields.py). Verification re-hashes with the stored salt and
  compares in constant time.

Relationships:
  friends and connections are symmetric. Every helper here mutates both sides
  and persists both sides. There is no transaction spanning the two writes;
  concurrent edits resolve as last-write-wins.

Online status:
  An account is online iff time_of_last_heartbeat > date_when_not_online().
  is_online() and the enumeration filter used by GET /users share that one
  strict comparison so they never disagree at the boundary.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone

import bcrypt

from core.config import get_settings
from entities.models import Account, AccountRole
from entities.store import ACCOUNTS, DOMAINS, TOKENS, After, MetaverseStore, Pager

logger = logging.getLogger("metaverse.entities")


RELATIONSHIP_FIELDS = ("friends", "connections")


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_account_with_id(store: MetaverseStore, account_id: str | None) -> Account | None:
    return await store.get_object(ACCOUNTS, {"id": account_id}) if account_id else None


async def get_account_with_username(store: MetaverseStore, username: str | None) -> Account | None:
    """Case-insensitive username lookup."""
    return await store.get_object(ACCOUNTS, {"username": username}, nocase=True) if username else None


async def get_account_with_email(store: MetaverseStore, email: str | None) -> Account | None:
    """Case-insensitive email lookup."""
    return await store.get_object(ACCOUNTS, {"email": email}, nocase=True) if email else None


async def get_account_with_name_or_id(store: MetaverseStore, name_or_id: str) -> Account | None:
    """Resolve a route parameter that may be either a username or an account id.

    Most references are by username, so that is tried first.
    """
    account = await get_account_with_username(store, name_or_id)
    if account is None:
        account = await get_account_with_id(store, name_or_id)
    return account


async def enumerate_accounts(
    store: MetaverseStore, online_only: bool = False, pager: Pager | None = None
) -> AsyncIterator[Account]:
    criteria = {"time_of_last_heartbeat": After(date_when_not_online())} if online_only else {}
    async for account in store.get_objects(ACCOUNTS, criteria, pager):
        yield account


# ---------------------------------------------------------------------------
# Factory and persistence
# ---------------------------------------------------------------------------


def create_account(username: str, password: str, email: str) -> Account:
    """Build a new, unsaved Account with the default role and a hashed password."""
    account = Account(
        id=str(uuid.uuid4()),
        username=username,
        email=email.lower(),
        roles=[AccountRole.user.value],
        when_created=_now(),
    )
    store_password(account, password)
    return account


async def add_account(store: MetaverseStore, account: Account) -> Account:
    logger.info("Accounts: creating account %s, id=%s", account.username, account.id)
    return await store.create_object(ACCOUNTS, account)


async def remove_account(store: MetaverseStore, account: Account) -> bool:
    logger.info("Accounts: removing account %s, id=%s", account.username, account.id)
    return await store.delete_one(ACCOUNTS, {"id": account.id})


async def update_entity_fields(store: MetaverseStore, account: Account, fields: dict) -> int:
    return await store.update_object_fields(ACCOUNTS, {"id": account.id}, fields)


async def remove_account_context(store: MetaverseStore, account: Account) -> None:
    """Remove everything that refers to an account before the account itself goes.

    Back-references in every friend's and connection's lists are removed and
    persisted, domains the account sponsors are deleted, and so are the
    account's tokens. Call before remove_account().
    """
    logger.info("Accounts: removing relationships for account %s, id=%s", account.username, account.id)
    for rel in RELATIONSHIP_FIELDS:
        for other_name in list(getattr(account, rel)):
            other = await get_account_with_username(store, other_name)
            if other is not None and _discard(getattr(other, rel), account.username):
                await update_entity_fields(store, other, {rel: getattr(other, rel)})
    domains = await store.delete_many(DOMAINS, {"sponsor_account_id": account.id})
    tokens = await store.delete_many(TOKENS, {"account_id": account.id})
    logger.info("Accounts: removed %d domains and %d tokens for id=%s", domains, tokens, account.id)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(password: str, salt: str) -> str:
    """Return bcrypt(password, salt). Deterministic for a given salt.

    bcrypt truncates input past 72 bytes; the API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(password.encode("utf-8"), salt.encode("utf-8")).decode("utf-8")


def store_password(account: Account, password: str) -> None:
    """Derive a fresh salt and hash for password and set both on the account.

    Both values are computed before either attribute is assigned.
    """
    salt = bcrypt.gensalt().decode("utf-8")
    hashed = hash_password(password, salt)
    account.password_salt, account.password_hash = salt, hashed


def validate_password(account: Account, password: str) -> bool:
    """Return True if password matches the account's stored hash."""
    if not account.password_salt or not account.password_hash:
        return False
    try:
        candidate = hash_password(password, account.password_salt)
    except ValueError:
        return False
    return hmac.compare_digest(candidate, account.password_hash)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


def is_admin(account: Account | None) -> bool:
    return account is not None and AccountRole.admin.value in account.roles


# ---------------------------------------------------------------------------
# Relationships
# ---------------------------------------------------------------------------


def _add(names: list[str], name: str) -> bool:
    if name in names:
        return False
    names.append(name)
    return True


def _discard(names: list[str], name: str) -> bool:
    if name not in names:
        return False
    names.remove(name)
    return True


async def _link(store: MetaverseStore, rel: str, first: Account, second: Account) -> None:
    _add(getattr(first, rel), second.username)
    _add(getattr(second, rel), first.username)
    await update_entity_fields(store, first, {rel: getattr(first, rel)})
    await update_entity_fields(store, second, {rel: getattr(second, rel)})


async def _unlink(store: MetaverseStore, rel: str, first: Account, second: Account) -> None:
    _discard(getattr(first, rel), second.username)
    _discard(getattr(second, rel), first.username)
    await update_entity_fields(store, first, {rel: getattr(first, rel)})
    await update_entity_fields(store, second, {rel: getattr(second, rel)})


async def make_accounts_friends(store: MetaverseStore, requester: Account, target: Account) -> None:
    await _link(store, "friends", requester, target)


async def make_accounts_connected(store: MetaverseStore, requester: Account, target: Account) -> None:
    await _link(store, "connections", requester, target)


async def remove_friend(store: MetaverseStore, requester: Account, target: Account) -> None:
    await _unlink(store, "friends", requester, target)


async def remove_connection(store: MetaverseStore, requester: Account, target: Account) -> None:
    """Remove a connection. Friendship requires a connection, so it goes too."""
    await _unlink(store, "connections", requester, target)
    if target.username in requester.friends or requester.username in target.friends:
        await _unlink(store, "friends", requester, target)


async def reconcile_relationships(store: MetaverseStore, account: Account, before: dict[str, list[str]]) -> None:
    """Mirror a direct write of friends/connections onto the other accounts.

    ``before`` maps relationship field name to the list as it was before the
    write. Added names get a back-reference; removed names lose theirs. Names
    that do not resolve to an account are dropped from the account's list so
    it never points at nobody.
    """
    for rel, old in before.items():
        current = getattr(account, rel)
        dangling = []
        for name in set(current) - set(old):
            other = await get_account_with_username(store, name)
            if other is None:
                dangling.append(name)
            elif _add(getattr(other, rel), account.username):
                await update_entity_fields(store, other, {rel: getattr(other, rel)})
        for name in set(old) - set(current):
            other = await get_account_with_username(store, name)
            if other is not None and _discard(getattr(other, rel), account.username):
                await update_entity_fields(store, other, {rel: getattr(other, rel)})
        if dangling:
            for name in dangling:
                current.remove(name)
            await update_entity_fields(store, account, {rel: current})


async def rename_in_relationships(store: MetaverseStore, account: Account, old_username: str) -> None:
    """Rewrite old_username to account.username in every counterpart's lists."""
    if old_username == account.username:
        return
    for rel in RELATIONSHIP_FIELDS:
        for name in getattr(account, rel):
            other = await get_account_with_username(store, name)
            if other is None:
                continue
            names = getattr(other, rel)
            if _discard(names, old_username):
                _add(names, account.username)
                await update_entity_fields(store, other, {rel: names})


# ---------------------------------------------------------------------------
# Online status
# ---------------------------------------------------------------------------


def date_when_not_online(now: datetime | None = None) -> datetime:
    """Return the instant before which a heartbeat counts as offline."""
    return (now or _now()) - timedelta(seconds=get_settings().heartbeat_seconds_until_offline)


def is_online(account: Account | None, now: datetime | None = None) -> bool:
    if account is None or account.time_of_last_heartbeat is None:
        return False
    return account.time_of_last_heartbeat > date_when_not_online(now)
