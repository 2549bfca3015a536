"""
auth/permissions.py -- Capabilities and the identity/relationship resolver.

A Capability is what a requester is, relative to one target entity:

  owner       token's account is the target account, or the target domain's sponsor
  admin       token's account has the "admin" role
  domain      requester proved it is the target domain (API key, sender key,
              or a domain-scope token of the domain's sponsor)
  friend      token's account is in the target account's friends
  connection  token's account is in the target account's connections
  all         any resolvable requester
  none        never granted; a field requiring it is hard-disabled

Resolution never raises. A requester with no usable credential (no token, an
expired token, an unknown token, no matching API key) resolves to the empty
set and every check against it fails closed.

Scopes gate capabilities: owner/admin/friend/connection need an "owner" scope
token, the token path to domain needs a "domain" scope token. A token whose
scopes were all filtered out resolves to {all} only.

Side effect: the first requester whose token resolves to a real account and
targets an unsponsored domain binds that domain's sponsor to the account.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
from collections.abc import Iterable
from enum import Enum

from auth.models import Requester
from auth.tokens import TokenScope, has_not_expired, is_special_admin_token
from entities import accounts, domains
from entities.models import Account, Domain
from entities.store import MetaverseStore


class Capability(str, Enum):
    owner = "owner"
    admin = "admin"
    domain = "domain"
    friend = "friend"
    connection = "connection"
    all = "all"
    none = "none"


def permits(required: Iterable[Capability], granted: Iterable[Capability]) -> bool:
    """Return True if any required capability is granted.

    A requirement containing Capability.none is never satisfied.
    """
    required = frozenset(required)
    if Capability.none in required:
        return False
    return not required.isdisjoint(granted)


async def resolve_capabilities(store: MetaverseStore, requester: Requester | None, target) -> frozenset[Capability]:
    """Classify requester against target (an Account or a Domain)."""
    if requester is None:
        return frozenset()
    caps: set[Capability] = set()

    token = requester.token if has_not_expired(requester.token) else None
    if token is not None:
        if is_special_admin_token(token):
            return frozenset({Capability.all, Capability.admin})
        caps.add(Capability.all)
        scopes = set(token.scope)
        if scopes & {TokenScope.owner.value, TokenScope.domain.value}:
            account = await accounts.get_account_with_id(store, token.account_id)
            if account is not None:
                caps |= await _relationship(store, account, scopes, target)

    if isinstance(target, Domain) and _proves_domain(requester, target):
        caps |= {Capability.all, Capability.domain}

    return frozenset(caps)


async def _relationship(store: MetaverseStore, account: Account, scopes: set[str], target) -> set[Capability]:
    caps: set[Capability] = set()
    as_owner = TokenScope.owner.value in scopes
    if as_owner and accounts.is_admin(account):
        caps.add(Capability.admin)

    if isinstance(target, Account):
        if as_owner:
            if account.id == target.id:
                caps.add(Capability.owner)
            if account.username in target.friends:
                caps.add(Capability.friend)
            if account.username in target.connections:
                caps.add(Capability.connection)
    elif isinstance(target, Domain):
        await domains.bind_sponsor(store, target, account.id)
        if target.sponsor_account_id == account.id:
            if as_owner:
                caps.add(Capability.owner)
            if TokenScope.domain.value in scopes:
                caps.add(Capability.domain)
    return caps


def _proves_domain(requester: Requester, domain: Domain) -> bool:
    if requester.api_key:
        return hmac.compare_digest(requester.api_key.encode(), domain.api_key.encode())
    return bool(requester.sender_key) and requester.sender_key == domain.last_sender_key
