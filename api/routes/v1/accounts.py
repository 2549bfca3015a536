"""
api/routes/v1/accounts.py -- Account creation, listing and field access.

Routes:
  POST   /api/v1/users                                  -- create account (public)
  GET    /api/v1/users                                  -- list usernames (signed in)
  GET    /api/v1/account/{account_id}                   -- every readable field (owner/admin)
  POST   /api/v1/account/{account_id}                   -- multi-field update (owner/admin)
  DELETE /api/v1/account/{account_id}                   -- delete with cleanup (admin)
  GET    /api/v1/account/{account_id}/field/{field_name}
  POST   /api/v1/account/{account_id}/field/{field_name}

{account_id} is a username (case-insensitive) or an account id.

All field reads and writes go through auth/fields.py. These handlers only
decide which HTTP status a refusal maps to and persist what was applied:
a hidden or unknown field on GET is 404, any refused field write is 400.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import (
    AccountCreate,
    AccountCreatedResponse,
    AccountUpdate,
    FieldResponse,
    FieldSetRequest,
    UpdateResult,
    UserSummary,
)
from auth import fields
from auth.dependencies import get_current_account, get_requester, get_store, require_admin
from auth.models import Requester
from auth.permissions import Capability, permits, resolve_capabilities
from auth.tokens import create_special_admin_token
from entities import accounts
from entities.models import Account
from entities.store import MetaverseStore, Pager

logger = logging.getLogger("metaverse.api")

router = APIRouter()

# Initial profile values accepted at sign-up. Anything touching identity,
# privilege or relationships must go through the normal field routes.
_PROFILE_FIELDS = frozenset(
    {"images_hero", "images_thumbnail", "images_tiny", "account_settings", "availability", "public_key"}
)


def _error(status: int, code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status, detail={"code": code, "message": message})


async def _load_account(store: MetaverseStore, account_id: str) -> Account:
    account = await accounts.get_account_with_name_or_id(store, account_id)
    if account is None:
        raise _error(404, "not_found", "Account not found.")
    return account


async def _check_unique(store: MetaverseStore, values: dict, account_id: str | None = None) -> None:
    """409 if a username or email in values already belongs to another account."""
    for name, lookup in (
        ("username", accounts.get_account_with_username),
        ("email", accounts.get_account_with_email),
    ):
        value = values.get(name)
        if not isinstance(value, str):
            continue
        other = await lookup(store, value)
        if other is not None and other.id != account_id:
            raise _error(409, "conflict", f"That {name} is already taken.")


async def _owner_or_admin(store: MetaverseStore, requester: Requester, account: Account) -> frozenset[Capability]:
    caps = await resolve_capabilities(store, requester, account)
    if not permits(fields.OWNER_OR_ADMIN, caps):
        if requester.token is None:
            raise _error(401, "unauthorized", "Authentication required.")
        raise _error(403, "forbidden", "Not permitted for this account.")
    return caps


def _snapshot(account: Account) -> dict:
    before = {rel: list(getattr(account, rel)) for rel in accounts.RELATIONSHIP_FIELDS}
    before["username"] = account.username
    return before


async def _persist(store: MetaverseStore, account: Account, applied: list[str], before: dict) -> None:
    """Write applied fields and keep counterpart accounts consistent."""
    if not applied:
        return
    await accounts.update_entity_fields(store, account, fields.build_update(account, applied))
    if "username" in applied:
        await accounts.rename_in_relationships(store, account, before["username"])
    changed = {rel: before[rel] for rel in accounts.RELATIONSHIP_FIELDS if rel in applied}
    if changed:
        await accounts.reconcile_relationships(store, account, changed)


# ---------------------------------------------------------------------------
# Users collection
# ---------------------------------------------------------------------------


@router.post("/users", response_model=AccountCreatedResponse, status_code=201)
async def create_user(request: Request, body: AccountCreate) -> AccountCreatedResponse:
    """Create an account. Optional profile values are applied as admin and
    silently skipped when they fail validation."""
    store = get_store(request)
    username_ok = fields.ACCOUNT_FIELDS["username"].validate(body.username, None)
    email_ok = fields.ACCOUNT_FIELDS["email"].validate(body.email, None)
    if not (username_ok and email_ok):
        raise _error(400, "field_rejected", "Username or email is not acceptable.")

    await _check_unique(store, {"username": body.username, "email": body.email})
    account = accounts.create_account(body.username, body.password, body.email)
    account.ip_addr_of_creator = request.client.host if request.client else None

    profile = {k: v for k, v in body.profile.items() if k in _PROFILE_FIELDS}
    if profile:
        admin = Requester(token=create_special_admin_token())
        _, skipped = await fields.set_fields(store, admin, account, profile)
        if skipped:
            logger.info("Account %s: skipped profile fields %s", account.username, skipped)

    await accounts.add_account(store, account)
    return AccountCreatedResponse(account_id=account.id, username=account.username)


@router.get("/users", response_model=list[UserSummary])
async def list_users(
    request: Request,
    online: bool = Query(default=False),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    current: Account = Depends(get_current_account),
) -> list[UserSummary]:
    store = get_store(request)
    return [
        UserSummary(username=a.username, online=accounts.is_online(a), images_tiny=a.images_tiny)
        async for a in accounts.enumerate_accounts(store, online, Pager(page=page, per_page=per_page))
    ]


# ---------------------------------------------------------------------------
# Single account
# ---------------------------------------------------------------------------


@router.get("/account/{account_id}")
async def get_account(request: Request, account_id: str) -> dict:
    store = get_store(request)
    requester = await get_requester(request)
    account = await _load_account(store, account_id)
    caps = await _owner_or_admin(store, requester, account)
    return await fields.get_fields(store, requester, account, capabilities=caps)


@router.post("/account/{account_id}", response_model=UpdateResult)
async def update_account(request: Request, account_id: str, body: AccountUpdate) -> UpdateResult:
    """Apply several field writes. Each is accepted or rejected on its own."""
    store = get_store(request)
    requester = await get_requester(request)
    account = await _load_account(store, account_id)
    caps = await _owner_or_admin(store, requester, account)
    await _check_unique(store, body.accounts, account.id)

    before = _snapshot(account)
    applied, rejected = await fields.set_fields(store, requester, account, body.accounts, capabilities=caps)
    await _persist(store, account, applied, before)
    return UpdateResult(updated=applied, rejected=rejected)


@router.delete("/account/{account_id}", status_code=204)
async def delete_account(
    request: Request,
    account_id: str,
    admin: Account = Depends(require_admin),
) -> Response:
    store = get_store(request)
    account = await _load_account(store, account_id)
    await accounts.remove_account_context(store, account)
    await accounts.remove_account(store, account)
    logger.info("Account %s deleted by %s", account.username, admin.username)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Single field
# ---------------------------------------------------------------------------


@router.get("/account/{account_id}/field/{field_name}", response_model=FieldResponse)
async def get_account_field(request: Request, account_id: str, field_name: str) -> FieldResponse:
    store = get_store(request)
    requester = await get_requester(request)
    account = await _load_account(store, account_id)
    # Unknown and hidden look the same from outside.
    visible = await fields.get_fields(store, requester, account, [field_name])
    if field_name not in visible:
        raise _error(404, "not_found", "No such field.")
    return FieldResponse(field=field_name, value=visible[field_name])


@router.post("/account/{account_id}/field/{field_name}", response_model=FieldResponse)
async def set_account_field(
    request: Request, account_id: str, field_name: str, body: FieldSetRequest
) -> FieldResponse:
    store = get_store(request)
    requester = await get_requester(request)
    account = await _load_account(store, account_id)

    before = _snapshot(account)
    if not await fields.set_field(store, requester, account, field_name, body.value):
        raise _error(400, "field_rejected", "Field could not be set.")
    await _check_unique(store, {field_name: body.value}, account.id)
    await _persist(store, account, [field_name], before)
    visible = await fields.get_fields(store, requester, account, [field_name])
    return FieldResponse(field=field_name, value=visible.get(field_name))
