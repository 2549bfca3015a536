"""
api/routes/v1/user.py -- Routes acting on the signed-in account.

Routes:
  PUT    /api/v1/user/heartbeat
  GET    /api/v1/user/friends
  POST   /api/v1/user/friends                  -- {"username"}; must be a connection first
  DELETE /api/v1/user/friends/{username}
  GET    /api/v1/user/connections
  POST   /api/v1/user/connections              -- {"username"}
  DELETE /api/v1/user/connections/{username}

Every route needs an owner-scope token. Relationship changes are symmetric:
entities/accounts.py updates and persists both accounts.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import FieldResponse, UsernameRequest
from auth.dependencies import get_current_account, get_store
from entities import accounts
from entities.models import Account
from entities.store import MetaverseStore

router = APIRouter(prefix="/user")


async def _other_account(store: MetaverseStore, current: Account, username: str) -> Account:
    other = await accounts.get_account_with_username(store, username)
    if other is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Account not found."})
    if other.id == current.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "field_rejected", "message": "Cannot relate an account to itself."},
        )
    return other


@router.put("/heartbeat", response_model=FieldResponse)
async def heartbeat(request: Request, current: Account = Depends(get_current_account)) -> FieldResponse:
    """Mark the caller online until heartbeat_seconds_until_offline elapses."""
    current.time_of_last_heartbeat = datetime.now(timezone.utc)
    await accounts.update_entity_fields(
        get_store(request), current, {"time_of_last_heartbeat": current.time_of_last_heartbeat}
    )
    return FieldResponse(field="time_of_last_heartbeat", value=current.time_of_last_heartbeat.isoformat())


# ---------------------------------------------------------------------------
# Friends
# ---------------------------------------------------------------------------


@router.get("/friends")
async def list_friends(current: Account = Depends(get_current_account)) -> dict:
    return {"friends": list(current.friends)}


@router.post("/friends")
async def add_friend(
    request: Request, body: UsernameRequest, current: Account = Depends(get_current_account)
) -> dict:
    store = get_store(request)
    other = await _other_account(store, current, body.username)
    if other.username not in current.connections:
        raise HTTPException(
            status_code=400,
            detail={"code": "field_rejected", "message": "Only connections can become friends."},
        )
    await accounts.make_accounts_friends(store, current, other)
    return {"friends": list(current.friends)}


@router.delete("/friends/{username}")
async def delete_friend(request: Request, username: str, current: Account = Depends(get_current_account)) -> dict:
    store = get_store(request)
    other = await _other_account(store, current, username)
    await accounts.remove_friend(store, current, other)
    return {"friends": list(current.friends)}


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@router.get("/connections")
async def list_connections(current: Account = Depends(get_current_account)) -> dict:
    return {"connections": list(current.connections)}


@router.post("/connections")
async def add_connection(
    request: Request, body: UsernameRequest, current: Account = Depends(get_current_account)
) -> dict:
    store = get_store(request)
    other = await _other_account(store, current, body.username)
    await accounts.make_accounts_connected(store, current, other)
    return {"connections": list(current.connections)}


@router.delete("/connections/{username}")
async def delete_connection(
    request: Request, username: str, current: Account = Depends(get_current_account)
) -> dict:
    """Remove a connection. A friendship with the same account goes with it."""
    store = get_store(request)
    other = await _other_account(store, current, username)
    await accounts.remove_connection(store, current, other)
    return {"connections": list(current.connections)}
