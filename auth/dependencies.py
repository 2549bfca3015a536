"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The bearer token comes from the "Authorization: Bearer <token>" header. Domain
API keys travel in request bodies, so routes that accept one add it to the
Requester themselves.

get_requester() is the soft variant: it never raises and yields a Requester
whose token is None when the header is missing, unknown or expired.
get_current_account() raises HTTP 401 when the token does not resolve to a
real account. require_admin() additionally raises HTTP 403 for non-admins.

Layer rule: auth/dependencies.py may import from fastapi (for Request and
HTTPException) because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Requester
from auth.tokens import TokenScope, get_valid_token
from entities import accounts
from entities.models import Account
from entities.store import MetaverseStore


def get_store(request: Request) -> MetaverseStore:
    return request.app.state.store


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip() or None
    return None


def sender_key(request: Request) -> str | None:
    if request.client is None:
        return None
    return f"{request.client.host}:{request.client.port}"


async def get_requester(request: Request) -> Requester:
    """Build a Requester from the request headers. Never raises."""
    token = await get_valid_token(get_store(request), bearer_token(request))
    return Requester(token=token, sender_key=sender_key(request))


async def get_current_account(request: Request) -> Account:
    """Require an owner-scope token that belongs to an existing account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    requester = await get_requester(request)
    account = None
    if requester.token is not None and TokenScope.owner.value in requester.token.scope:
        account = await accounts.get_account_with_id(get_store(request), requester.token.account_id)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return account


async def require_admin(request: Request) -> Account:
    """Require an admin account. 401 if unauthenticated, 403 if not admin."""
    account = await get_current_account(request)
    if not accounts.is_admin(account):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return account
