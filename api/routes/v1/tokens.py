"""
api/routes/v1/tokens.py -- Token management for the signed-in account.

Routes:
  GET    /api/v1/user/tokens/new   -- mint another token (e.g. scope=domain)
  GET    /api/v1/tokens            -- list the caller's tokens (no secrets)
  DELETE /api/v1/tokens/{token_id} -- revoke (owner of the token or admin)

A token that is not the caller's and the caller is not admin gets the same
404 as a token that does not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from api.models import TokenInfo
from api.routes.v1.oauth import token_response
from auth import tokens
from auth.dependencies import get_current_account, get_store
from entities import accounts
from entities.models import Account
from entities.store import Pager

router = APIRouter()


@router.get("/user/tokens/new")
async def new_token(
    request: Request,
    scope: str = Query(default="owner", max_length=100),
    expire_hours: int = Query(default=0, ge=-1),
    current: Account = Depends(get_current_account),
) -> JSONResponse:
    token = await tokens.issue_token(get_store(request), current.id, scope.split(), expire_hours)
    resp = JSONResponse(content=token_response(token, current).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/tokens", response_model=list[TokenInfo])
async def list_tokens(
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
    current: Account = Depends(get_current_account),
) -> list[TokenInfo]:
    pager = Pager(page=page, per_page=per_page)
    return [
        TokenInfo(
            token_id=t.id,
            scope=list(t.scope),
            created_at=t.when_created.isoformat() if t.when_created else "",
            expiration_time=t.expiration_time.isoformat(),
        )
        async for t in tokens.get_tokens_for_owner(get_store(request), current.id, pager)
    ]


@router.delete("/tokens/{token_id}", status_code=204)
async def revoke_token(
    request: Request,
    token_id: str,
    current: Account = Depends(get_current_account),
) -> Response:
    store = get_store(request)
    token = await tokens.get_token_with_token_id(store, token_id)
    if token is None or (token.account_id != current.id and not accounts.is_admin(current)):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Token not found."},
        )
    await tokens.remove_token(store, token)
    return Response(status_code=204)
