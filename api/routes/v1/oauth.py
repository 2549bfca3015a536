"""
api/routes/v1/oauth.py -- Token grant endpoint.

Routes:
  POST /oauth/token  -- password grant or refresh_token grant

Security:
  Rate-limited per client address (Settings.login_rate_limit).
  authenticate_account() provides timing equalization -- use it, never inline.
  Wrong username and wrong password return the same "bad_credentials" error.
  Cache-Control: no-store on every response that may carry a token.
  A refresh grant deletes the old token before issuing its replacement.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_LIMIT, limiter
from api.models import GrantTypeEnum, TokenRequest, TokenResponse
from auth import tokens
from entities import accounts
from entities.models import Account, AuthToken
from entities.store import MetaverseStore

logger = logging.getLogger("metaverse.api")

router = APIRouter()


@limiter.limit(LOGIN_LIMIT)
@router.post("/oauth/token", response_model=TokenResponse)
async def grant_token(request: Request, body: TokenRequest) -> JSONResponse:
    """Exchange credentials or a refresh token for a new bearer token."""
    store: MetaverseStore = request.app.state.store

    if body.grant_type == GrantTypeEnum.password:
        account = None
        if body.username and body.password:
            account = await tokens.authenticate_account(store, body.username, body.password)
        if account is None:
            return _refuse("bad_credentials", "Invalid username or password.")
        token = await tokens.issue_token(store, account.id, body.scope.split())
        logger.info("Token granted to %s scope=%s", account.username, token.scope)
        return _granted(token, account)

    old = await tokens.get_token_with_refresh_token(store, body.refresh_token)
    if old is None or not tokens.has_not_expired(old):
        return _refuse("bad_refresh_token", "Refresh token is not valid.")
    account = await accounts.get_account_with_id(store, old.account_id)
    if account is None:
        return _refuse("bad_refresh_token", "Refresh token is not valid.")
    await tokens.remove_token(store, old)
    token = await tokens.issue_token(store, account.id, old.scope)
    return _granted(token, account)


def _granted(token: AuthToken, account: Account) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=token_response(token, account).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _refuse(code: str, message: str) -> JSONResponse:
    resp = JSONResponse(status_code=401, content={"error": {"code": code, "message": message}})
    resp.headers["Cache-Control"] = "no-store"
    return resp


def token_response(token: AuthToken, account: Account | None) -> TokenResponse:
    return TokenResponse(
        access_token=token.token,
        expires_in=tokens.expires_in_seconds(token),
        refresh_token=token.refresh_token,
        scope=" ".join(token.scope),
        created_at=token.when_created.isoformat(),
        account_id=token.account_id,
        account_name=account.username if account else None,
        account_roles=list(account.roles) if account else [],
    )
