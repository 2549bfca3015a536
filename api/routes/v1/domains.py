"""
api/routes/v1/domains.py -- Domain registration, listing and heartbeat.

Routes:
  POST   /api/v1/domains/temporary    -- new unsponsored domain + API key (public)
  GET    /api/v1/domains              -- public snippets, paged
  GET    /api/v1/domains/{domain_id}  -- public snippet
  PUT    /api/v1/domains/{domain_id}  -- field update / heartbeat
  DELETE /api/v1/domains/{domain_id}  -- admin

PUT authentication, any one of:
  - "api_key" inside the body's "domain" object (it is a credential, never a field)
  - the client address:port that last authenticated with the API key
  - a bearer token of the sponsor (owner or domain scope) or of an admin;
    a token that resolves to an account binds an unsponsored domain first

A PUT that authenticated with the API key records the caller's address:port
as the domain's sender key.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import DomainCreate, DomainCreatedResponse, DomainUpdate, UpdateResult
from auth import fields
from auth.dependencies import get_requester, get_store, require_admin
from auth.permissions import permits, resolve_capabilities
from entities import domains
from entities.models import Account, Domain
from entities.store import MetaverseStore, Pager

logger = logging.getLogger("metaverse.api")

router = APIRouter(prefix="/domains")


async def _load_domain(store: MetaverseStore, domain_id: str) -> Domain:
    domain = await domains.get_domain_with_id(store, domain_id)
    if domain is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Domain not found."})
    return domain


@router.post("/temporary", response_model=DomainCreatedResponse, status_code=201)
async def create_temporary_domain(request: Request, body: DomainCreate | None = None) -> DomainCreatedResponse:
    """Register a domain with no sponsor. The API key is only returned here."""
    domain = domains.create_domain(body.name if body else None)
    await domains.add_domain(get_store(request), domain)
    return DomainCreatedResponse(domain_id=domain.id, name=domain.name, api_key=domain.api_key)


@router.get("")
async def list_domains(
    request: Request,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, le=100),
) -> dict:
    pager = Pager(page=page, per_page=per_page)
    return {
        "domains": [domains.domain_info(d) async for d in domains.enumerate_domains(get_store(request), pager)]
    }


@router.get("/{domain_id}")
async def get_domain(request: Request, domain_id: str) -> dict:
    return domains.domain_info(await _load_domain(get_store(request), domain_id))


@router.put("/{domain_id}", response_model=UpdateResult)
async def update_domain(request: Request, domain_id: str, body: DomainUpdate) -> UpdateResult:
    store = get_store(request)
    values = dict(body.domain)
    api_key = values.pop("api_key", None)
    requester = await get_requester(request)
    requester.api_key = api_key if isinstance(api_key, str) else None

    domain = await _load_domain(store, domain_id)
    caps = await resolve_capabilities(store, requester, domain)
    if not permits(fields.DOMAIN_OWNER_OR_ADMIN, caps):
        if requester.token is None and requester.api_key is None:
            raise HTTPException(
                status_code=401,
                detail={"code": "unauthorized", "message": "Domain credentials required."},
            )
        raise HTTPException(status_code=403, detail={"code": "forbidden", "message": "Not permitted for this domain."})

    applied, rejected = await fields.set_fields(store, requester, domain, values, capabilities=caps)
    update = fields.build_update(domain, applied)
    domain.time_of_last_heartbeat = datetime.now(timezone.utc)
    update["time_of_last_heartbeat"] = domain.time_of_last_heartbeat
    if requester.api_key and hmac.compare_digest(requester.api_key.encode(), domain.api_key.encode()):
        domain.last_sender_key = requester.sender_key
        update["last_sender_key"] = domain.last_sender_key
    await domains.update_entity_fields(store, domain, update)
    return UpdateResult(updated=applied, rejected=rejected)


@router.delete("/{domain_id}", status_code=204)
async def delete_domain(
    request: Request,
    domain_id: str,
    admin: Account = Depends(require_admin),
) -> Response:
    store = get_store(request)
    domain = await _load_domain(store, domain_id)
    await domains.remove_domain(store, domain)
    logger.info("Domain %s deleted by %s", domain.id, admin.username)
    return Response(status_code=204)
