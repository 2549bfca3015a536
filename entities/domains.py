"""
entities/domains.py -- Domain lookups, factory and sponsor binding.

A domain is created without a sponsor. The first caller that presents a token
belonging to a real account binds the domain to that account (see
auth/permissions.py); from then on every privileged mutation must come from
the sponsor, an admin, or the domain itself via its API key.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from entities.models import Domain
from entities.store import DOMAINS, MetaverseStore, Pager

logger = logging.getLogger("metaverse.entities")


def generate_api_key() -> str:
    """Return a new domain API key: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def create_domain(name: str | None = None) -> Domain:
    """Build a new, unsaved, unsponsored Domain with a fresh API key."""
    return Domain(
        id=str(uuid.uuid4()),
        api_key=generate_api_key(),
        name=name,
        when_created=datetime.now(timezone.utc),
    )


async def add_domain(store: MetaverseStore, domain: Domain) -> Domain:
    logger.info("Domains: creating domain %s, id=%s", domain.name, domain.id)
    return await store.create_object(DOMAINS, domain)


async def remove_domain(store: MetaverseStore, domain: Domain) -> bool:
    logger.info("Domains: removing domain %s, id=%s", domain.name, domain.id)
    return await store.delete_one(DOMAINS, {"id": domain.id})


async def get_domain_with_id(store: MetaverseStore, domain_id: str | None) -> Domain | None:
    return await store.get_object(DOMAINS, {"id": domain_id}) if domain_id else None


async def get_domain_with_api_key(store: MetaverseStore, api_key: str | None) -> Domain | None:
    return await store.get_object(DOMAINS, {"api_key": api_key}) if api_key else None


async def get_domain_with_sender_key(store: MetaverseStore, sender_key: str | None) -> Domain | None:
    return await store.get_object(DOMAINS, {"last_sender_key": sender_key}) if sender_key else None


async def enumerate_domains(store: MetaverseStore, pager: Pager | None = None) -> AsyncIterator[Domain]:
    async for domain in store.get_objects(DOMAINS, {}, pager):
        yield domain


async def update_entity_fields(store: MetaverseStore, domain: Domain, fields: dict) -> int:
    return await store.update_object_fields(DOMAINS, {"id": domain.id}, fields)


async def bind_sponsor(store: MetaverseStore, domain: Domain, account_id: str) -> bool:
    """Bind an unsponsored domain to account_id. Returns True if this call bound it.

    A domain that already has a sponsor is left untouched.
    """
    if domain.sponsor_account_id:
        return False
    domain.sponsor_account_id = account_id
    await update_entity_fields(store, domain, {"sponsor_account_id": account_id})
    logger.info("Domains: domain %s now sponsored by account %s", domain.id, account_id)
    return True


def domain_info(domain: Domain) -> dict:
    """Public snippet returned by the unauthenticated domain GET/list routes."""
    return {
        "domain_id": domain.id,
        "name": domain.name,
        "version": domain.version,
        "protocol": domain.protocol,
        "network_addr": domain.network_addr,
        "networking_mode": domain.networking_mode,
        "description": domain.description,
        "maturity": domain.maturity,
        "restriction": domain.restriction,
        "capacity": domain.capacity,
        "tags": list(domain.tags),
        "hosts": list(domain.hosts),
        "num_users": domain.num_users,
        "anon_users": domain.anon_users,
        "total_users": domain.total_users,
        "sponsor_account_id": domain.sponsor_account_id,
        "time_of_last_heartbeat": (
            domain.time_of_last_heartbeat.isoformat() if domain.time_of_last_heartbeat else None
        ),
    }
