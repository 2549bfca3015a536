"""
tests/test_domains.py -- Unit tests for entities/domains.py.
"""

from __future__ import annotations

from conftest import run

from entities import domains


def test_create_domain_is_unsponsored_with_fresh_key() -> None:
    first = domains.create_domain("one")
    second = domains.create_domain()
    assert first.sponsor_account_id is None
    assert len(first.api_key) == 64
    assert first.api_key != second.api_key
    assert first.id != second.id


def test_lookups(store) -> None:
    domain = run(domains.add_domain(store, domains.create_domain("lookup")))
    run(domains.update_entity_fields(store, domain, {"last_sender_key": "1.2.3.4:5"}))
    assert run(domains.get_domain_with_id(store, domain.id)).name == "lookup"
    assert run(domains.get_domain_with_api_key(store, domain.api_key)).id == domain.id
    assert run(domains.get_domain_with_sender_key(store, "1.2.3.4:5")).id == domain.id
    assert run(domains.get_domain_with_api_key(store, None)) is None


def test_bind_sponsor_only_once(store) -> None:
    domain = run(domains.add_domain(store, domains.create_domain("bind")))
    assert run(domains.bind_sponsor(store, domain, "acct-1")) is True
    assert run(domains.bind_sponsor(store, domain, "acct-2")) is False
    assert run(domains.get_domain_with_id(store, domain.id)).sponsor_account_id == "acct-1"


def test_remove_domain(store) -> None:
    domain = run(domains.add_domain(store, domains.create_domain("gone")))
    assert run(domains.remove_domain(store, domain)) is True
    assert run(domains.get_domain_with_id(store, domain.id)) is None


def test_domain_info_hides_api_key() -> None:
    domain = domains.create_domain("public")
    info = domains.domain_info(domain)
    assert info["domain_id"] == domain.id
    assert info["name"] == "public"
    assert "api_key" not in info
    assert domain.api_key not in info.values()
