"""
auth/fields.py -- Field access table and evaluator.

Every externally nameable attribute of an Account or Domain has one FieldEntry:

  attribute  internal attribute on the dataclass
  read       capabilities of which any one allows reading
  write      capabilities of which any one allows writing
  validate   (value, entity) -> bool, run before the setter
  getter     entity -> value, defaults to reading the attribute
  setter     (entity, value) -> None; None means the field cannot be written
  updater    entity -> {physical field: value} for persistence, used when
             one logical field is stored as several (password -> hash + salt)
  grow       for list fields, capabilities of which one is needed to add
             members; None means write access is enough

The tables are plain dicts built at import time. Adding a field means adding
an entry; get_field / set_field / build_update never change.

Evaluator contract:
  get_field  unknown field and hidden field both return None, so callers
             cannot tell "does not exist" from "not allowed".
  set_field  returns False for an unknown field, missing write capability,
             failed validation, missing grow capability when the write would
             add list members, or no setter. The setter only runs after the
             validator passes; nothing is applied on failure.
  build_update  ignores capabilities and getters and reports the true stored
             representation of the named fields. Only call it after a
             successful set_field.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import copy
import hashlib
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from auth.models import Requester
from auth.permissions import Capability, permits, resolve_capabilities
from entities import accounts
from entities.models import Account, AccountRole, Availability, Domain
from entities.store import MetaverseStore

_C = Capability

ALL = frozenset({_C.all})
NONE = frozenset({_C.none})
OWNER_OR_ADMIN = frozenset({_C.owner, _C.admin})
ADMIN = frozenset({_C.admin})
DOMAIN_OWNER_OR_ADMIN = frozenset({_C.domain, _C.owner, _C.admin})
LOCATION_READERS = frozenset({_C.owner, _C.admin, _C.friend, _C.connection})


@dataclass(frozen=True)
class FieldEntry:
    attribute: str
    read: frozenset[Capability]
    write: frozenset[Capability]
    validate: Callable[[Any, Any], bool]
    getter: Callable[[Any], Any] | None = None
    setter: Callable[[Any, Any], None] | None = None
    updater: Callable[[Any], dict[str, Any]] | None = None
    grow: frozenset[Capability] | None = None

    def get(self, entity) -> Any:
        if self.getter is not None:
            return self.getter(entity)
        return copy.copy(getattr(entity, self.attribute))


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

_USERNAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+\-_.]*$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MAX_NAME_LENGTH = 64


def _never(value, entity) -> bool:
    return False


def _is_string(value, entity) -> bool:
    return isinstance(value, str)


def _is_username(value, entity) -> bool:
    return isinstance(value, str) and len(value) <= _MAX_NAME_LENGTH and bool(_USERNAME_RE.match(value))


def _is_email(value, entity) -> bool:
    return isinstance(value, str) and len(value) <= 255 and bool(_EMAIL_RE.match(value))


def _is_password(value, entity) -> bool:
    return isinstance(value, str) and 0 < len(value) <= 64


def _is_str_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def _is_string_array(value, entity) -> bool:
    """A list of strings, or {"set"|"add"|"remove": [str, ...]} edit operations."""
    if isinstance(value, dict):
        return bool(value) and set(value) <= {"set", "add", "remove"} and all(_is_str_list(v) for v in value.values())
    return _is_str_list(value)


def _is_role_array(value, entity) -> bool:
    if not _is_string_array(value, entity):
        return False
    names = value if isinstance(value, list) else [n for v in value.values() for n in v]
    return all(n in AccountRole._value2member_map_ for n in names)


def _is_list(value, entity) -> bool:
    return isinstance(value, list)


def _is_date(value, entity) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def _is_public_key(value, entity) -> bool:
    if not isinstance(value, str):
        return False
    try:
        serialization.load_pem_public_key(value.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return False
    return True


def _one_of(*allowed: str) -> Callable[[Any, Any], bool]:
    def check(value, entity) -> bool:
        return value in allowed

    return check


_MAX_COUNT = 2**63 - 1  # SQLite INTEGER


def _as_count(value) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        count = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return count if 0 <= count <= _MAX_COUNT else None


def _is_count(value, entity) -> bool:
    return _as_count(value) is not None


def _is_heartbeat(value, entity) -> bool:
    if not isinstance(value, dict):
        return False
    num_users = _as_count(value.get("num_users", 0))
    anon_users = _as_count(value.get("num_anon_users", 0))
    if num_users is None or anon_users is None:
        return False
    return num_users + anon_users <= _MAX_COUNT


# ---------------------------------------------------------------------------
# Getters
# ---------------------------------------------------------------------------


def _iso(attribute: str) -> Callable[[Any], str | None]:
    def get(entity) -> str | None:
        value = getattr(entity, attribute)
        return value.isoformat() if value is not None else None

    return get


def public_key_fingerprint(pem: str | None) -> str | None:
    """SHA-256 over the DER SubjectPublicKeyInfo, as lowercase hex."""
    if not pem:
        return None
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return None
    der = key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(der).hexdigest()


def _fingerprint(entity) -> str | None:
    return public_key_fingerprint(entity.session_public_key)


def _heartbeat(domain: Domain) -> dict:
    return {"num_users": domain.num_users, "num_anon_users": domain.anon_users}


# ---------------------------------------------------------------------------
# Setters and updaters
# ---------------------------------------------------------------------------


def _assign(attribute: str) -> Callable[[Any, Any], None]:
    def put(entity, value) -> None:
        setattr(entity, attribute, value)

    return put


def _assign_lower(attribute: str) -> Callable[[Any, Any], None]:
    def put(entity, value) -> None:
        setattr(entity, attribute, value.lower())

    return put


def _assign_count(attribute: str) -> Callable[[Any, Any], None]:
    def put(entity, value) -> None:
        setattr(entity, attribute, _as_count(value))

    return put


def _assign_date(attribute: str) -> Callable[[Any, Any], None]:
    def put(entity, value) -> None:
        when = value if isinstance(value, datetime) else datetime.fromisoformat(value)
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        setattr(entity, attribute, when.astimezone(timezone.utc))

    return put


def _edited(current: list[str], value) -> list[str]:
    """Replace with a list, or apply {"set", "add", "remove"} in that order."""
    if isinstance(value, list):
        return list(dict.fromkeys(value))
    result = list(dict.fromkeys(value.get("set", current)))
    result += [n for n in dict.fromkeys(value.get("add", [])) if n not in result]
    removed = set(value.get("remove", []))
    return [n for n in result if n not in removed]


def _edit_array(attribute: str) -> Callable[[Any, Any], None]:
    def put(entity, value) -> None:
        setattr(entity, attribute, _edited(getattr(entity, attribute), value))

    return put


def _assign_cleaned_strings(attribute: str) -> Callable[[Any, Any], None]:
    """Keep only the string members of a list; other junk is dropped."""

    def put(entity, value) -> None:
        setattr(entity, attribute, [v for v in value if isinstance(v, str)])

    return put


def _set_password(account: Account, value: str) -> None:
    accounts.store_password(account, value)


def _password_update(account: Account) -> dict[str, Any]:
    return {"password_hash": account.password_hash, "password_salt": account.password_salt}


def _set_heartbeat(domain: Domain, value: dict) -> None:
    num_users = _as_count(value.get("num_users", 0))
    anon_users = _as_count(value.get("num_anon_users", 0))
    domain.num_users, domain.anon_users, domain.total_users = num_users, anon_users, num_users + anon_users


def _heartbeat_update(domain: Domain) -> dict[str, Any]:
    return {"num_users": domain.num_users, "anon_users": domain.anon_users, "total_users": domain.total_users}


def _field(attribute: str, read, write, validate, setter_factory=_assign, **kwargs) -> FieldEntry:
    """Entry with a plain setter unless the field is write-disabled."""
    explicit = kwargs.pop("setter", None)
    setter = None if _C.none in write else explicit or setter_factory(attribute)
    return FieldEntry(attribute=attribute, read=read, write=write, validate=validate, setter=setter, **kwargs)


def _read_only(attribute: str, read=ALL, **kwargs) -> FieldEntry:
    return FieldEntry(attribute=attribute, read=read, write=NONE, validate=_never, **kwargs)


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

ACCOUNT_FIELDS: dict[str, FieldEntry] = {
    "account_id": _read_only("id"),
    "username": _field("username", ALL, OWNER_OR_ADMIN, _is_username),
    "email": _field("email", ALL, OWNER_OR_ADMIN, _is_email, _assign_lower),
    "account_settings": _field("account_settings", ALL, OWNER_OR_ADMIN, _is_string),
    "images_hero": _field("images_hero", ALL, OWNER_OR_ADMIN, _is_string),
    "images_thumbnail": _field("images_thumbnail", ALL, OWNER_OR_ADMIN, _is_string),
    "images_tiny": _field("images_tiny", ALL, OWNER_OR_ADMIN, _is_string),
    "locker": _field("locker", ALL, OWNER_OR_ADMIN, _is_string),
    "password": _field(
        "password_hash",
        NONE,
        OWNER_OR_ADMIN,
        _is_password,
        setter=_set_password,
        updater=_password_update,
    ),
    "public_key": _field("session_public_key", ALL, OWNER_OR_ADMIN, _is_public_key, getter=_fingerprint),
    "public_key_pem": _read_only("session_public_key"),
    "availability": _field("availability", ALL, OWNER_OR_ADMIN, _one_of(*Availability._value2member_map_)),
    "location_path": _field("location_path", LOCATION_READERS, OWNER_OR_ADMIN, _is_string),
    # Owners may only drop names; new links go through the connect/befriend operations.
    "friends": _field("friends", ALL, OWNER_OR_ADMIN, _is_string_array, _edit_array, grow=ADMIN),
    "connections": _field("connections", ALL, OWNER_OR_ADMIN, _is_string_array, _edit_array, grow=ADMIN),
    "roles": _field("roles", ALL, ADMIN, _is_role_array, _edit_array),
    "ip_addr_of_creator": _read_only("ip_addr_of_creator"),
    "when_account_created": _field(
        "when_created", ALL, OWNER_OR_ADMIN, _is_date, _assign_date, getter=_iso("when_created")
    ),
    "time_of_last_heartbeat": _read_only("time_of_last_heartbeat", getter=_iso("time_of_last_heartbeat")),
}

DOMAIN_FIELDS: dict[str, FieldEntry] = {
    "domain_id": _read_only("id"),
    "name": _field("name", ALL, DOMAIN_OWNER_OR_ADMIN, _is_string),
    "version": _field("version", ALL, DOMAIN_OWNER_OR_ADMIN, _is_string),
    "protocol": _field("protocol", ALL, DOMAIN_OWNER_OR_ADMIN, _is_string),
    "network_addr": _field("network_addr", ALL, DOMAIN_OWNER_OR_ADMIN, _is_string),
    "networking_mode": _field("networking_mode", ALL, DOMAIN_OWNER_OR_ADMIN, _one_of("full", "ip", "disabled")),
    "description": _field("description", ALL, DOMAIN_OWNER_OR_ADMIN, _is_string),
    "maturity": _field(
        "maturity", ALL, DOMAIN_OWNER_OR_ADMIN, _one_of("unrated", "everyone", "teen", "mature", "adult")
    ),
    "restriction": _field("restriction", ALL, DOMAIN_OWNER_OR_ADMIN, _one_of("open", "hifi", "acl")),
    "capacity": _field("capacity", ALL, DOMAIN_OWNER_OR_ADMIN, _is_count, _assign_count),
    "hosts": _field("hosts", ALL, DOMAIN_OWNER_OR_ADMIN, _is_list, _assign_cleaned_strings),
    "tags": _field("tags", ALL, DOMAIN_OWNER_OR_ADMIN, _is_list, _assign_cleaned_strings),
    "heartbeat": _field(
        "num_users",
        ALL,
        DOMAIN_OWNER_OR_ADMIN,
        _is_heartbeat,
        getter=_heartbeat,
        setter=_set_heartbeat,
        updater=_heartbeat_update,
    ),
    "api_key": _read_only("api_key", read=DOMAIN_OWNER_OR_ADMIN),
    "sponsor_account_id": _field("sponsor_account_id", ALL, ADMIN, _is_string),
    "num_users": _read_only("num_users"),
    "anon_users": _read_only("anon_users"),
    "total_users": _read_only("total_users"),
    "when_domain_created": _read_only("when_created", getter=_iso("when_created")),
    "time_of_last_heartbeat": _read_only("time_of_last_heartbeat", getter=_iso("time_of_last_heartbeat")),
}

_TABLES: dict[type, Mapping[str, FieldEntry]] = {
    Account: ACCOUNT_FIELDS,
    Domain: DOMAIN_FIELDS,
}


def fields_for(entity) -> Mapping[str, FieldEntry]:
    """Return the field table for an entity's type (empty for unknown types)."""
    return _TABLES.get(type(entity), {})


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


async def get_field(store: MetaverseStore, requester: Requester | None, entity, field_name: str) -> Any | None:
    entry = fields_for(entity).get(field_name)
    if entry is None:
        return None
    caps = await resolve_capabilities(store, requester, entity)
    return entry.get(entity) if permits(entry.read, caps) else None


async def get_fields(
    store: MetaverseStore,
    requester: Requester | None,
    entity,
    field_names: Iterable[str] | None = None,
    capabilities: frozenset[Capability] | None = None,
) -> dict[str, Any]:
    """Return {name: value} for every named (default: every) field the requester may read.

    Capabilities are resolved once for the whole batch unless passed in.
    """
    table = fields_for(entity)
    caps = capabilities if capabilities is not None else await resolve_capabilities(store, requester, entity)
    result: dict[str, Any] = {}
    for name in field_names if field_names is not None else table:
        entry = table.get(name)
        if entry is not None and permits(entry.read, caps):
            result[name] = entry.get(entity)
    return result


def _write(entry: FieldEntry | None, caps: frozenset[Capability], entity, value) -> bool:
    if entry is None or entry.setter is None:
        return False
    if not permits(entry.write, caps):
        return False
    if not entry.validate(value, entity):
        return False
    if entry.grow is not None and not permits(entry.grow, caps):
        current = getattr(entity, entry.attribute)
        if set(_edited(current, value)) - set(current):
            return False
    entry.setter(entity, value)
    return True


async def set_field(store: MetaverseStore, requester: Requester | None, entity, field_name: str, value) -> bool:
    entry = fields_for(entity).get(field_name)
    if entry is None:
        return False
    caps = await resolve_capabilities(store, requester, entity)
    return _write(entry, caps, entity, value)


async def set_fields(
    store: MetaverseStore,
    requester: Requester | None,
    entity,
    values: Mapping[str, Any],
    capabilities: frozenset[Capability] | None = None,
) -> tuple[list[str], list[str]]:
    """Apply several field writes. Returns (applied names, rejected names).

    Each field succeeds or fails on its own; a rejected field leaves its
    attribute untouched.
    """
    table = fields_for(entity)
    caps = capabilities if capabilities is not None else await resolve_capabilities(store, requester, entity)
    applied: list[str] = []
    rejected: list[str] = []
    for name, value in values.items():
        (applied if _write(table.get(name), caps, entity, value) else rejected).append(name)
    return applied, rejected


def build_update(entity, field_names: str | Iterable[str], update: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return {physical field: value} to persist the named logical fields.

    Merges into ``update`` when given. Unknown names are skipped.
    """
    update = {} if update is None else update
    table = fields_for(entity)
    for name in [field_names] if isinstance(field_names, str) else field_names:
        entry = table.get(name)
        if entry is None:
            continue
        if entry.updater is not None:
            update.update(entry.updater(entity))
        else:
            update[entry.attribute] = copy.copy(getattr(entity, entry.attribute))
    return update
