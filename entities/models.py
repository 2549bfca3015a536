"""
entities/models.py -- Domain dataclasses for metaverse entities.

Pattern: Data class (pure data container, zero logic). Stores and the auth
layer do the work; these classes only own the shape.

Attribute names are the physical column names in entities/store.py, so a row
maps onto a dataclass with a plain keyword expansion. Public (wire) field
names are a separate namespace owned by the field table in auth/fields.py.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class AccountRole(str, Enum):
    user = "user"
    admin = "admin"


class Availability(str, Enum):
    """Who may see an account's location."""

    none = "none"
    all = "all"
    friends = "friends"
    connections = "connections"


@dataclass
class Account:
    """A user identity.

    friends and connections hold usernames of the other side and are kept
    symmetric by entities/accounts.py: if "bob" is in alice.friends then
    "alice" is in bob.friends.

    password_hash / password_salt are never exposed through the field table;
    the logical "password" field fans out into both.
    """

    id: str
    username: str
    email: str
    password_hash: str | None = None
    password_salt: str | None = None
    session_public_key: str | None = None  # PEM
    account_settings: str | None = None  # JSON blob of client settings
    images_hero: str | None = None
    images_thumbnail: str | None = None
    images_tiny: str | None = None
    locker: str | None = None  # JSON blob stored for the user by the server
    availability: str = Availability.all.value
    location_path: str | None = None  # "/x,y,z/x,y,z,w"
    friends: list[str] = field(default_factory=list)
    connections: list[str] = field(default_factory=list)
    roles: list[str] = field(default_factory=list)
    ip_addr_of_creator: str | None = None
    when_created: datetime | None = None
    time_of_last_heartbeat: datetime | None = None


@dataclass
class Domain:
    """A domain server registered with the directory.

    sponsor_account_id is None until the first authenticated access binds it
    (see auth/permissions.py). last_sender_key is "address:port" of the last
    caller that proved itself with the API key.
    """

    id: str
    api_key: str
    name: str | None = None
    sponsor_account_id: str | None = None
    last_sender_key: str | None = None
    version: str | None = None
    protocol: str | None = None
    network_addr: str | None = None
    networking_mode: str | None = None  # "full" | "ip" | "disabled"
    description: str | None = None
    maturity: str = "unrated"
    restriction: str = "open"
    capacity: int = 0
    tags: list[str] = field(default_factory=list)
    hosts: list[str] = field(default_factory=list)
    num_users: int = 0
    anon_users: int = 0
    total_users: int = 0
    when_created: datetime | None = None
    time_of_last_heartbeat: datetime | None = None


@dataclass
class AuthToken:
    """A bearer credential.

    scope holds values from auth.tokens.TokenScope; unknown scopes are dropped
    at creation. expiration_time is always set (see auth.tokens.create_token).
    """

    id: str
    token: str
    refresh_token: str
    account_id: str
    scope: list[str] = field(default_factory=list)
    when_created: datetime | None = None
    expiration_time: datetime | None = None
