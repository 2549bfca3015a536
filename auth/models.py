"""
auth/models.py -- Dataclasses describing who is making a request.

Pattern: Data class (pure data container, zero logic). Capability resolution
in auth/permissions.py reads these; route dependencies build them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from entities.models import AuthToken


@dataclass
class Requester:
    """The credentials a request arrived with.

    token is the looked-up bearer token, or None when no token was sent or the
    one sent was not found or had expired. api_key is a domain API key taken
    from a request body. sender_key is "address:port" of the client socket and
    lets a domain that recently proved its API key be recognised on key-less
    calls.
    """

    token: AuthToken | None = None
    api_key: str | None = None
    sender_key: str | None = None
