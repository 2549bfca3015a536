"""
API request and response models for the metaverse server REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in entities/models.py,
which own the internal domain representation. Route handlers map between the
two. Field-level account and domain payloads stay as free-form dicts: the
field table in auth/fields.py decides what each name means and who may touch it.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class GrantTypeEnum(str, Enum):
    password = "password"
    refresh_token = "refresh_token"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenRequest(BaseModel):
    """Request body for POST /oauth/token.

    password grant: username + password. refresh_token grant: refresh_token.
    scope is space-separated; unknown scopes are dropped, not rejected.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    grant_type: GrantTypeEnum
    username: Optional[str] = Field(default=None, max_length=64)
    password: Optional[str] = Field(default=None, max_length=64)
    refresh_token: Optional[str] = Field(default=None, max_length=64)
    scope: str = Field(default="owner", max_length=100)


class TokenResponse(BaseModel):
    """An issued token. The only response that carries token secrets."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str
    scope: str
    created_at: str
    account_id: str
    account_name: Optional[str] = None
    account_roles: list[str] = Field(default_factory=list)


class TokenInfo(BaseModel):
    """One row of GET /api/v1/tokens. Token strings are never listed."""

    model_config = ConfigDict(frozen=True)

    token_id: str
    scope: list[str]
    created_at: str
    expiration_time: str


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountCreate(BaseModel):
    """Request body for POST /api/v1/users.

    profile holds optional initial field values (e.g. images_hero); each is
    applied through the field table and silently skipped if rejected.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=64)
    email: str = Field(min_length=3, max_length=255)
    profile: dict[str, Any] = Field(default_factory=dict)


class AccountCreatedResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    username: str


class AccountUpdate(BaseModel):
    """Request body for POST /api/v1/account/{account_id}."""

    accounts: dict[str, Any] = Field(default_factory=dict)


class FieldSetRequest(BaseModel):
    """Request body for POST /api/v1/account/{account_id}/field/{field_name}."""

    model_config = ConfigDict(populate_by_name=True)

    value: Any = Field(alias="set")


class FieldResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    value: Any = None


class UpdateResult(BaseModel):
    """Outcome of a multi-field update: which names stuck and which did not."""

    model_config = ConfigDict(frozen=True)

    updated: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)


class UsernameRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=64)


class UserSummary(BaseModel):
    """One row of GET /api/v1/users."""

    model_config = ConfigDict(frozen=True)

    username: str
    online: bool
    images_tiny: Optional[str] = None


# ---------------------------------------------------------------------------
# Domains
# ---------------------------------------------------------------------------


class DomainCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)


class DomainCreatedResponse(BaseModel):
    """Returned once on creation; the API key is not retrievable anonymously later."""

    model_config = ConfigDict(frozen=True)

    domain_id: str
    name: Optional[str] = None
    api_key: str


class DomainUpdate(BaseModel):
    """Request body for PUT /api/v1/domains/{domain_id}.

    domain.api_key, when present, authenticates the call and is not a field.
    """

    domain: dict[str, Any] = Field(default_factory=dict)
