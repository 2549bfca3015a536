"""
api/limiter.py -- Shared slowapi rate limiter for credential-bearing routes.

One Limiter instance serves the whole app; api/main.py mounts it as
middleware and api/routes/v1/oauth.py decorates the token endpoint with
LOGIN_LIMIT. Separate instances would keep separate counters and the limit
would never trigger.

Clients are keyed by remote address. LOGIN_LIMIT comes from
Settings.login_rate_limit so deployments behind a NAT can raise it.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

LOGIN_LIMIT: str = get_settings().login_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
