"""Bearer-token gate for the settlement API.

Endpoints fall into two tiers:

- **Public**: claims, score submission, leaderboards, distributions, healthz.
- **Admin**: settlement triggers and score review. Always require the token.

Configuration via environment variables:

- `CRON_SECRET`: the shared secret. When unset, admin endpoints are refused
  outright; public endpoints stay open.
- `API_ADMIN_PREFIXES`: comma-separated path prefixes that require the token.
  Default: `/cron,/admin`

The token can be sent as:
- `Authorization: Bearer <token>` header
- `X-API-Key: <token>` header
"""
from __future__ import annotations

import hmac
import logging
import os
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

_DEFAULT_ADMIN_PREFIXES = ("/cron", "/admin")


def _parse_prefixes(env_var: str, defaults: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return defaults
    return tuple(p.strip() for p in raw.split(",") if p.strip())


class BearerTokenMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        secret: str | None = None,
        admin_prefixes: tuple[str, ...] | None = None,
    ):
        super().__init__(app)
        self.secret = secret or None
        self.admin_prefixes = admin_prefixes or _parse_prefixes(
            "API_ADMIN_PREFIXES", _DEFAULT_ADMIN_PREFIXES
        )

    async def dispatch(self, request: Request, call_next: Callable):
        if not self._is_admin(request.url.path):
            return await call_next(request)

        if not self._check_token(request):
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
        return await call_next(request)

    def _is_admin(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.admin_prefixes)

    def _check_token(self, request: Request) -> bool:
        if not self.secret:
            return False

        auth = request.headers.get("authorization", "")
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
        else:
            token = request.headers.get("x-api-key", "")
        if not token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self.secret.encode("utf-8"))


def configure_auth(app, secret: str | None = None) -> None:
    """Attach the bearer-token middleware. Admin routes are closed without a secret."""
    secret = (secret if secret is not None else os.getenv("CRON_SECRET", "")).strip() or None
    app.add_middleware(BearerTokenMiddleware, secret=secret)
    if secret:
        logger.info("Admin auth enabled for %s", ",".join(_parse_prefixes("API_ADMIN_PREFIXES", _DEFAULT_ADMIN_PREFIXES)))
    else:
        logger.warning("CRON_SECRET not set; admin endpoints will refuse every request")
