import logging
from typing import Iterable
from urllib.parse import urlencode

from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware

from authgate.core.config import settings
from authgate.core.db import SessionLocal
from authgate.core.errors import StoreUnavailable
from authgate.core.policy import AccessPolicy, Decision, decide
from authgate.services import session as session_service

log = logging.getLogger(__name__)

STATE_CHANGING_METHODS: set[str] = {"POST", "PUT", "PATCH", "DELETE"}
_LOCALHOST_HOSTNAMES: set[str] = {"localhost", "127.0.0.1"}


class EnforceHTTPSMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if not settings.enforce_https:
            return await call_next(request)
        proto = request.headers.get("x-forwarded-proto", request.url.scheme)
        hostname = request.url.hostname
        allow_http_local = hostname in _LOCALHOST_HOSTNAMES
        if proto != "https" and not allow_http_local:
            return JSONResponse({"detail": "HTTPS required"}, status_code=status.HTTP_400_BAD_REQUEST)
        response = await call_next(request)
        if proto == "https":
            response.headers["Strict-Transport-Security"] = f"max-age={settings.hsts_max_age}; includeSubDomains"
        return response


class CSRFMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, exempt_paths: Iterable[str] | None = None):
        super().__init__(app)
        self.exempt_paths = set(exempt_paths or [])

    async def dispatch(self, request: Request, call_next):
        if request.method in STATE_CHANGING_METHODS and request.url.path not in self.exempt_paths:
            header_token = request.headers.get(settings.csrf_header_name)
            cookie_token = request.cookies.get(settings.csrf_cookie_name)
            if not header_token or not cookie_token or header_token != cookie_token:
                return JSONResponse({"detail": "CSRF failed"}, status_code=status.HTTP_403_FORBIDDEN)
        return await call_next(request)


class SessionGatewayMiddleware(BaseHTTPMiddleware):
    """Resolve the caller's session and gate protected paths.

    The resolved :class:`~authgate.services.session.Identity` (or ``None``) is
    placed on ``request.state.identity`` for the dependency layer to pass on.
    Redirected requests never reach the downstream app.
    """

    def __init__(
        self,
        app,
        *,
        policy: AccessPolicy,
        cookie_name: str,
        session_factory: async_sessionmaker = SessionLocal,
    ):
        super().__init__(app)
        self.policy = policy
        self.cookie_name = cookie_name
        self.session_factory = session_factory

    async def _resolve(self, request: Request) -> session_service.Identity | None:
        token = request.cookies.get(self.cookie_name)
        if not token:
            return None
        try:
            async with self.session_factory() as db:
                return await session_service.resolve_identity(db, token)
        except StoreUnavailable:
            log.warning("session lookup failed, treating caller as anonymous")
            return None

    async def dispatch(self, request: Request, call_next):
        identity = await self._resolve(request)
        request.state.identity = identity
        path = request.url.path
        if decide(self.policy, path, identity is not None) is Decision.REDIRECT_TO_SIGN_IN:
            log.info("anonymous request to protected path", extra={"path": path})
            target = f"{self.policy.sign_in_path}?{urlencode({'next': path})}"
            return RedirectResponse(target, status_code=status.HTTP_302_FOUND)
        return await call_next(request)
