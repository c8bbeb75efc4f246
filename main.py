import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authgate.api.routes import auth as auth_routes
from authgate.api.routes import dashboard as dashboard_routes
from authgate.core.app_logging import setup_logger
from authgate.core.config import settings
from authgate.core.db import Base, engine
from authgate.core.errors import EmailTaken, InvalidOrExpiredCode, StoreUnavailable, ValidationError
from authgate.models import audit, one_time_code, session, user  # noqa: F401  registers tables
from authgate.utils.middleware import CSRFMiddleware, EnforceHTTPSMiddleware, SessionGatewayMiddleware

log = logging.getLogger(__name__)

EXEMPT_CSRF_PATHS = {
    "/auth/sign-in",
    "/auth/sign-up",
    "/auth/otp/send",
    "/auth/otp/reset-password",
    "/auth/otp/verify-email",
}


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(request: Request, exc: ValidationError):
        return JSONResponse(
            {"errors": {exc.field: exc.message}}, status_code=422
        )

    @app.exception_handler(InvalidOrExpiredCode)
    async def invalid_code(request: Request, exc: InvalidOrExpiredCode):
        return JSONResponse({"error": "InvalidOrExpiredCode"}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(EmailTaken)
    async def email_taken(request: Request, exc: EmailTaken):
        return JSONResponse(
            {"errors": {"email": "An account with this email already exists."}},
            status_code=status.HTTP_409_CONFLICT,
        )

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(request: Request, exc: StoreUnavailable):
        log.error("request failed on store", extra={"operation": exc.operation, "path": request.url.path})
        return JSONResponse(
            {"error": "ServiceUnavailable", "message": "Please try again later."},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


def create_app() -> FastAPI:
    setup_logger(settings.log_level)
    app = FastAPI(title=settings.api_title, version=settings.api_version)

    app.add_middleware(
        SessionGatewayMiddleware,
        policy=settings.access_policy(),
        cookie_name=settings.session_cookie_name,
    )
    app.add_middleware(EnforceHTTPSMiddleware)
    app.add_middleware(
        CSRFMiddleware,
        exempt_paths=EXEMPT_CSRF_PATHS,
    )
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    if settings.cookie_domain:
        origins.append(f"https://{settings.cookie_domain}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    app.include_router(auth_routes.router)
    app.include_router(dashboard_routes.router)

    @app.on_event("startup")
    async def on_startup():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @app.get("/", tags=["misc"])
    async def root():
        return {"message": settings.api_title}

    @app.get("/health", tags=["misc"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
