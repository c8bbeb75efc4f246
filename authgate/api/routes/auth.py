import logging
import uuid

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from authgate.api.deps import get_identity
from authgate.core.config import settings
from authgate.core.db import get_db, store_guard
from authgate.core.errors import ValidationError
from authgate.models.user import User
from authgate.schemas.auth import (
    AuthEnvelope,
    MessageOut,
    OtpResetPasswordIn,
    OtpSendIn,
    OtpVerifyEmailIn,
    SessionEnvelope,
    SignInIn,
    SignUpIn,
    UserPublic,
)
from authgate.services import (
    audit,
    credentials,
    password as password_service,
    recovery,
    session as session_service,
    verification,
)
from authgate.services.otp import PURPOSE_FORGET_PASSWORD
from authgate.services.session import Identity

log = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

GENERIC = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials"
)
CHECK_EMAIL = "If an account exists for this address, a code has been sent to it."


def _set_auth_cookies(resp: Response, token: str, remember_me: bool) -> None:
    max_age = int(session_service.session_ttl(remember_me).total_seconds()) if remember_me else None
    resp.set_cookie(
        settings.session_cookie_name,
        token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        domain=settings.cookie_domain,
        max_age=max_age,
    )
    csrf_token = str(uuid.uuid4())
    resp.set_cookie(
        settings.csrf_cookie_name,
        csrf_token,
        httponly=False,
        secure=settings.cookie_secure,
        samesite="lax",
        domain=settings.cookie_domain,
        max_age=max_age,
    )
    resp.headers[settings.csrf_header_name] = csrf_token


def _clear_auth_cookies(resp: Response) -> None:
    resp.delete_cookie(settings.session_cookie_name, domain=settings.cookie_domain)
    resp.delete_cookie(settings.csrf_cookie_name, domain=settings.cookie_domain)


def _public_user(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        name=user.name,
        emailVerified=user.email_verified,
    )


def _public_identity(identity: Identity) -> UserPublic:
    return UserPublic(
        id=identity.user_id,
        email=identity.email,
        name=identity.name,
        emailVerified=identity.email_verified,
    )


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _signup_errors(req: SignUpIn) -> dict[str, str]:
    errors: dict[str, str] = {}
    if not req.name or not req.name.strip():
        errors["name"] = "Please enter your name."
    try:
        validate_email(req.email or "", check_deliverability=False)
    except EmailNotValidError:
        errors["email"] = "Invalid email address."
    try:
        password_service.enforce_policy(req.password or "")
    except ValidationError as exc:
        errors["password"] = f"Password {exc.message}."
    if req.password != req.confirmPassword:
        errors["confirmPassword"] = "Passwords do not match."
    if req.terms is not True:
        errors["terms"] = "You must accept the terms of use."
    return errors


@router.post("/sign-up", response_model=AuthEnvelope)
async def sign_up(
    req: SignUpIn,
    request: Request,
    resp: Response,
    db: AsyncSession = Depends(get_db),
):
    errors = _signup_errors(req)
    if errors:
        return JSONResponse({"errors": errors}, status_code=status.HTTP_400_BAD_REQUEST)

    ip = _client_ip(request)
    user_agent = request.headers.get("user-agent")
    password_hash = password_service.hash_password(req.password)
    async with store_guard("auth.sign_up"):
        async with db.begin():
            user = await credentials.create_user(
                db, email=req.email, name=req.name.strip(), password_hash=password_hash
            )
            token = await session_service.create_session(
                db, user_id=user.id, remember_me=False, user_agent=user_agent, ip=ip
            )
            await audit.record_event(db, user_id=user.id, event="signup", ip=ip, user_agent=user_agent)

    _set_auth_cookies(resp, token, remember_me=False)
    return AuthEnvelope(data=_public_user(user))


@router.post("/sign-in", response_model=AuthEnvelope)
async def sign_in(
    req: SignInIn,
    request: Request,
    resp: Response,
    db: AsyncSession = Depends(get_db),
):
    ip = _client_ip(request)
    user_agent = request.headers.get("user-agent")

    async with store_guard("credentials.find_by_email"):
        async with db.begin():
            user = await credentials.find_by_email(db, req.email)
    # unknown addresses pay the same argon2 cost as known ones
    password_hash = user.password_hash if user else password_service.DUMMY_HASH
    verified = password_service.verify_password(password_hash, req.password)
    if user is None or not verified:
        async with store_guard("audit.record_event"):
            async with db.begin():
                await audit.record_event(
                    db, user_id=user.id if user else None, event="signin.fail", ip=ip, user_agent=user_agent
                )
        raise GENERIC

    async with store_guard("session.create"):
        async with db.begin():
            token = await session_service.create_session(
                db, user_id=user.id, remember_me=req.rememberMe, user_agent=user_agent, ip=ip
            )
            await audit.record_event(db, user_id=user.id, event="signin.success", ip=ip, user_agent=user_agent)

    _set_auth_cookies(resp, token, remember_me=req.rememberMe)
    return AuthEnvelope(data=_public_user(user))


@router.post("/sign-out", status_code=204)
async def sign_out(
    request: Request,
    identity: Identity | None = Depends(get_identity),
    db: AsyncSession = Depends(get_db),
):
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        async with store_guard("session.invalidate"):
            async with db.begin():
                await session_service.invalidate_session(db, token)
                if identity is not None:
                    await audit.record_event(
                        db,
                        user_id=identity.user_id,
                        event="signout",
                        ip=_client_ip(request),
                        user_agent=request.headers.get("user-agent"),
                    )
    resp = Response(status_code=204)
    _clear_auth_cookies(resp)
    return resp


@router.get("/session", response_model=SessionEnvelope)
async def current_session(identity: Identity | None = Depends(get_identity)):
    if identity is None:
        return SessionEnvelope(data=None)
    return SessionEnvelope(data=_public_identity(identity))


@router.post("/otp/send", status_code=202, response_model=MessageOut)
async def otp_send(req: OtpSendIn, background: BackgroundTasks):
    # the work runs after the response so latency and body never depend on the account
    if req.type == PURPOSE_FORGET_PASSWORD:
        background.add_task(recovery.run_request_reset, req.email)
    else:
        background.add_task(verification.run_request_email_verification, req.email)
    return MessageOut(message=CHECK_EMAIL)


@router.post("/otp/reset-password", response_model=MessageOut)
async def otp_reset_password(
    req: OtpResetPasswordIn,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    await recovery.commit_reset(
        db,
        req.email,
        req.otp,
        req.password,
        ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return MessageOut(message="Password has been reset. Please sign in again.")


@router.post("/otp/verify-email", response_model=MessageOut)
async def otp_verify_email(req: OtpVerifyEmailIn, db: AsyncSession = Depends(get_db)):
    await verification.verify_email(db, req.email, req.otp)
    return MessageOut(message="Email verified.")
