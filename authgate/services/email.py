import logging

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType

from authgate.core.config import settings
from authgate.core.errors import DispatchFailure

log = logging.getLogger(__name__)

conf = ConnectionConfig(
    MAIL_USERNAME=settings.mail.username,
    MAIL_PASSWORD=settings.mail.password,
    MAIL_FROM=settings.mail.sender,
    MAIL_PORT=settings.mail.port,
    MAIL_SERVER=settings.mail.host,
    MAIL_FROM_NAME=settings.api_title,
    MAIL_STARTTLS=settings.mail.use_tls,
    MAIL_SSL_TLS=False,
    USE_CREDENTIALS=bool(settings.mail.username),
    SUPPRESS_SEND=int(settings.mail.suppress_send),
)

SUBJECTS = {
    "forget-password": "Your password reset code",
    "email-verification": "Verify your email address",
}


async def send_mail(subject: str, recipients: list[str], body: str) -> None:
    message = MessageSchema(subject=subject, recipients=recipients, body=body, subtype=MessageType.html)
    mailer = FastMail(conf)
    await mailer.send_message(message)


async def send_code(email: str, code: str, purpose: str, ttl_minutes: int) -> None:
    """Deliver a one-time code out of band. Raises DispatchFailure."""
    body = (
        f"<p>Your code is <strong>{code}</strong>. "
        f"It expires in {ttl_minutes} minutes.</p>"
        "<p>If you did not ask for it you can ignore this message.</p>"
    )
    try:
        await send_mail(subject=SUBJECTS.get(purpose, "Your code"), recipients=[email], body=body)
    except Exception as exc:
        log.warning("code dispatch failed", extra={"purpose": purpose, "error": type(exc).__name__})
        raise DispatchFailure(str(exc)) from exc
