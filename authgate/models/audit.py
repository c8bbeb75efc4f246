from sqlalchemy import Column, DateTime, Index, String, func
from sqlalchemy.dialects.mysql import CHAR

from authgate.core.db import Base
import uuid


def uuid_str() -> str:
    return str(uuid.uuid4())


class AuthAudit(Base):
    """Append-only trail of authentication events. Never holds codes or passwords."""

    __tablename__ = "auth_audit"

    id = Column(CHAR(36), primary_key=True, default=uuid_str)
    user_id = Column(CHAR(36))
    event = Column(String(64), nullable=False)
    ip_hash = Column(String(128))
    ua = Column(String(512))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (Index("ix_auth_audit_user_event", "user_id", "event"),)
