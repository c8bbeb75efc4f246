from sqlalchemy import Column, DateTime, Index, Integer, String
from sqlalchemy.dialects.mysql import CHAR

from authgate.core.db import Base
import uuid


def uuid_str() -> str:
    return str(uuid.uuid4())


class OneTimeCode(Base):
    __tablename__ = "one_time_codes"

    id = Column(CHAR(36), primary_key=True, default=uuid_str)
    email = Column(String(255), nullable=False)
    purpose = Column(String(32), nullable=False)
    code_hash = Column(CHAR(64), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    # set on successful match and when superseded by a newer code
    consumed_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_one_time_codes_email_purpose", "email", "purpose"),)
