"""User directory model."""

import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, Date, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.mutable import MutableList

from ..database.base import Base, UTCDateTime, utcnow


class UserRole(enum.StrEnum):
    OFFICER = "officer"
    FAMILY_MEMBER = "family_member"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), default="")
    phone = Column(String(50), default="")
    role = Column(
        SQLEnum(UserRole, values_callable=lambda e: [r.value for r in e]),
        nullable=False,
        default=UserRole.OFFICER,
        index=True,
    )
    service_status = Column(String(20), default="active")  # active / retired / deceased
    date_of_birth = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True)

    # Denormalized back-reference, appended on every notification create
    notification_ids = Column(MutableList.as_mutable(JSON), default=list)

    created_at = Column(UTCDateTime, default=utcnow)
