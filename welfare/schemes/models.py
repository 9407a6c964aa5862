"""Welfare scheme and application models."""

import enum
import uuid

from sqlalchemy import Column, ForeignKey, Index, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base, UTCDateTime, utcnow
from ..users.models import UserRole


class SchemeStatus(enum.StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"


class EligibilityType(enum.StrEnum):
    OFFICER = "officer"
    FAMILY_MEMBER = "family_member"
    BOTH = "both"

    @property
    def roles(self) -> list[UserRole]:
        if self is EligibilityType.BOTH:
            return [UserRole.OFFICER, UserRole.FAMILY_MEMBER]
        return [UserRole(self.value)]


class ApplicationStatus(enum.StrEnum):
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class WelfareScheme(Base):
    __tablename__ = "welfare_schemes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    category = Column(String(50), default="other")
    eligibility_type = Column(
        SQLEnum(EligibilityType, values_callable=lambda e: [s.value for s in e]),
        nullable=False,
        default=EligibilityType.BOTH,
    )
    status = Column(
        SQLEnum(SchemeStatus, values_callable=lambda e: [s.value for s in e]),
        default=SchemeStatus.ACTIVE,
    )
    application_deadline = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    applications = relationship("Application", back_populates="scheme", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_schemes_status_deadline", "status", "application_deadline"),
    )


class Application(Base):
    __tablename__ = "applications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    scheme_id = Column(
        UUID(as_uuid=True),
        ForeignKey("welfare_schemes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    applicant_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status = Column(
        SQLEnum(ApplicationStatus, values_callable=lambda e: [s.value for s in e]),
        default=ApplicationStatus.PENDING,
    )
    created_at = Column(UTCDateTime, default=utcnow)

    scheme = relationship("WelfareScheme", back_populates="applications")

    __table_args__ = (Index("idx_applications_status_created", "status", "created_at"),)
