"""Grievance ticket model."""

import enum
import uuid

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base, UTCDateTime, utcnow


class GrievanceStatus(enum.StrEnum):
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    ESCALATED = "escalated"


# Statuses in which a grievance is still waiting on its handler
OPEN_STATUSES = (GrievanceStatus.PENDING, GrievanceStatus.ACKNOWLEDGED, GrievanceStatus.IN_PROGRESS)


class Grievance(Base):
    __tablename__ = "grievances"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ticket_number = Column(String(30), unique=True, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, default="")
    submitted_by = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    assigned_to = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status = Column(
        SQLEnum(GrievanceStatus, values_callable=lambda e: [s.value for s in e]),
        default=GrievanceStatus.PENDING,
    )
    escalation_level = Column(Integer, default=0)
    escalated_at = Column(UTCDateTime, nullable=True)
    escalation_reason = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("idx_grievances_status_created", "status", "created_at"),)

    def escalate(self, reason: str, now=None) -> None:
        self.status = GrievanceStatus.ESCALATED
        self.escalation_level = (self.escalation_level or 0) + 1
        self.escalated_at = now or utcnow()
        self.escalation_reason = reason
