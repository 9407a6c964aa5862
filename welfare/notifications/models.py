"""Notification model, its delivery-attempt log, and the record state machine.

One row per (recipient, event). Delivery sub-state lives in the ``channels``
JSON document; every transport attempt is appended to ``delivery_attempts``.
Expiry is lazy: it is applied whenever a notification is inserted or updated
(see the mapper listeners at the bottom of this module).
"""

import copy
import enum
import uuid
from datetime import datetime, timedelta

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text, event
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, validates

from ..database.base import Base, UTCDateTime, as_utc, utcnow


class NotificationType(enum.StrEnum):
    WELFARE_SCHEME = "welfare_scheme"
    SCHEME_DEADLINE = "scheme_deadline_reminder"
    WEEKLY_REMINDER = "weekly_reminder"
    APPLICATION_STATUS = "application_status"
    GRIEVANCE_UPDATE = "grievance_update"
    GRIEVANCE_OVERDUE = "grievance_overdue"
    GRIEVANCE_ESCALATED = "grievance_escalated"
    EMERGENCY_ALERT = "emergency_alert"
    MARKETPLACE_INQUIRY = "marketplace_inquiry"
    MESSAGE_RECEIVED = "message_received"
    BIRTHDAY_WISH = "birthday_wish"
    ADMIN_REMINDER = "admin_reminder"
    SYSTEM_ANNOUNCEMENT = "system_announcement"
    OTHER = "other"


class NotificationPriority(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationStatus(enum.StrEnum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class NotificationSource(enum.StrEnum):
    SYSTEM = "system"
    ADMIN = "admin"
    AUTOMATED = "automated"
    USER_ACTION = "user_action"


class EntityType(enum.StrEnum):
    WELFARE_SCHEME = "WelfareScheme"
    APPLICATION = "Application"
    GRIEVANCE = "Grievance"
    EMERGENCY_ALERT = "EmergencyAlert"
    MARKETPLACE_ITEM = "MarketplaceItem"
    MESSAGE = "Message"
    USER = "User"


class UserAction(enum.StrEnum):
    CLICKED = "clicked"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"
    DELETED = "deleted"


CHANNELS = ("push", "email", "sms")
DEFAULT_CHANNELS = {"push": True, "email": False, "sms": False}
DEFAULT_MAX_RETRIES = 3

# Minutes to wait before the next attempt, indexed by failed-attempt number
RETRY_DELAYS_MINUTES = (5, 15, 60)


def retry_delay(attempt_index: int) -> timedelta:
    """Backoff for the given zero-based failed attempt, capped at the last step."""
    idx = min(max(attempt_index, 0), len(RETRY_DELAYS_MINUTES) - 1)
    return timedelta(minutes=RETRY_DELAYS_MINUTES[idx])


def build_channels(enabled: dict | None = None) -> dict:
    """Per-channel sub-records from an ``{channel: bool}`` mapping."""
    flags = {**DEFAULT_CHANNELS, **(enabled or {})}
    return {
        name: {"enabled": bool(flags[name]), "sent": False, "sent_at": None, "response": None}
        for name in CHANNELS
    }


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    title = Column(String(100), nullable=False)
    message = Column(String(500), nullable=False)
    type = Column(
        SQLEnum(NotificationType, values_callable=lambda e: [t.value for t in e]),
        nullable=False,
        default=NotificationType.OTHER,
    )
    priority = Column(
        SQLEnum(NotificationPriority, values_callable=lambda e: [p.value for p in e]),
        default=NotificationPriority.MEDIUM,
    )
    status = Column(
        SQLEnum(NotificationStatus, values_callable=lambda e: [s.value for s in e]),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    source = Column(
        SQLEnum(NotificationSource, values_callable=lambda e: [s.value for s in e]),
        default=NotificationSource.SYSTEM,
    )

    # Deep-link target, never used for business logic
    related_entity_type = Column(
        SQLEnum(EntityType, values_callable=lambda e: [t.value for t in e]),
        nullable=True,
    )
    related_entity_id = Column(UUID(as_uuid=True), nullable=True)

    channels = Column(JSON, default=lambda: build_channels())
    meta = Column("metadata", JSON, default=dict)
    batch_id = Column(String(36), nullable=True, index=True)

    # Interaction tracking
    read_at = Column(UTCDateTime, nullable=True)
    clicked_at = Column(UTCDateTime, nullable=True)
    action_taken = Column(
        SQLEnum(UserAction, values_callable=lambda e: [a.value for a in e]),
        nullable=True,
    )
    action_taken_at = Column(UTCDateTime, nullable=True)

    scheduled_for = Column(UTCDateTime, nullable=True)

    # Retry bookkeeping
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=DEFAULT_MAX_RETRIES, nullable=False)
    next_retry_at = Column(UTCDateTime, nullable=True)

    expires_at = Column(UTCDateTime, nullable=True)
    is_expired = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

    recipient = relationship("User")
    delivery_attempts = relationship(
        "DeliveryAttempt",
        back_populates="notification",
        cascade="all, delete-orphan",
        order_by="DeliveryAttempt.attempted_at",
    )

    __table_args__ = (
        Index("idx_notifications_recipient_created", "recipient_id", "created_at"),
        Index("idx_notifications_recipient_read", "recipient_id", "read_at"),
        Index("idx_notifications_status_scheduled", "status", "scheduled_for"),
        Index("idx_notifications_related", "related_entity_type", "related_entity_id"),
        Index("idx_notifications_type", "type"),
    )

    @validates("is_expired")
    def _keep_expired(self, key, value):
        # Once expired a notification stays expired
        if self.is_expired and not value:
            return True
        return value

    # ── Derived state ──────────────────────────────────────────────────

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_clicked(self) -> bool:
        return self.clicked_at is not None

    @property
    def delivery_success_rate(self) -> float:
        total = len(self.delivery_attempts)
        if total == 0:
            return 0.0
        ok = sum(1 for a in self.delivery_attempts if a.success)
        return ok / total * 100

    @property
    def should_retry(self) -> bool:
        return (
            self.status == NotificationStatus.FAILED
            and not self.is_expired
            and self.retry_count < self.max_retries
            and (self.next_retry_at is None or self.next_retry_at <= utcnow())
        )

    def channel_enabled(self, channel: str) -> bool:
        return bool((self.channels or {}).get(channel, {}).get("enabled"))

    def channel_sent(self, channel: str) -> bool:
        return bool((self.channels or {}).get(channel, {}).get("sent"))

    # ── Transitions ────────────────────────────────────────────────────

    def check_expiry(self, now: datetime | None = None) -> bool:
        """Flip to expired/failed if ``expires_at`` has passed. Returns ``is_expired``."""
        now = now or utcnow()
        if self.expires_at is not None and as_utc(self.expires_at) <= now and not self.is_expired:
            self.is_expired = True
            self.status = NotificationStatus.FAILED
            self.next_retry_at = None
        return bool(self.is_expired)

    def mark_read(self, now: datetime | None = None) -> bool:
        """Stamp ``read_at`` and move to ``read``. Returns True if anything changed.

        Expired notifications are left untouched.
        """
        now = now or utcnow()
        if self.check_expiry(now):
            return False
        if self.read_at is not None and self.status == NotificationStatus.READ:
            return False
        if self.read_at is None:
            self.read_at = now
        self.status = NotificationStatus.READ
        return True

    def mark_delivered(self) -> bool:
        if self.status != NotificationStatus.SENT:
            return False
        self.status = NotificationStatus.DELIVERED
        return True

    def mark_clicked(self, action: UserAction = UserAction.CLICKED, now: datetime | None = None) -> None:
        now = now or utcnow()
        if self.clicked_at is None and action == UserAction.CLICKED:
            self.clicked_at = now
        self.action_taken = action
        self.action_taken_at = now

    def mark_failed(self, now: datetime | None = None) -> None:
        """Move to ``failed``; schedule the next retry while retries remain."""
        now = now or utcnow()
        self.status = NotificationStatus.FAILED
        if self.retry_count < self.max_retries:
            self.next_retry_at = now + retry_delay(self.retry_count)
        else:
            self.next_retry_at = None

    def record_attempt(
        self,
        channel: str,
        success: bool,
        error: str | None = None,
        response: dict | None = None,
        now: datetime | None = None,
    ) -> "DeliveryAttempt":
        now = now or utcnow()
        attempt = DeliveryAttempt(
            channel=channel,
            attempted_at=now,
            success=success,
            error=error,
            response=response,
        )
        self.delivery_attempts.append(attempt)

        if success:
            channels = copy.deepcopy(self.channels or build_channels())
            state = channels.setdefault(channel, {"enabled": True})
            state.update(sent=True, sent_at=now.isoformat(), response=response)
            self.channels = channels
            retryable_failure = (
                self.status == NotificationStatus.FAILED
                and not self.is_expired
                and self.retry_count < self.max_retries
            )
            if self.status == NotificationStatus.PENDING or retryable_failure:
                self.status = NotificationStatus.SENT
                self.next_retry_at = None
            return attempt

        if self.retry_count < self.max_retries:
            self.retry_count += 1
        if self.retry_count >= self.max_retries:
            # Sent, delivered and read records keep their status
            if self.status in (NotificationStatus.PENDING, NotificationStatus.FAILED):
                self.status = NotificationStatus.FAILED
            self.next_retry_at = None
        else:
            self.next_retry_at = now + retry_delay(self.retry_count - 1)
        return attempt

    def unsent_channels(self) -> list[str]:
        return [c for c in CHANNELS if self.channel_enabled(c) and not self.channel_sent(c)]

    def settle(self) -> bool:
        """Close out a pending or failed record with no channel left to try.

        Becomes ``sent`` if any channel already went out, otherwise ``failed``
        with no retries left. Returns True if anything changed.
        """
        if self.status not in (NotificationStatus.PENDING, NotificationStatus.FAILED) or self.unsent_channels():
            return False
        if any(self.channel_sent(c) for c in CHANNELS):
            self.status = NotificationStatus.SENT
        else:
            self.status = NotificationStatus.FAILED
            self.max_retries = self.retry_count
        self.next_retry_at = None
        return True


class DeliveryAttempt(Base):
    """Append-only log of transport attempts for one notification."""

    __tablename__ = "notification_delivery_attempts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notification_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    channel = Column(String(10), nullable=False)
    attempted_at = Column(UTCDateTime, default=utcnow)
    success = Column(Boolean, nullable=False)
    error = Column(Text, nullable=True)
    response = Column(JSON, nullable=True)

    notification = relationship("Notification", back_populates="delivery_attempts")


@event.listens_for(Notification, "before_insert")
@event.listens_for(Notification, "before_update")
def _apply_expiry(mapper, connection, target: Notification) -> None:
    target.check_expiry()
