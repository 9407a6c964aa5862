"""Notification service: create, read-state, retry bookkeeping, cleanup and stats.

Every function takes the caller's ``Session`` and only flushes; the route or
scheduler job that owns the session decides when to commit. Mutations are
read-modify-write on a single row, locked with ``SELECT ... FOR UPDATE`` on
backends that support it.
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..database.base import as_utc, utcnow
from ..errors import NotFoundError, ValidationError, WelfareError
from ..users.models import User
from .models import (
    CHANNELS,
    DEFAULT_MAX_RETRIES,
    DeliveryAttempt,
    EntityType,
    Notification,
    NotificationPriority,
    NotificationSource,
    NotificationStatus,
    NotificationType,
    UserAction,
    build_channels,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_RETENTION_DAYS = 30

_TITLE_MAX = 100
_MESSAGE_MAX = 500


@dataclass
class BulkSendResult:
    """Outcome of a fan-out: created records and per-recipient failures."""

    successful: list[Notification] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    batch_id: str = ""


def _to_uuid(value) -> UUID | None:
    """Convert string to UUID, returning None on failure."""
    if isinstance(value, UUID):
        return value
    if not value:
        return None
    try:
        return UUID(str(value))
    except (ValueError, AttributeError):
        return None


def _coerce(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise ValidationError(f"Invalid {label}: {value!r}") from exc


def _check_channel(channel: str) -> str:
    if channel not in CHANNELS:
        raise ValidationError(f"Unknown delivery channel: {channel!r}")
    return channel


def _get_notification(db: Session, notification_id) -> Notification:
    nid = _to_uuid(notification_id)
    if nid is None:
        raise NotFoundError("Notification not found")
    notification = db.query(Notification).filter(Notification.id == nid).with_for_update().first()
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


def _get_owned(db: Session, notification_id, recipient_id) -> Notification:
    """Fetch a notification only if it belongs to ``recipient_id``."""
    nid = _to_uuid(notification_id)
    rid = _to_uuid(recipient_id)
    if nid is None or rid is None:
        raise NotFoundError("Notification not found")
    notification = (
        db.query(Notification)
        .filter(Notification.id == nid, Notification.recipient_id == rid)
        .with_for_update()
        .first()
    )
    if not notification:
        raise NotFoundError("Notification not found")
    return notification


# ── Create ────────────────────────────────────────────────────────────


def create_notification(
    db: Session,
    recipient_id,
    title: str,
    message: str,
    *,
    type: NotificationType | str = NotificationType.OTHER,
    priority: NotificationPriority | str = NotificationPriority.MEDIUM,
    channels: dict | None = None,
    metadata: dict | None = None,
    related_entity: tuple[EntityType | str, UUID] | None = None,
    scheduled_for: datetime | None = None,
    expires_at: datetime | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    source: NotificationSource | str = NotificationSource.SYSTEM,
    batch_id: str | None = None,
) -> Notification:
    """Persist a pending notification and back-reference it on the recipient.

    Raises ValidationError for missing/malformed input and NotFoundError when
    the recipient does not exist.
    """
    if not recipient_id:
        raise ValidationError("recipient_id is required")
    rid = _to_uuid(recipient_id)
    if rid is None:
        raise ValidationError(f"Invalid recipient id: {recipient_id!r}")
    title = (title or "").strip()
    message = (message or "").strip()
    if not title:
        raise ValidationError("title is required")
    if not message:
        raise ValidationError("message is required")
    if len(title) > _TITLE_MAX:
        raise ValidationError(f"title exceeds {_TITLE_MAX} characters")
    if len(message) > _MESSAGE_MAX:
        raise ValidationError(f"message exceeds {_MESSAGE_MAX} characters")
    if max_retries < 0:
        raise ValidationError("max_retries must not be negative")
    for label, value in (("scheduled_for", scheduled_for), ("expires_at", expires_at)):
        if value is not None and not isinstance(value, datetime):
            raise ValidationError(f"{label} must be a datetime")
    scheduled_for = as_utc(scheduled_for)
    expires_at = as_utc(expires_at)
    for name in channels or {}:
        _check_channel(name)

    entity_type = entity_id = None
    if related_entity is not None:
        entity_type = _coerce(EntityType, related_entity[0], "related entity type")
        entity_id = _to_uuid(related_entity[1])

    recipient = db.query(User).filter(User.id == rid).with_for_update().first()
    if recipient is None:
        raise NotFoundError(f"Recipient {rid} not found")

    notification = Notification(
        id=uuid.uuid4(),
        recipient_id=rid,
        title=title,
        message=message,
        type=_coerce(NotificationType, type, "notification type"),
        priority=_coerce(NotificationPriority, priority, "priority"),
        source=_coerce(NotificationSource, source, "source"),
        status=NotificationStatus.PENDING,
        channels=build_channels(channels),
        meta=dict(metadata or {}),
        related_entity_type=entity_type,
        related_entity_id=entity_id,
        scheduled_for=scheduled_for,
        expires_at=expires_at,
        max_retries=max_retries,
        retry_count=0,
        batch_id=batch_id,
    )
    db.add(notification)

    if recipient.notification_ids is None:
        recipient.notification_ids = []
    recipient.notification_ids.append(str(notification.id))
    db.flush()

    logger.debug("Created %s notification %s for %s", notification.type, notification.id, rid)
    return notification


def send_bulk(db: Session, recipient_ids: list, title: str, message: str, **options) -> BulkSendResult:
    """Create one independent notification per recipient.

    A failure for one recipient is collected in ``failed`` and never aborts
    the others.
    """
    result = BulkSendResult(batch_id=str(uuid.uuid4()))
    for recipient_id in recipient_ids:
        try:
            notification = create_notification(
                db, recipient_id, title, message, batch_id=result.batch_id, **options
            )
        except WelfareError as exc:
            logger.warning("Bulk send %s: recipient %s failed: %s", result.batch_id[:8], recipient_id, exc)
            result.failed.append({"recipient_id": recipient_id, "error": str(exc)})
            continue
        result.successful.append(notification)

    logger.info(
        "Bulk send %s: %d created, %d failed",
        result.batch_id[:8],
        len(result.successful),
        len(result.failed),
    )
    return result


# ── Read state ────────────────────────────────────────────────────────


def mark_as_read(db: Session, notification_id, recipient_id) -> Notification:
    notification = _get_owned(db, notification_id, recipient_id)
    notification.mark_read()
    db.flush()
    return notification


def mark_all_as_read(db: Session, recipient_id) -> int:
    """Mark every unread notification of a recipient as read. Returns the count modified."""
    rid = _to_uuid(recipient_id)
    if rid is None:
        return 0
    now = utcnow()
    unread = (
        db.query(Notification)
        .filter(
            Notification.recipient_id == rid,
            Notification.read_at.is_(None),
            Notification.is_expired == False,  # noqa: E712
        )
        .with_for_update()
        .all()
    )
    modified = sum(1 for n in unread if n.mark_read(now))
    if modified:
        db.flush()
    return modified


def get_unread_count(db: Session, recipient_id) -> int:
    """Unread is ``read_at`` unset on a non-expired notification."""
    rid = _to_uuid(recipient_id)
    if rid is None:
        return 0
    return (
        db.query(func.count(Notification.id))
        .filter(
            Notification.recipient_id == rid,
            Notification.read_at.is_(None),
            Notification.is_expired == False,  # noqa: E712
        )
        .scalar()
        or 0
    )


def list_for_recipient(
    db: Session,
    recipient_id,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    type: NotificationType | str | None = None,
    unread_only: bool = False,
) -> dict:
    """Newest-first page of a recipient's notifications with page metadata."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)

    rid = _to_uuid(recipient_id)
    query = db.query(Notification).filter(Notification.recipient_id == rid)
    if type:
        query = query.filter(Notification.type == _coerce(NotificationType, type, "notification type"))
    if unread_only:
        query = query.filter(
            Notification.read_at.is_(None),
            Notification.is_expired == False,  # noqa: E712
        )

    total = query.count() if rid is not None else 0
    items = []
    if total and (page - 1) * limit < total:
        items = (
            query.order_by(Notification.created_at.desc(), Notification.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    return {
        "notifications": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def mark_as_clicked(db: Session, notification_id, recipient_id, action: UserAction | str = UserAction.CLICKED) -> Notification:
    notification = _get_owned(db, notification_id, recipient_id)
    notification.mark_clicked(_coerce(UserAction, action, "action"))
    db.flush()
    return notification


def snooze(db: Session, notification_id, recipient_id, minutes: int = 60) -> Notification:
    """Push the notification out of the delivery queue for ``minutes``."""
    if minutes <= 0:
        raise ValidationError("minutes must be positive")
    notification = _get_owned(db, notification_id, recipient_id)
    now = utcnow()
    notification.scheduled_for = now + timedelta(minutes=minutes)
    notification.mark_clicked(UserAction.SNOOZED, now)
    db.flush()
    return notification


def dismiss(db: Session, notification_id, recipient_id) -> Notification:
    notification = _get_owned(db, notification_id, recipient_id)
    notification.mark_clicked(UserAction.DISMISSED)
    db.flush()
    return notification


# ── Delivery bookkeeping ──────────────────────────────────────────────


def record_delivery_attempt(
    db: Session,
    notification_id,
    channel: str,
    success: bool,
    error: str | None = None,
    response: dict | None = None,
) -> Notification:
    """Append a delivery attempt and advance status / retry bookkeeping."""
    _check_channel(channel)
    notification = _get_notification(db, notification_id)
    notification.record_attempt(channel, success, error=error, response=response)
    db.flush()

    if success:
        logger.debug("Notification %s delivered via %s", notification.id, channel)
    elif notification.retry_count >= notification.max_retries:
        logger.warning(
            "Notification %s gave up on %s after %d retries (status %s): %s",
            notification.id, channel, notification.retry_count, notification.status, error,
        )
    else:
        logger.info(
            "Notification %s attempt via %s failed (%d/%d), next retry at %s",
            notification.id, channel, notification.retry_count, notification.max_retries,
            notification.next_retry_at,
        )
    return notification


def mark_as_delivered(db: Session, notification_id) -> Notification:
    """Channel receipt: ``sent`` becomes ``delivered``; other states are left alone."""
    notification = _get_notification(db, notification_id)
    notification.mark_delivered()
    db.flush()
    return notification


def mark_failed(db: Session, notification_id, reason: str = "") -> Notification:
    notification = _get_notification(db, notification_id)
    notification.mark_failed()
    db.flush()
    logger.info("Notification %s marked failed: %s", notification.id, reason or "no reason given")
    return notification


def find_ready_for_delivery(db: Session, now: datetime | None = None, limit: int = 100) -> list[Notification]:
    """Pending, unexpired notifications whose schedule and backoff have elapsed."""
    now = now or utcnow()
    return (
        db.query(Notification)
        .filter(
            Notification.status == NotificationStatus.PENDING,
            Notification.is_expired == False,  # noqa: E712
            or_(Notification.scheduled_for.is_(None), Notification.scheduled_for <= now),
            or_(Notification.next_retry_at.is_(None), Notification.next_retry_at <= now),
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
        .order_by(Notification.created_at.asc())
        .limit(limit)
        .all()
    )


def find_for_retry(db: Session, now: datetime | None = None, limit: int = 100) -> list[Notification]:
    """Failed notifications that still have retries left and whose backoff has elapsed."""
    now = now or utcnow()
    return (
        db.query(Notification)
        .filter(
            Notification.status == NotificationStatus.FAILED,
            Notification.retry_count < Notification.max_retries,
            Notification.is_expired == False,  # noqa: E712
            or_(Notification.next_retry_at.is_(None), Notification.next_retry_at <= now),
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
        .order_by(Notification.next_retry_at.asc())
        .limit(limit)
        .all()
    )


# ── Maintenance & stats ───────────────────────────────────────────────


def cleanup_old(db: Session, retention_days: int = DEFAULT_RETENTION_DAYS) -> int:
    """Delete read or expired notifications older than the retention window."""
    if retention_days <= 0:
        raise ValidationError("retention_days must be positive")
    cutoff = utcnow() - timedelta(days=retention_days)

    stale = db.query(Notification.id, Notification.recipient_id).filter(
        Notification.created_at < cutoff,
        or_(
            Notification.read_at.isnot(None),
            Notification.status == NotificationStatus.READ,
            Notification.is_expired == True,  # noqa: E712
        ),
    )
    rows = stale.all()
    if not rows:
        return 0
    stale_ids = [row.id for row in rows]

    # Drop the deleted ids from each recipient's back-reference list
    removed = {str(nid) for nid in stale_ids}
    recipient_ids = {row.recipient_id for row in rows}
    for user in db.query(User).filter(User.id.in_(recipient_ids)).with_for_update().all():
        if user.notification_ids:
            user.notification_ids = [nid for nid in user.notification_ids if nid not in removed]

    db.query(DeliveryAttempt).filter(DeliveryAttempt.notification_id.in_(stale_ids)).delete(
        synchronize_session=False
    )
    deleted = (
        db.query(Notification)
        .filter(Notification.id.in_(stale_ids))
        .delete(synchronize_session=False)
    )
    db.flush()
    logger.info("Cleaned up %d notifications older than %d days", deleted, retention_days)
    return deleted


def get_notification_stats(db: Session, recipient_id=None) -> dict:
    """Totals and breakdowns by type, priority and status."""
    base = db.query(Notification)
    if recipient_id is not None:
        base = base.filter(Notification.recipient_id == _to_uuid(recipient_id))

    def _group(column) -> dict:
        rows = (
            base.with_entities(column, func.count(Notification.id))
            .group_by(column)
            .all()
        )
        return {str(key): count for key, count in rows if key is not None}

    total = base.count()
    unread = base.filter(
        Notification.read_at.is_(None),
        Notification.is_expired == False,  # noqa: E712
    ).count()
    return {
        "total": total,
        "unread": unread,
        "by_type": _group(Notification.type),
        "by_priority": _group(Notification.priority),
        "by_status": _group(Notification.status),
    }
