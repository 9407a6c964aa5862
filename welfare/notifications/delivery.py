"""Delivery dispatch: hand ready notifications to a sink and record outcomes."""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ..database.base import utcnow
from .channels import DeliverySink
from .models import Notification, NotificationStatus
from .service import find_for_retry, find_ready_for_delivery, record_delivery_attempt

logger = logging.getLogger(__name__)


@dataclass
class DispatchSummary:
    processed: int = 0
    sent: int = 0
    failed_attempts: int = 0


def deliver(db: Session, notification: Notification, sink: DeliverySink) -> int:
    """Attempt every enabled channel not yet sent. Returns successful attempts."""
    if notification.settle():
        db.flush()
        logger.info(
            "Notification %s has no channel left to try, settled as %s",
            notification.id, notification.status,
        )
        return 0

    successes = 0
    for channel in notification.unsent_channels():
        # A failure can exhaust retries mid-loop
        if notification.status == NotificationStatus.FAILED and notification.retry_count >= notification.max_retries:
            break
        try:
            result = sink.attempt_delivery(channel, notification)
        except Exception as exc:
            logger.exception("Delivery sink crashed on %s for %s", channel, notification.id)
            record_delivery_attempt(db, notification.id, channel, False, error=str(exc))
            continue
        record_delivery_attempt(
            db,
            notification.id,
            channel,
            result.success,
            error=result.error,
            response=result.response,
        )
        if result.success:
            successes += 1
    return successes


def dispatch_pending(
    db: Session,
    sink: DeliverySink,
    now: datetime | None = None,
    limit: int = 100,
) -> DispatchSummary:
    """Deliver ready and retry-eligible notifications."""
    now = now or utcnow()
    summary = DispatchSummary()

    candidates = find_ready_for_delivery(db, now, limit) + find_for_retry(db, now, limit)
    for notification in candidates:
        summary.processed += 1
        before = len(notification.delivery_attempts)
        ok = deliver(db, notification, sink)
        summary.sent += ok
        summary.failed_attempts += len(notification.delivery_attempts) - before - ok

    if summary.processed:
        logger.info(
            "Dispatched %d notifications: %d channel sends, %d failed attempts",
            summary.processed, summary.sent, summary.failed_attempts,
        )
    return summary
