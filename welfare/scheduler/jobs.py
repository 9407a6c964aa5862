"""Scan-and-notify job bodies.

Each job takes the session and the tick's ``now`` and returns how many records
it produced or removed. Jobs never commit; ``Scheduler.run_job`` owns the
transaction and the error boundary.
"""

import logging
from collections import OrderedDict
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from ..grievances.models import OPEN_STATUSES, Grievance, GrievanceStatus
from ..notifications.models import EntityType, NotificationPriority, NotificationSource, NotificationType
from ..notifications.service import cleanup_old, create_notification
from ..schemes.models import Application, ApplicationStatus, SchemeStatus, WelfareScheme
from ..users.models import User, UserRole

logger = logging.getLogger(__name__)

MEMBER_ROLES = (UserRole.OFFICER, UserRole.FAMILY_MEMBER)


def _active_users(db: Session, roles) -> list[User]:
    return (
        db.query(User)
        .filter(User.role.in_(list(roles)), User.is_active == True)  # noqa: E712
        .order_by(User.created_at.asc())
        .all()
    )


def eligible_users(db: Session, scheme: WelfareScheme) -> list[User]:
    """Active users whose role matches the scheme's eligibility type."""
    return _active_users(db, scheme.eligibility_type.roles)


def _notify(db: Session, user_id, title: str, message: str, **options) -> None:
    create_notification(db, user_id, title, message, source=NotificationSource.AUTOMATED, **options)


def check_scheme_deadlines(db: Session, now: datetime, window_days: int = 3) -> int:
    """Remind eligible users of active schemes closing within ``window_days``."""
    horizon = now + timedelta(days=window_days)
    schemes = (
        db.query(WelfareScheme)
        .filter(
            WelfareScheme.status == SchemeStatus.ACTIVE,
            WelfareScheme.application_deadline >= now,
            WelfareScheme.application_deadline <= horizon,
        )
        .order_by(WelfareScheme.application_deadline.asc())
        .all()
    )

    created = 0
    for scheme in schemes:
        users = eligible_users(db, scheme)
        if not users:
            logger.debug("Scheme %s has no eligible users, skipping", scheme.id)
            continue
        deadline = scheme.application_deadline
        for user in users:
            _notify(
                db,
                user.id,
                "Scheme Deadline Approaching",
                f'The application deadline for "{scheme.name}" is approaching. '
                f"Apply before {deadline:%d %b %Y}.",
                type=NotificationType.SCHEME_DEADLINE,
                related_entity=(EntityType.WELFARE_SCHEME, scheme.id),
                metadata={"deadline": deadline.isoformat()},
            )
            created += 1

    logger.info("Checked %d schemes near deadline, %d reminders created", len(schemes), created)
    return created


def send_weekly_reminders(db: Session, now: datetime, scheme_limit: int = 5) -> int:
    """Tell every member how many schemes are currently open for applications."""
    schemes = (
        db.query(WelfareScheme)
        .filter(
            WelfareScheme.status == SchemeStatus.ACTIVE,
            WelfareScheme.application_deadline >= now,
        )
        .order_by(WelfareScheme.application_deadline.asc())
        .limit(scheme_limit)
        .all()
    )
    if not schemes:
        logger.info("No open schemes, weekly reminder skipped")
        return 0

    users = _active_users(db, MEMBER_ROLES)
    for user in users:
        _notify(
            db,
            user.id,
            "Weekly Welfare Update",
            f"{len(schemes)} welfare schemes are currently available for application. Check them out!",
            type=NotificationType.WEEKLY_REMINDER,
            metadata={"schemes": [{"id": str(s.id), "name": s.name} for s in schemes]},
        )

    logger.info("Sent weekly reminders to %d users", len(users))
    return len(users)


def check_overdue_grievances(
    db: Session,
    now: datetime,
    overdue_days: int = 7,
    escalation_days: int = 10,
) -> int:
    """Chase open grievances older than ``overdue_days``; auto-escalate after ``escalation_days``."""
    overdue_cutoff = now - timedelta(days=overdue_days)
    escalation_cutoff = now - timedelta(days=escalation_days)

    grievances = (
        db.query(Grievance)
        .filter(
            Grievance.status.in_(list(OPEN_STATUSES)),
            Grievance.created_at <= overdue_cutoff,
        )
        .order_by(Grievance.created_at.asc())
        .all()
    )

    created = 0
    escalated = 0
    admins: list[User] | None = None
    for grievance in grievances:
        related = (EntityType.GRIEVANCE, grievance.id)
        if grievance.assigned_to:
            _notify(
                db,
                grievance.assigned_to,
                "Overdue Grievance",
                f"Grievance #{grievance.ticket_number} has been pending for over {overdue_days} days. "
                f"Please provide an update.",
                type=NotificationType.GRIEVANCE_OVERDUE,
                priority=NotificationPriority.HIGH,
                related_entity=related,
            )
        else:
            _notify(
                db,
                grievance.submitted_by,
                "Grievance Pending",
                f"Your grievance #{grievance.ticket_number} has been pending for over {overdue_days} days. "
                f"It is being followed up.",
                type=NotificationType.GRIEVANCE_OVERDUE,
                priority=NotificationPriority.HIGH,
                related_entity=related,
            )
        created += 1

        if grievance.created_at > escalation_cutoff or grievance.status == GrievanceStatus.ESCALATED:
            continue

        grievance.escalate(f"No response for {escalation_days} days", now)
        escalated += 1
        if admins is None:
            admins = _active_users(db, [UserRole.ADMIN])
        for admin in admins:
            _notify(
                db,
                admin.id,
                "Grievance Auto-Escalated",
                f"Grievance #{grievance.ticket_number} has been auto-escalated "
                f"due to no response for {escalation_days} days.",
                type=NotificationType.GRIEVANCE_ESCALATED,
                priority=NotificationPriority.HIGH,
                related_entity=related,
            )
            created += 1

    db.flush()
    logger.info(
        "Checked %d overdue grievances: %d escalated, %d notifications",
        len(grievances), escalated, created,
    )
    return created


def cleanup_notifications(db: Session, now: datetime, retention_days: int = 30) -> int:
    return cleanup_old(db, retention_days)


def _is_birthday(dob: date, today: date) -> bool:
    if (dob.month, dob.day) == (today.month, today.day):
        return True
    # Feb 29 birthdays are celebrated on Feb 28 in common years
    leap = today.year % 4 == 0 and (today.year % 100 != 0 or today.year % 400 == 0)
    return (dob.month, dob.day) == (2, 29) and (today.month, today.day) == (2, 28) and not leap


def send_birthday_wishes(db: Session, now: datetime, tz: ZoneInfo | None = None) -> int:
    """Greet users whose birth month and day match today in the scheduler timezone."""
    today = now.astimezone(tz).date() if tz else now.date()
    users = (
        db.query(User)
        .filter(User.date_of_birth.isnot(None), User.is_active == True)  # noqa: E712
        .all()
    )
    birthday_users = [u for u in users if _is_birthday(u.date_of_birth, today)]

    for user in birthday_users:
        _notify(
            db,
            user.id,
            "Happy Birthday! 🎉",
            "Wishing you a very happy birthday! May this year bring you joy, success, and good health. "
            "Thank you for your service to our nation.",
            type=NotificationType.BIRTHDAY_WISH,
            priority=NotificationPriority.LOW,
        )

    logger.info("Sent birthday wishes to %d users", len(birthday_users))
    return len(birthday_users)


def check_pending_applications(db: Session, now: datetime, pending_days: int = 7) -> int:
    """Summarise applications pending longer than ``pending_days`` for each administrator."""
    cutoff = now - timedelta(days=pending_days)
    rows = (
        db.query(Application, WelfareScheme)
        .join(WelfareScheme, Application.scheme_id == WelfareScheme.id)
        .filter(
            Application.status == ApplicationStatus.PENDING,
            Application.created_at <= cutoff,
        )
        .order_by(Application.created_at.asc())
        .all()
    )
    if not rows:
        logger.info("No applications pending for over %d days", pending_days)
        return 0

    by_scheme: OrderedDict[str, dict] = OrderedDict()
    for _application, scheme in rows:
        entry = by_scheme.setdefault(
            str(scheme.id), {"scheme_id": str(scheme.id), "name": scheme.name, "pending": 0}
        )
        entry["pending"] += 1

    admins = _active_users(db, [UserRole.ADMIN])
    if not admins:
        logger.warning(
            "%d pending applications across %d schemes but no administrators to notify",
            len(rows), len(by_scheme),
        )
        return 0

    for admin in admins:
        _notify(
            db,
            admin.id,
            "Pending Applications Review",
            f"{len(rows)} applications across {len(by_scheme)} schemes have been pending review "
            f"for over {pending_days} days.",
            type=NotificationType.ADMIN_REMINDER,
            priority=NotificationPriority.MEDIUM,
            metadata={"schemes": list(by_scheme.values())},
        )

    logger.info("Found %d pending applications, notified %d administrators", len(rows), len(admins))
    return len(admins)
