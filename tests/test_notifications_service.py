"""Tests for notification service."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from welfare.database.base import utcnow
from welfare.errors import NotFoundError, ValidationError
from welfare.notifications.models import (
    DeliveryAttempt,
    EntityType,
    Notification,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    UserAction,
)
from welfare.notifications.service import (
    cleanup_old,
    create_notification,
    dismiss,
    find_for_retry,
    find_ready_for_delivery,
    get_notification_stats,
    get_unread_count,
    list_for_recipient,
    mark_all_as_read,
    mark_as_clicked,
    mark_as_delivered,
    mark_as_read,
    mark_failed,
    record_delivery_attempt,
    send_bulk,
    snooze,
)


class TestCreateNotification:
    def test_creates_with_defaults(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "Hello", "World")
        db_session.commit()

        assert n.status == NotificationStatus.PENDING
        assert n.priority == NotificationPriority.MEDIUM
        assert n.meta == {}
        assert n.channel_enabled("push")
        assert not n.channel_enabled("email")
        assert not n.channel_enabled("sms")

    def test_appends_back_reference(self, db_session, test_user):
        n = create_notification(db_session, str(test_user.id), "Hello", "World")
        db_session.commit()
        db_session.refresh(test_user)
        assert test_user.notification_ids == [str(n.id)]

    def test_options_applied(self, db_session, test_user):
        scheme_id = uuid.uuid4()
        n = create_notification(
            db_session,
            test_user.id,
            "Deadline",
            "Soon",
            type="scheme_deadline_reminder",
            priority=NotificationPriority.HIGH,
            channels={"email": True},
            metadata={"k": "v"},
            related_entity=(EntityType.WELFARE_SCHEME, scheme_id),
        )
        db_session.commit()

        assert n.type == NotificationType.SCHEME_DEADLINE
        assert n.priority == NotificationPriority.HIGH
        assert n.channel_enabled("email")
        assert n.meta == {"k": "v"}
        assert n.related_entity_type == EntityType.WELFARE_SCHEME
        assert n.related_entity_id == scheme_id

    @pytest.mark.parametrize(
        "recipient, title, message",
        [(None, "t", "m"), ("x", "", "m"), ("x", "t", "  "), ("not-a-uuid", "t", "m")],
    )
    def test_missing_fields_rejected(self, db_session, test_user, recipient, title, message):
        recipient_id = test_user.id if recipient == "x" else recipient
        with pytest.raises(ValidationError):
            create_notification(db_session, recipient_id, title, message)

    def test_title_too_long(self, db_session, test_user):
        with pytest.raises(ValidationError):
            create_notification(db_session, test_user.id, "x" * 101, "m")

    def test_unknown_channel(self, db_session, test_user):
        with pytest.raises(ValidationError):
            create_notification(db_session, test_user.id, "t", "m", channels={"fax": True})

    def test_invalid_type(self, db_session, test_user):
        with pytest.raises(ValidationError):
            create_notification(db_session, test_user.id, "t", "m", type="carrier_pigeon")

    def test_naive_timestamps_treated_as_utc(self, db_session, test_user):
        naive_now = datetime.utcnow()
        n = create_notification(
            db_session,
            test_user.id,
            "t",
            "m",
            scheduled_for=naive_now + timedelta(hours=1),
            expires_at=naive_now + timedelta(days=1),
        )
        db_session.commit()

        assert n.is_expired is False
        assert n.expires_at.tzinfo is not None
        assert n.scheduled_for == (naive_now + timedelta(hours=1)).replace(tzinfo=UTC)

    def test_naive_past_expiry_expires(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m", expires_at=datetime.utcnow() - timedelta(hours=1))
        db_session.commit()
        assert n.is_expired is True
        assert n.status == NotificationStatus.FAILED

    def test_non_datetime_expiry_rejected(self, db_session, test_user):
        with pytest.raises(ValidationError):
            create_notification(db_session, test_user.id, "t", "m", expires_at="tomorrow")

    def test_unknown_recipient(self, db_session):
        with pytest.raises(NotFoundError):
            create_notification(db_session, uuid.uuid4(), "t", "m")
        assert db_session.query(Notification).count() == 0


class TestSendBulk:
    def test_partial_failure(self, db_session, test_user, other_user):
        bad_id = str(uuid.uuid4())
        result = send_bulk(db_session, [test_user.id, bad_id, other_user.id], "Title", "Body")
        db_session.commit()

        assert len(result.successful) == 2
        assert len(result.failed) == 1
        assert result.failed[0]["recipient_id"] == bad_id
        assert {n.recipient_id for n in result.successful} == {test_user.id, other_user.id}
        assert all(n.batch_id == result.batch_id for n in result.successful)
        assert db_session.query(Notification).count() == 2

    def test_empty_list(self, db_session):
        result = send_bulk(db_session, [], "Title", "Body")
        assert result.successful == []
        assert result.failed == []

    def test_options_forwarded(self, db_session, test_user):
        result = send_bulk(db_session, [test_user.id], "T", "B", priority="critical")
        assert result.successful[0].priority == NotificationPriority.CRITICAL


class TestMarkAsRead:
    def test_marks_read(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()

        updated = mark_as_read(db_session, str(n.id), test_user.id)
        db_session.commit()
        assert updated.read_at is not None
        assert updated.status == NotificationStatus.READ

    def test_ownership_isolation(self, db_session, test_user, other_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()

        with pytest.raises(NotFoundError):
            mark_as_read(db_session, n.id, other_user.id)
        db_session.refresh(n)
        assert n.read_at is None

    def test_invalid_id(self, db_session, test_user):
        with pytest.raises(NotFoundError):
            mark_as_read(db_session, "garbage", test_user.id)


class TestMarkAllAsRead:
    def test_idempotent(self, db_session, test_user):
        for i in range(3):
            create_notification(db_session, test_user.id, f"t{i}", "m")
        db_session.commit()

        assert mark_all_as_read(db_session, test_user.id) == 3
        db_session.commit()
        assert mark_all_as_read(db_session, test_user.id) == 0
        assert get_unread_count(db_session, test_user.id) == 0

    def test_leaves_other_recipients(self, db_session, test_user, other_user):
        create_notification(db_session, test_user.id, "t", "m")
        create_notification(db_session, other_user.id, "t", "m")
        db_session.commit()

        mark_all_as_read(db_session, test_user.id)
        db_session.commit()
        assert get_unread_count(db_session, other_user.id) == 1


class TestUnreadCount:
    def test_counts_unread_not_expired(self, db_session, test_user):
        create_notification(db_session, test_user.id, "a", "m")
        read = create_notification(db_session, test_user.id, "b", "m")
        create_notification(db_session, test_user.id, "c", "m", expires_at=utcnow() - timedelta(minutes=1))
        db_session.commit()
        mark_as_read(db_session, read.id, test_user.id)
        db_session.commit()

        assert get_unread_count(db_session, test_user.id) == 1

    def test_unknown_recipient_zero(self, db_session):
        assert get_unread_count(db_session, uuid.uuid4()) == 0


class TestListForRecipient:
    def _seed(self, db_session, user, count):
        base = utcnow()
        created = []
        for i in range(count):
            n = create_notification(db_session, user.id, f"n{i}", "m")
            n.created_at = base - timedelta(minutes=count - i)
            created.append(n)
        db_session.commit()
        return created

    def test_newest_first_with_metadata(self, db_session, test_user):
        created = self._seed(db_session, test_user, 5)
        result = list_for_recipient(db_session, test_user.id, page=1, limit=2)

        assert result["total"] == 5
        assert result["total_pages"] == 3
        assert [n.id for n in result["notifications"]] == [created[4].id, created[3].id]

    def test_out_of_range_page_empty(self, db_session, test_user):
        self._seed(db_session, test_user, 3)
        result = list_for_recipient(db_session, test_user.id, page=9, limit=20)
        assert result["notifications"] == []
        assert result["total"] == 3

    def test_filters(self, db_session, test_user):
        create_notification(db_session, test_user.id, "a", "m", type=NotificationType.BIRTHDAY_WISH)
        other = create_notification(db_session, test_user.id, "b", "m")
        db_session.commit()
        mark_as_read(db_session, other.id, test_user.id)
        db_session.commit()

        assert list_for_recipient(db_session, test_user.id, type="birthday_wish")["total"] == 1
        assert list_for_recipient(db_session, test_user.id, unread_only=True)["total"] == 1

    def test_limit_clamped(self, db_session, test_user):
        result = list_for_recipient(db_session, test_user.id, page=0, limit=1000)
        assert result["page"] == 1
        assert result["limit"] == 100
        assert result["total_pages"] == 0


class TestClicks:
    def test_mark_as_clicked(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()
        mark_as_clicked(db_session, n.id, test_user.id)
        assert n.clicked_at is not None
        assert n.action_taken == UserAction.CLICKED

    def test_snooze_defers_delivery(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()
        snooze(db_session, n.id, test_user.id, minutes=30)
        db_session.commit()

        assert n.action_taken == UserAction.SNOOZED
        assert n not in find_ready_for_delivery(db_session, utcnow())
        assert n in find_ready_for_delivery(db_session, utcnow() + timedelta(minutes=31))

    def test_snooze_rejects_non_positive(self, db_session, test_user):
        with pytest.raises(ValidationError):
            snooze(db_session, uuid.uuid4(), test_user.id, minutes=0)

    def test_dismiss(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()
        dismiss(db_session, n.id, test_user.id)
        assert n.action_taken == UserAction.DISMISSED


class TestDeliveryBookkeeping:
    def test_retry_cap(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m", max_retries=3)
        db_session.commit()

        for _ in range(3):
            record_delivery_attempt(db_session, n.id, "push", False, error="unreachable")
        db_session.commit()
        assert n.status == NotificationStatus.FAILED
        assert n.retry_count == 3

        record_delivery_attempt(db_session, n.id, "push", False, error="unreachable")
        db_session.commit()
        assert n.retry_count == 3
        assert db_session.query(DeliveryAttempt).filter_by(notification_id=n.id).count() == 4

    def test_unknown_channel(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        with pytest.raises(ValidationError):
            record_delivery_attempt(db_session, n.id, "pager", True)

    def test_unknown_notification(self, db_session):
        with pytest.raises(NotFoundError):
            record_delivery_attempt(db_session, uuid.uuid4(), "push", True)

    def test_mark_as_delivered(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        record_delivery_attempt(db_session, n.id, "push", True)
        mark_as_delivered(db_session, n.id)
        assert n.status == NotificationStatus.DELIVERED

    def test_mark_failed_is_retryable(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()
        mark_failed(db_session, n.id, reason="channel down")
        db_session.commit()

        later = utcnow() + timedelta(minutes=6)
        assert n.status == NotificationStatus.FAILED
        assert find_for_retry(db_session, utcnow()) == []
        assert find_for_retry(db_session, later) == [n]


class TestFindReadyForDelivery:
    def test_scheduled_for_exclusion(self, db_session, test_user):
        now = utcnow()
        n = create_notification(db_session, test_user.id, "t", "m", scheduled_for=now + timedelta(hours=1))
        db_session.commit()

        assert find_ready_for_delivery(db_session, now) == []
        assert find_ready_for_delivery(db_session, now + timedelta(hours=1, seconds=1)) == [n]

    def test_backoff_exclusion(self, db_session, test_user):
        n = create_notification(db_session, test_user.id, "t", "m")
        db_session.commit()
        now = utcnow()
        record_delivery_attempt(db_session, n.id, "push", False)
        db_session.commit()

        assert find_ready_for_delivery(db_session, now) == []
        assert find_ready_for_delivery(db_session, now + timedelta(minutes=10)) == [n]

    def test_expired_excluded(self, db_session, test_user):
        create_notification(db_session, test_user.id, "t", "m", expires_at=utcnow() - timedelta(seconds=1))
        db_session.commit()
        assert find_ready_for_delivery(db_session) == []


class TestCleanupOld:
    def test_deletes_old_read_and_expired_only(self, db_session, test_user):
        old = utcnow() - timedelta(days=40)
        old_read = create_notification(db_session, test_user.id, "old read", "m")
        old_unread = create_notification(db_session, test_user.id, "old unread", "m")
        old_expired = create_notification(
            db_session, test_user.id, "old expired", "m", expires_at=utcnow() - timedelta(days=35)
        )
        new_read = create_notification(db_session, test_user.id, "new read", "m")
        db_session.commit()

        for n in (old_read, old_unread, old_expired):
            n.created_at = old
        mark_as_read(db_session, old_read.id, test_user.id)
        mark_as_read(db_session, new_read.id, test_user.id)
        record_delivery_attempt(db_session, old_read.id, "push", True)
        db_session.commit()
        keep_ids = {old_unread.id, new_read.id}

        assert cleanup_old(db_session, retention_days=30) == 2
        db_session.commit()
        remaining = {row.id for row in db_session.query(Notification.id).all()}
        assert remaining == keep_ids
        assert db_session.query(DeliveryAttempt).count() == 0

    def test_prunes_recipient_back_references(self, db_session, test_user, other_user):
        old = utcnow() - timedelta(days=40)
        stale = create_notification(db_session, test_user.id, "stale", "m")
        kept = create_notification(db_session, test_user.id, "kept", "m")
        theirs = create_notification(db_session, other_user.id, "theirs", "m")
        stale.created_at = old
        mark_as_read(db_session, stale.id, test_user.id)
        db_session.commit()

        assert cleanup_old(db_session) == 1
        db_session.commit()
        db_session.refresh(test_user)
        db_session.refresh(other_user)
        assert test_user.notification_ids == [str(kept.id)]
        assert other_user.notification_ids == [str(theirs.id)]

    def test_repeat_is_noop(self, db_session, test_user):
        assert cleanup_old(db_session) == 0
        assert cleanup_old(db_session) == 0

    def test_rejects_non_positive_retention(self, db_session):
        with pytest.raises(ValidationError):
            cleanup_old(db_session, retention_days=0)


class TestStats:
    def test_breakdowns(self, db_session, test_user, other_user):
        create_notification(db_session, test_user.id, "a", "m", type="birthday_wish", priority="low")
        create_notification(db_session, test_user.id, "b", "m")
        create_notification(db_session, other_user.id, "c", "m")
        db_session.commit()

        stats = get_notification_stats(db_session)
        assert stats["total"] == 3
        assert stats["unread"] == 3
        assert stats["by_type"] == {"birthday_wish": 1, "other": 2}
        assert stats["by_priority"] == {"low": 1, "medium": 2}
        assert stats["by_status"] == {"pending": 3}

        mine = get_notification_stats(db_session, recipient_id=test_user.id)
        assert mine["total"] == 2
