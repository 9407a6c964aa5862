"""Notification routes for the signed-in recipient."""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..database.base import get_db
from ..dependencies import get_current_user, require_admin
from ..users.models import User
from .schemas import NotificationPageResponse, NotificationResponse, NotificationStatsResponse
from .service import (
    get_notification_stats,
    get_unread_count,
    list_for_recipient,
    mark_all_as_read,
    mark_as_clicked,
    mark_as_read,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _dump(notification) -> dict:
    return NotificationResponse.model_validate(notification).model_dump(mode="json")


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: str | None = None,
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = list_for_recipient(db, user.id, page=page, limit=limit, type=type, unread_only=unread_only)
    page_model = NotificationPageResponse(
        notifications=[NotificationResponse.model_validate(n) for n in result["notifications"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
        total_pages=result["total_pages"],
    )
    return JSONResponse(page_model.model_dump(mode="json"))


@router.get("/unread-count")
def unread_count(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return JSONResponse({"unread": get_unread_count(db, user.id)})


@router.get("/stats")
def notification_stats(
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    stats = NotificationStatsResponse(**get_notification_stats(db))
    return JSONResponse(stats.model_dump())


@router.post("/read-all")
def read_all(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    modified = mark_all_as_read(db, user.id)
    db.commit()
    return JSONResponse({"ok": True, "modified": modified})


@router.post("/{notification_id}/read")
def read_one(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = mark_as_read(db, notification_id, user.id)
    db.commit()
    return JSONResponse({"ok": True, "notification": _dump(notification)})


@router.post("/{notification_id}/click")
def click_one(
    notification_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    notification = mark_as_clicked(db, notification_id, user.id)
    db.commit()
    return JSONResponse({"ok": True, "notification": _dump(notification)})
