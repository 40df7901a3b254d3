from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from servicehub.api.deps import get_current_user_id, get_db, get_notification_service
from servicehub.schemas.common import ListResponse
from servicehub.schemas.notifications import (
    NotificationBulkAction,
    NotificationCreate,
    NotificationFromTemplate,
    NotificationRead,
    NotificationSettingsRead,
    NotificationSettingsUpdate,
    NotificationStats,
    ResendResult,
)
from servicehub.services.rate_limit import RateLimitExceeded

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=ListResponse[NotificationRead])
def list_notifications(
    type: str | None = None,
    priority: str | None = None,
    is_read: bool | None = None,
    created_after: datetime | None = None,
    created_before: datetime | None = None,
    search: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    items = service.get_notifications(
        db,
        user_id,
        notification_type=type,
        priority=priority,
        is_read=is_read,
        created_after=created_after,
        created_before=created_before,
        search=search,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )
    return {"items": items, "count": len(items), "limit": limit, "offset": offset}


@router.post("", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
def create_notification(
    payload: NotificationCreate,
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.create_notification(
        db,
        payload.user_id,
        payload.type,
        title=payload.title,
        message=payload.message,
        data=payload.data,
        priority=payload.priority,
        expires_at=payload.expires_at,
        action_url=payload.action_url,
        action_label=payload.action_label,
    )


@router.post("/from-template", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
def create_notification_from_template(
    payload: NotificationFromTemplate,
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.create_from_template(db, payload.user_id, payload.type, payload.data)


@router.get("/stats", response_model=NotificationStats)
def notification_stats(
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.get_notification_stats(db, user_id)


@router.get("/settings", response_model=NotificationSettingsRead)
def get_notification_settings(
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.get_settings(db, user_id)


@router.put("/settings", response_model=NotificationSettingsRead)
def update_notification_settings(
    payload: NotificationSettingsUpdate,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.update_settings(db, user_id, payload)


@router.post("/read-all")
def mark_all_notifications_read(
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return {"updated": service.mark_all_as_read(db, user_id)}


@router.post("/bulk")
def bulk_notification_action(
    payload: NotificationBulkAction,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    count = service.bulk_action(db, user_id, payload.notification_ids, payload.action)
    return {"action": payload.action, "count": count}


@router.post("/cleanup")
def cleanup_expired_notifications(db: Session = Depends(get_db), service=Depends(get_notification_service)):
    return {"deleted": service.cleanup_expired_notifications(db)}


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: str,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    return service.mark_as_read(db, notification_id, user_id)


@router.post("/{notification_id}/resend", response_model=ResendResult)
def resend_notification(
    notification_id: str,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    try:
        sent = service.resend(db, notification_id, user_id)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many resend requests. Please try again later.",
            headers={"Retry-After": str(exc.retry_after)},
        ) from exc
    return ResendResult(notification_id=notification_id, sent=sent)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_notification(
    notification_id: str,
    user_id=Depends(get_current_user_id),
    db: Session = Depends(get_db),
    service=Depends(get_notification_service),
):
    service.delete(db, notification_id, user_id)
