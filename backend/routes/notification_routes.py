from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.database import get_db
from backend.models.notification import Notification
from backend.models.user import User
from backend.routes.common import database_unavailable, page_count

router = APIRouter(tags=['notifications'])


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    category: str
    link: str | None = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPageResponse(BaseModel):
    data: list[NotificationResponse]
    unread_count: int
    page: int
    limit: int
    total: int
    pages: int


@router.get('', response_model=NotificationPageResponse)
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    unread_only: bool = Query(default=False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        query = db.query(Notification).filter(Notification.user_id == current_user.id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))

        total = query.count()
        unread_count = db.query(Notification).filter(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        ).count()
        notifications = query.order_by(
            Notification.created_at.desc(),
            Notification.id.desc(),
        ).offset((page - 1) * limit).limit(limit).all()

        return NotificationPageResponse(
            data=[NotificationResponse.model_validate(notification) for notification in notifications],
            unread_count=unread_count,
            page=page,
            limit=limit,
            total=total,
            pages=page_count(total, limit),
        )
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/read-all', status_code=status.HTTP_204_NO_CONTENT)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        db.query(Notification).filter(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        ).update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{notification_id}/read', response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == current_user.id,
        ).first()

        if not notification:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Notification not found.',
            )

        notification.is_read = True
        db.commit()
        db.refresh(notification)

        return notification
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
