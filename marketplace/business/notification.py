__all__ = [
    "NOTIFICATION_ROUTER",
    "NotificationManager",
]

import fastapi
import sqlmodel
from ..engine import transaction, SessionLocal
from ..errors import NotFound
from ..schemas.notification import NotificationID, NotificationModel, NotificationType
from ..schemas.user import UserID
from .auth import Actor, get_actor


class NotificationManager:

    LIST_LIMIT = 50

    @classmethod
    def notify(
        cls, db: sqlmodel.Session, user_id: UserID, message: str,
        type_: NotificationType = NotificationType.INFO,
    ) -> NotificationModel:
        """Queue a notification in the caller's transaction."""
        notification = NotificationModel(user_id=user_id, message=message, type=type_)
        db.add(notification)
        return notification

    @classmethod
    def list_for(cls, actor: Actor) -> tuple[NotificationModel, ...]:
        with SessionLocal() as db:
            return tuple(db.exec(
                sqlmodel.select(NotificationModel)
                .where(NotificationModel.user_id == actor.id)
                .order_by(
                    sqlmodel.desc(NotificationModel.created_at),
                    sqlmodel.desc(NotificationModel.id),
                )
                .limit(cls.LIST_LIMIT)
            ).all())

    @classmethod
    def mark_read(cls, notification_id: NotificationID, actor: Actor) -> NotificationModel:
        with transaction() as db:
            notification = db.exec(
                sqlmodel.select(NotificationModel).where(
                    NotificationModel.id == notification_id,
                    NotificationModel.user_id == actor.id,
                )
            ).one_or_none()
            if notification is None:
                raise NotFound(f"Notification {notification_id} not found.")
            notification.is_read = True
            db.add(notification)
        return notification

    @classmethod
    def mark_all_read(cls, actor: Actor) -> int:
        with transaction() as db:
            unread = db.exec(
                sqlmodel.select(NotificationModel).where(
                    NotificationModel.user_id == actor.id,
                    NotificationModel.is_read == False,  # noqa: E712
                )
            ).all()
            for notification in unread:
                notification.is_read = True
                db.add(notification)
        return len(unread)


NOTIFICATION_ROUTER = fastapi.APIRouter(prefix="/api", tags=["notifications"])


@NOTIFICATION_ROUTER.get("/user/notifications")
def list_notifications(actor: Actor = fastapi.Depends(get_actor)) -> list[NotificationModel]:
    return list(NotificationManager.list_for(actor))


@NOTIFICATION_ROUTER.post("/notifications/{notification_id}/read")
def read_notification(notification_id: int, actor: Actor = fastapi.Depends(get_actor)):
    NotificationManager.mark_read(notification_id, actor)
    return {"success": True}


@NOTIFICATION_ROUTER.post("/notifications/read-all")
def read_all_notifications(actor: Actor = fastapi.Depends(get_actor)):
    return {"success": True, "updated": NotificationManager.mark_all_read(actor)}
