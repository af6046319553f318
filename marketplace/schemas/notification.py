import datetime
import enum
import typing
import sqlalchemy
import sqlmodel
from typing import Optional as Opt
from ..utils.base import enum_column_values
from ..utils.datetime_ import get_datetime
from .user import UserID


NotificationID: typing.TypeAlias = int


class NotificationType(enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NotificationModel(sqlmodel.SQLModel, table=True):
    """Append-only message to a user.

    The read flag is the only thing that ever changes.
    """

    __tablename__ = 'notifications'  # type: ignore

    id: Opt[NotificationID] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    user_id: UserID = sqlmodel.Field(
        sa_column=sqlalchemy.Column(
            sqlalchemy.Integer,
            sqlalchemy.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, index=True,
        )
    )
    message: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=False)
    )
    type: NotificationType = sqlmodel.Field(
        default=NotificationType.INFO,
        sa_column=sqlalchemy.Column(
            sqlalchemy.Enum(NotificationType, name='notification_type', values_callable=enum_column_values),
            nullable=False, default=NotificationType.INFO,
        )
    )
    is_read: bool = sqlmodel.Field(default=False)
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )
