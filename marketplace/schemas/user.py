import datetime
import enum
import typing
import sqlalchemy
import sqlmodel
from typing import Optional as Opt
from ..utils.base import enum_column_values
from ..utils.datetime_ import get_datetime, as_aware


UserID: typing.TypeAlias = int


class UserRole(enum.Enum):
    USER = "user"
    ADMIN = "admin"


class UserModel(sqlmodel.SQLModel, table=True):
    """A marketplace account.

    Created on first sign-in through the identity provider.
    """

    __tablename__ = 'users'  # type: ignore

    id: Opt[UserID] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    external_id: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(255), unique=True, nullable=False)
    )
    """Account id at the identity provider."""
    username: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(50), unique=True, nullable=False)
    )
    email: Opt[str] = sqlmodel.Field(default=None, max_length=100)
    avatar: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    bio: Opt[str] = sqlmodel.Field(
        default=None, sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=True)
    )
    role: UserRole = sqlmodel.Field(
        default=UserRole.USER,
        sa_column=sqlalchemy.Column(
            sqlalchemy.Enum(UserRole, name='user_role', values_callable=enum_column_values),
            nullable=False, default=UserRole.USER,
        )
    )
    banned: bool = sqlmodel.Field(default=False)
    ban_reason: Opt[str] = sqlmodel.Field(
        default=None, sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=True)
    )
    ban_expires: Opt[datetime.datetime] = sqlmodel.Field(
        default=None,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True), nullable=True)
    )
    """None with `banned` set means a permanent ban."""
    warn_count: int = sqlmodel.Field(default=0)
    last_login: Opt[datetime.datetime] = sqlmodel.Field(
        default=None,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True), nullable=True)
    )
    ip_address: Opt[str] = sqlmodel.Field(default=None, max_length=45)
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def ban_is_active(self, now: Opt[datetime.datetime] = None) -> bool:
        if not self.banned:
            return False
        if self.ban_expires is None:
            return True
        return as_aware(self.ban_expires) > (now or get_datetime())


class PublicUser(sqlmodel.SQLModel):
    """What other users may see of an account."""

    id: UserID
    username: str
    avatar: Opt[str] = None
    bio: Opt[str] = None
    role: UserRole
    created_at: datetime.datetime
