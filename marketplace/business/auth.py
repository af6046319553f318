"""Caller identity.

Sign-in happens upstream; the gateway forwards the account id in the
``X-User-Id`` header and everything here trusts it.
"""

__all__ = [
    "Actor",
    "get_actor",
]

import typing
import fastapi
import pydantic
import sqlmodel
from typing import Optional as Opt
from ..engine import transaction
from ..errors import Forbidden, Unauthorized
from ..schemas.user import UserID, UserModel, UserRole
from ..utils.base import enum_serializer


class Actor(pydantic.BaseModel):
    """Who is calling: `{id, role}`."""

    model_config = pydantic.ConfigDict(frozen=True)

    id: UserID
    role: typing.Annotated[UserRole, enum_serializer] = UserRole.USER

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def require_admin(self) -> None:
        if not self.is_admin:
            raise Forbidden("Admin role required.")

    def require_owner_or_admin(self, owner_id: UserID) -> None:
        if owner_id != self.id and not self.is_admin:
            raise Forbidden("You do not own this extension.")

    @classmethod
    def of(cls, user: UserModel) -> "Actor":
        return cls(id=typing.cast(UserID, user.id), role=user.role)


def _resolve(user_id: UserID) -> Actor:
    with transaction() as db:
        user = db.exec(
            sqlmodel.select(UserModel).where(UserModel.id == user_id)
        ).one_or_none()
        if user is None:
            raise Unauthorized("Unknown user.")
        if user.ban_is_active():
            raise Forbidden(user.ban_reason or "You are banned from this platform.")
        if user.banned:
            # ban ran out
            user.banned = False
            user.ban_reason = None
            user.ban_expires = None
            db.add(user)
        return Actor.of(user)


def get_actor(
    x_user_id: Opt[int] = fastapi.Header(default=None),
) -> Actor:
    """A fastapi dependency resolving the authenticated caller."""
    if x_user_id is None:
        raise Unauthorized("Sign in required.")
    return _resolve(x_user_id)
