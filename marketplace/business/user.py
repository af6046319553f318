__all__ = [
    "USER_ROUTER",
    "ADMIN_USER_ROUTER",
    "UserManager",
    "AdminAction",
]

import datetime
import enum
import logging
import typing
import fastapi
import pydantic
import sqlmodel
from typing import Optional as Opt
from ..engine import transaction, SessionLocal
from ..errors import Conflict, Forbidden, NotFound, ValidationFailure
from ..schemas.extension import ExtensionModel, ExtensionStatus, Visibility
from ..schemas.notification import NotificationType
from ..schemas.user import UserID, UserModel, PublicUser
from ..utils.datetime_ import get_datetime
from .auth import Actor, get_actor
from .extension import ExtensionManager
from .notification import NotificationManager


logger = logging.getLogger(__name__)


class AdminAction(enum.Enum):
    WARN = "warn"
    BAN = "ban"
    UNBAN = "unban"


class UserManager:

    @classmethod
    def sign_in(
        cls, external_id: str, username: str,
        email: Opt[str] = None, avatar: Opt[str] = None, ip_address: Opt[str] = None,
    ) -> UserModel:
        """Get or create the account behind an identity-provider login.

        :raise Forbidden: The account is banned and the ban has not run out.
        """
        now = get_datetime()
        with transaction() as db:
            user = db.exec(
                sqlmodel.select(UserModel).where(UserModel.external_id == external_id)
            ).one_or_none()
            if user is None:
                user = UserModel(
                    external_id=external_id,
                    username=cls._free_username(db, username),
                    email=email,
                    avatar=avatar,
                )
                logger.info("New user %r signed up.", user.username)
            elif user.ban_is_active(now):
                raise Forbidden(user.ban_reason or "You are banned from this platform.")
            elif user.banned:
                user.banned = False
                user.ban_reason = None
                user.ban_expires = None

            user.last_login = now
            user.ip_address = ip_address
            db.add(user)
            db.flush()
        return user

    @classmethod
    def _free_username(cls, db: sqlmodel.Session, username: str) -> str:
        # display names from the provider are not unique
        candidate, suffix = username, 1
        while db.exec(
            sqlmodel.select(UserModel.id).where(UserModel.username == candidate)
        ).first() is not None:
            suffix += 1
            candidate = f"{username}{suffix}"
        return candidate

    @classmethod
    def get(cls, user_id: UserID) -> UserModel:
        with SessionLocal() as db:
            user = db.get(UserModel, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found.")
            return user

    @classmethod
    def update_profile(
        cls, actor: Actor,
        username: Opt[str] = None, bio: Opt[str] = None, avatar: Opt[str] = None,
    ) -> UserModel:
        """Edit one's own profile; None leaves a field unchanged.

        :raise Conflict: `username` belongs to someone else.
        """
        with transaction() as db:
            user = db.get(UserModel, actor.id)
            if user is None:
                raise NotFound(f"User {actor.id} not found.")
            if username is not None and username != user.username:
                taken = db.exec(
                    sqlmodel.select(UserModel.id).where(
                        UserModel.username == username, UserModel.id != actor.id
                    )
                ).first()
                if taken is not None:
                    raise Conflict("Username already taken.")
                user.username = username
            if bio is not None:
                user.bio = bio
            if avatar is not None:
                user.avatar = avatar
            db.add(user)
        return user

    @classmethod
    def get_public_profile(cls, username: str) -> tuple[PublicUser, tuple[ExtensionModel, ...]]:
        with SessionLocal() as db:
            user = db.exec(
                sqlmodel.select(UserModel).where(UserModel.username == username)
            ).one_or_none()
            if user is None:
                raise NotFound(f"User {username!r} not found.")
            extensions = db.exec(
                sqlmodel.select(ExtensionModel).where(
                    ExtensionModel.owner_id == user.id,
                    ExtensionModel.status == ExtensionStatus.APPROVED,
                    ExtensionModel.visibility == Visibility.PUBLIC,
                )
            ).all()
            return PublicUser.model_validate(user, from_attributes=True), tuple(extensions)

    @classmethod
    def list_all(cls, actor: Actor) -> tuple[UserModel, ...]:
        actor.require_admin()
        with SessionLocal() as db:
            return tuple(db.exec(
                sqlmodel.select(UserModel).order_by(sqlmodel.desc(UserModel.created_at))
            ).all())

    @classmethod
    def moderate(
        cls, user_id: UserID, actor: Actor, action: AdminAction,
        reason: Opt[str] = None, duration_hours: Opt[int] = None,
    ) -> UserModel:
        """Warn, ban or unban a user, and tell them.

        :param duration_hours: Ban length; None bans for good.
        """
        actor.require_admin()
        with transaction() as db:
            user = db.get(UserModel, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found.")

            if action == AdminAction.WARN:
                user.warn_count += 1
                message = f"You have received a warning. Reason: {reason or 'No reason specified'}"
                type_ = NotificationType.WARNING
            elif action == AdminAction.BAN:
                if duration_hours is not None and duration_hours <= 0:
                    raise ValidationFailure("Ban duration must be positive.")
                user.banned = True
                user.ban_reason = reason
                user.ban_expires = (
                    get_datetime() + datetime.timedelta(hours=duration_hours)
                    if duration_hours else None
                )
                message = f"You have been banned. Reason: {reason or 'No reason specified'}"
                type_ = NotificationType.ERROR
            elif action == AdminAction.UNBAN:
                user.banned = False
                user.ban_reason = None
                user.ban_expires = None
                message = "Your ban has been lifted."
                type_ = NotificationType.SUCCESS
            else:
                raise ValidationFailure(f"Invalid action {action!r}.")

            db.add(user)
            NotificationManager.notify(db, typing.cast(UserID, user.id), message, type_)

        logger.info("User %s: %s by admin %s.", user_id, action.value, actor.id)
        return user


class ProfileUpdate(pydantic.BaseModel):
    username: Opt[str] = pydantic.Field(default=None, min_length=1, max_length=50)
    bio: Opt[str] = None
    avatar: Opt[str] = None


class ModerationBody(pydantic.BaseModel):
    reason: Opt[str] = None
    duration: Opt[int] = None
    """Ban length in hours."""


USER_ROUTER = fastapi.APIRouter(prefix="/api", tags=["users"])


@USER_ROUTER.get("/user")
def get_me(actor: Actor = fastapi.Depends(get_actor)) -> UserModel:
    return UserManager.get(actor.id)


@USER_ROUTER.post("/user/profile")
def update_profile(body: ProfileUpdate, actor: Actor = fastapi.Depends(get_actor)) -> UserModel:
    return UserManager.update_profile(
        actor, username=body.username, bio=body.bio, avatar=body.avatar
    )


@USER_ROUTER.get("/user/extensions")
def list_my_extensions(actor: Actor = fastapi.Depends(get_actor)) -> list[ExtensionModel]:
    return list(ExtensionManager.list_owned(actor))


@USER_ROUTER.get("/users/p/{username}")
def get_profile(username: str):
    user, extensions = UserManager.get_public_profile(username)
    return {"user": user, "extensions": extensions}


ADMIN_USER_ROUTER = fastapi.APIRouter(prefix="/api/admin/users", tags=["admin"])


@ADMIN_USER_ROUTER.get("")
def list_users(actor: Actor = fastapi.Depends(get_actor)) -> list[UserModel]:
    return list(UserManager.list_all(actor))


@ADMIN_USER_ROUTER.post("/{user_id}/{action}")
def moderate_user(
    user_id: int,
    action: AdminAction,
    body: Opt[ModerationBody] = None,
    actor: Actor = fastapi.Depends(get_actor),
):
    body = body or ModerationBody()
    UserManager.moderate(
        user_id, actor, action, reason=body.reason, duration_hours=body.duration
    )
    return {"success": True}
