"""Submission, versioning and moderation of extensions.

Every change to an extension's `status` goes through here.
"""

__all__ = [
    "EXTENSION_ROUTER",
    "ADMIN_EXTENSION_ROUTER",
    "ExtensionManager",
    "reset_action_required",
]

import logging
import re
import typing
import fastapi
import pydantic
import sqlmodel
from typing import Optional as Opt
from ..engine import transaction, SessionLocal
from ..errors import Conflict, NotFound, ValidationFailure
from ..schemas.extension import (
    ExtensionID, VersionID, ExtensionStatus, Visibility,
    ExtensionModel, ExtensionVersionModel, ExtensionMetadataDraftModel,
    RetiredIdentifierModel, ExtensionSubmission, VersionSubmission, ExtensionDetail,
    ExtensionListing, VersionListing,
)
from ..schemas.notification import NotificationType
from ..schemas.user import UserModel
from ..utils.datetime_ import get_datetime
from .auth import Actor, get_actor
from .notification import NotificationManager


logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
NO_REASON = "No reason specified"


def reset_action_required(db: sqlmodel.Session, extension: ExtensionModel) -> bool:
    """Send an extension waiting on its developer back to the review queue.

    Any fresh submission (new version, metadata edit) counts as the answer
    to "action required". Does nothing in any other status.
    """
    if extension.status != ExtensionStatus.ACTION_REQUIRED:
        return False
    extension.status = ExtensionStatus.PENDING
    extension.updated_at = get_datetime()
    db.add(extension)
    logger.info("Extension %s back to pending after developer update.", extension.id)
    return True


class ExtensionManager:

    MODERATED_STATUSES = (
        ExtensionStatus.APPROVED, ExtensionStatus.REJECTED, ExtensionStatus.ACTION_REQUIRED,
    )
    VERSION_DECISIONS = (ExtensionStatus.APPROVED, ExtensionStatus.REJECTED)

    @classmethod
    def get(cls, db: sqlmodel.Session, extension_id: ExtensionID) -> ExtensionModel:
        extension = db.get(ExtensionModel, extension_id)
        if extension is None:
            raise NotFound(f"Extension {extension_id} not found.")
        return extension

    @classmethod
    def _get_version(cls, db: sqlmodel.Session, version_id: VersionID) -> ExtensionVersionModel:
        version = db.get(ExtensionVersionModel, version_id)
        if version is None:
            raise NotFound(f"Version {version_id} not found.")
        return version

    @classmethod
    def submit(
        cls, actor: Actor, submission: ExtensionSubmission
    ) -> tuple[ExtensionModel, ExtensionVersionModel]:
        """Create an extension and its first version, both pending review.

        :raise Conflict: The identifier is taken, now or in the past.
        """
        if not IDENTIFIER_PATTERN.match(submission.identifier):
            raise ValidationFailure(
                "Identifier may only contain letters, digits, '.', '_' and '-'."
            )

        with transaction() as db:
            taken = db.exec(
                sqlmodel.select(ExtensionModel.id)
                .where(ExtensionModel.identifier == submission.identifier)
            ).first() is not None or db.get(RetiredIdentifierModel, submission.identifier) is not None
            if taken:
                raise Conflict(f"Identifier {submission.identifier!r} already exists.")

            extension = ExtensionModel(
                owner_id=actor.id,
                name=submission.name,
                identifier=submission.identifier,
                summary=submission.summary,
                description=submission.description,
                type=submission.type,
                visibility=submission.visibility,
                banner_path=submission.banner_path,
            )
            db.add(extension)
            db.flush()

            version = ExtensionVersionModel(
                extension_id=typing.cast(ExtensionID, extension.id),
                version=submission.version,
                changelog="Initial upload",
                file_path=submission.file_path,
            )
            db.add(version)
            db.flush()

        logger.info(
            "Extension %s (%s) submitted by user %s.",
            extension.id, extension.identifier, actor.id,
        )
        return extension, version

    @classmethod
    def add_version(
        cls, extension_id: ExtensionID, actor: Actor,
        version: str, file_path: str, changelog: Opt[str] = None,
    ) -> ExtensionVersionModel:
        """Upload a new version, pending review.

        :raise Conflict: This version string already exists for the extension.
        """
        with transaction() as db:
            extension = cls.get(db, extension_id)
            actor.require_owner_or_admin(extension.owner_id)

            duplicate = db.exec(
                sqlmodel.select(ExtensionVersionModel.id).where(
                    ExtensionVersionModel.extension_id == extension_id,
                    ExtensionVersionModel.version == version,
                )
            ).first()
            if duplicate is not None:
                raise Conflict(f"Version {version} already exists.")

            version_model = ExtensionVersionModel(
                extension_id=extension_id,
                version=version,
                changelog=changelog,
                file_path=file_path,
            )
            db.add(version_model)
            reset_action_required(db, extension)
            db.flush()

        logger.info("Version %s uploaded for extension %s.", version, extension_id)
        return version_model

    @classmethod
    def set_extension_status(
        cls, extension_id: ExtensionID, actor: Actor,
        status: ExtensionStatus, reason: Opt[str] = None,
    ) -> ExtensionModel:
        """Record a moderation decision and tell the owner about it.

        Approval also approves every version still pending; versions already
        decided keep their status. An approved extension may be sent back to
        action_required or rejected later on.
        """
        actor.require_admin()
        if status not in cls.MODERATED_STATUSES:
            raise ValidationFailure(f"Cannot set extension status to {status.value}.")

        with transaction() as db:
            extension = cls.get(db, extension_id)
            extension.status = status
            extension.updated_at = get_datetime()
            db.add(extension)

            if status == ExtensionStatus.APPROVED:
                pending_versions = db.exec(
                    sqlmodel.select(ExtensionVersionModel).where(
                        ExtensionVersionModel.extension_id == extension_id,
                        ExtensionVersionModel.status == ExtensionStatus.PENDING,
                    )
                ).all()
                for version in pending_versions:
                    version.status = ExtensionStatus.APPROVED
                    db.add(version)
                message = f'Your extension "{extension.name}" has been approved!'
                type_ = NotificationType.SUCCESS
            elif status == ExtensionStatus.REJECTED:
                message = f'Your extension "{extension.name}" was rejected. Reason: {reason or NO_REASON}'
                type_ = NotificationType.ERROR
            else:
                message = (
                    f'Action required for your extension "{extension.name}". '
                    f'Please check the feedback: {reason or NO_REASON}'
                )
                type_ = NotificationType.WARNING

            NotificationManager.notify(db, extension.owner_id, message, type_)

        logger.info(
            "Extension %s marked %s by admin %s.", extension_id, status.value, actor.id
        )
        return extension

    @classmethod
    def set_version_status(
        cls, version_id: VersionID, actor: Actor, status: ExtensionStatus,
    ) -> ExtensionVersionModel:
        """Decide one version; the parent extension is not touched."""
        actor.require_admin()
        if status not in cls.VERSION_DECISIONS:
            raise ValidationFailure(f"Cannot set version status to {status.value}.")

        with transaction() as db:
            version = cls._get_version(db, version_id)
            extension = cls.get(db, version.extension_id)
            version.status = status
            db.add(version)

            if status == ExtensionStatus.APPROVED:
                NotificationManager.notify(
                    db, extension.owner_id,
                    f'Version {version.version} of "{extension.name}" has been approved!',
                    NotificationType.SUCCESS,
                )
            else:
                NotificationManager.notify(
                    db, extension.owner_id,
                    f'Version {version.version} of "{extension.name}" was rejected.',
                    NotificationType.ERROR,
                )

        logger.info("Version %s marked %s by admin %s.", version_id, status.value, actor.id)
        return version

    @classmethod
    def delete_extension(cls, extension_id: ExtensionID, actor: Actor) -> None:
        """Delete an extension with all its versions and drafts.

        All or nothing; the identifier is retired for good.
        """
        with transaction() as db:
            extension = cls.get(db, extension_id)
            actor.require_owner_or_admin(extension.owner_id)

            for version in db.exec(
                sqlmodel.select(ExtensionVersionModel)
                .where(ExtensionVersionModel.extension_id == extension_id)
            ).all():
                db.delete(version)
            for draft in db.exec(
                sqlmodel.select(ExtensionMetadataDraftModel)
                .where(ExtensionMetadataDraftModel.extension_id == extension_id)
            ).all():
                db.delete(draft)
            db.flush()

            db.add(RetiredIdentifierModel(identifier=extension.identifier))
            db.delete(extension)

        logger.info("Extension %s deleted by user %s.", extension_id, actor.id)

    @classmethod
    def delete_version(cls, version_id: VersionID, actor: Actor) -> None:
        with transaction() as db:
            version = cls._get_version(db, version_id)
            extension = cls.get(db, version.extension_id)
            actor.require_owner_or_admin(extension.owner_id)
            db.delete(version)

        logger.info("Version %s deleted by user %s.", version_id, actor.id)

    @classmethod
    def record_download(cls, extension_id: ExtensionID) -> tuple[str, str]:
        """Count a download of the newest approved version.

        :return: The telemetry category and name for the download.
        """
        with transaction() as db:
            extension = cls.get(db, extension_id)
            extension.downloads += 1
            db.add(extension)

            latest = db.exec(
                sqlmodel.select(ExtensionVersionModel)
                .where(
                    ExtensionVersionModel.extension_id == extension_id,
                    ExtensionVersionModel.status == ExtensionStatus.APPROVED,
                )
                .order_by(
                    sqlmodel.desc(ExtensionVersionModel.created_at),
                    sqlmodel.desc(ExtensionVersionModel.id),
                )
                .limit(1)
            ).first()
            if latest is not None:
                latest.downloads += 1
                db.add(latest)

        return extension.type.value, extension.name

    @classmethod
    def list_public(cls, search: Opt[str] = None) -> tuple[ExtensionModel, ...]:
        """Approved, publicly listed extensions."""
        with SessionLocal() as db:
            statement = sqlmodel.select(ExtensionModel).where(
                ExtensionModel.status == ExtensionStatus.APPROVED,
                ExtensionModel.visibility == Visibility.PUBLIC,
            )
            if search:
                pattern = f"%{search}%"
                statement = statement.where(sqlmodel.or_(
                    sqlmodel.col(ExtensionModel.name).ilike(pattern),
                    sqlmodel.col(ExtensionModel.description).ilike(pattern),
                ))
            return tuple(db.exec(
                statement.order_by(sqlmodel.desc(ExtensionModel.downloads))
            ).all())

    @classmethod
    def get_detail(cls, identifier: str) -> ExtensionDetail:
        with SessionLocal() as db:
            row = db.exec(
                sqlmodel.select(ExtensionModel, UserModel)
                .join(UserModel, sqlmodel.col(UserModel.id) == ExtensionModel.owner_id, isouter=True)
                .where(
                    ExtensionModel.identifier == identifier,
                    ExtensionModel.status == ExtensionStatus.APPROVED,
                )
            ).first()
            if row is None:
                raise NotFound(f"Extension {identifier!r} not found.")
            extension, owner = row

            versions = db.exec(
                sqlmodel.select(ExtensionVersionModel)
                .where(
                    ExtensionVersionModel.extension_id == extension.id,
                    ExtensionVersionModel.status == ExtensionStatus.APPROVED,
                )
                .order_by(
                    sqlmodel.desc(ExtensionVersionModel.created_at),
                    sqlmodel.desc(ExtensionVersionModel.id),
                )
            ).all()

            return ExtensionDetail(
                extension=extension,
                developer=owner.username if owner else None,
                developer_avatar=owner.avatar if owner else None,
                versions=list(versions),
            )

    @classmethod
    def list_versions(cls, extension_id: ExtensionID, actor: Actor) -> tuple[ExtensionVersionModel, ...]:
        with SessionLocal() as db:
            extension = cls.get(db, extension_id)
            actor.require_owner_or_admin(extension.owner_id)
            return tuple(db.exec(
                sqlmodel.select(ExtensionVersionModel)
                .where(ExtensionVersionModel.extension_id == extension_id)
                .order_by(
                    sqlmodel.desc(ExtensionVersionModel.created_at),
                    sqlmodel.desc(ExtensionVersionModel.id),
                )
            ).all())

    @classmethod
    def list_owned(cls, actor: Actor) -> tuple[ExtensionModel, ...]:
        with SessionLocal() as db:
            return tuple(db.exec(
                sqlmodel.select(ExtensionModel)
                .where(ExtensionModel.owner_id == actor.id)
                .order_by(sqlmodel.desc(ExtensionModel.created_at))
            ).all())

    @classmethod
    def list_all(cls, actor: Actor, status: Opt[ExtensionStatus] = None) -> tuple[ExtensionListing, ...]:
        """Admin view, optionally narrowed to one status."""
        actor.require_admin()
        with SessionLocal() as db:
            statement = (
                sqlmodel.select(ExtensionModel, UserModel.username)
                .join(UserModel, sqlmodel.col(UserModel.id) == ExtensionModel.owner_id, isouter=True)
            )
            if status is not None:
                statement = statement.where(ExtensionModel.status == status)
            rows = db.exec(
                statement.order_by(sqlmodel.desc(ExtensionModel.created_at))
            ).all()
            return tuple(
                ExtensionListing(extension=extension, developer=developer)
                for extension, developer in rows
            )

    @classmethod
    def list_pending_versions(cls, actor: Actor) -> tuple[VersionListing, ...]:
        """Pending versions of already approved extensions.

        Versions of a pending extension are decided along with it.
        """
        actor.require_admin()
        with SessionLocal() as db:
            rows = db.exec(
                sqlmodel.select(ExtensionVersionModel, ExtensionModel.name, UserModel.username)
                .join(ExtensionModel, sqlmodel.col(ExtensionModel.id) == ExtensionVersionModel.extension_id)
                .join(UserModel, sqlmodel.col(UserModel.id) == ExtensionModel.owner_id, isouter=True)
                .where(
                    ExtensionVersionModel.status == ExtensionStatus.PENDING,
                    ExtensionModel.status == ExtensionStatus.APPROVED,
                )
                .order_by(ExtensionVersionModel.created_at)
            ).all()
            return tuple(
                VersionListing(version=version, extension_name=name, developer=developer)
                for version, name, developer in rows
            )


class StatusDecision(pydantic.BaseModel):
    status: ExtensionStatus
    reason: Opt[str] = None


EXTENSION_ROUTER = fastapi.APIRouter(prefix="/api/extensions", tags=["extensions"])


@EXTENSION_ROUTER.get("")
def list_extensions(search: Opt[str] = None) -> list[ExtensionModel]:
    return list(ExtensionManager.list_public(search=search))


@EXTENSION_ROUTER.get("/i/{identifier}")
def get_extension_detail(identifier: str) -> ExtensionDetail:
    return ExtensionManager.get_detail(identifier)


@EXTENSION_ROUTER.post("", status_code=fastapi.status.HTTP_201_CREATED)
def submit_extension(
    body: ExtensionSubmission,
    actor: Actor = fastapi.Depends(get_actor),
):
    extension, version = ExtensionManager.submit(actor, body)
    return {"success": True, "extension": extension, "version": version}


@EXTENSION_ROUTER.post("/{extension_id}/versions", status_code=fastapi.status.HTTP_201_CREATED)
def upload_version(
    extension_id: int,
    body: VersionSubmission,
    actor: Actor = fastapi.Depends(get_actor),
) -> ExtensionVersionModel:
    return ExtensionManager.add_version(
        extension_id, actor,
        version=body.version, file_path=body.file_path, changelog=body.changelog,
    )


@EXTENSION_ROUTER.get("/{extension_id}/versions")
def list_versions(
    extension_id: int,
    actor: Actor = fastapi.Depends(get_actor),
) -> list[ExtensionVersionModel]:
    return list(ExtensionManager.list_versions(extension_id, actor))


@EXTENSION_ROUTER.delete("/versions/{version_id}")
def delete_version(version_id: int, actor: Actor = fastapi.Depends(get_actor)):
    ExtensionManager.delete_version(version_id, actor)
    return {"success": True}


@EXTENSION_ROUTER.delete("/{extension_id}")
def delete_extension(extension_id: int, actor: Actor = fastapi.Depends(get_actor)):
    ExtensionManager.delete_extension(extension_id, actor)
    return {"success": True, "message": "Extension deleted successfully"}


ADMIN_EXTENSION_ROUTER = fastapi.APIRouter(prefix="/api/admin", tags=["admin"])


@ADMIN_EXTENSION_ROUTER.get("/extensions")
def list_all_extensions(
    status: Opt[ExtensionStatus] = None,
    actor: Actor = fastapi.Depends(get_actor),
) -> list[ExtensionListing]:
    return list(ExtensionManager.list_all(actor, status=status))


@ADMIN_EXTENSION_ROUTER.get("/extensions/pending")
def list_pending_extensions(actor: Actor = fastapi.Depends(get_actor)) -> list[ExtensionListing]:
    return list(ExtensionManager.list_all(actor, status=ExtensionStatus.PENDING))


@ADMIN_EXTENSION_ROUTER.post("/extensions/{extension_id}/status")
def decide_extension(
    extension_id: int,
    body: StatusDecision,
    actor: Actor = fastapi.Depends(get_actor),
) -> ExtensionModel:
    return ExtensionManager.set_extension_status(
        extension_id, actor, body.status, reason=body.reason
    )


@ADMIN_EXTENSION_ROUTER.get("/versions/pending")
def list_pending_versions(actor: Actor = fastapi.Depends(get_actor)) -> list[VersionListing]:
    return list(ExtensionManager.list_pending_versions(actor))


@ADMIN_EXTENSION_ROUTER.post("/versions/{version_id}/status")
def decide_version(
    version_id: int,
    body: StatusDecision,
    actor: Actor = fastapi.Depends(get_actor),
) -> ExtensionVersionModel:
    return ExtensionManager.set_version_status(version_id, actor, body.status)
