"""Metadata edits and their review.

Admins edit live records directly. Owners park a draft that an admin
approves or rejects later; the live record stays as it is meanwhile.
"""

__all__ = [
    "DRAFT_ROUTER",
    "ADMIN_DRAFT_ROUTER",
    "DraftManager",
    "DraftDecision",
]

import enum
import logging
import typing
import fastapi
import pydantic
import sqlmodel
from typing import Optional as Opt
from ..engine import transaction, SessionLocal
from ..errors import Conflict, NotFound, ValidationFailure
from ..schemas.extension import (
    ExtensionID, DraftID, DraftStatus,
    ExtensionModel, ExtensionMetadataDraftModel, MetadataEdit, DraftListing,
)
from ..schemas.notification import NotificationType
from ..schemas.user import UserModel
from ..utils.datetime_ import get_datetime
from .auth import Actor, get_actor
from .extension import ExtensionManager, reset_action_required, NO_REASON
from .notification import NotificationManager


logger = logging.getLogger(__name__)


class DraftDecision(enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class EditOutcome(pydantic.BaseModel):
    extension: ExtensionModel
    draft: Opt[ExtensionMetadataDraftModel] = None
    """Set when the edit waits for review."""


class DraftManager:

    @classmethod
    def request_edit(
        cls, extension_id: ExtensionID, actor: Actor, edit: MetadataEdit,
    ) -> EditOutcome:
        """Apply or park a metadata edit.

        Either way an extension in action_required goes back to pending.

        :raise ValidationFailure: The edit carries no field at all.
        """
        fields = edit.model_dump(exclude_none=True)
        with transaction() as db:
            extension = ExtensionManager.get(db, extension_id)
            actor.require_owner_or_admin(extension.owner_id)

            if actor.is_admin:
                if not fields:
                    raise ValidationFailure("Nothing to update.")
                for field, value in fields.items():
                    setattr(extension, field, value)
                extension.updated_at = get_datetime()
                db.add(extension)
                draft = None
            else:
                proposed = {
                    field: value for field, value in fields.items()
                    if field in ExtensionMetadataDraftModel.DRAFTABLE_FIELDS
                }
                if not proposed:
                    raise ValidationFailure("Nothing to submit for review.")
                draft = ExtensionMetadataDraftModel(extension_id=extension_id, **proposed)
                db.add(draft)

            reset_action_required(db, extension)
            db.flush()

        if draft is None:
            logger.info("Extension %s edited directly by admin %s.", extension_id, actor.id)
        else:
            logger.info("Draft %s submitted for extension %s.", draft.id, extension_id)
        return EditOutcome(extension=extension, draft=draft)

    @classmethod
    def review_draft(
        cls, draft_id: DraftID, actor: Actor,
        decision: DraftDecision, reason: Opt[str] = None,
    ) -> ExtensionMetadataDraftModel:
        """Approve or reject a pending draft, once.

        Approval patches the extension with the draft's non-null fields.
        Drafts touching the same field land in the order they are reviewed.

        :raise Conflict: The draft was already reviewed.
        """
        actor.require_admin()
        with transaction() as db:
            draft = db.get(ExtensionMetadataDraftModel, draft_id)
            if draft is None:
                raise NotFound(f"Draft {draft_id} not found.")
            if draft.status != DraftStatus.PENDING:
                raise Conflict(f"Draft {draft_id} was already {draft.status.value}.")
            extension = ExtensionManager.get(db, draft.extension_id)

            if decision == DraftDecision.APPROVE:
                for field, value in draft.proposed_fields().items():
                    setattr(extension, field, value)
                extension.updated_at = get_datetime()
                db.add(extension)
                draft.status = DraftStatus.APPROVED
                NotificationManager.notify(
                    db, extension.owner_id,
                    f'Your changes to "{extension.name}" have been approved!',
                    NotificationType.SUCCESS,
                )
            else:
                draft.status = DraftStatus.REJECTED
                NotificationManager.notify(
                    db, extension.owner_id,
                    f'Your changes to "{extension.name}" were rejected. Reason: {reason or NO_REASON}',
                    NotificationType.ERROR,
                )
            draft.reviewed_at = get_datetime()
            db.add(draft)

        logger.info("Draft %s %s by admin %s.", draft_id, draft.status.value, actor.id)
        return draft

    @classmethod
    def list_pending(cls, actor: Actor) -> tuple[DraftListing, ...]:
        actor.require_admin()
        with SessionLocal() as db:
            rows = db.exec(
                sqlmodel.select(ExtensionMetadataDraftModel, ExtensionModel.name, UserModel.username)
                .join(ExtensionModel, sqlmodel.col(ExtensionModel.id) == ExtensionMetadataDraftModel.extension_id)
                .join(UserModel, sqlmodel.col(UserModel.id) == ExtensionModel.owner_id, isouter=True)
                .where(ExtensionMetadataDraftModel.status == DraftStatus.PENDING)
                .order_by(ExtensionMetadataDraftModel.created_at, ExtensionMetadataDraftModel.id)
            ).all()
            return tuple(
                DraftListing(draft=draft, original_name=name, developer=developer)
                for draft, name, developer in rows
            )


class ReviewBody(pydantic.BaseModel):
    decision: DraftDecision
    reason: Opt[str] = None


DRAFT_ROUTER = fastapi.APIRouter(prefix="/api/extensions", tags=["extensions"])


@DRAFT_ROUTER.post("/{extension_id}/metadata")
def edit_metadata(
    extension_id: int,
    body: MetadataEdit,
    actor: Actor = fastapi.Depends(get_actor),
):
    outcome = DraftManager.request_edit(extension_id, actor, body)
    if outcome.draft is None:
        return {"success": True, "message": "Updated directly (Admin)", "extension": outcome.extension}
    return {
        "success": True,
        "message": "Metadata draft submitted for review",
        "draft": outcome.draft,
    }


ADMIN_DRAFT_ROUTER = fastapi.APIRouter(prefix="/api/admin/drafts", tags=["admin"])


@ADMIN_DRAFT_ROUTER.get("/pending")
def list_pending_drafts(actor: Actor = fastapi.Depends(get_actor)) -> list[DraftListing]:
    return list(DraftManager.list_pending(actor))


@ADMIN_DRAFT_ROUTER.post("/{draft_id}/review")
def review_draft(
    draft_id: int,
    body: ReviewBody,
    actor: Actor = fastapi.Depends(get_actor),
) -> ExtensionMetadataDraftModel:
    return DraftManager.review_draft(
        typing.cast(DraftID, draft_id), actor, body.decision, reason=body.reason
    )
