from __future__ import annotations

import pytest
import sqlalchemy.exc
import sqlmodel

from marketplace.business import extension as extension_module
from marketplace.business.auth import Actor
from marketplace.business.draft import DraftManager
from marketplace.business.extension import ExtensionManager
from marketplace.business.notification import NotificationManager
from marketplace.engine import SessionLocal
from marketplace.errors import Conflict, Forbidden, NotFound, StoreFailure, ValidationFailure
from marketplace.schemas.extension import (
    ExtensionStatus,
    ExtensionMetadataDraftModel,
    ExtensionModel,
    ExtensionVersionModel,
    MetadataEdit,
    Visibility,
)
from marketplace.schemas.notification import NotificationType


def _extension(extension_id: int) -> ExtensionModel:
    with SessionLocal() as db:
        return db.get(ExtensionModel, extension_id)


def _version(version_id: int) -> ExtensionVersionModel:
    with SessionLocal() as db:
        return db.get(ExtensionVersionModel, version_id)


def test_submit_creates_pending_extension_and_version(submit, owner):
    extension, version = submit()

    assert extension.status == ExtensionStatus.PENDING
    assert extension.owner_id == owner.id
    assert version.extension_id == extension.id
    assert version.version == "1.0.0"
    assert version.status == ExtensionStatus.PENDING


def test_submit_rejects_taken_identifier(submit):
    submit("cool-mod")
    with pytest.raises(Conflict):
        submit("cool-mod", name="Another")


def test_submit_rejects_malformed_identifier(submit):
    with pytest.raises(ValidationFailure):
        submit("has spaces!")


def test_reject_notifies_owner_with_reason(submit, admin, owner):
    extension, _ = submit("e123")

    ExtensionManager.set_extension_status(
        extension.id, admin, ExtensionStatus.REJECTED, reason="Banner too large"
    )

    assert _extension(extension.id).status == ExtensionStatus.REJECTED
    notifications = NotificationManager.list_for(owner)
    assert len(notifications) == 1
    assert notifications[0].user_id == owner.id
    assert notifications[0].type == NotificationType.ERROR
    assert "Banner too large" in notifications[0].message


def test_action_required_notifies_with_warning(submit, admin, owner):
    extension, _ = submit()

    ExtensionManager.set_extension_status(
        extension.id, admin, ExtensionStatus.ACTION_REQUIRED, reason="Add a changelog"
    )

    (notification,) = NotificationManager.list_for(owner)
    assert notification.type == NotificationType.WARNING
    assert "Add a changelog" in notification.message


def test_approve_cascades_to_pending_versions_only(submit, admin, owner):
    extension, first = submit()
    second = ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")
    ExtensionManager.set_version_status(second.id, admin, ExtensionStatus.REJECTED)

    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)

    assert _extension(extension.id).status == ExtensionStatus.APPROVED
    assert _version(first.id).status == ExtensionStatus.APPROVED
    assert _version(second.id).status == ExtensionStatus.REJECTED


def test_cannot_set_status_back_to_pending(submit, admin):
    extension, _ = submit()
    with pytest.raises(ValidationFailure):
        ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.PENDING)


def test_moderation_requires_admin(submit, owner):
    extension, _ = submit()
    with pytest.raises(Forbidden):
        ExtensionManager.set_extension_status(extension.id, owner, ExtensionStatus.APPROVED)


def test_missing_extension_is_not_found(admin):
    with pytest.raises(NotFound):
        ExtensionManager.set_extension_status(404, admin, ExtensionStatus.APPROVED)


def test_version_upload_resets_action_required(submit, admin, owner):
    extension, _ = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.ACTION_REQUIRED)

    ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")
    assert _extension(extension.id).status == ExtensionStatus.PENDING

    ExtensionManager.add_version(extension.id, owner, "1.2.0", "/uploads/1.2.0.zip")
    assert _extension(extension.id).status == ExtensionStatus.PENDING


def test_version_upload_keeps_approved_status(submit, admin, owner):
    extension, _ = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)

    version = ExtensionManager.add_version(extension.id, owner, "2.0.0", "/uploads/2.0.0.zip")

    assert _extension(extension.id).status == ExtensionStatus.APPROVED
    assert version.status == ExtensionStatus.PENDING
    assert [v.version.id for v in ExtensionManager.list_pending_versions(admin)] == [version.id]


def test_duplicate_version_is_conflict(submit, owner):
    extension, _ = submit()
    with pytest.raises(Conflict):
        ExtensionManager.add_version(extension.id, owner, "1.0.0", "/uploads/again.zip")


def test_only_owner_may_upload(submit, make_user):
    extension, _ = submit()
    stranger = Actor.of(make_user("stranger"))
    with pytest.raises(Forbidden):
        ExtensionManager.add_version(extension.id, stranger, "9.9.9", "/uploads/x.zip")


def test_delete_extension_removes_versions_and_drafts(submit, admin, owner):
    extension, _ = submit()
    ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)
    DraftManager.request_edit(extension.id, owner, MetadataEdit(name="Renamed"))

    ExtensionManager.delete_extension(extension.id, owner)

    with SessionLocal() as db:
        assert db.get(ExtensionModel, extension.id) is None
        assert db.exec(
            sqlmodel.select(ExtensionVersionModel)
            .where(ExtensionVersionModel.extension_id == extension.id)
        ).all() == []
        assert db.exec(
            sqlmodel.select(ExtensionMetadataDraftModel)
            .where(ExtensionMetadataDraftModel.extension_id == extension.id)
        ).all() == []


def test_deleted_identifier_is_never_reused(submit, owner):
    extension, _ = submit("short-lived")
    ExtensionManager.delete_extension(extension.id, owner)

    with pytest.raises(Conflict):
        submit("short-lived")


def test_failed_step_rolls_back_the_decision(submit, admin, monkeypatch):
    extension, version = submit()

    def broken_notify(*args, **kwargs):
        raise sqlalchemy.exc.OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(extension_module.NotificationManager, "notify", broken_notify)

    with pytest.raises(StoreFailure):
        ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)

    assert _extension(extension.id).status == ExtensionStatus.PENDING
    assert _version(version.id).status == ExtensionStatus.PENDING


def test_record_download_counts_latest_approved_version(submit, admin, owner):
    extension, first = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)
    pending = ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")

    category, name = ExtensionManager.record_download(extension.id)

    assert (category, name) == ("extension", "Cool Mod")
    assert _extension(extension.id).downloads == 1
    assert _version(first.id).downloads == 1
    assert _version(pending.id).downloads == 0


def test_public_listing_hides_unapproved_and_unlisted(submit, admin):
    listed, _ = submit("listed", name="Listed Pack")
    hidden, _ = submit("hidden", name="Hidden Pack", visibility=Visibility.UNLISTED)
    submit("waiting", name="Waiting Pack")
    for extension in (listed, hidden):
        ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)

    public = ExtensionManager.list_public()

    assert [e.identifier for e in public] == ["listed"]
    assert [e.identifier for e in ExtensionManager.list_public(search="Listed")] == ["listed"]
    assert ExtensionManager.list_public(search="nothing like it") == ()
    # unlisted stays reachable by identifier
    assert ExtensionManager.get_detail("hidden").extension.id == hidden.id


def test_search_ignores_case(submit, admin):
    listed, _ = submit("listed", name="Listed Pack", description="Shaders for Caves")
    ExtensionManager.set_extension_status(listed.id, admin, ExtensionStatus.APPROVED)

    assert [e.identifier for e in ExtensionManager.list_public(search="listed pack")] == ["listed"]
    assert [e.identifier for e in ExtensionManager.list_public(search="CAVES")] == ["listed"]


def test_failed_delete_leaves_everything_in_place(submit, admin, owner, monkeypatch):
    extension, first = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)
    second = ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")
    outcome = DraftManager.request_edit(extension.id, owner, MetadataEdit(name="Renamed"))

    def broken_retire(**kwargs):
        raise sqlalchemy.exc.OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(extension_module, "RetiredIdentifierModel", broken_retire)

    with pytest.raises(StoreFailure):
        ExtensionManager.delete_extension(extension.id, owner)

    assert _extension(extension.id) is not None
    assert _version(first.id) is not None
    assert _version(second.id) is not None
    with SessionLocal() as db:
        assert db.get(ExtensionMetadataDraftModel, outcome.draft.id) is not None


def test_version_decision_is_admin_only(submit, owner):
    _, version = submit()

    with pytest.raises(Forbidden):
        ExtensionManager.set_version_status(version.id, owner, ExtensionStatus.APPROVED)
    assert _version(version.id).status == ExtensionStatus.PENDING


def test_version_decision_leaves_parent_alone(submit, admin):
    extension, version = submit()

    ExtensionManager.set_version_status(version.id, admin, ExtensionStatus.APPROVED)

    assert _version(version.id).status == ExtensionStatus.APPROVED
    assert _extension(extension.id).status == ExtensionStatus.PENDING
    with pytest.raises(ValidationFailure):
        ExtensionManager.set_version_status(version.id, admin, ExtensionStatus.PENDING)


def test_version_decision_notifies_owner(submit, admin, owner):
    extension, _ = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)
    good = ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")
    bad = ExtensionManager.add_version(extension.id, owner, "1.2.0", "/uploads/1.2.0.zip")

    ExtensionManager.set_version_status(good.id, admin, ExtensionStatus.APPROVED)
    ExtensionManager.set_version_status(bad.id, admin, ExtensionStatus.REJECTED)

    by_type = {
        n.type: n.message for n in NotificationManager.list_for(owner)
        if "Version" in n.message
    }
    assert "1.1.0" in by_type[NotificationType.SUCCESS]
    assert "1.2.0" in by_type[NotificationType.ERROR]


def test_pending_versions_name_extension_and_developer(submit, admin, owner):
    extension, _ = submit()
    ExtensionManager.set_extension_status(extension.id, admin, ExtensionStatus.APPROVED)
    ExtensionManager.add_version(extension.id, owner, "1.1.0", "/uploads/1.1.0.zip")

    (listing,) = ExtensionManager.list_pending_versions(admin)
    assert listing.version.version == "1.1.0"
    assert listing.extension_name == "Cool Mod"
    assert listing.developer == "owner"
    assert [e.developer for e in ExtensionManager.list_all(admin)] == ["owner"]
