import datetime
import enum
import typing
import sqlalchemy
import sqlmodel
from typing import Optional as Opt
from ..utils.base import enum_column_values
from ..utils.datetime_ import get_datetime
from .user import UserID


ExtensionID: typing.TypeAlias = int
VersionID: typing.TypeAlias = int
DraftID: typing.TypeAlias = int


class ExtensionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTION_REQUIRED = "action_required"


class DraftStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ExtensionType(enum.Enum):
    EXTENSION = "extension"
    THEME = "theme"


class Visibility(enum.Enum):
    PUBLIC = "public"
    UNLISTED = "unlisted"
    """Approved but left out of listings, reachable by identifier."""


def _enum_column(enum_cls: type[enum.Enum], name: str, default: enum.Enum) -> sqlalchemy.Column:
    return sqlalchemy.Column(
        sqlalchemy.Enum(enum_cls, name=name, values_callable=enum_column_values),
        nullable=False, default=default,
    )


class ExtensionModel(sqlmodel.SQLModel, table=True):
    """A package listed in the marketplace.

    `identifier` is globally unique and never changes once submitted.
    `status` is only moved by moderation.
    """

    __tablename__ = 'extensions'  # type: ignore

    id: Opt[ExtensionID] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    owner_id: UserID = sqlmodel.Field(
        sa_column=sqlalchemy.Column(
            sqlalchemy.Integer,
            sqlalchemy.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, index=True,
        )
    )
    name: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(100), nullable=False)
    )
    identifier: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(100), unique=True, nullable=False)
    )
    summary: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    description: Opt[str] = sqlmodel.Field(
        default=None, sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=True)
    )
    type: ExtensionType = sqlmodel.Field(
        default=ExtensionType.EXTENSION,
        sa_column=_enum_column(ExtensionType, 'extension_type', ExtensionType.EXTENSION)
    )
    visibility: Visibility = sqlmodel.Field(
        default=Visibility.PUBLIC,
        sa_column=_enum_column(Visibility, 'extension_visibility', Visibility.PUBLIC)
    )
    banner_path: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    status: ExtensionStatus = sqlmodel.Field(
        default=ExtensionStatus.PENDING,
        sa_column=_enum_column(ExtensionStatus, 'extension_status', ExtensionStatus.PENDING)
    )
    downloads: int = sqlmodel.Field(default=0)
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )
    updated_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(
            sqlalchemy.TIMESTAMP(timezone=True), onupdate=get_datetime
        )
    )


class ExtensionVersionModel(sqlmodel.SQLModel, table=True):
    __tablename__ = 'extension_versions'  # type: ignore
    __table_args__ = (
        sqlalchemy.UniqueConstraint("extension_id", "version", name="uq_extension_version"),
    )

    id: Opt[VersionID] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    extension_id: ExtensionID = sqlmodel.Field(
        sa_column=sqlalchemy.Column(
            sqlalchemy.Integer,
            sqlalchemy.ForeignKey("extensions.id", ondelete="CASCADE"),
            nullable=False, index=True,
        )
    )
    version: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(20), nullable=False)
    )
    changelog: Opt[str] = sqlmodel.Field(
        default=None, sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=True)
    )
    file_path: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(255), nullable=False)
    )
    """Opaque reference handed over by the file store."""
    status: ExtensionStatus = sqlmodel.Field(
        default=ExtensionStatus.PENDING,
        sa_column=_enum_column(ExtensionStatus, 'version_status', ExtensionStatus.PENDING)
    )
    downloads: int = sqlmodel.Field(default=0)
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )


class ExtensionMetadataDraftModel(sqlmodel.SQLModel, table=True):
    """A metadata edit parked until an admin reviews it.

    None fields are left alone on approval.
    """

    __tablename__ = 'extension_metadata_drafts'  # type: ignore

    id: Opt[DraftID] = sqlmodel.Field(
        sa_column=sqlmodel.Column(sqlmodel.Integer, primary_key=True, autoincrement=True),
        default=None
    )
    extension_id: ExtensionID = sqlmodel.Field(
        sa_column=sqlalchemy.Column(
            sqlalchemy.Integer,
            sqlalchemy.ForeignKey("extensions.id", ondelete="CASCADE"),
            nullable=False, index=True,
        )
    )
    name: Opt[str] = sqlmodel.Field(default=None, max_length=100)
    summary: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    description: Opt[str] = sqlmodel.Field(
        default=None, sa_column=sqlalchemy.Column(sqlalchemy.Text, nullable=True)
    )
    banner_path: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    status: DraftStatus = sqlmodel.Field(
        default=DraftStatus.PENDING,
        sa_column=_enum_column(DraftStatus, 'draft_status', DraftStatus.PENDING)
    )
    created_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )
    reviewed_at: Opt[datetime.datetime] = sqlmodel.Field(
        default=None,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True), nullable=True)
    )

    DRAFTABLE_FIELDS: typing.ClassVar[tuple[str, ...]] = (
        "name", "summary", "description", "banner_path",
    )

    def proposed_fields(self) -> dict[str, str]:
        return {
            field: getattr(self, field)
            for field in self.DRAFTABLE_FIELDS
            if getattr(self, field) is not None
        }


class RetiredIdentifierModel(sqlmodel.SQLModel, table=True):
    """Identifiers of deleted extensions, kept so they are never reused."""

    __tablename__ = 'retired_identifiers'  # type: ignore

    identifier: str = sqlmodel.Field(
        sa_column=sqlalchemy.Column(sqlalchemy.String(100), primary_key=True)
    )
    retired_at: datetime.datetime = sqlmodel.Field(
        default_factory=get_datetime,
        sa_column=sqlalchemy.Column(sqlalchemy.TIMESTAMP(timezone=True))
    )


class ExtensionSubmission(sqlmodel.SQLModel):
    """Body of a first upload."""

    name: str = sqlmodel.Field(min_length=1, max_length=100)
    identifier: str = sqlmodel.Field(min_length=1, max_length=100)
    summary: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    description: Opt[str] = None
    type: ExtensionType = ExtensionType.EXTENSION
    visibility: Visibility = Visibility.PUBLIC
    banner_path: Opt[str] = None
    version: str = sqlmodel.Field(default="1.0.0", min_length=1, max_length=20)
    file_path: str = sqlmodel.Field(min_length=1)


class VersionSubmission(sqlmodel.SQLModel):
    version: str = sqlmodel.Field(min_length=1, max_length=20)
    changelog: Opt[str] = None
    file_path: str = sqlmodel.Field(min_length=1)


class MetadataEdit(sqlmodel.SQLModel):
    """Proposed metadata; `type` and `visibility` only apply to admin edits."""

    name: Opt[str] = sqlmodel.Field(default=None, max_length=100)
    summary: Opt[str] = sqlmodel.Field(default=None, max_length=255)
    description: Opt[str] = None
    banner_path: Opt[str] = None
    type: Opt[ExtensionType] = None
    visibility: Opt[Visibility] = None


class ExtensionDetail(sqlmodel.SQLModel):
    extension: ExtensionModel
    developer: Opt[str] = None
    developer_avatar: Opt[str] = None
    versions: list[ExtensionVersionModel] = []


class ExtensionListing(sqlmodel.SQLModel):
    """Admin queue row: the extension and who uploaded it."""

    extension: ExtensionModel
    developer: Opt[str] = None


class VersionListing(sqlmodel.SQLModel):
    version: ExtensionVersionModel
    extension_name: str
    developer: Opt[str] = None


class DraftListing(sqlmodel.SQLModel):
    """A parked edit next to the name it would replace."""

    draft: ExtensionMetadataDraftModel
    original_name: str
    developer: Opt[str] = None
