__all__ = [
    "UserModel",
    "ExtensionModel",
    "ExtensionVersionModel",
    "ExtensionMetadataDraftModel",
    "RetiredIdentifierModel",
    "NotificationModel",
]

from .user import UserModel
from .extension import (
    ExtensionModel, ExtensionVersionModel,
    ExtensionMetadataDraftModel, RetiredIdentifierModel,
)
from .notification import NotificationModel
