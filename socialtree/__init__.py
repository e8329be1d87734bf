"""SocialTree: social feed and notification core over a hierarchical store.

Posts, comments, connections, groups and notifications are kept in a
schemaless key-path tree shared by many concurrent writers. Denormalized
counters and indexes are maintained best-effort; :mod:`socialtree.consistency`
reports where they drifted.

Example:
    >>> from socialtree import SocialService, MemoryTreeStore
    >>> service = SocialService(store=MemoryTreeStore())
"""

__version__ = "0.1.0"

from socialtree.config import Settings, settings
from socialtree.errors import (
    AuthError,
    NotFoundError,
    SocialTreeError,
    StoreError,
    UploadError,
    ValidationError,
    WriteError,
)
from socialtree.models import (
    Comment,
    Group,
    Notification,
    NotificationType,
    Post,
    Tag,
    UserProfile,
)
from socialtree.service import Repositories, SocialService
from socialtree.store import MemoryTreeStore, SQLiteTreeStore, create_store

__all__ = [
    "__version__",
    "Settings",
    "settings",
    "SocialService",
    "Repositories",
    "MemoryTreeStore",
    "SQLiteTreeStore",
    "create_store",
    "SocialTreeError",
    "StoreError",
    "WriteError",
    "NotFoundError",
    "ValidationError",
    "AuthError",
    "UploadError",
    "Comment",
    "Group",
    "Notification",
    "NotificationType",
    "Post",
    "Tag",
    "UserProfile",
]
