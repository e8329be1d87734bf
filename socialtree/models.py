"""Data models for SocialTree.

This module defines Pydantic models for the records kept in the
hierarchical store and the SQLModel table backing the SQLite store.

Models are organized into three sections:
1. Pydantic models for stored records
2. Result and summary models returned by repositories
3. SQLModel table for the SQLite store backend

Field names are camelCase because they are the stored field names; records
written by older clients (with extra or missing optional fields) still load.
"""

from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField, field_validator
from sqlmodel import Field, SQLModel

from socialtree.utils import as_mapping


def _ordered_values(v: Any) -> Any:
    """Lists can come back from the store as index-keyed dicts."""
    if isinstance(v, dict):
        return [v[k] for k in sorted(v, key=lambda k: (len(k), k))]
    return v


class PostType(StrEnum):
    """Known post types. The stored field is open; other strings load fine."""

    NONE = ""
    IDEA = "idea"
    RESOURCE = "resource"
    SKILL = "skill"


class NotificationType(StrEnum):
    """Known notification types."""

    SHARE = "share"
    COMMENT = "comment"
    LIKE = "like"
    MENTION = "mention"
    GROUP = "group"


# =============================================================================
# Section 1: Stored Records
# =============================================================================


class TreeModel(BaseModel):
    """Base for records stored under a generated or user key.

    The key is not stored inside the record itself; ``from_record`` puts it
    back into ``id`` on read and ``to_record`` leaves it out on write.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @classmethod
    def from_record(cls, key: str, data: dict[str, Any]):
        return cls.model_validate({**data, "id": key})

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


class AuthorSnapshot(BaseModel):
    """Copy of the author's profile taken when a post or comment is written.

    It is never refreshed, so later profile edits do not show up here.

    Attributes:
        id: Author user ID
        name: Display name at write time
        title: Profile title at write time
        photoURL: Avatar URL at write time
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str
    title: Optional[str] = None
    photoURL: Optional[str] = None


class UserProfile(BaseModel):
    """Public profile stored at ``users/{id}``.

    Attributes:
        id: User ID issued by the identity provider
        displayName: Display name
        email: Email address
        photoURL: Avatar URL from the identity provider
        profilePic: Avatar URL uploaded by the user
        title: Headline (e.g. "New Member")
        bio: Free text
        connections: Connection counter, maintained best-effort
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    displayName: str = "User"
    email: Optional[str] = None
    photoURL: Optional[str] = None
    profilePic: Optional[str] = None
    title: Optional[str] = None
    bio: Optional[str] = None
    connections: int = 0

    @property
    def avatar(self) -> Optional[str]:
        return self.profilePic or self.photoURL

    def snapshot(self) -> AuthorSnapshot:
        """Freeze the identity fields for embedding in posts and comments."""
        return AuthorSnapshot(
            id=self.id,
            name=self.displayName,
            title=self.title,
            photoURL=self.avatar,
        )

    def to_record(self) -> dict[str, Any]:
        # Profiles keep their id inside the record.
        return self.model_dump(exclude_none=True)


class Post(TreeModel):
    """Post stored at ``posts/{id}``.

    Attributes:
        id: Push key
        userId: Author user ID
        content: Trimmed, non-empty text
        author: Frozen author snapshot
        timestamp: Creation time in epoch milliseconds
        likes: Like counter
        comments: Comment counter
        shares: Share counter
        tags: ``#``-prefixed tags
        type: Open enumeration ("", "idea", "resource", "skill", ...)
        image: Image URL or inline data URL
        likedBy: Users that liked the post (advisory, not enforced)
    """

    id: str
    userId: str
    content: str
    author: AuthorSnapshot
    timestamp: int
    likes: int = 0
    comments: int = 0
    shares: int = 0
    tags: list[str] = PydanticField(default_factory=list)
    type: str = ""
    image: Optional[str] = None
    likedBy: dict[str, bool] = PydanticField(default_factory=dict)

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, v: Any) -> Any:
        return _ordered_values(v) or []

    @field_validator("likedBy", mode="before")
    @classmethod
    def _coerce_liked_by(cls, v: Any) -> Any:
        return as_mapping(v)


class Comment(TreeModel):
    """Comment stored at ``comments/{postId}/{id}``."""

    id: str
    postId: str
    userId: str
    content: str
    author: AuthorSnapshot
    timestamp: int


class Tag(BaseModel):
    """Tag usage counter stored at ``tags/{key}``.

    Attributes:
        name: Tag including the leading ``#``
        count: Number of posts that used it (best-effort)
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    count: int = 0


class ConnectionEdge(BaseModel):
    """One side of a connection, stored at ``connections/{a}/{b}``."""

    model_config = ConfigDict(extra="ignore")

    connectedAt: int


class Group(TreeModel):
    """Group stored at ``groups/{id}``.

    Attributes:
        id: Push key
        name: Group name
        type: Free-form group type
        createdBy: Creator user ID
        createdAt: Creation time in epoch milliseconds
        members: Member user IDs, creator first
    """

    id: str
    name: str
    type: str = ""
    createdBy: str
    createdAt: int
    members: list[str] = PydanticField(default_factory=list)

    @field_validator("members", mode="before")
    @classmethod
    def _coerce_members(cls, v: Any) -> Any:
        return _ordered_values(v) or []


class NotificationSender(BaseModel):
    """Who triggered a notification."""

    model_config = ConfigDict(extra="ignore")

    uid: str
    name: str
    profilePic: Optional[str] = None


class Notification(TreeModel):
    """Notification addressed to a user or to a group.

    Personal notifications carry ``read``; group notifications carry a
    per-reader ``readBy`` map. Both only ever move from unread to read.

    Attributes:
        id: Push key
        type: Open enumeration (share, comment, like, mention, group, ...)
        from_: Sender (stored as ``from``)
        message: Human-readable text
        postId: Related post, if any
        groupId: Group the notification was addressed to, if any
        groupName: Group name at send time, if any
        read: Read flag for personal notifications
        readBy: Per-reader flags for group notifications
        timestamp: Creation time in epoch milliseconds
        groupScoped: Read from (or written to) a group inbox; not stored
    """

    id: str
    type: str
    from_: NotificationSender = PydanticField(alias="from")
    message: str = ""
    postId: Optional[str] = None
    groupId: Optional[str] = None
    groupName: Optional[str] = None
    read: bool = False
    readBy: dict[str, bool] = PydanticField(default_factory=dict)
    timestamp: int
    groupScoped: bool = PydanticField(default=False, exclude=True)

    @field_validator("readBy", mode="before")
    @classmethod
    def _coerce_read_by(cls, v: Any) -> Any:
        return as_mapping(v)

    def is_read_by(self, user_id: str) -> bool:
        return self.read or bool(self.readBy.get(user_id))

    def to_group_record(self) -> dict[str, Any]:
        record = self.to_record()
        record.pop("read", None)
        return record


class ShareRecord(TreeModel):
    """Audit entry stored at ``shares/{id}``."""

    id: str
    postId: str
    sharedBy: str
    sharedWith: list[str] = PydanticField(default_factory=list)
    message: str = ""
    timestamp: int

    @field_validator("sharedWith", mode="before")
    @classmethod
    def _coerce_shared_with(cls, v: Any) -> Any:
        return _ordered_values(v) or []


# =============================================================================
# Section 2: Result and Summary Models
# =============================================================================


class UserSummary(BaseModel):
    """Compact profile view used for connection lists and suggestions."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    title: Optional[str] = None
    profilePic: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: UserProfile) -> "UserSummary":
        return cls(
            id=profile.id,
            name=profile.displayName,
            title=profile.title,
            profilePic=profile.avatar,
        )


class GroupSummary(BaseModel):
    """Entry of a user's group membership index."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str


class MarkAllReadResult(BaseModel):
    """Outcome of marking a batch of notifications as read.

    Attributes:
        marked: Notification IDs now read
        failed: Notification IDs whose batch failed, mapped to the reason
    """

    marked: list[str] = PydanticField(default_factory=list)
    failed: dict[str, str] = PydanticField(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


# =============================================================================
# Section 3: SQLModel Table for the SQLite Store
# =============================================================================


class NodeRow(SQLModel, table=True):
    """One leaf value of the tree.

    Attributes:
        path: Full slash-separated path of the leaf (primary key)
        value: JSON-encoded scalar
    """

    __tablename__ = "nodes"

    path: str = Field(primary_key=True)
    value: str
