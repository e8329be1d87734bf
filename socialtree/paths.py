"""Key-path layout of the social tree.

All repositories build paths through these helpers so the layout lives in
one place::

    users/{uid}                              UserProfile
    users/{uid}/groups/{gid}                 {name}  (membership index)
    users/{uid}/notifications/{nid}          Notification
    posts/{pid}                              Post
    comments/{pid}/{cid}                     Comment
    tags/{tag}                               Tag
    connections/{uid}/{other}                {connectedAt}
    groups/{gid}                             Group
    groups/{gid}/notifications/{nid}         Notification (with readBy)
    shares/{sid}                             ShareRecord

IDs passed to the path builders must be non-blank and free of ``/``;
anything else raises :class:`~socialtree.errors.ValidationError` before the
store is touched.
"""

from socialtree.errors import ValidationError

USERS = "users"
POSTS = "posts"
COMMENTS = "comments"
TAGS = "tags"
CONNECTIONS = "connections"
GROUPS = "groups"
SHARES = "shares"


def split(path: str) -> list[str]:
    """Split a path into its non-empty segments.

    Example:
        >>> split("/users//u1/")
        ['users', 'u1']
    """
    return [segment for segment in path.split("/") if segment]


def normalize(path: str) -> str:
    """Strip redundant slashes. The root is the empty string."""
    return "/".join(split(path))


def join(*parts: str) -> str:
    """Join path segments, ignoring empty ones.

    Example:
        >>> join("users", "u1", "notifications/n1")
        'users/u1/notifications/n1'
    """
    return normalize("/".join(parts))


def parent(path: str) -> str:
    segments = split(path)
    return "/".join(segments[:-1])


def last(path: str) -> str:
    segments = split(path)
    return segments[-1] if segments else ""


def related(a: str, b: str) -> bool:
    """True when one path is an ancestor of (or equal to) the other."""
    sa, sb = split(a), split(b)
    n = min(len(sa), len(sb))
    return sa[:n] == sb[:n]


def key(value: str, kind: str = "id") -> str:
    """Check one caller-supplied key before it becomes a path segment.

    Raises:
        ValidationError: If the key is blank or contains ``/``

    Example:
        >>> key("u1")
        'u1'
    """
    if not isinstance(value, str) or not value.strip() or "/" in value:
        raise ValidationError(f"Invalid {kind}: {value!r}")
    return value


def user(uid: str) -> str:
    return join(USERS, key(uid, "user id"))


def user_groups(uid: str) -> str:
    return join(user(uid), "groups")


def user_group(uid: str, gid: str) -> str:
    return join(user_groups(uid), key(gid, "group id"))


def user_notifications(uid: str) -> str:
    return join(user(uid), "notifications")


def user_notification(uid: str, nid: str) -> str:
    return join(user_notifications(uid), key(nid, "notification id"))


def post(pid: str) -> str:
    return join(POSTS, key(pid, "post id"))


def post_comments(pid: str) -> str:
    return join(COMMENTS, key(pid, "post id"))


def tag(name: str) -> str:
    return join(TAGS, key(name, "tag"))


def user_connections(uid: str) -> str:
    return join(CONNECTIONS, key(uid, "user id"))


def connection(uid: str, other: str) -> str:
    return join(user_connections(uid), key(other, "user id"))


def group(gid: str) -> str:
    return join(GROUPS, key(gid, "group id"))


def group_notifications(gid: str) -> str:
    return join(group(gid), "notifications")


def group_notification(gid: str, nid: str) -> str:
    return join(group_notifications(gid), key(nid, "notification id"))


def share(sid: str) -> str:
    return join(SHARES, key(sid, "share id"))
