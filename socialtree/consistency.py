"""Read-only audit of denormalized data.

Secondary writes (counters, index entries, mirrored edges) are best-effort,
so the tree can drift from what the primary records say. This module
measures that drift. It never writes; repair is left to the operator.

Checks:
    - comment_count: ``posts/{pid}.comments`` vs stored comments
    - tag_count: ``tags/{tag}.count`` vs posts carrying the tag
    - connection_symmetry: every ``connections/{a}/{b}`` has ``{b}/{a}``
    - group_index: group members vs ``users/{uid}/groups/{gid}`` entries

Example:
    >>> report = await audit(store)
    >>> for violation in report.violations:
    ...     print(violation.check, violation.path, violation.detail)
"""

from collections import Counter
from typing import Any

from pydantic import BaseModel, Field

from socialtree import paths
from socialtree.interfaces import ITreeStore
from socialtree.logging import logger
from socialtree.repository import as_count
from socialtree.utils import as_mapping, tag_key

CHECKS = ("comment_count", "tag_count", "connection_symmetry", "group_index")


class Violation(BaseModel):
    """One detected inconsistency."""

    check: str
    path: str
    detail: str


class ConsistencyReport(BaseModel):
    """Result of an audit run."""

    violations: list[Violation] = Field(default_factory=list)
    checked: dict[str, int] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.violations

    def by_check(self) -> dict[str, int]:
        return dict(Counter(v.check for v in self.violations))


def _children(data: Any) -> dict[str, Any]:
    return as_mapping(data)


def check_comment_counts(tree: dict[str, Any]) -> list[Violation]:
    posts = _children(tree.get(paths.POSTS))
    comments = _children(tree.get(paths.COMMENTS))
    violations = []
    for pid, post in posts.items():
        if not isinstance(post, dict):
            continue
        stored = len(_children(comments.get(pid)))
        counter = as_count(post.get("comments"))
        if counter != stored:
            violations.append(
                Violation(
                    check="comment_count",
                    path=paths.join(paths.POSTS, pid),
                    detail=f"counter={counter} comments={stored}",
                )
            )
    return violations


def check_tag_counts(tree: dict[str, Any]) -> list[Violation]:
    usage: Counter[str] = Counter()
    for post in _children(tree.get(paths.POSTS)).values():
        if not isinstance(post, dict):
            continue
        tags = post.get("tags") or []
        if isinstance(tags, dict):
            tags = list(tags.values())
        for tag in set(tags):
            usage[tag_key(str(tag))] += 1

    stored = _children(tree.get(paths.TAGS))
    violations = []
    for key in sorted(set(usage) | set(stored)):
        record = stored.get(key)
        count = as_count(record.get("count")) if isinstance(record, dict) else 0
        if count != usage[key]:
            violations.append(
                Violation(
                    check="tag_count",
                    path=paths.join(paths.TAGS, key),
                    detail=f"counter={count} posts={usage[key]}",
                )
            )
    return violations


def check_connection_symmetry(tree: dict[str, Any]) -> list[Violation]:
    edges = _children(tree.get(paths.CONNECTIONS))
    violations = []
    for a, targets in edges.items():
        for b in _children(targets):
            if a not in _children(edges.get(b)):
                violations.append(
                    Violation(
                        check="connection_symmetry",
                        path=paths.join(paths.CONNECTIONS, a, b),
                        detail=f"missing reverse edge {paths.join(paths.CONNECTIONS, b, a)}",
                    )
                )
    return violations


def check_group_index(tree: dict[str, Any]) -> list[Violation]:
    groups = _children(tree.get(paths.GROUPS))
    users = _children(tree.get(paths.USERS))
    violations = []

    for gid, group in groups.items():
        if not isinstance(group, dict):
            continue
        members = group.get("members") or []
        if isinstance(members, dict):
            members = list(members.values())
        for uid in members:
            index = _children(_children(users.get(uid)).get("groups"))
            if gid not in index:
                violations.append(
                    Violation(
                        check="group_index",
                        path=paths.join(paths.USERS, str(uid), "groups", gid),
                        detail=f"member of {gid} but not indexed",
                    )
                )

    for uid, user in users.items():
        for gid in _children(_children(user).get("groups")):
            group = groups.get(gid)
            members = (group.get("members") or []) if isinstance(group, dict) else []
            if isinstance(members, dict):
                members = list(members.values())
            if uid not in members:
                violations.append(
                    Violation(
                        check="group_index",
                        path=paths.join(paths.USERS, str(uid), "groups", gid),
                        detail=f"indexed but not a member of {gid}",
                    )
                )
    return violations


async def audit(store: ITreeStore) -> ConsistencyReport:
    """Run every check against one snapshot of the tree."""
    tree = _children(await store.get(""))
    report = ConsistencyReport(
        checked={
            "posts": len(_children(tree.get(paths.POSTS))),
            "tags": len(_children(tree.get(paths.TAGS))),
            "users": len(_children(tree.get(paths.USERS))),
            "groups": len(_children(tree.get(paths.GROUPS))),
        }
    )
    report.violations.extend(check_comment_counts(tree))
    report.violations.extend(check_tag_counts(tree))
    report.violations.extend(check_connection_symmetry(tree))
    report.violations.extend(check_group_index(tree))

    if report.violations:
        logger.warning(f"⚠️ Audit found {len(report.violations)} inconsistencies")
    else:
        logger.info("✅ Audit found no inconsistencies")
    return report


__all__ = [
    "Violation",
    "ConsistencyReport",
    "audit",
    "check_comment_counts",
    "check_tag_counts",
    "check_connection_symmetry",
    "check_group_index",
    "CHECKS",
]
