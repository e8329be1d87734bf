"""Tests for the denormalization audit."""

import pytest

from conftest import FlakyStore
from socialtree.consistency import (
    audit,
    check_comment_counts,
    check_connection_symmetry,
    check_group_index,
    check_tag_counts,
)
from socialtree.errors import WriteError
from socialtree.service import Repositories


class TestChecks:
    """Individual checks on hand-built trees."""

    def test_comment_counts(self):
        tree = {
            "posts": {"p1": {"comments": 2}, "p2": {"comments": 0}},
            "comments": {"p1": {"c1": {}, "c2": {}}, "p2": {"c1": {"content": "x"}}},
        }
        [violation] = check_comment_counts(tree)
        assert violation.path == "posts/p2"
        assert violation.detail == "counter=0 comments=1"

    def test_tag_counts(self):
        tree = {
            "posts": {"p1": {"tags": ["#a", "#b"]}, "p2": {"tags": ["#a"]}},
            "tags": {"a": {"count": 2}, "b": {"count": 3}, "c": {"count": 1}},
        }
        violations = check_tag_counts(tree)
        assert sorted(v.path for v in violations) == ["tags/b", "tags/c"]

    def test_connection_symmetry(self):
        tree = {"connections": {"u1": {"u2": {"connectedAt": 1}, "u3": {"connectedAt": 1}}, "u2": {"u1": {"connectedAt": 1}}}}
        [violation] = check_connection_symmetry(tree)
        assert violation.path == "connections/u1/u3"

    def test_group_index(self):
        tree = {
            "groups": {"g1": {"name": "A", "members": ["u1", "u2"], "createdBy": "u1"}},
            "users": {
                "u1": {"groups": {"g1": {"name": "A"}}},
                "u3": {"groups": {"g1": {"name": "A"}}},
            },
        }
        violations = check_group_index(tree)
        assert sorted(v.path for v in violations) == ["users/u2/groups/g1", "users/u3/groups/g1"]

    def test_numeric_keys_read_back_as_lists(self):
        tree = {
            "posts": {"p1": {"tags": ["#0"]}},
            "tags": [{"name": "#0", "count": 1}],
            "connections": {"0": {"u1": {"connectedAt": 1}}, "u1": [{"connectedAt": 1}]},
        }
        assert check_tag_counts(tree) == []
        assert check_connection_symmetry(tree) == []

        tree["tags"] = [{"name": "#0", "count": 4}]
        [violation] = check_tag_counts(tree)
        assert violation.path == "tags/0"

    def test_empty_tree(self):
        assert check_comment_counts({}) == []
        assert check_tag_counts({}) == []
        assert check_connection_symmetry({}) == []
        assert check_group_index({}) == []


class TestAudit:
    """Full audits over data written by the repositories."""

    @pytest.mark.asyncio
    async def test_clean_data(self, repos, store, author):
        post = await repos.posts.create_post("u1", "Hello", author, tags="design, dev")
        await repos.comments.add_comment(post.id, "u2", "Nice", author)
        await repos.graph.connect("u1", "u2")
        await repos.groups.create_group("u1", "Design", member_ids=["u2"])

        report = await audit(store)

        assert report.ok
        assert report.checked["posts"] == 1
        assert report.checked["groups"] == 1

    @pytest.mark.asyncio
    async def test_detects_partial_failures(self, author):
        store = FlakyStore()
        repos = Repositories(store, atomic_counters=False)
        post = await repos.posts.create_post("u1", "Hello", author)

        store.fail_writes_under(f"posts/{post.id}/comments", "connections/u2/u1", "users/u2/groups")
        with pytest.raises(WriteError):
            await repos.comments.add_comment(post.id, "u2", "Nice", author)
        with pytest.raises(WriteError):
            await repos.graph.connect("u1", "u2")
        await repos.groups.create_group("u1", "Design", member_ids=["u2"])
        store.heal()

        report = await audit(store)

        assert report.by_check() == {
            "comment_count": 1,
            "connection_symmetry": 1,
            "group_index": 1,
        }
