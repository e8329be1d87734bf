"""Unit tests for CLI commands."""

from unittest.mock import patch

import pytest
import typer
from typer.testing import CliRunner

from socialtree.cli import app
from socialtree.store import MemoryTreeStore

runner = CliRunner()


def seeded_store() -> MemoryTreeStore:
    return MemoryTreeStore(
        {
            "users": {
                "u1": {"displayName": "Ada", "connections": 1},
                "u2": {"displayName": "Bo", "connections": 1},
            },
            "posts": {
                "p1": {
                    "userId": "u1",
                    "content": "Hello world",
                    "author": {"id": "u1", "name": "Ada"},
                    "timestamp": 1700000000000,
                    "tags": ["#design"],
                    "likes": 2,
                    "comments": 1,
                },
            },
            "comments": {
                "p1": {"c1": {"userId": "u2", "content": "Nice", "author": {"id": "u2", "name": "Bo"}, "timestamp": 1700000001000}},
            },
            "tags": {"design": {"name": "#design", "count": 1}},
            "connections": {
                "u1": {"u2": {"connectedAt": 1700000000000}},
                "u2": {"u1": {"connectedAt": 1700000000000}},
            },
        }
    )


def broken_store() -> MemoryTreeStore:
    store = seeded_store()
    store._root["posts"]["p1"]["comments"] = 5
    store._root["connections"]["u2"].pop("u1")
    return store


class TestCLICommands:
    """Tests for CLI commands."""

    def test_cli_app_exists(self):
        """Test CLI app is defined."""
        assert app is not None
        assert isinstance(app, typer.Typer)

    def test_init_command(self, tmp_path):
        """Test init creates the SQLite file."""
        db_path = tmp_path / "nested" / "social.db"

        result = runner.invoke(app, ["init", "--database", str(db_path)])

        if result.exit_code != 0:
            print(f"stdout: {result.stdout}")
            if result.exception:
                print(f"exception: {result.exception}")

        assert result.exit_code == 0
        assert "Store created" in result.stdout
        assert db_path.exists()

    def test_init_command_existing_file(self, tmp_path):
        """Test init is harmless on an existing store."""
        db_path = tmp_path / "social.db"
        assert runner.invoke(app, ["init", "-d", str(db_path)]).exit_code == 0

        result = runner.invoke(app, ["init", "-d", str(db_path)])

        assert result.exit_code == 0

    def test_status_command(self):
        """Test status shows configuration and counts."""
        with patch("socialtree.cli.create_store", return_value=seeded_store()):
            result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Configuration" in result.stdout
        assert "testing" in result.stdout
        assert "Store Statistics" in result.stdout
        assert "Posts" in result.stdout

    def test_status_store_failure(self):
        """Test status exits non-zero when the store cannot be opened."""
        with patch("socialtree.cli.create_store", side_effect=RuntimeError("boom")):
            result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Status failed" in result.stdout

    def test_feed_command(self):
        """Test feed lists posts."""
        with patch("socialtree.cli.create_store", return_value=seeded_store()):
            result = runner.invoke(app, ["feed", "--limit", "5"])

        assert result.exit_code == 0
        assert "Ada" in result.stdout
        assert "#design" in result.stdout

    def test_feed_empty(self):
        """Test feed on an empty store."""
        with patch("socialtree.cli.create_store", return_value=MemoryTreeStore()):
            result = runner.invoke(app, ["feed"])

        assert result.exit_code == 0
        assert "No posts yet" in result.stdout

    def test_trending_command(self):
        """Test trending lists tags."""
        with patch("socialtree.cli.create_store", return_value=seeded_store()):
            result = runner.invoke(app, ["trending"])

        assert result.exit_code == 0
        assert "Trending Topics" in result.stdout
        assert "#design" in result.stdout

    def test_trending_empty(self):
        """Test trending on an empty store."""
        with patch("socialtree.cli.create_store", return_value=MemoryTreeStore()):
            result = runner.invoke(app, ["trending"])

        assert result.exit_code == 0
        assert "No tags yet" in result.stdout


class TestAuditCommand:
    """Tests for the audit command."""

    def test_audit_clean(self):
        """Test audit exits 0 on consistent data."""
        with patch("socialtree.cli.create_store", return_value=seeded_store()):
            result = runner.invoke(app, ["audit"])

        assert result.exit_code == 0
        assert "Checked" in result.stdout
        assert "No inconsistencies found" in result.stdout

    def test_audit_reports_violations(self):
        """Test audit exits 1 and lists violations."""
        with patch("socialtree.cli.create_store", return_value=broken_store()):
            result = runner.invoke(app, ["audit"])

        assert result.exit_code == 1
        assert "Inconsistencies" in result.stdout
        assert "2 inconsistencies found" in result.stdout

    def test_audit_store_failure(self):
        """Test audit exits 1 when the store fails."""
        with patch("socialtree.cli.create_store", side_effect=RuntimeError("boom")):
            result = runner.invoke(app, ["audit"])

        assert result.exit_code == 1
        assert "Audit failed" in result.stdout


class TestCLIHelp:
    """Tests for CLI help text."""

    def test_main_help(self):
        """Test main help lists commands."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "status", "feed", "trending", "audit"):
            assert command in result.stdout

    @pytest.mark.parametrize("command", ["init", "feed", "audit"])
    def test_command_help(self, command):
        """Test each command has help."""
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0
