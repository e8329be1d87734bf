"""Pytest configuration and shared fixtures for SocialTree tests."""

import asyncio
import os
import sys
import tempfile
from collections.abc import Callable
from typing import Any

# Settings are read at import time; point them at a scratch directory first.
os.environ["ENVIRONMENT"] = "testing"
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="socialtree-tests-"))

import pytest
from loguru import logger

from socialtree.identity import LocalIdentityProvider
from socialtree.models import AuthorSnapshot, NotificationSender
from socialtree.service import Repositories, SocialService
from socialtree.store import MemoryTreeStore, SQLiteTreeStore


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """Configure loguru for tests to avoid I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
    )
    yield
    logger.remove()


# =============================================================================
# Helpers
# =============================================================================


async def settle(rounds: int = 50) -> None:
    """Let scheduled subscriber callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FlakyStore(MemoryTreeStore):
    """Memory store that fails selected operations.

    ``fail_writes`` and ``fail_reads`` are predicates on the full path being
    written or read. A failing write raises inside the backend, so callers
    see it exactly like a rejected write from a remote store.
    """

    def __init__(self, initial: dict[str, Any] | None = None):
        super().__init__(initial)
        self.fail_writes: Callable[[str], bool] = lambda path: False
        self.fail_reads: Callable[[str], bool] = lambda path: False

    def fail_writes_under(self, *prefixes: str) -> None:
        self.fail_writes = lambda path: any(
            path == p or path.startswith(f"{p}/") for p in prefixes
        )

    def heal(self) -> None:
        self.fail_writes = lambda path: False
        self.fail_reads = lambda path: False

    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        for segments, _ in writes:
            path = "/".join(segments)
            if self.fail_writes(path):
                raise RuntimeError(f"permission denied at {path}")
        super()._apply(writes)

    async def _get(self, path: str) -> Any:
        if self.fail_reads(path):
            raise RuntimeError(f"connection lost reading {path}")
        return await super()._get(path)


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def store() -> MemoryTreeStore:
    """Empty in-memory store."""
    return MemoryTreeStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    """In-memory store with fault injection."""
    return FlakyStore()


@pytest.fixture
def sqlite_store(tmp_path):
    """SQLite store in a temporary file."""
    db = SQLiteTreeStore(tmp_path / "tree.db")
    db.initialize()
    yield db
    if db.engine is not None:
        db.engine.dispose()


# =============================================================================
# Repository and Service Fixtures
# =============================================================================


@pytest.fixture
def repos(store) -> Repositories:
    """Repositories over the memory store with read-modify-write counters."""
    return Repositories(store, atomic_counters=False)


@pytest.fixture
def flaky_repos(flaky_store) -> Repositories:
    """Repositories over the fault-injecting store."""
    return Repositories(flaky_store, atomic_counters=False)


@pytest.fixture
def service(store) -> SocialService:
    """Service over the memory store, inline images, no one signed in."""
    return SocialService(
        store=store,
        identity=LocalIdentityProvider(),
        blobs=None,
        atomic_counters=False,
    )


@pytest.fixture
def author() -> AuthorSnapshot:
    return AuthorSnapshot(id="u1", name="Ada", title="Engineer")


@pytest.fixture
def sender() -> NotificationSender:
    return NotificationSender(uid="u1", name="Ada")
