"""Protocol interfaces for dependency injection.

The repositories only depend on these structural contracts, so any object
with matching methods (a test fake, a different backend, a hosted identity
service) can be plugged in without inheritance.

Example:
    >>> from socialtree.interfaces import IBlobStore
    >>> class NullBlobStore:
    ...     async def upload(self, data, suggested_name, on_progress=None):
    ...         return "about:blank"
    >>> isinstance(NullBlobStore(), IBlobStore)
    True
"""

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from socialtree.identity import IdentityClaims

ChangeCallback = Callable[[Any], Any]
"""Receives the full current value of a watched path."""

Unsubscribe = Callable[[], None]
"""Stops a subscription. Calling it twice is harmless."""

ProgressCallback = Callable[[float], None]
"""Receives upload progress as a percentage in [0, 100]."""


@runtime_checkable
class ITreeStore(Protocol):
    """Hierarchical key-path store.

    Implementations provide per-path last-write-wins semantics and make no
    promise of atomicity across paths.
    """

    async def get(self, path: str) -> Any:
        """Read the value at ``path``.

        Returns:
            JSON value, or None when absent

        Raises:
            StoreError: If the backend read fails
        """
        ...

    async def set(self, path: str, value: Any) -> None:
        """Overwrite the node at ``path`` (None deletes it).

        Raises:
            WriteError: If the backend rejects the write
        """
        ...

    async def merge(self, path: str, fields: dict[str, Any]) -> None:
        """Apply a multi-path field update relative to ``path``.

        Raises:
            WriteError: If the backend rejects the write
        """
        ...

    def append_child(self, path: str) -> str:
        """Return the path of a new, uniquely keyed child of ``path``."""
        ...

    async def transaction(self, path: str, update: Callable[[Any], Any]) -> Any:
        """Atomic read-modify-write of a single path."""
        ...

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        """Watch ``path`` for changes, delivering the current value first."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


@runtime_checkable
class IIdentityProvider(Protocol):
    """Issues user identities. Credentials never reach the store."""

    def current_user_id(self) -> str | None:
        """ID of the signed-in user, or None."""
        ...

    def current_user_claims(self) -> IdentityClaims | None:
        """Claims of the signed-in user, or None."""
        ...

    async def signup(self, email: str, password: str, display_name: str) -> str:
        """Create an account and sign it in.

        Returns:
            The new user ID

        Raises:
            AuthError: If the account cannot be created
        """
        ...

    async def login(self, email: str, password: str) -> str:
        """Sign in.

        Raises:
            AuthError: On bad credentials
        """
        ...

    async def logout(self) -> None:
        ...


@runtime_checkable
class IBlobStore(Protocol):
    """Stores uploaded images and returns a URL for them."""

    async def upload(
        self,
        data: bytes,
        suggested_name: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Upload ``data``.

        ``on_progress`` fires with non-decreasing percentages, ending at 100
        on success.

        Raises:
            UploadError: If the upload fails
        """
        ...


@runtime_checkable
class ILogger(Protocol):
    """Logging interface (satisfied by the Loguru logger)."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def info(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def success(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def error(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def exception(self, message: str, *args: Any, **kwargs: Any) -> None: ...

    def bind(self, **kwargs: Any) -> "ILogger": ...


# =============================================================================
# Type Aliases
# =============================================================================

TreeValue = Any
"""JSON-compatible value stored in the tree."""

FieldUpdates = dict[str, Any]
"""Relative path -> value mapping passed to ``merge``."""


__all__ = [
    "ITreeStore",
    "IIdentityProvider",
    "IBlobStore",
    "ILogger",
    "ChangeCallback",
    "Unsubscribe",
    "ProgressCallback",
    "TreeValue",
    "FieldUpdates",
]
