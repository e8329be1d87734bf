"""Exception hierarchy for SocialTree.

Every failure a caller can act on maps to one of these classes. Backend
exceptions are chained with ``raise ... from exc`` so the original cause
stays visible in tracebacks and logs.

Example:
    >>> from socialtree.errors import NotFoundError
    >>> try:
    ...     await posts.get_post("missing")
    ... except NotFoundError as exc:
    ...     print(exc.path)
    posts/missing
"""


class SocialTreeError(Exception):
    """Base class for all SocialTree errors."""


class StoreError(SocialTreeError):
    """A store operation failed (network, permission, backend error)."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class WriteError(StoreError):
    """A store write was rejected or failed. Earlier writes of the same
    action are not rolled back."""


class TransientStoreError(StoreError):
    """A store call failed in a way that is worth retrying."""


class NotFoundError(SocialTreeError):
    """The addressed record does not exist."""

    def __init__(self, path: str, message: str | None = None):
        super().__init__(message or f"Not found: {path}")
        self.path = path


class ValidationError(SocialTreeError, ValueError):
    """Input rejected before any store call was made."""


class AuthError(SocialTreeError):
    """Identity provider rejected the request or no user is signed in."""


class UploadError(SocialTreeError):
    """Blob upload failed."""


class TransientUploadError(UploadError):
    """Blob upload failed with a retryable status or network error."""


__all__ = [
    "SocialTreeError",
    "StoreError",
    "WriteError",
    "TransientStoreError",
    "NotFoundError",
    "ValidationError",
    "AuthError",
    "UploadError",
    "TransientUploadError",
]
