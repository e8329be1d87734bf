"""Firebase Realtime Database store backend.

The Admin SDK is blocking, so every call runs in a thread pool and is
awaited from the event loop. Reads and plain writes that fail with a
transient SDK error (unavailable, deadline exceeded) are retried with
exponential backoff. Transactions are retried by the SDK itself.

Subscriptions use ``Reference.listen``. The SDK delivers partial events
from a background thread; each event triggers a fresh read of the watched
path and the full value is handed to the callback on the event loop.

Example:
    >>> store = FirebaseTreeStore.from_settings(settings)
    >>> await store.merge("posts/p1", {"likes": 3})
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import firebase_admin
from firebase_admin import credentials, db
from firebase_admin import exceptions as firebase_exceptions
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from socialtree.config import Settings
from socialtree.errors import TransientStoreError
from socialtree.logging import logger
from socialtree.store import Subscription, TreeStore, UpdateFunction, from_tree, to_tree

TRANSIENT_SDK_ERRORS = (
    firebase_exceptions.UnavailableError,
    firebase_exceptions.DeadlineExceededError,
)

_retry_logger = logging.getLogger(__name__)

transient_retry = retry(
    reraise=True,
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=8) + wait_random(0, 0.5),
    retry=retry_if_exception_type(TransientStoreError),
    before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
)


class FirebaseTreeStore(TreeStore):
    """Store backed by a Firebase Realtime Database instance.

    Args:
        app: Initialized ``firebase_admin`` app
        max_workers: Thread pool size for blocking SDK calls
    """

    backend = "firebase"

    def __init__(self, app: Any = None, max_workers: int = 4):
        super().__init__()
        self._app = app
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="firebase"
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "FirebaseTreeStore":
        """Initialize (or reuse) the default Firebase app from settings.

        Raises:
            ValueError: If no database URL is configured
        """
        if not config.firebase_database_url:
            raise ValueError("FIREBASE_DATABASE_URL must be set for the firebase backend")

        try:
            app = firebase_admin.get_app()
            logger.debug("Reusing initialized Firebase app")
        except ValueError:
            if config.firebase_credentials_path:
                cred = credentials.Certificate(str(config.firebase_credentials_path))
            else:
                cred = credentials.ApplicationDefault()
            app = firebase_admin.initialize_app(
                cred, {"databaseURL": config.firebase_database_url}
            )
            logger.info(f"✅ Firebase app initialized for {config.firebase_database_url}")

        return cls(app=app, max_workers=config.firebase_max_workers)

    # -------------------------------------------------------------------------
    # SDK plumbing
    # -------------------------------------------------------------------------

    def _ref(self, path: str) -> Any:
        return db.reference(f"/{path}", app=self._app)

    async def _run_sync(self, func, *args, **kwargs) -> Any:
        """Run a blocking SDK call in the thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    async def _call(self, func, *args) -> Any:
        try:
            return await self._run_sync(func, *args)
        except TRANSIENT_SDK_ERRORS as exc:
            raise TransientStoreError(f"Transient Firebase error: {exc}") from exc

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    @transient_retry
    async def _get(self, path: str) -> Any:
        value = await self._call(self._ref(path).get)
        return from_tree(to_tree(value))

    @transient_retry
    async def _set(self, path: str, value: Any) -> None:
        tree = to_tree(value)
        ref = self._ref(path)
        if tree is None:
            await self._call(ref.delete)
        else:
            await self._call(ref.set, tree)

    @transient_retry
    async def _merge(self, path: str, fields: dict[str, Any]) -> None:
        # None values are sent as-is; the server deletes those children.
        update = {key: to_tree(value) for key, value in fields.items()}
        await self._call(self._ref(path).update, update)

    async def _transaction(self, path: str, update: UpdateFunction) -> Any:
        def apply(current: Any) -> Any:
            return to_tree(update(from_tree(to_tree(current))))

        result = await self._call(self._ref(path).transaction, apply)
        return from_tree(to_tree(result))

    async def _start_subscription(self, subscription: Subscription) -> None:
        loop = asyncio.get_running_loop()
        ref = self._ref(subscription.path)

        def on_event(event: Any) -> None:
            # Runs on the SDK listener thread
            if event.event_type == "put" and event.path == "/":
                value = event.data
            else:
                try:
                    value = ref.get()
                except firebase_exceptions.FirebaseError as exc:
                    logger.warning(f"⚠️ Re-read of {subscription.path!r} failed: {exc}")
                    return
            loop.call_soon_threadsafe(
                self._deliver, subscription, from_tree(to_tree(value))
            )

        subscription.handle = await self._call(ref.listen, on_event)

    def _stop_subscription(self, subscription: Subscription) -> None:
        if subscription.handle is not None:
            subscription.handle.close()
            subscription.handle = None

    async def _close(self) -> None:
        self._executor.shutdown(wait=False)


__all__ = ["FirebaseTreeStore", "TRANSIENT_SDK_ERRORS"]
