"""Hierarchical key-path store adapters.

The store is a tree of JSON values addressed by slash-separated paths. It
offers per-path last-write-wins semantics and no cross-path transactions:
every repository write is one of ``set`` (overwrite), ``merge`` (field-level
multi-path update) or, for hardened counters, ``transaction``.

Value semantics follow the hosted realtime database:

- writing ``None`` or an empty container deletes the node,
- parents left without children disappear,
- lists are stored as index-keyed children and read back as lists when the
  keys are exactly ``0..n-1``,
- children of a node come back in key order (integer-like keys first).

Every operation yields to the event loop once before touching data. Two
coroutines doing read-then-write on the same counter can therefore
interleave and lose an update, exactly as they would against a remote
backend.

Example:
    >>> store = MemoryTreeStore()
    >>> await store.set("posts/p1", {"likes": 0, "content": "hi"})
    >>> await store.merge("posts/p1", {"likes": 1, "likedBy/u1": True})
    >>> await store.get("posts/p1/likedBy")
    {'u1': True}
"""

import abc
import asyncio
import inspect
import json
import re
import time
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sqlalchemy import or_
from sqlmodel import Session, SQLModel, col, create_engine, select

from socialtree import metrics, paths
from socialtree.config import Settings, StoreBackend, settings
from socialtree.errors import SocialTreeError, StoreError, WriteError
from socialtree.interfaces import ChangeCallback, Unsubscribe
from socialtree.logging import logger
from socialtree.models import NodeRow
from socialtree.utils import push_key

UpdateFunction = Callable[[Any], Any]

INDEX_KEY = re.compile(r"^(0|[1-9][0-9]*)$")


# =============================================================================
# Value Helpers
# =============================================================================


def to_tree(value: Any) -> Any:
    """Convert a JSON-compatible value to the internal tree form.

    Containers become dicts with string keys, ``None`` children are dropped
    and empty containers collapse to ``None``.

    Raises:
        TypeError: For values that cannot be stored
        ValueError: For keys that are empty or contain ``/``
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return str(value)
    if isinstance(value, dict):
        items = value.items()
    elif isinstance(value, (list, tuple)):
        items = ((str(i), v) for i, v in enumerate(value))
    else:
        raise TypeError(f"Unsupported value type: {type(value).__name__}")

    tree = {}
    for key, child in items:
        key = str(key)
        if not key or "/" in key:
            raise ValueError(f"Invalid key: {key!r}")
        converted = to_tree(child)
        if converted is not None:
            tree[key] = converted
    return tree or None


def _key_order(key: str) -> tuple[int, int, str]:
    if INDEX_KEY.match(key):
        return (0, int(key), "")
    return (1, 0, key)


def from_tree(node: Any) -> Any:
    """Convert an internal tree node to a fresh JSON value.

    The result shares no containers with the stored tree, so callers may
    mutate it freely.
    """
    if not isinstance(node, dict):
        return node
    keys = sorted(node, key=_key_order)
    if keys and all(INDEX_KEY.match(k) for k in keys) and int(keys[-1]) == len(keys) - 1:
        return [from_tree(node[k]) for k in keys]
    return {k: from_tree(node[k]) for k in keys}


def _check_merge_keys(fields: dict[str, Any]) -> list[str]:
    """Normalize merge keys and reject ones that overlap each other."""
    keys = [paths.normalize(str(k)) for k in fields]
    if any(not k for k in keys):
        raise ValueError("Merge keys must not be empty")
    for i, a in enumerate(keys):
        for b in keys[i + 1 :]:
            if paths.related(a, b):
                raise ValueError(f"Overlapping merge keys: {a!r} and {b!r}")
    return keys


@dataclass
class Subscription:
    path: str
    callback: ChangeCallback
    handle: Any = None


# =============================================================================
# Abstract Store
# =============================================================================


class TreeStore(abc.ABC):
    """Async interface shared by all store backends.

    Subclasses implement the underscore methods. The public methods add path
    normalization, the event-loop suspension point, metrics and error
    translation: write failures surface as :class:`WriteError`, read
    failures as :class:`StoreError`.
    """

    backend = "abstract"

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._next_subscription = 0
        self._pending: set[asyncio.Future] = set()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get(self, path: str) -> Any:
        """Read the value at ``path``, ``None`` when absent."""
        path = paths.normalize(path)
        await asyncio.sleep(0)
        async with self._operation("get", path, write=False):
            return await self._get(path)

    async def set(self, path: str, value: Any) -> None:
        """Overwrite the node at ``path``. ``None`` deletes it."""
        path = paths.normalize(path)
        await asyncio.sleep(0)
        async with self._operation("set", path, write=True):
            await self._set(path, value)

    async def merge(self, path: str, fields: dict[str, Any]) -> None:
        """Apply a field-level update relative to ``path``.

        Keys may be multi-segment paths (``"readBy/u1"``). Each key replaces
        the child at that relative path and leaves siblings untouched; a
        ``None`` value deletes the child. All keys are applied together.
        """
        path = paths.normalize(path)
        await asyncio.sleep(0)
        if not fields:
            return
        async with self._operation("merge", path, write=True):
            keys = _check_merge_keys(fields)
            await self._merge(path, dict(zip(keys, fields.values())))

    def append_child(self, path: str) -> str:
        """Return ``path/<push key>`` for a new child. Nothing is written."""
        return paths.join(path, self.new_key())

    def new_key(self) -> str:
        return push_key()

    async def transaction(self, path: str, update: UpdateFunction) -> Any:
        """Atomically replace the value at ``path`` with ``update(current)``.

        ``update`` receives the current value (``None`` when absent) and
        returns the new one. Exceptions raised by ``update`` abort the
        transaction and propagate unchanged.

        Returns:
            The value written
        """
        path = paths.normalize(path)
        await asyncio.sleep(0)
        async with self._operation("transaction", path, write=True):
            return await self._transaction(path, update)

    async def subscribe(self, path: str, on_change: ChangeCallback) -> Unsubscribe:
        """Watch ``path``.

        ``on_change`` receives the full current value right away and again
        after every write touching ``path``, one of its ancestors or one of
        its descendants. It may be a plain function or a coroutine function.

        Returns:
            A function that stops further deliveries
        """
        path = paths.normalize(path)
        await asyncio.sleep(0)
        self._next_subscription += 1
        subscription_id = self._next_subscription
        subscription = Subscription(path=path, callback=on_change)
        self._subscriptions[subscription_id] = subscription
        metrics.active_subscriptions.inc()

        try:
            async with self._operation("subscribe", path, write=False):
                await self._start_subscription(subscription)
        except StoreError:
            self._drop_subscription(subscription_id)
            raise

        def unsubscribe() -> None:
            self._drop_subscription(subscription_id)

        return unsubscribe

    async def close(self) -> None:
        """Drop subscriptions and release backend resources."""
        for subscription_id in list(self._subscriptions):
            self._drop_subscription(subscription_id)
        await self._close()

    # -------------------------------------------------------------------------
    # Backend hooks
    # -------------------------------------------------------------------------

    @abc.abstractmethod
    async def _get(self, path: str) -> Any: ...

    @abc.abstractmethod
    async def _set(self, path: str, value: Any) -> None: ...

    @abc.abstractmethod
    async def _merge(self, path: str, fields: dict[str, Any]) -> None: ...

    @abc.abstractmethod
    async def _transaction(self, path: str, update: UpdateFunction) -> Any: ...

    @abc.abstractmethod
    async def _start_subscription(self, subscription: Subscription) -> None: ...

    def _stop_subscription(self, subscription: Subscription) -> None:
        """Backend cleanup for one subscription."""

    async def _close(self) -> None:
        """Backend cleanup on close."""

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _drop_subscription(self, subscription_id: int) -> None:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        metrics.active_subscriptions.dec()
        self._stop_subscription(subscription)

    def _is_active(self, subscription: Subscription) -> bool:
        return any(s is subscription for s in self._subscriptions.values())

    def _deliver(self, subscription: Subscription, value: Any) -> None:
        """Invoke a subscriber callback, scheduling it if it is a coroutine."""
        if not self._is_active(subscription):
            return
        try:
            result = subscription.callback(value)
        except Exception as exc:
            logger.error(f"❌ Subscriber for {subscription.path!r} failed: {exc}")
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(self._await_callback(subscription, result))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)

    async def _await_callback(self, subscription: Subscription, awaitable: Any) -> None:
        try:
            await awaitable
        except Exception as exc:
            logger.error(f"❌ Subscriber for {subscription.path!r} failed: {exc}")

    @asynccontextmanager
    async def _operation(self, name: str, path: str, write: bool) -> AsyncIterator[None]:
        """Record metrics and translate backend errors for one store call."""
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except StoreError as exc:
            status = "error"
            if write and not isinstance(exc, WriteError):
                raise WriteError(str(exc), path=path) from exc
            raise
        except SocialTreeError:
            status = "error"
            raise
        except Exception as exc:
            status = "error"
            logger.warning(f"⚠️ Store {name} on {path!r} failed: {exc}")
            if write:
                raise WriteError(f"{name} {path!r} failed: {exc}", path=path) from exc
            raise StoreError(f"{name} {path!r} failed: {exc}", path=path) from exc
        finally:
            metrics.store_operations_total.labels(operation=name, status=status).inc()
            metrics.store_operation_duration_seconds.labels(operation=name).observe(
                time.perf_counter() - start
            )


# =============================================================================
# Local Stores
# =============================================================================


class LocalTreeStore(TreeStore):
    """Store whose data lives in this process (or a local file).

    Subclasses provide synchronous ``_read`` and ``_apply``. Because they
    never await, each public call is atomic with respect to other
    coroutines once it starts.
    """

    @abc.abstractmethod
    def _read(self, segments: list[str]) -> Any:
        """Return the internal tree node at ``segments`` (or ``None``)."""

    @abc.abstractmethod
    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        """Replace each node at ``segments`` with the given tree value."""

    async def _get(self, path: str) -> Any:
        return from_tree(self._read(paths.split(path)))

    async def _set(self, path: str, value: Any) -> None:
        segments = paths.split(path)
        tree = to_tree(value)
        if not segments and tree is not None and not isinstance(tree, dict):
            raise ValueError("The root can only hold an object")
        self._apply([(segments, tree)])
        self._notify([path])

    async def _merge(self, path: str, fields: dict[str, Any]) -> None:
        base = paths.split(path)
        writes = [(base + paths.split(key), to_tree(value)) for key, value in fields.items()]
        self._apply(writes)
        self._notify(["/".join(segments) for segments, _ in writes])

    async def _transaction(self, path: str, update: UpdateFunction) -> Any:
        segments = paths.split(path)
        current = from_tree(self._read(segments))
        tree = to_tree(update(current))
        self._apply([(segments, tree)])
        self._notify([path])
        return from_tree(tree)

    async def _start_subscription(self, subscription: Subscription) -> None:
        self._deliver(subscription, from_tree(self._read(paths.split(subscription.path))))

    def _notify(self, changed: list[str]) -> None:
        for subscription in list(self._subscriptions.values()):
            if any(paths.related(subscription.path, c) for c in changed):
                value = from_tree(self._read(paths.split(subscription.path)))
                self._deliver(subscription, value)


class MemoryTreeStore(LocalTreeStore):
    """In-process store backed by nested dicts.

    Example:
        >>> store = MemoryTreeStore({"users": {"u1": {"displayName": "Ada"}}})
        >>> await store.get("users/u1/displayName")
        'Ada'
    """

    backend = "memory"

    def __init__(self, initial: dict[str, Any] | None = None):
        super().__init__()
        self._root: dict[str, Any] = to_tree(initial) or {}

    def _read(self, segments: list[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict):
                return None
            node = node.get(segment)
            if node is None:
                return None
        return node

    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        for segments, value in writes:
            self._put(segments, value)

    def _put(self, segments: list[str], value: Any) -> None:
        if not segments:
            self._root = value or {}
            return

        node = self._root
        trail: list[tuple[dict[str, Any], str]] = []
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[segment] = child
            trail.append((node, segment))
            node = child

        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = value

        # Prune parents left empty by a delete
        for parent, segment in reversed(trail):
            if parent[segment]:
                break
            del parent[segment]

    def snapshot(self) -> dict[str, Any]:
        """Copy of the whole tree, for debugging and tests."""
        return from_tree(self._root) or {}


def _flatten(prefix: str, value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, dict):
        for key, child in value.items():
            yield from _flatten(f"{prefix}/{key}" if prefix else key, child)
    elif value is not None:
        yield prefix, value


class SQLiteTreeStore(LocalTreeStore):
    """Persistent store keeping one SQLite row per leaf value.

    Subtree reads are prefix scans over the primary key. Each public call
    runs in a single SQL transaction, so a ``merge`` is all-or-nothing.

    Args:
        database_path: SQLite file (created if missing)

    Example:
        >>> store = SQLiteTreeStore(Path("data/socialtree.db"))
        >>> store.initialize()
        >>> await store.set("tags/python", {"name": "#python", "count": 1})
    """

    backend = "sqlite"

    def __init__(self, database_path: Path | None = None):
        super().__init__()
        self.database_path = Path(database_path or settings.database_path)
        self.engine = None

    def initialize(self) -> None:
        """Create the engine, the ``nodes`` table and tune SQLite pragmas."""
        if self.engine is not None:
            return

        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{self.database_path}",
            echo=False,
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(self.engine)

        with self.engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
            conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
            conn.exec_driver_sql("PRAGMA temp_store = MEMORY;")
            conn.commit()

        logger.info(f"✅ SQLite store initialized at {self.database_path}")

    def _session(self) -> Session:
        if self.engine is None:
            self.initialize()
        return Session(self.engine)

    @staticmethod
    def _subtree_filter(path: str):
        return or_(
            NodeRow.path == path,
            col(NodeRow.path).startswith(f"{path}/", autoescape=True),
        )

    def _read(self, segments: list[str]) -> Any:
        path = "/".join(segments)
        stmt = select(NodeRow)
        if path:
            stmt = stmt.where(self._subtree_filter(path))
        with self._session() as session:
            rows = session.exec(stmt).all()

        tree: dict[str, Any] = {}
        for row in rows:
            value = json.loads(row.value)
            relative = row.path[len(path) :].lstrip("/") if path else row.path
            if not relative:
                return value
            node = tree
            parts = relative.split("/")
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = value
        return tree or None

    def _apply(self, writes: list[tuple[list[str], Any]]) -> None:
        with self._session() as session:
            for segments, value in writes:
                path = "/".join(segments)
                if path:
                    session.query(NodeRow).filter(self._subtree_filter(path)).delete(
                        synchronize_session=False
                    )
                else:
                    session.query(NodeRow).delete(synchronize_session=False)
                # A scalar ancestor cannot coexist with children
                for i in range(1, len(segments)):
                    session.query(NodeRow).filter(
                        NodeRow.path == "/".join(segments[:i])
                    ).delete(synchronize_session=False)
                for leaf_path, leaf in _flatten(path, value):
                    session.add(NodeRow(path=leaf_path, value=json.dumps(leaf)))
            session.commit()

    async def _close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None


# =============================================================================
# Factory
# =============================================================================


def create_store(config: Settings | None = None) -> TreeStore:
    """Build the store backend selected in settings.

    Args:
        config: Settings to use (defaults to the global settings)

    Returns:
        A ready-to-use store
    """
    config = config or settings

    if config.store_backend == StoreBackend.MEMORY:
        return MemoryTreeStore()

    if config.store_backend == StoreBackend.SQLITE:
        store = SQLiteTreeStore(config.database_path)
        store.initialize()
        return store

    if config.store_backend == StoreBackend.FIREBASE:
        from socialtree.firebase import FirebaseTreeStore

        return FirebaseTreeStore.from_settings(config)

    raise ValueError(f"Unknown store backend: {config.store_backend}")


__all__ = [
    "TreeStore",
    "LocalTreeStore",
    "MemoryTreeStore",
    "SQLiteTreeStore",
    "Subscription",
    "ChangeCallback",
    "Unsubscribe",
    "UpdateFunction",
    "create_store",
    "to_tree",
    "from_tree",
]
