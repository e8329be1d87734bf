"""Base class for repositories over the tree store.

Repositories turn domain operations into sequences of store calls. Each
operation has one primary write whose failure is raised to the caller.
Secondary writes that keep denormalized data in sync (tag counters, group
indexes, notifications) are best-effort: a failure is logged, counted and
skipped so the primary effect stands.

Example:
    >>> class TagRepository(TreeRepository):
    ...     async def bump(self, key: str) -> int:
    ...         return await self._increment(f"tags/{key}", "count")
"""

from collections.abc import Awaitable
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from socialtree import metrics
from socialtree.config import settings
from socialtree.errors import NotFoundError, StoreError
from socialtree.interfaces import ITreeStore
from socialtree.logging import logger
from socialtree.utils import as_mapping

M = TypeVar("M", bound=BaseModel)


def as_count(value: Any) -> int:
    """Read a stored counter, treating missing or malformed values as 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


class TreeRepository:
    """Shared plumbing for all repositories.

    Args:
        store: Hierarchical store
        atomic_counters: Use store transactions for counters (defaults to
            ``settings.atomic_counters``)
    """

    def __init__(self, store: ITreeStore, atomic_counters: bool | None = None):
        self.store = store
        self.atomic_counters = (
            settings.atomic_counters if atomic_counters is None else atomic_counters
        )

    def _parse_children(self, data: Any, model: type[M]) -> list[M]:
        """Parse ``{key: record}`` children, skipping malformed records."""
        items = []
        for key, record in as_mapping(data).items():
            if not isinstance(record, dict):
                continue
            try:
                items.append(model.from_record(key, record))
            except PydanticValidationError as exc:
                logger.warning(f"⚠️ Skipping malformed {model.__name__} {key!r}: {exc}")
        return items

    async def _increment(self, path: str, field: str, delta: int = 1) -> int:
        """Add ``delta`` to a counter field of the record at ``path``.

        By default this is a read followed by a field-level merge, so two
        concurrent increments can collapse into one. With atomic counters
        the whole update runs as a store transaction.

        Returns:
            The value written

        Raises:
            NotFoundError: If there is no record at ``path``
            WriteError: If the write fails
        """
        if self.atomic_counters:

            def bump(record: Any) -> Any:
                if not isinstance(record, dict):
                    raise NotFoundError(path)
                record[field] = as_count(record.get(field)) + delta
                return record

            record = await self.store.transaction(path, bump)
            value = record[field]
            mode = "atomic"
        else:
            record = await self.store.get(path)
            if not isinstance(record, dict):
                raise NotFoundError(path)
            value = as_count(record.get(field)) + delta
            await self.store.merge(path, {field: value})
            mode = "rmw"

        metrics.counter_increments_total.labels(field=field, mode=mode).inc()
        return value

    async def _best_effort(self, step: str, action: Awaitable[Any]) -> bool:
        """Await a secondary write, logging and skipping store failures.

        Returns:
            True if the write succeeded
        """
        try:
            await action
        except (StoreError, NotFoundError) as exc:
            logger.warning(f"⚠️ Skipped {step}: {exc}")
            metrics.fanout_failures_total.labels(step=step).inc()
            return False
        return True


__all__ = ["TreeRepository", "as_count"]
