"""
Sync session state

Snapshot of a target container taken at the start of one bulk publish. It
is only valid for that call: the container may change concurrently, so a
session is never reused.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from .storage.base import ObjectStore

logger = logging.getLogger(__name__)


@dataclass
class SyncSession:
    """Existing-object index and obsolete set of one publish_collection call."""

    container: str
    key_prefix: str
    existing: frozenset[str]
    obsolete: set[str] = field(default_factory=set)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    async def build(
        cls,
        store: ObjectStore,
        container: str,
        key_prefix: str,
        check_cancelled: Callable[[], None] | None = None,
    ) -> "SyncSession":
        """
        List every key under the prefix, following continuation tokens.

        Listing errors propagate: without a complete index nothing can be
        pruned safely.
        """
        keys: set[str] = set()
        token: str | None = None
        pages = 0
        while True:
            if check_cancelled is not None:
                check_cancelled()
            page = await store.list_keys(container, key_prefix, token)
            keys.update(page.keys)
            pages += 1
            token = page.next_token
            if not token:
                break

        logger.debug(f"Indexed {len(keys)} objects in {pages} pages from container {container} (prefix={key_prefix!r})")
        return cls(container=container, key_prefix=key_prefix, existing=frozenset(keys), obsolete=set(keys))

    def exists(self, key: str) -> bool:
        return key in self.existing

    async def retain(self, key: str) -> None:
        """Mark a key as still referenced so it is not pruned."""
        async with self._lock:
            self.obsolete.discard(key)

    async def obsolete_keys(self) -> list[str]:
        async with self._lock:
            return sorted(self.obsolete)
