"""Atomic Swap Orchestrator — Rebuild an index without a search gap.

A rebuild stages the next generation of an index in a side store, fills it
from a ``DocumentSource`` and only then asks the adapter to promote it.
Readers keep hitting the old generation until the promotion, which each
backend performs with its own atomic primitive (alias flip, index swap,
move operation).

Backends without such a primitive can still be rebuilt in place when the
caller accepts a window during which searches see a partial index.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from pydantic import BaseModel, Field

from searchbridge.adapters.base.adapter import SearchAdapter
from searchbridge.adapters.base.exceptions import (
    AdapterError,
    NotFoundError,
    SwapError,
    SwapNotSupportedError,
)
from searchbridge.models.index import Index
from searchbridge.swap.sources import DocumentSource

logger = logging.getLogger(__name__)


class SwapReport(BaseModel):
    """Outcome of a rebuild."""

    handle: str = Field(description="Handle of the rebuilt index")
    target: str = Field(description="Physical store the documents were written to")
    documents: int = Field(default=0, description="Documents streamed from the source")
    gap: bool = Field(default=False, description="Whether searches could see a partial index")
    duration_ms: int = Field(default=0, description="Wall-clock duration of the rebuild")


class SwapOrchestrator:
    """Drive full reindexes through an adapter's swap primitive.

    Rebuilds of the same handle are serialized; different handles proceed
    independently.

    Args:
        adapter: Adapter serving the indexes to rebuild.
    """

    def __init__(self, adapter: SearchAdapter) -> None:
        self._adapter = adapter
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    async def rebuild(
        self,
        index: Index,
        source: DocumentSource,
        *,
        batch_size: int | None = None,
        allow_gap: bool = False,
    ) -> SwapReport:
        """Repopulate ``index`` from ``source``.

        Args:
            index: The index to rebuild.
            source: Where the new generation's documents come from.
            batch_size: Documents per bulk request; the adapter's default when omitted.
            allow_gap: Flush and refill in place when the backend cannot swap.

        Returns:
            A report of the rebuild.

        Raises:
            SwapNotSupportedError: If the backend cannot swap and ``allow_gap`` is false.
            SwapError: If staging failed; production is left untouched.
            BackendError: If the backend rejected the final promotion.
        """
        size = batch_size or self._adapter.batch_size
        async with self._handle_lock(index.handle):
            start = time.monotonic()
            if not self._adapter.supports_atomic_swap:
                if not allow_gap:
                    raise SwapNotSupportedError(
                        f"{self._adapter.display_name} cannot swap indexes atomically; "
                        "pass allow_gap=True to rebuild in place"
                    )
                documents = await self._rebuild_in_place(index, source, size)
                target, gap = self._adapter.index_name(index), True
            else:
                target = await self._adapter.build_swap_handle(index)
                documents = await self._stage(index, index.with_physical_name(target), source, size)
                logger.info("Promoting %s to serve %s", target, index.handle)
                await self._adapter.swap_index(index, index.with_physical_name(target))
                gap = False

            report = SwapReport(
                handle=index.handle,
                target=target,
                documents=documents,
                gap=gap,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
            logger.info(
                "Rebuilt %s: %d documents into %s in %dms", index.handle, documents, target, report.duration_ms
            )
            return report

    @asynccontextmanager
    async def _handle_lock(self, handle: str) -> AsyncIterator[None]:
        """Hold the per-handle lock; it is discarded once no rebuild uses it."""
        lock = self._locks.setdefault(handle, asyncio.Lock())
        self._lock_users[handle] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[handle] -= 1
            if not self._lock_users[handle]:
                del self._lock_users[handle]
                del self._locks[handle]

    async def _stage(self, index: Index, staged: Index, source: DocumentSource, batch_size: int) -> int:
        """Create ``staged`` from scratch and fill it; drop it again on failure."""
        await self._delete_quietly(staged)
        logger.info("Creating staging index %s for %s", self._adapter.index_name(staged), index.handle)
        await self._adapter.create_index(staged)
        try:
            documents = await self._populate(staged, source, batch_size)
        except (AdapterError, OSError, ValueError) as e:
            logger.error("Staging %s failed; dropping %s", index.handle, self._adapter.index_name(staged))
            await self._delete_quietly(staged)
            raise SwapError(f"Failed to stage a new generation of '{index.handle}': {e}") from e
        logger.info("Staged %d documents for %s", documents, index.handle)
        return documents

    async def _rebuild_in_place(self, index: Index, source: DocumentSource, batch_size: int) -> int:
        logger.warning(
            "%s cannot swap atomically; flushing %s in place, searches may see a partial index",
            self._adapter.display_name,
            index.handle,
        )
        if await self._adapter.index_exists(index):
            await self._adapter.flush_index(index)
        else:
            await self._adapter.create_index(index)
        return await self._populate(index, source, batch_size)

    async def _populate(self, index: Index, source: DocumentSource, batch_size: int) -> int:
        documents = 0
        async for batch in source.iter_batches(index, batch_size):
            if not batch:
                continue
            result = await self._adapter.index_documents(index, batch)
            result.raise_for_failures()
            documents += len(batch)
            logger.debug("Indexed %d documents into %s", documents, self._adapter.index_name(index))
        return documents

    async def _delete_quietly(self, index: Index) -> None:
        try:
            await self._adapter.delete_index(index)
        except NotFoundError:
            pass
