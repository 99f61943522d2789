"""Document sources — Where a rebuild reads its documents from."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any, Protocol

from searchbridge.models.index import Index

logger = logging.getLogger(__name__)


class DocumentSource(Protocol):
    """Produces the canonical documents of an index, batch by batch.

    Every document carries ``objectID`` as a string.
    """

    def iter_batches(self, index: Index, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]: ...


class JsonlDocumentSource:
    """Read documents from a JSON Lines file, one object per line.

    ``objectID`` is taken from the ``objectID`` key, or ``id`` when absent,
    and always stringified. Blank lines are skipped.

    Args:
        path: Path to the ``.jsonl`` file.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def iter_batches(self, index: Index, batch_size: int) -> AsyncIterator[list[dict[str, Any]]]:
        batch: list[dict[str, Any]] = []
        with open(self._path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                batch.append(_to_document(json.loads(line), self._path, line_no))
                if len(batch) >= batch_size:
                    yield batch
                    batch = []
        if batch:
            yield batch
        logger.debug("Finished reading %s for %s", self._path, index.handle)


def _to_document(record: Any, path: Path, line_no: int) -> dict[str, Any]:
    if not isinstance(record, dict):
        raise ValueError(f"{path}:{line_no}: expected a JSON object")
    object_id = record.get("objectID", record.get("id"))
    if object_id is None:
        raise ValueError(f"{path}:{line_no}: document has no objectID or id")
    return {**record, "objectID": str(object_id)}
