from __future__ import annotations

import logging
import threading
from typing import Dict, List, Protocol

from .models.page import PageContentStructure

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    def commit(self, page_id: str, structure: PageContentStructure) -> int:
        ...

    def get(self, page_id: str, version: int | None = None) -> PageContentStructure | None:
        ...

    def versions(self, page_id: str) -> list[int]:
        ...


class InMemorySnapshotStore:
    """Versioned page snapshots held in process memory.

    A commit serialises and re-validates the full structure before it is
    appended, so a failing commit leaves the previous version in place.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[str, List[str]] = {}
        self._lock = threading.Lock()

    def commit(self, page_id: str, structure: PageContentStructure) -> int:
        payload = structure.model_dump_json()
        PageContentStructure.model_validate_json(payload)
        with self._lock:
            history = self._snapshots.setdefault(page_id, [])
            history.append(payload)
            version = len(history)
        logger.info("Committed page snapshot", extra={"page_id": page_id, "version": version})
        return version

    def get(self, page_id: str, version: int | None = None) -> PageContentStructure | None:
        with self._lock:
            history = list(self._snapshots.get(page_id, ()))
        if not history:
            return None
        if version is None:
            payload = history[-1]
        elif 1 <= version <= len(history):
            payload = history[version - 1]
        else:
            return None
        return PageContentStructure.model_validate_json(payload)

    def versions(self, page_id: str) -> list[int]:
        with self._lock:
            return list(range(1, len(self._snapshots.get(page_id, ())) + 1))


__all__ = ["SnapshotStore", "InMemorySnapshotStore"]
