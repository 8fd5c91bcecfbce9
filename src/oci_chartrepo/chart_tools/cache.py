"""In-memory chart catalog cache."""

from __future__ import annotations

import threading
from typing import Dict, List, Optional

from .models import ChartRecord, ChartReference


class CatalogCache:
    """Chart records by content digest and chart references by logical path.

    Both maps share one lock. Entries are never evicted, so memory grows with
    the number of distinct chart versions the upstream catalog has held over
    the process lifetime.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, ChartRecord] = {}
        self._references: Dict[str, ChartReference] = {}

    def __len__(self) -> int:
        return len(self._records)

    def get_by_digest(self, digest: str) -> Optional[ChartRecord]:
        with self._lock:
            return self._records.get(digest)

    def get_by_path(self, path: str) -> Optional[ChartReference]:
        with self._lock:
            return self._references.get(path)

    def put_record(self, record: ChartRecord) -> None:
        """Store a record unless one with the same digest is already present."""
        with self._lock:
            self._records.setdefault(record.content_digest, record)

    def put_reference(self, path: str, reference: ChartReference) -> None:
        """Store a reference, replacing any previous one for the path."""
        with self._lock:
            self._references[path] = reference

    def commit(self, record: ChartRecord, reference: ChartReference) -> None:
        """Store a record and its reference in one locked step."""
        with self._lock:
            self._records.setdefault(record.content_digest, record)
            self._references[record.logical_path] = reference

    def snapshot_all_records(self) -> List[ChartRecord]:
        with self._lock:
            return list(self._records.values())
