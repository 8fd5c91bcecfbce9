"""Renders the cached catalog as a Helm repository index."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import yaml

from .cache import CatalogCache
from .models import ChartRecord, ChartVersionEntry, IndexFile

logger = logging.getLogger(__name__)


def bare_digest(digest: str) -> str:
    """Strip the algorithm prefix, Helm indexes carry the hex part only."""
    return digest.split(":", 1)[-1]


class IndexBuilder:
    """Builds index documents from a cache snapshot."""

    def __init__(self, cache: CatalogCache, url_prefix: str = "charts"):
        self.cache = cache
        self.url_prefix = url_prefix.rstrip("/")

    def _entry(self, record: ChartRecord) -> ChartVersionEntry:
        return ChartVersionEntry(
            name=record.name,
            version=record.version,
            description=record.description,
            api_version=record.api_version,
            app_version=record.app_version,
            type=record.type,
            digest=bare_digest(record.content_digest),
            urls=[f"{self.url_prefix}/{record.logical_path}"],
        )

    def build(self, generated: Optional[datetime] = None) -> IndexFile:
        """Build the index with one entry per distinct content digest.

        Args:
            generated: Timestamp to stamp the document with, defaults to now

        Returns:
            Index document with versions sorted newest first per chart
        """
        seen = set()
        entries: Dict[str, List[ChartVersionEntry]] = {}
        for record in self.cache.snapshot_all_records():
            if record.content_digest in seen:
                continue
            seen.add(record.content_digest)
            entries.setdefault(record.name, []).append(self._entry(record))

        for versions in entries.values():
            versions.sort(key=lambda e: e.version, reverse=True)

        generated = generated or datetime.now(timezone.utc)
        logger.debug(f"Built index with {len(seen)} chart versions across {len(entries)} charts")
        return IndexFile(entries=dict(sorted(entries.items())), generated=generated.isoformat())

    def render(self, index: Optional[IndexFile] = None) -> str:
        """Serialize an index document (a fresh one by default) to YAML."""
        index = index or self.build()
        return yaml.safe_dump(
            index.model_dump(by_alias=True, exclude_none=True),
            sort_keys=False,
            default_flow_style=False,
        )
