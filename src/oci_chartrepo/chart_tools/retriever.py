"""Serves chart archives by re-pulling and re-validating them on every request."""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from .cache import CatalogCache
from .config import KNOWN_MEDIA_TYPES
from .exceptions import (
    ChartNotFoundError,
    InvalidArtifactError,
    MalformedArtifactError,
    NotAChartError,
    SkipCandidateError,
    TransportError,
)
from .models import Descriptor
from .oci_transport import OciTransport
from .validator import ManifestValidator

logger = logging.getLogger(__name__)


class ArtifactRetriever:
    """Fetches the archive bytes of a cached chart.

    The cache only records coordinates, so every download checks the chart
    rules again against whatever the upstream currently holds.
    """

    def __init__(
        self,
        cache: CatalogCache,
        transport: OciTransport,
        validator: Optional[ManifestValidator] = None,
    ):
        self.cache = cache
        self.transport = transport
        self.validator = validator or ManifestValidator()

    async def get_chart(self, path: str) -> bytes:
        """Return the archive bytes for a logical chart path.

        Args:
            path: Logical path such as ``mychart-1.0.0.tgz``

        Returns:
            The chart archive

        Raises:
            ChartNotFoundError: The path is not in the catalog
            InvalidArtifactError: The upstream artifact breaks the chart rules
            TransportError: The upstream could not be reached or refused access
        """
        _, data = await self.pull_chart(path)
        return data

    async def pull_chart(self, path: str) -> Tuple[Descriptor, bytes]:
        """Like get_chart, also returning the content layer descriptor."""
        reference = self.cache.get_by_path(path)
        if reference is None:
            raise ChartNotFoundError(f"Chart {path} not found in catalog")

        try:
            repository, manifest = await self.transport.pull_manifest(
                reference, allowed_media_types=KNOWN_MEDIA_TYPES
            )
            layer = self.validator.content_layer(manifest)
            data = await self.transport.fetch_blob(
                repository, layer, allowed_media_types=KNOWN_MEDIA_TYPES
            )
        except (NotAChartError, MalformedArtifactError) as e:
            logger.error(f"Chart {path} at {reference.coordinates} is invalid: {e}")
            raise InvalidArtifactError(f"Chart {path} is invalid: {e}") from e
        except SkipCandidateError as e:
            logger.error(f"Upstream refused chart {path} at {reference.coordinates}: {e}")
            raise TransportError(str(e), status=e.status) from e

        logger.info(f"Pulled chart {path} ({len(data)} bytes) from {reference.coordinates}")
        return layer, data
