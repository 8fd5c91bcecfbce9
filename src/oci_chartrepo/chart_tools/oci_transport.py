"""Pulls chart manifests and content layers over the OCI distribution API."""

from __future__ import annotations

import hashlib
import logging
from typing import Iterable, Tuple

from .config import KNOWN_MEDIA_TYPES
from .exceptions import MalformedArtifactError, NotAChartError
from .http_client import RegistryHttpClient
from .models import ChartReference, Descriptor, OciManifest
from .sources import MANIFEST_ACCEPT, parse_manifest

logger = logging.getLogger(__name__)


def verify_blob(data: bytes, descriptor: Descriptor) -> None:
    """Check a downloaded blob against the size and digest its descriptor declares.

    Raises:
        MalformedArtifactError: On size or digest mismatch
    """
    if len(data) != descriptor.size:
        raise MalformedArtifactError(
            f"blob {descriptor.digest} has {len(data)} bytes, manifest declares {descriptor.size}"
        )

    algorithm, _, expected = descriptor.digest.partition(":")
    try:
        actual = hashlib.new(algorithm, data).hexdigest()
    except ValueError:
        logger.warning(f"Cannot verify blob digest with unknown algorithm {algorithm!r}")
        return
    if actual != expected:
        raise MalformedArtifactError(
            f"blob digest mismatch: expected {descriptor.digest}, got {algorithm}:{actual}"
        )


class OciTransport:
    """Fetches manifests and blobs for references recorded in the catalog."""

    def __init__(self, client: RegistryHttpClient):
        self.client = client

    async def pull_manifest(
        self,
        reference: ChartReference,
        allowed_media_types: Iterable[str] = KNOWN_MEDIA_TYPES,
    ) -> Tuple[str, OciManifest]:
        """Fetch the manifest a reference points at.

        Args:
            reference: Catalog reference to pull
            allowed_media_types: Media types the config may carry

        Returns:
            Tuple of (repository, manifest)

        Raises:
            NotAChartError: The config media type is not allowed
            MalformedArtifactError: The response is not a manifest
        """
        repository, tag = reference.split()
        logger.info(f"Pulling manifest {self.client.base_url}/{repository}:{tag}")
        response = await self.client.request(
            "GET",
            f"/v2/{repository}/manifests/{tag}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        manifest = parse_manifest(response.body, reference.coordinates)
        if manifest.config.media_type not in set(allowed_media_types):
            raise NotAChartError(
                f"{reference.coordinates} has config media type {manifest.config.media_type!r}"
            )
        return repository, manifest

    async def fetch_blob(
        self,
        repository: str,
        descriptor: Descriptor,
        allowed_media_types: Iterable[str] = KNOWN_MEDIA_TYPES,
    ) -> bytes:
        """Download one blob and verify it against its descriptor."""
        if descriptor.media_type not in set(allowed_media_types):
            raise MalformedArtifactError(
                f"refusing to fetch blob of media type {descriptor.media_type!r}"
            )
        data = await self.client.get_bytes(f"/v2/{repository}/blobs/{descriptor.digest}")
        verify_blob(data, descriptor)
        return data
