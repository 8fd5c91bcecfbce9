"""Validation of chart manifests and extraction of chart metadata."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .config import ChartMediaTypes
from .exceptions import MalformedArtifactError, NotAChartError
from .models import ArtifactDescriptor, ChartRecord, Descriptor, OciManifest

logger = logging.getLogger(__name__)


class ManifestValidator:
    """Decides whether an artifact is a well-formed chart and extracts its metadata."""

    def __init__(
        self,
        config_media_type: str = ChartMediaTypes.CONFIG.value,
        content_media_type: str = ChartMediaTypes.CONTENT_LAYER.value,
    ) -> None:
        self.config_media_type = config_media_type
        self.content_media_type = content_media_type

    def check_media_type(self, media_type: Optional[str]) -> None:
        """Raise NotAChartError unless the config/artifact media type is the chart one."""
        if media_type != self.config_media_type:
            raise NotAChartError(f"Media type {media_type!r} is not a chart config")

    def content_layer(self, manifest: OciManifest) -> Descriptor:
        """Return the single chart content layer of a manifest.

        Raises:
            MalformedArtifactError: If the manifest does not hold exactly one
                non-empty layer of the chart content media type
        """
        num_layers = len(manifest.layers)
        if num_layers != 1:
            raise MalformedArtifactError(
                f"manifest does not contain exactly 1 layer (total: {num_layers})"
            )

        layer = manifest.layers[0]
        if layer.media_type != self.content_media_type:
            raise MalformedArtifactError(
                f"manifest does not contain a layer with mediatype {self.content_media_type}"
            )
        if layer.size == 0:
            raise MalformedArtifactError(
                f"manifest layer with mediatype {self.content_media_type} is of size 0"
            )
        return layer

    def validate_manifest(self, manifest: Optional[OciManifest]) -> Descriptor:
        """Check a fetched manifest and return its content layer.

        Raises:
            NotAChartError: The config media type is not the chart one
            MalformedArtifactError: The layers break the chart rules
        """
        if manifest is None:
            raise MalformedArtifactError("artifact carries no manifest")
        self.check_media_type(manifest.config.media_type)
        return self.content_layer(manifest)

    def record_from_config_blob(self, blob: bytes, content_digest: str) -> ChartRecord:
        """Parse a manifest config blob into a chart record."""
        try:
            data = json.loads(blob)
        except ValueError as e:
            raise MalformedArtifactError(f"chart config is not valid JSON: {e}") from e
        return self._record(data, content_digest)

    def record_from_extra_attrs(self, artifact: ArtifactDescriptor) -> ChartRecord:
        """Build a chart record from the inline extra attributes of a Harbor artifact."""
        self.check_media_type(artifact.media_type)
        if not artifact.extra_attrs:
            raise MalformedArtifactError(
                f"artifact {artifact.image}@{artifact.digest} has no extra attributes"
            )
        if not artifact.digest:
            raise MalformedArtifactError(f"artifact {artifact.image} has no digest")
        return self._record(artifact.extra_attrs, artifact.digest)

    def _record(self, data: Any, content_digest: str) -> ChartRecord:
        if not isinstance(data, dict):
            raise MalformedArtifactError("chart metadata is not an object")
        try:
            record = ChartRecord.model_validate(_without_digest(data))
        except ValidationError as e:
            raise MalformedArtifactError(f"chart metadata is invalid: {e}") from e
        if not record.name or not record.version:
            raise MalformedArtifactError("chart metadata lacks a name or version")
        return record.model_copy(update={"content_digest": content_digest})


def _without_digest(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k != "content_digest"}
