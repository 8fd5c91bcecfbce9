"""Data models for the OCI chart repository."""

from typing import Any, Dict, List, Optional, Tuple
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict


def chart_path(name: str, version: str) -> str:
    """Logical path a chart version is addressed by."""
    return f"{name}-{version}.tgz"


class ChartRecord(BaseModel):
    """Chart metadata extracted from an OCI manifest config or Harbor artifact."""

    name: str
    version: str
    description: Optional[str] = None
    api_version: Optional[str] = Field(None, alias="apiVersion")
    app_version: Optional[str] = Field(None, alias="appVersion")
    type: Optional[str] = None
    content_digest: str = Field(default="", exclude=True)

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    @property
    def logical_path(self) -> str:
        return chart_path(self.name, self.version)


class ChartReference(BaseModel):
    """Where the payload of a chart version can be pulled from."""

    coordinates: str
    content_digest: str

    model_config = ConfigDict(frozen=True)

    def split(self) -> Tuple[str, str]:
        """Split coordinates into (repository, tag or digest).

        Accepts ``repo@sha256:...`` and ``repo:tag``; a colon inside the
        repository part (a registry port) is not taken as a tag separator.
        """
        if "@" in self.coordinates:
            repository, reference = self.coordinates.split("@", 1)
            return repository, reference
        repository, sep, tag = self.coordinates.rpartition(":")
        if not sep or "/" in tag:
            return self.coordinates, "latest"
        return repository, tag


class StrictTarget(BaseModel):
    """One explicit chart to enumerate in strict mode."""

    repository: str
    version: str

    def split(self) -> Tuple[str, str]:
        """Split ``project/repo`` on the first slash."""
        project, sep, name = self.repository.partition("/")
        if not sep:
            return "", self.repository
        return project, name


class WhiteList(BaseModel):
    """Inclusion policy configuration as loaded from the whitelist file."""

    harbor: Dict[str, List[str]] = Field(default_factory=dict)
    registry: Dict[str, List[str]] = Field(default_factory=dict)
    strict: List[StrictTarget] = Field(default_factory=list)


# OCI wire models


class Descriptor(BaseModel):
    """OCI content descriptor."""

    media_type: str = Field(alias="mediaType")
    digest: str
    size: int = 0
    annotations: Optional[Dict[str, str]] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class OciManifest(BaseModel):
    """OCI image manifest."""

    schema_version: int = Field(2, alias="schemaVersion")
    media_type: Optional[str] = Field(None, alias="mediaType")
    config: Descriptor
    layers: List[Descriptor] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ArtifactDescriptor(BaseModel):
    """Backend-neutral view of one candidate artifact.

    The registry variant fills ``manifest``; the Harbor variant fills
    ``media_type``, ``digest`` and ``extra_attrs`` from its artifact API.
    """

    namespace: Optional[str] = None
    repository: str
    reference: Optional[str] = None
    digest: Optional[str] = None
    media_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    manifest: Optional[OciManifest] = None
    extra_attrs: Optional[Dict[str, Any]] = None

    @property
    def image(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.repository}"
        return self.repository


class RegistryCatalog(BaseModel):
    repositories: Optional[List[str]] = None


class RegistryTagList(BaseModel):
    name: str
    tags: Optional[List[str]] = None


class HarborSystemInfo(BaseModel):
    harbor_version: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class HarborProject(BaseModel):
    project_id: Optional[int] = None
    name: str

    model_config = ConfigDict(extra="ignore")


class HarborRepository(BaseModel):
    id: Optional[int] = None
    project_id: Optional[int] = None
    name: str

    model_config = ConfigDict(extra="ignore")


class HarborTag(BaseModel):
    name: str

    model_config = ConfigDict(extra="ignore")


class HarborArtifact(BaseModel):
    """Artifact as returned by the Harbor v2 artifact API."""

    id: Optional[int] = None
    digest: str
    media_type: Optional[str] = None
    manifest_media_type: Optional[str] = None
    size: Optional[int] = None
    tags: Optional[List[HarborTag]] = None
    extra_attrs: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="ignore")

    def to_descriptor(self, project: str, repository: str) -> ArtifactDescriptor:
        tags = [t.name for t in self.tags or []]
        return ArtifactDescriptor(
            namespace=project,
            repository=repository,
            reference=tags[0] if tags else self.digest,
            digest=self.digest,
            media_type=self.media_type,
            tags=tags,
            extra_attrs=self.extra_attrs,
        )


# Index document


class ChartVersionEntry(BaseModel):
    """One chart version in a repository index."""

    name: str
    version: str
    description: Optional[str] = None
    api_version: Optional[str] = Field(None, alias="apiVersion")
    app_version: Optional[str] = Field(None, alias="appVersion")
    type: Optional[str] = None
    digest: str
    urls: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


class IndexFile(BaseModel):
    """Helm repository index document."""

    api_version: str = Field("v1", alias="apiVersion")
    entries: Dict[str, List[ChartVersionEntry]] = Field(default_factory=dict)
    generated: str

    model_config = ConfigDict(populate_by_name=True)


# MCP Response Models - Unified structures for all MCP tool responses


class ErrorType(str, Enum):
    """Standard error types for MCP responses."""

    CHART_NOT_FOUND = "chart_not_found"
    INVALID_ARTIFACT = "invalid_artifact"
    TRANSPORT_FAILED = "transport_failed"
    CATALOG_UNAVAILABLE = "catalog_unavailable"


class BaseResponse(BaseModel):
    """Base response model for all MCP tool responses."""

    success: bool
    message: str
    error: Optional[ErrorType] = None
    details: Optional[str] = None
    action_required: Optional[str] = None


class ChartSummary(BaseModel):
    """Chart version information used across multiple responses."""

    name: str
    version: str
    path: str
    description: Optional[str] = None
    app_version: Optional[str] = None
    digest: str


class RefreshResponse(BaseResponse):
    """Response model for refresh_catalog tool."""

    charts_accepted: int = 0
    charts_cached: int = 0


class ListChartsResponse(BaseResponse):
    """Response model for list_charts tool."""

    charts: List[ChartSummary] = Field(default_factory=list)


class ChartInfoResponse(BaseResponse):
    """Response model for get_chart_info tool."""

    chart: Optional[ChartSummary] = None
    api_version: Optional[str] = None
    type: Optional[str] = None
    coordinates: Optional[str] = None


class VerifyResponse(BaseResponse):
    """Response model for verify_chart tool."""

    path: Optional[str] = None
    size: int = 0
    digest: Optional[str] = None
