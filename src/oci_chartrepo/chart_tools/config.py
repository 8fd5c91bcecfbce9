"""Configuration models for the OCI chart repository."""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChartMediaTypes(str, Enum):
    """Media types reserved for Helm charts stored as OCI artifacts."""

    CONFIG = "application/vnd.cncf.helm.config.v1+json"
    CONTENT_LAYER = "application/tar+gzip"


KNOWN_MEDIA_TYPES: Tuple[str, ...] = (
    ChartMediaTypes.CONFIG.value,
    ChartMediaTypes.CONTENT_LAYER.value,
)


class OciManifestMediaTypes(str, Enum):
    """Manifest media types accepted when pulling from a registry."""

    OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
    DOCKER_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"


class ForeignManifestMediaTypes(str, Enum):
    """Manifest media types that can never hold a chart (indexes and schema 1)."""

    OCI_INDEX = "application/vnd.oci.image.index.v1+json"
    DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
    DOCKER_MANIFEST_V1 = "application/vnd.docker.distribution.manifest.v1+json"
    DOCKER_MANIFEST_V1_SIGNED = "application/vnd.docker.distribution.manifest.v1+prettyjws"


class SchemeTypes(str, Enum):
    """Registry URL scheme constants."""

    HTTP = "http"
    HTTPS = "https"


class McpResourceUris(str, Enum):
    """MCP resource URI constants."""

    INDEX = "chartrepo://index"
    SUMMARY = "chartrepo://summary"


class McpToolNames(str, Enum):
    """MCP tool name constants."""

    REFRESH_CATALOG = "refresh_catalog"
    LIST_CHARTS = "list_charts"
    GET_CHART_INFO = "get_chart_info"
    VERIFY_CHART = "verify_chart"


class RegistryOptions(BaseModel):
    """Registry or Harbor endpoint configuration."""

    url: str = Field(..., description="Registry address, with or without scheme")
    scheme: str = Field(default="", description="http or https, inferred if empty")
    username: Optional[str] = Field(None, description="Registry username")
    password: Optional[str] = Field(None, description="Registry password")

    @property
    def host(self) -> str:
        """Registry DNS name (and port) without scheme or trailing slash."""
        host = self.url
        for scheme in SchemeTypes:
            prefix = f"{scheme.value}://"
            if host.lower().startswith(prefix):
                host = host[len(prefix) :]
                break
        return host.split("/", 1)[0]

    @property
    def has_credentials(self) -> bool:
        return bool(self.username or self.password)

    def with_inferred_scheme(self) -> "RegistryOptions":
        """Return a copy whose scheme is taken from the scheme field or the URL.

        The scheme stays empty when neither carries one; callers then have to
        probe the endpoint.
        """
        scheme = self.scheme.lower()
        if scheme not in (SchemeTypes.HTTP.value, SchemeTypes.HTTPS.value):
            lowered = self.url.lower()
            if lowered.startswith(f"{SchemeTypes.HTTPS.value}://"):
                scheme = SchemeTypes.HTTPS.value
            elif lowered.startswith(f"{SchemeTypes.HTTP.value}://"):
                scheme = SchemeTypes.HTTP.value
            else:
                scheme = ""
        return self.model_copy(update={"scheme": scheme})

    def base_url(self, scheme: Optional[str] = None) -> str:
        """Build the endpoint root URL for the given (or configured) scheme."""
        scheme = scheme or self.scheme or SchemeTypes.HTTPS.value
        return f"{scheme}://{self.host}"

    def matches_host(self, target: str) -> bool:
        """Compare a credentials entry key with the configured URL, ignoring scheme."""
        other = RegistryOptions(url=target)
        return other.host == self.host


class HttpConfig(BaseModel):
    """HTTP configuration."""

    timeout: int = Field(default=30, ge=1, description="HTTP timeout in seconds")
    verify_tls: bool = Field(default=False, description="Verify TLS certificates")
    page_size: int = Field(default=500, ge=1, description="Listing page size")


class ChartRepoSettings(BaseSettings):
    """Main configuration settings for the OCI chart repository."""

    model_config = SettingsConfigDict(
        env_prefix="CHARTREPO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Registry settings
    registry_url: str = Field(
        default="localhost:5000", description="OCI registry or Harbor address"
    )
    registry_scheme: str = Field(default="", description="http or https")
    registry_username: Optional[str] = Field(None, description="Registry username")
    registry_password: Optional[str] = Field(None, description="Registry password")

    # HTTP settings
    http_timeout: int = Field(default=30, ge=1, description="HTTP timeout in seconds")
    insecure_skip_verify: bool = Field(
        default=True, description="Skip TLS verification for self-signed registries"
    )
    page_size: int = Field(default=500, ge=1, description="Listing page size")

    # Local configuration files
    whitelist_path: Path = Field(
        default=Path("/etc/config/whitelist.conf"),
        description="Inclusion policy JSON file",
    )
    secret_config_path: Path = Field(
        default=Path("/etc/secret/dockerconfigjson"),
        description="dockerconfigjson credentials file",
    )

    # Server settings
    host: str = Field(default="0.0.0.0", description="HTTP listen address")
    port: int = Field(default=8080, ge=1, le=65535, description="HTTP listen port")
    refresh_interval: int = Field(
        default=0, ge=0, description="Seconds between catalog passes, 0 disables"
    )

    @property
    def registry_options(self) -> RegistryOptions:
        """Get registry endpoint configuration."""
        return RegistryOptions(
            url=self.registry_url,
            scheme=self.registry_scheme,
            username=self.registry_username,
            password=self.registry_password,
        )

    @property
    def http_config(self) -> HttpConfig:
        """Get HTTP configuration."""
        return HttpConfig(
            timeout=self.http_timeout,
            verify_tls=not self.insecure_skip_verify,
            page_size=self.page_size,
        )


settings = ChartRepoSettings()
