"""Catalog sources: a plain OCI registry and a Harbor v2 instance."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import ValidationError

from .config import (
    ChartMediaTypes,
    ForeignManifestMediaTypes,
    OciManifestMediaTypes,
    settings,
)
from .exceptions import ChartRepoError, MalformedArtifactError, NotAChartError
from .http_client import RegistryHttpClient
from .models import (
    ArtifactDescriptor,
    HarborArtifact,
    HarborProject,
    HarborRepository,
    HarborSystemInfo,
    OciManifest,
    RegistryCatalog,
    RegistryTagList,
)

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(t.value for t in OciManifestMediaTypes)

# Upper bound on followed listing pages
MAX_CATALOG_PAGES = 100

HARBOR_API_PREFIX = "/api/v2.0"


def parse_manifest(body: bytes, where: str) -> OciManifest:
    """Decode an OCI manifest.

    Raises:
        NotAChartError: If the body is an image index, a manifest list or a
            schema 1 manifest
        MalformedArtifactError: If the body is not a manifest
    """
    try:
        data = json.loads(body)
    except ValueError as e:
        raise MalformedArtifactError(f"Invalid manifest for {where}: {e}") from e

    if isinstance(data, dict):
        media_type = data.get("mediaType")
        foreign = {t.value for t in ForeignManifestMediaTypes}
        if media_type in foreign or "manifests" in data or data.get("schemaVersion") == 1:
            raise NotAChartError(
                f"{where} is a {media_type or 'schema 1'} manifest, not a chart"
            )

    try:
        return OciManifest.model_validate(data)
    except ValidationError as e:
        raise MalformedArtifactError(f"Invalid manifest for {where}: {e}") from e


class RegistrySource:
    """Enumerates charts through the OCI distribution API of a plain registry.

    Repositories are flat image names and artifacts are tags whose manifests
    are fetched one by one.
    """

    def __init__(self, client: RegistryHttpClient, page_size: Optional[int] = None):
        self.client = client
        self.page_size = page_size or settings.http_config.page_size

    async def list_repositories(self) -> List[str]:
        """List every image name in the registry catalog, following Link pagination."""
        repositories: List[str] = []
        path = "/v2/_catalog"
        params = {"n": self.page_size}

        for _ in range(MAX_CATALOG_PAGES):
            data, response = await self.client.get_json(path, params=params)
            try:
                catalog = RegistryCatalog.model_validate(data)
            except ValidationError as e:
                raise MalformedArtifactError(f"Unexpected catalog response: {e}") from e
            repositories.extend(catalog.repositories or [])

            next_url = response.links.get("next")
            if not next_url:
                break
            path, params = next_url, None
        else:
            logger.warning(
                f"Stopped following catalog pages after {MAX_CATALOG_PAGES} pages"
            )

        logger.info(f"Registry catalog lists {len(repositories)} repositories")
        return repositories

    async def list_artifacts(self, repository: str) -> List[ArtifactDescriptor]:
        """List the tags of an image as artifact stubs without manifests."""
        data, _ = await self.client.get_json(f"/v2/{repository}/tags/list")
        try:
            tag_list = RegistryTagList.model_validate(data)
        except ValidationError as e:
            raise MalformedArtifactError(f"Unexpected tag list for {repository}: {e}") from e

        return [
            ArtifactDescriptor(repository=repository, reference=tag, tags=[tag])
            for tag in tag_list.tags or []
        ]

    async def get_artifact(self, repository: str, tag: str) -> ArtifactDescriptor:
        """Fetch the manifest of one tag."""
        response = await self.client.request(
            "GET",
            f"/v2/{repository}/manifests/{tag}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        manifest = parse_manifest(response.body, f"{repository}:{tag}")
        return ArtifactDescriptor(
            repository=repository,
            reference=tag,
            digest=response.headers.get("Docker-Content-Digest"),
            media_type=manifest.config.media_type,
            tags=[tag],
            manifest=manifest,
        )

    async def download_config_blob(self, repository: str, digest: str) -> bytes:
        return await self.client.get_bytes(f"/v2/{repository}/blobs/{digest}")


class HarborSource:
    """Enumerates charts through the Harbor v2 project, repository and artifact API."""

    def __init__(self, client: RegistryHttpClient, page_size: Optional[int] = None):
        self.client = client
        self.page_size = page_size or settings.http_config.page_size

    @staticmethod
    def _encode_repository(repository: str) -> str:
        # Harbor expects nested repository names double-encoded in the path
        return quote(quote(repository, safe=""), safe="")

    async def probe(self) -> bool:
        """Return True if the endpoint reports a Harbor v2 version."""
        try:
            data, _ = await self.client.get_json(f"{HARBOR_API_PREFIX}/systeminfo")
            info = HarborSystemInfo.model_validate(data)
        except (ChartRepoError, ValidationError) as e:
            logger.info(f"Harbor system info probe failed at {self.client.base_url}: {e}")
            return False

        logger.info(f"Harbor system info reports version {info.harbor_version!r}")
        return bool(info.harbor_version and info.harbor_version.startswith("v2"))

    async def _list_pages(
        self, path: str, params: Dict[str, Any], what: str
    ) -> List[Any]:
        """Collect every page of a Harbor listing.

        Harbor pages by ``page``/``page_size``; a page shorter than the page
        size is the last one.

        Raises:
            MalformedArtifactError: If a page is not a JSON array
        """
        items: List[Any] = []
        for page in range(1, MAX_CATALOG_PAGES + 1):
            data, _ = await self.client.get_json(
                path, params={**params, "page": page, "page_size": self.page_size}
            )
            if data is None:
                data = []
            if not isinstance(data, list):
                raise MalformedArtifactError(
                    f"Unexpected {what} listing: {type(data).__name__} instead of a list"
                )
            items.extend(data)
            if len(data) < self.page_size:
                break
        else:
            logger.warning(
                f"Stopped following {what} pages after {MAX_CATALOG_PAGES} pages, "
                f"the listing may be incomplete"
            )
        return items

    async def list_projects(self) -> List[str]:
        data = await self._list_pages(f"{HARBOR_API_PREFIX}/projects", {}, "project")
        try:
            projects = [HarborProject.model_validate(p) for p in data]
        except ValidationError as e:
            raise MalformedArtifactError(f"Unexpected project list: {e}") from e
        return [p.name for p in projects]

    async def list_repositories(
        self, project: str, name: Optional[str] = None
    ) -> List[str]:
        """List repository names of a project, without the project prefix.

        Args:
            project: Harbor project name
            name: Optional server-side fuzzy name filter

        Returns:
            Repository names relative to the project
        """
        params: Dict[str, Any] = {}
        if name:
            # harbor api supports fuzzy matching of name with '~'
            params["q"] = f"name=~{name}"
        data = await self._list_pages(
            f"{HARBOR_API_PREFIX}/projects/{project}/repositories",
            params,
            f"{project} repository",
        )
        try:
            repositories = [HarborRepository.model_validate(r) for r in data]
        except ValidationError as e:
            raise MalformedArtifactError(f"Unexpected repository list for {project}: {e}") from e

        prefix = f"{project}/"
        return [
            r.name[len(prefix) :] if r.name.startswith(prefix) else r.name
            for r in repositories
        ]

    async def list_artifacts(self, project: str, repository: str) -> List[ArtifactDescriptor]:
        """List chart artifacts of a repository, filtered server-side by media type."""
        data = await self._list_pages(
            f"{HARBOR_API_PREFIX}/projects/{project}/repositories/"
            f"{self._encode_repository(repository)}/artifacts",
            {
                "with_tag": "true",
                "q": f"media_type={ChartMediaTypes.CONFIG.value}",
            },
            f"{project}/{repository} artifact",
        )
        descriptors = []
        for item in data:
            try:
                artifact = HarborArtifact.model_validate(item)
            except ValidationError as e:
                logger.warning(f"Skipping unreadable artifact in {project}/{repository}: {e}")
                continue
            descriptors.append(artifact.to_descriptor(project, repository))
        return descriptors

    async def get_artifact(
        self, project: str, repository: str, reference: str
    ) -> ArtifactDescriptor:
        """Look up one artifact by tag or digest."""
        data, _ = await self.client.get_json(
            f"{HARBOR_API_PREFIX}/projects/{project}/repositories/"
            f"{self._encode_repository(repository)}/artifacts/{reference}",
            params={"with_tag": "true"},
        )
        try:
            artifact = HarborArtifact.model_validate(data)
        except ValidationError as e:
            raise MalformedArtifactError(
                f"Invalid artifact {project}/{repository}:{reference}: {e}"
            ) from e
        return artifact.to_descriptor(project, repository)
