"""Catalog passes: enumerate the backend, validate charts and fill the cache."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Set

from .backend import Backend, BackendKind
from .cache import CatalogCache
from .exceptions import (
    CatalogUnavailableError,
    ChartRepoError,
    MalformedArtifactError,
    NotAChartError,
    SkipCandidateError,
    TransportError,
)
from .models import ArtifactDescriptor, ChartRecord, ChartReference
from .policy import InclusionPolicy, PolicyMode
from .sources import HarborSource, RegistrySource
from .validator import ManifestValidator

logger = logging.getLogger(__name__)


class _CatalogPass:
    """Per-pass bookkeeping of accepted records and the digests seen so far."""

    def __init__(self, cache: CatalogCache):
        self.cache = cache
        self.records: List[ChartRecord] = []
        self.seen: Set[str] = set()

    def accept(self, record: ChartRecord, coordinates: str) -> None:
        self.seen.add(record.content_digest)
        self.records.append(record)
        self.cache.commit(
            record,
            ChartReference(coordinates=coordinates, content_digest=record.content_digest),
        )
        logger.debug(f"Accepted chart {record.logical_path} at {coordinates}")


class CatalogBuilder:
    """Runs catalog passes against one backend under one inclusion policy.

    Per-artifact failures are logged and skipped. Only a failure of the
    top-level listing call aborts a pass. Passes are single-flight: a
    refresh requested while one is running waits for that pass instead of
    starting another.
    """

    def __init__(
        self,
        backend: Backend,
        policy: InclusionPolicy,
        cache: CatalogCache,
        validator: Optional[ManifestValidator] = None,
    ):
        self.backend = backend
        self.policy = policy
        self.cache = cache
        self.validator = validator or ManifestValidator()
        self.passes_completed = 0
        self._running: Optional[asyncio.Future] = None

    async def refresh(self) -> List[ChartRecord]:
        """Run one catalog pass, or join the pass already in flight.

        Returns:
            Records accepted by the pass, with pairwise distinct digests

        Raises:
            CatalogUnavailableError: If the top-level listing fails
        """
        if self._running is None or self._running.done():
            self._running = asyncio.ensure_future(self._run_pass())
        else:
            logger.info("Catalog pass already running, joining it")
        return await asyncio.shield(self._running)

    async def stop(self) -> None:
        """Cancel the pass in flight, if any."""
        if self._running is None or self._running.done():
            return
        self._running.cancel()
        try:
            await self._running
        except asyncio.CancelledError:
            pass

    async def _run_pass(self) -> List[ChartRecord]:
        mode = self.policy.mode
        logger.info(
            f"Starting {mode.value} catalog pass against "
            f"{self.backend.kind.value} backend {self.backend.host}"
        )
        start = time.monotonic()

        catalog_pass = _CatalogPass(self.cache)
        if self.backend.kind is BackendKind.HARBOR:
            await self._harbor_pass(catalog_pass, mode)
        else:
            await self._registry_pass(catalog_pass, mode)

        self.passes_completed += 1
        logger.info(
            f"Catalog pass accepted {len(catalog_pass.records)} charts in "
            f"{time.monotonic() - start:.2f}s ({len(self.cache)} cached)"
        )
        return catalog_pass.records

    async def _list_top_level(self, what: str, coro) -> List[str]:
        try:
            return await coro
        except ChartRepoError as e:
            logger.error(f"Cannot list {what} on {self.backend.host}: {e}")
            raise CatalogUnavailableError(f"Cannot list {what} on {self.backend.host}: {e}") from e

    # Registry variant

    async def _registry_pass(self, catalog_pass: _CatalogPass, mode: PolicyMode) -> None:
        source: RegistrySource = self.backend.source

        if mode is PolicyMode.STRICT:
            for target in self.policy.strict_targets():
                project, name = target.split()
                image = f"{project}/{name}" if project else name
                await self._collect_registry_tag(source, catalog_pass, image, target.version)
            return

        if mode is PolicyMode.MATCH:
            candidates: List[str] = []
            if self.policy.has_patterns():
                candidates = await self._list_top_level("repositories", source.list_repositories())
            images = self.policy.match_candidates(candidates)
        else:
            repositories = await self._list_top_level("repositories", source.list_repositories())
            images = {image: [] for image in repositories}

        for image, tags in images.items():
            try:
                await self._collect_registry_image(source, catalog_pass, image, tags)
            except TransportError as e:
                logger.error(f"Aborting enumeration at {image}: {e}")
                break

    async def _collect_registry_image(
        self,
        source: RegistrySource,
        catalog_pass: _CatalogPass,
        image: str,
        tags: List[str],
    ) -> None:
        if not tags:
            try:
                tags = [a.reference for a in await source.list_artifacts(image)]
            except (SkipCandidateError, MalformedArtifactError) as e:
                logger.warning(f"Skipping image {image}: {e}")
                return

        for tag in tags:
            await self._collect_registry_tag(source, catalog_pass, image, tag)

    async def _collect_registry_tag(
        self,
        source: RegistrySource,
        catalog_pass: _CatalogPass,
        image: str,
        tag: str,
    ) -> None:
        coordinates = f"{image}:{tag}"
        try:
            artifact = await source.get_artifact(image, tag)
            layer = self.validator.validate_manifest(artifact.manifest)
            digest = layer.digest
            if digest in catalog_pass.seen:
                logger.debug(f"Skipping {coordinates}, digest {digest} already accepted")
                return

            record = self.cache.get_by_digest(digest)
            if record is None:
                blob = await source.download_config_blob(image, artifact.manifest.config.digest)
                record = self.validator.record_from_config_blob(blob, digest)
        except NotAChartError as e:
            logger.debug(f"Skipping {coordinates}: {e}")
            return
        except (MalformedArtifactError, SkipCandidateError, TransportError) as e:
            logger.warning(f"Skipping {coordinates}: {e}")
            return

        catalog_pass.accept(record, coordinates)

    # Harbor variant

    async def _harbor_pass(self, catalog_pass: _CatalogPass, mode: PolicyMode) -> None:
        source: HarborSource = self.backend.source

        if mode is PolicyMode.STRICT:
            for target in self.policy.strict_targets():
                project, name = target.split()
                where = f"{target.repository}:{target.version}"
                try:
                    artifact = await source.get_artifact(project, name, target.version)
                except ChartRepoError as e:
                    logger.warning(f"Skipping {where}: {e}")
                    continue
                self._collect_harbor_artifact(catalog_pass, artifact)
            return

        if mode is PolicyMode.MATCH:
            candidates: List[str] = []
            if self.policy.has_patterns():
                candidates = await self._list_top_level("projects", source.list_projects())
            projects = self.policy.match_candidates(candidates)
        else:
            names = await self._list_top_level("projects", source.list_projects())
            projects = {name: [] for name in names}

        for project, repositories in projects.items():
            await self._collect_harbor_project(source, catalog_pass, project, repositories)

    async def _collect_harbor_project(
        self,
        source: HarborSource,
        catalog_pass: _CatalogPass,
        project: str,
        repositories: List[str],
    ) -> None:
        names: List[str] = []
        try:
            if not repositories:
                names = await source.list_repositories(project)
            for wanted in repositories:
                # the server-side filter is fuzzy, keep exact names only
                found = await source.list_repositories(project, name=wanted)
                if wanted in found:
                    names.append(wanted)
                else:
                    logger.warning(f"Repository {project}/{wanted} not found")
        except ChartRepoError as e:
            logger.warning(f"Skipping project {project}: {e}")

        for repository in names:
            await self._collect_harbor_repository(source, catalog_pass, project, repository)

    async def _collect_harbor_repository(
        self,
        source: HarborSource,
        catalog_pass: _CatalogPass,
        project: str,
        repository: str,
    ) -> None:
        try:
            artifacts = await source.list_artifacts(project, repository)
        except ChartRepoError as e:
            logger.warning(f"Skipping repository {project}/{repository}: {e}")
            return

        for artifact in artifacts:
            self._collect_harbor_artifact(catalog_pass, artifact)

    def _collect_harbor_artifact(
        self, catalog_pass: _CatalogPass, artifact: ArtifactDescriptor
    ) -> None:
        where = f"{artifact.image}@{artifact.digest}"
        try:
            self.validator.check_media_type(artifact.media_type)
            if artifact.digest in catalog_pass.seen:
                logger.debug(f"Skipping {where}, already accepted")
                return
            record = self.validator.record_from_extra_attrs(artifact)
        except NotAChartError as e:
            logger.debug(f"Skipping {where}: {e}")
            return
        except MalformedArtifactError as e:
            logger.warning(f"Skipping {where}: {e}")
            return

        catalog_pass.accept(record, harbor_coordinates(artifact, record.version))


def harbor_coordinates(artifact: ArtifactDescriptor, version: str) -> str:
    """Pick the pull coordinates of a Harbor artifact.

    The tag equal to the chart version is preferred, then any tag, then the
    artifact digest.
    """
    if version in artifact.tags:
        return f"{artifact.image}:{version}"
    if artifact.tags:
        return f"{artifact.image}:{artifact.tags[0]}"
    return f"{artifact.image}@{artifact.digest}"

