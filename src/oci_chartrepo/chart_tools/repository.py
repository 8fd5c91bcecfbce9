"""Chart repository facade wiring backend, cache, catalog passes and downloads."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

import aiohttp

from .backend import Backend, create_backend
from .cache import CatalogCache
from .catalog_builder import CatalogBuilder
from .config import ChartRepoSettings, HttpConfig, RegistryOptions, settings
from .exceptions import ChartRepoError
from .index_builder import IndexBuilder
from .loaders import load_docker_credentials, load_whitelist
from .models import ChartRecord, Descriptor, IndexFile, WhiteList
from .oci_transport import OciTransport
from .policy import InclusionPolicy
from .retriever import ArtifactRetriever

logger = logging.getLogger(__name__)


class ChartRepository:
    """A Helm chart repository served from an OCI registry or Harbor instance.

    Use as an async context manager, or call ``start`` and ``close``.
    """

    def __init__(
        self,
        options: RegistryOptions,
        whitelist: Optional[WhiteList] = None,
        http_config: Optional[HttpConfig] = None,
        cache: Optional[CatalogCache] = None,
    ):
        self.options = options
        self.whitelist = whitelist or WhiteList()
        self.http_config = http_config or settings.http_config
        self.cache = cache if cache is not None else CatalogCache()
        self.index_builder = IndexBuilder(self.cache)

        self.session: Optional[aiohttp.ClientSession] = None
        self.backend: Optional[Backend] = None
        self.builder: Optional[CatalogBuilder] = None
        self.retriever: Optional[ArtifactRetriever] = None

    @classmethod
    async def from_settings(
        cls, config: Optional[ChartRepoSettings] = None
    ) -> "ChartRepository":
        """Build an unstarted repository from settings and the local config files."""
        config = config or settings
        whitelist = await load_whitelist(config.whitelist_path)
        options = await load_docker_credentials(
            config.secret_config_path, config.registry_options
        )
        return cls(options, whitelist=whitelist, http_config=config.http_config)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self) -> None:
        """Open the HTTP session and select the backend."""
        if self.session is not None:
            return
        self.session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                ssl=None if self.http_config.verify_tls else False
            )
        )
        try:
            self.backend = await create_backend(self.options, self.session, self.http_config)
        except BaseException:
            await self.close()
            raise

        policy = InclusionPolicy.for_backend(self.whitelist, self.backend.kind.value)
        logger.info(f"Inclusion policy mode is {policy.mode.value}")
        self.builder = CatalogBuilder(self.backend, policy, self.cache)
        self.retriever = ArtifactRetriever(self.cache, OciTransport(self.backend.client))

    async def close(self) -> None:
        if self.builder is not None:
            await self.builder.stop()
        if self.session is not None:
            await self.session.close()
            self.session = None

    def _require_started(self) -> None:
        if self.builder is None or self.retriever is None:
            raise RuntimeError("Chart repository not started")

    async def refresh(self) -> List[ChartRecord]:
        """Run a catalog pass (or join the running one)."""
        self._require_started()
        return await self.builder.refresh()

    async def get_index(self) -> IndexFile:
        """Return the index, running a first catalog pass if none completed yet."""
        self._require_started()
        if self.builder.passes_completed == 0:
            await self.refresh()
        return self.index_builder.build()

    async def get_index_yaml(self) -> str:
        return self.index_builder.render(await self.get_index())

    async def get_chart(self, path: str) -> bytes:
        self._require_started()
        return await self.retriever.get_chart(path)

    async def pull_chart(self, path: str) -> Tuple[Descriptor, bytes]:
        self._require_started()
        return await self.retriever.pull_chart(path)

    async def run_periodic_refresh(self, interval: float) -> None:
        """Run catalog passes every ``interval`` seconds until cancelled.

        Failed passes are logged and retried at the next tick.
        """
        logger.info(f"Refreshing catalog every {interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh()
            except ChartRepoError as e:
                logger.error(f"Periodic catalog pass failed: {e}")
