"""Backend selection between a Harbor v2 instance and a plain OCI registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import aiohttp

from .config import HttpConfig, RegistryOptions, SchemeTypes, settings
from .exceptions import CatalogUnavailableError
from .http_client import RegistryHttpClient
from .sources import HarborSource, RegistrySource

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """Backend variants."""

    REGISTRY = "registry"
    HARBOR = "harbor"


@dataclass
class Backend:
    """A catalog source together with the endpoint it talks to."""

    kind: BackendKind
    host: str
    source: Union[RegistrySource, HarborSource]
    client: RegistryHttpClient


async def create_backend(
    options: RegistryOptions,
    session: aiohttp.ClientSession,
    http_config: Optional[HttpConfig] = None,
) -> Backend:
    """Probe the endpoint once and build the matching backend.

    A Harbor v2 system info answer selects the Harbor variant; anything else
    falls back to the registry variant. When no scheme is configured the
    registry is tried over HTTPS first, then HTTP.

    Args:
        options: Endpoint address and credentials
        session: Shared HTTP session
        http_config: Timeout, TLS and paging settings

    Returns:
        The selected backend

    Raises:
        CatalogUnavailableError: If the registry answers on neither scheme
    """
    http_config = http_config or settings.http_config
    options = options.with_inferred_scheme()

    client = RegistryHttpClient(
        options.base_url(options.scheme or SchemeTypes.HTTPS.value),
        username=options.username,
        password=options.password,
        session=session,
        timeout=http_config.timeout,
        verify_tls=http_config.verify_tls,
    )

    harbor = HarborSource(client, page_size=http_config.page_size)
    if await harbor.probe():
        logger.info(f"Created a harbor v2 type backend, which will connect to {client.base_url}")
        return Backend(
            kind=BackendKind.HARBOR, host=options.host, source=harbor, client=client
        )
    logger.warning(f"{options.url} is not harbor v2")

    if not options.scheme:
        for scheme in (SchemeTypes.HTTPS, SchemeTypes.HTTP):
            candidate = client.with_base_url(options.base_url(scheme.value))
            logger.info(f"Try to connect to the registry using {scheme.value} : {candidate.base_url}")
            if await candidate.ping():
                client = candidate
                break
        else:
            raise CatalogUnavailableError(f"Cannot connect to registry {options.url}")

    logger.info(f"Created a docker-registry type backend, which will connect to {client.base_url}")
    return Backend(
        kind=BackendKind.REGISTRY,
        host=options.host,
        source=RegistrySource(client, page_size=http_config.page_size),
        client=client,
    )
