"""Shared fixtures: in-process fake registries and HTTP clients pointed at them."""

from collections.abc import AsyncGenerator

import pytest
from aiohttp.test_utils import TestServer

from oci_chartrepo.chart_tools.cache import CatalogCache
from oci_chartrepo.chart_tools.http_client import RegistryHttpClient

from fakes import FakeHarbor, FakeRegistry


@pytest.fixture(name="cache")
def cache_fixture() -> CatalogCache:
    return CatalogCache()


@pytest.fixture(name="fake_registry")
def fake_registry_fixture() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture(name="registry_server")
async def registry_server_fixture(
    fake_registry: FakeRegistry,
) -> AsyncGenerator[TestServer, None]:
    """Serve the fake registry on a local port."""
    server = TestServer(fake_registry.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture(name="registry_url")
def registry_url_fixture(registry_server: TestServer) -> str:
    return str(registry_server.make_url("")).rstrip("/")


@pytest.fixture(name="registry_client")
async def registry_client_fixture(
    registry_url: str,
) -> AsyncGenerator[RegistryHttpClient, None]:
    async with RegistryHttpClient(registry_url, timeout=5, verify_tls=False) as client:
        yield client


@pytest.fixture(name="fake_harbor")
def fake_harbor_fixture() -> FakeHarbor:
    return FakeHarbor()


@pytest.fixture(name="harbor_server")
async def harbor_server_fixture(fake_harbor: FakeHarbor) -> AsyncGenerator[TestServer, None]:
    """Serve the fake Harbor instance on a local port."""
    server = TestServer(fake_harbor.app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture(name="harbor_url")
def harbor_url_fixture(harbor_server: TestServer) -> str:
    return str(harbor_server.make_url("")).rstrip("/")


@pytest.fixture(name="harbor_client")
async def harbor_client_fixture(harbor_url: str) -> AsyncGenerator[RegistryHttpClient, None]:
    async with RegistryHttpClient(harbor_url, timeout=5, verify_tls=False) as client:
        yield client
