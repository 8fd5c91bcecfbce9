"""Tests for the registry HTTP client."""

import pytest
from aiohttp import test_utils

from oci_chartrepo.chart_tools.exceptions import SkipCandidateError, TransportError
from oci_chartrepo.chart_tools.http_client import (
    RegistryHttpClient,
    classify_status,
    error_codes,
    parse_challenge,
    predict_scope,
)

from fakes import FakeRegistry, make_chart


def test_parse_challenge() -> None:
    challenge = parse_challenge(
        'Bearer realm="https://auth.example.com/token",service="registry",scope="repository:a/b:pull"'
    )
    assert challenge == {
        "realm": "https://auth.example.com/token",
        "service": "registry",
        "scope": "repository:a/b:pull",
    }
    assert parse_challenge('Basic realm="registry"') is None


@pytest.mark.parametrize(
    ("path", "scope"),
    [
        ("/v2/_catalog", "registry:catalog:*"),
        ("http://registry/v2/_catalog?n=10&last=a", "registry:catalog:*"),
        ("/v2/charts/mychart/tags/list", "repository:charts/mychart:pull"),
        ("/v2/charts/mychart/manifests/1.0.0", "repository:charts/mychart:pull"),
        ("/v2/mychart/blobs/sha256:abc", "repository:mychart:pull"),
        ("/api/v2.0/projects", ""),
    ],
)
def test_predict_scope(path: str, scope: str) -> None:
    assert predict_scope(path) == scope


def test_error_codes() -> None:
    assert error_codes(b'{"errors": [{"code": "denied"}, {"code": "NAME_UNKNOWN"}]}') == [
        "DENIED",
        "NAME_UNKNOWN",
    ]
    assert error_codes(b"<html>") == []
    assert error_codes(b"[]") == []


@pytest.mark.parametrize("status", [401, 403, 404, 412])
def test_classify_skip_statuses(status: int) -> None:
    with pytest.raises(SkipCandidateError) as exc_info:
        classify_status(status, b"", "http://registry/v2/x/tags/list")
    assert exc_info.value.status == status


def test_classify_policy_violation_code() -> None:
    body = b'{"errors": [{"code": "PROJECT_POLICY_VIOLATION"}]}'
    with pytest.raises(SkipCandidateError) as exc_info:
        classify_status(400, body, "http://harbor/v2/x/manifests/1")
    assert exc_info.value.codes == ("PROJECT_POLICY_VIOLATION",)


@pytest.mark.parametrize("status", [400, 500, 502, 503])
def test_classify_transport_statuses(status: int) -> None:
    with pytest.raises(TransportError):
        classify_status(status, b"{}", "http://registry/v2/")


async def test_get_json(fake_registry: FakeRegistry, registry_client: RegistryHttpClient) -> None:
    fake_registry.push("charts/mychart", "1.0.0", make_chart("mychart", "1.0.0"))
    data, response = await registry_client.get_json("/v2/charts/mychart/tags/list")
    assert data == {"name": "charts/mychart", "tags": ["1.0.0"]}
    assert response.status == 200


async def test_unknown_name_is_skip(registry_client: RegistryHttpClient) -> None:
    with pytest.raises(SkipCandidateError) as exc_info:
        await registry_client.get_json("/v2/nothing/tags/list")
    assert exc_info.value.codes == ("NAME_UNKNOWN",)


async def test_ping(registry_client: RegistryHttpClient) -> None:
    assert await registry_client.ping()


async def test_unreachable_is_transport_error() -> None:
    async with RegistryHttpClient("http://127.0.0.1:1", timeout=2) as client:
        with pytest.raises(TransportError):
            await client.get_json("/v2/_catalog")
        assert not await client.ping()


async def test_bearer_token_flow() -> None:
    fake = FakeRegistry(token_auth=True, username="robot", password="secret")
    fake.push("charts/mychart", "1.0.0", make_chart("mychart", "1.0.0"))
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    try:
        base_url = str(server.make_url("")).rstrip("/")
        async with RegistryHttpClient(base_url, username="robot", password="secret", timeout=5) as client:
            data, _ = await client.get_json("/v2/charts/mychart/tags/list")
            assert data["tags"] == ["1.0.0"]
            # the cached token for the scope is reused
            await client.get_json("/v2/charts/mychart/tags/list")
    finally:
        await server.close()

    assert fake.token_requests == [
        {"service": "fake-registry", "scope": "repository:charts/mychart:pull"}
    ]


async def test_bearer_token_refused() -> None:
    fake = FakeRegistry(token_auth=True, username="robot", password="secret")
    server = test_utils.TestServer(fake.app())
    await server.start_server()
    try:
        base_url = str(server.make_url("")).rstrip("/")
        async with RegistryHttpClient(base_url, username="robot", password="wrong", timeout=5) as client:
            with pytest.raises(SkipCandidateError):
                await client.get_json("/v2/charts/mychart/tags/list")
    finally:
        await server.close()


async def test_shared_session_not_closed(registry_url: str, registry_client: RegistryHttpClient) -> None:
    other = registry_client.with_base_url(registry_url)
    await other.close()
    assert registry_client.session is not None
    assert not registry_client.session.closed
    assert await other.ping()
