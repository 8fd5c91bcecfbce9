"""Tests for catalog passes over in-memory registry and Harbor sources."""

import asyncio

import pytest

from oci_chartrepo.chart_tools.backend import Backend, BackendKind
from oci_chartrepo.chart_tools.cache import CatalogCache
from oci_chartrepo.chart_tools.catalog_builder import CatalogBuilder, harbor_coordinates
from oci_chartrepo.chart_tools.exceptions import (
    CatalogUnavailableError,
    SkipCandidateError,
    TransportError,
)
from oci_chartrepo.chart_tools.models import ArtifactDescriptor, StrictTarget
from oci_chartrepo.chart_tools.policy import InclusionPolicy

from fakes import CONTENT, FakeHarborSource, FakeRegistrySource, make_chart


@pytest.fixture(name="registry_source")
def registry_source_fixture() -> FakeRegistrySource:
    return FakeRegistrySource()


@pytest.fixture(name="harbor_source")
def harbor_source_fixture() -> FakeHarborSource:
    return FakeHarborSource()


def _registry_builder(
    source: FakeRegistrySource, cache: CatalogCache, policy: InclusionPolicy | None = None
) -> CatalogBuilder:
    backend = Backend(kind=BackendKind.REGISTRY, host="registry.local", source=source, client=None)
    return CatalogBuilder(backend, policy or InclusionPolicy(), cache)


def _harbor_builder(
    source: FakeHarborSource, cache: CatalogCache, policy: InclusionPolicy | None = None
) -> CatalogBuilder:
    backend = Backend(kind=BackendKind.HARBOR, host="harbor.local", source=source, client=None)
    return CatalogBuilder(backend, policy or InclusionPolicy(), cache)


async def test_registry_open_pass(registry_source: FakeRegistrySource, cache: CatalogCache) -> None:
    first = registry_source.push("charts/mychart", "1.0.0", make_chart("mychart", "1.0.0"))
    second = registry_source.push("charts/mychart", "1.1.0", make_chart("mychart", "1.1.0"))
    other = registry_source.push("charts/other", "0.1.0", make_chart("other", "0.1.0"))

    records = await _registry_builder(registry_source, cache).refresh()

    assert {r.logical_path for r in records} == {first.path, second.path, other.path}
    reference = cache.get_by_path("mychart-1.0.0.tgz")
    assert reference.coordinates == "charts/mychart:1.0.0"
    assert reference.content_digest == first.content_digest
    assert cache.get_by_digest(first.content_digest).name == "mychart"


async def test_registry_pass_deduplicates_by_digest(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    chart = make_chart("mychart", "1.0.0")
    registry_source.push("charts/mychart", "1.0.0", chart)
    registry_source.push("charts/mychart", "latest", chart)
    registry_source.push("mirror/mychart", "1.0.0", chart)

    records = await _registry_builder(registry_source, cache).refresh()

    assert len(records) == 1
    digests = [r.content_digest for r in records]
    assert len(digests) == len(set(digests))
    assert registry_source.count("download_config_blob") == 1


async def test_registry_pass_skips_invalid_artifacts(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    good = registry_source.push("charts/good", "1.0.0", make_chart("good", "1.0.0"))
    layer = {"mediaType": CONTENT, "digest": "sha256:" + "a" * 64, "size": 10}
    registry_source.push("charts/two-layers", "1.0.0", make_chart("two-layers", "1.0.0", layers=[layer, layer]))
    registry_source.push(
        "library/nginx",
        "1.25",
        make_chart("nginx", "1.25", config_media_type="application/vnd.oci.image.config.v1+json"),
    )

    records = await _registry_builder(registry_source, cache).refresh()

    assert [r.logical_path for r in records] == [good.path]
    assert cache.get_by_path("two-layers-1.0.0.tgz") is None
    assert len(cache) == 1


async def test_registry_pass_skips_denied_artifacts(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    registry_source.push("charts/a", "1.0.0", make_chart("a", "1.0.0"))
    registry_source.push("charts/b", "1.0.0", make_chart("b", "1.0.0"))
    registry_source.push("charts/c", "1.0.0", make_chart("c", "1.0.0"))
    registry_source.errors["charts/a"] = SkipCandidateError("denied", status=403)
    registry_source.errors["charts/b:1.0.0"] = TransportError("connection reset")

    records = await _registry_builder(registry_source, cache).refresh()

    assert [r.name for r in records] == ["c"]


async def test_registry_transport_failure_listing_tags_aborts_enumeration(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    registry_source.push("charts/a", "1.0.0", make_chart("a", "1.0.0"))
    registry_source.push("charts/b", "1.0.0", make_chart("b", "1.0.0"))
    registry_source.push("charts/c", "1.0.0", make_chart("c", "1.0.0"))
    registry_source.errors["charts/b"] = TransportError("connection refused")

    records = await _registry_builder(registry_source, cache).refresh()

    assert [r.name for r in records] == ["a"]
    assert ("list_artifacts", "charts/c") not in registry_source.calls


async def test_registry_top_level_failure_raises(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    registry_source.errors["_catalog"] = TransportError("connection refused")
    with pytest.raises(CatalogUnavailableError):
        await _registry_builder(registry_source, cache).refresh()


async def test_registry_match_mode(registry_source: FakeRegistrySource, cache: CatalogCache) -> None:
    registry_source.push("test/chart-xyz", "v1", make_chart("chart-xyz", "1.0.0"))
    registry_source.push("test/chart-xyz", "v2", make_chart("chart-xyz", "2.0.0"))
    registry_source.push("other/chart-xyz", "v1", make_chart("other-xyz", "1.0.0"))
    policy = InclusionPolicy(table={"^test/chart-.*$": ["v1"]})

    records = await _registry_builder(registry_source, cache, policy).refresh()

    assert [r.logical_path for r in records] == ["chart-xyz-1.0.0.tgz"]
    assert ("get_artifact", "other/chart-xyz", "v1") not in registry_source.calls
    assert registry_source.count("list_artifacts") == 0


async def test_registry_exact_keys_skip_catalog(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    registry_source.push("charts/mychart", "1.0.0", make_chart("mychart", "1.0.0"))
    registry_source.push("charts/mychart", "1.1.0", make_chart("mychart", "1.1.0"))
    policy = InclusionPolicy(table={"charts/mychart": []})

    records = await _registry_builder(registry_source, cache, policy).refresh()

    assert len(records) == 2
    assert registry_source.count("list_repositories") == 0


async def test_registry_strict_mode(registry_source: FakeRegistrySource, cache: CatalogCache) -> None:
    registry_source.push("acp/chart-demo", "2.0.0", make_chart("chart-demo", "2.0.0"))
    registry_source.push("acp/chart-demo", "1.0.0", make_chart("chart-demo", "1.0.0"))
    policy = InclusionPolicy(strict=[StrictTarget(repository="acp/chart-demo", version="2.0.0")])

    records = await _registry_builder(registry_source, cache, policy).refresh()

    assert [r.version for r in records] == ["2.0.0"]
    assert registry_source.count("get_artifact") == 1
    assert registry_source.count("list_repositories") == 0


async def test_pass_is_idempotent(registry_source: FakeRegistrySource, cache: CatalogCache) -> None:
    registry_source.push("charts/a", "1.0.0", make_chart("a", "1.0.0"))
    registry_source.push("charts/b", "2.0.0", make_chart("b", "2.0.0"))
    builder = _registry_builder(registry_source, cache)

    await builder.refresh()
    first = {r.content_digest for r in cache.snapshot_all_records()}
    await builder.refresh()
    second = {r.content_digest for r in cache.snapshot_all_records()}

    assert first == second
    assert len(cache) == 2
    assert builder.passes_completed == 2
    # the second pass reuses cached metadata instead of downloading config blobs
    assert registry_source.count("download_config_blob") == 2


async def test_concurrent_refresh_joins_running_pass(
    registry_source: FakeRegistrySource, cache: CatalogCache
) -> None:
    registry_source.push("charts/a", "1.0.0", make_chart("a", "1.0.0"))
    builder = _registry_builder(registry_source, cache)

    first, second = await asyncio.gather(builder.refresh(), builder.refresh())

    assert first == second
    assert builder.passes_completed == 1
    assert registry_source.count("list_repositories") == 1


async def test_harbor_open_pass(harbor_source: FakeHarborSource, cache: CatalogCache) -> None:
    chart = make_chart("chart-demo", "2.0.0")
    artifact = harbor_source.push("acp", "chart-demo", chart)
    harbor_source.push("acp", "chart-demo", make_chart("chart-demo", "1.0.0"))
    harbor_source.push("lib", "tools", make_chart("tools", "0.1.0"), tags=[])

    records = await _harbor_builder(harbor_source, cache).refresh()

    assert {r.logical_path for r in records} == {
        "chart-demo-2.0.0.tgz",
        "chart-demo-1.0.0.tgz",
        "tools-0.1.0.tgz",
    }
    reference = cache.get_by_path("chart-demo-2.0.0.tgz")
    assert reference.coordinates == "acp/chart-demo:2.0.0"
    # Harbor records are keyed by the artifact digest
    assert reference.content_digest == artifact.digest
    assert cache.get_by_path("tools-0.1.0.tgz").coordinates.startswith("lib/tools@sha256:")


async def test_harbor_match_mode(harbor_source: FakeHarborSource, cache: CatalogCache) -> None:
    harbor_source.push("acp", "chart-demo", make_chart("chart-demo", "2.0.0"))
    harbor_source.push("acp", "chart-demo-extra", make_chart("chart-demo-extra", "1.0.0"))
    harbor_source.push("team-a", "app", make_chart("app", "1.0.0"))
    harbor_source.push("other", "app", make_chart("other-app", "1.0.0"))
    policy = InclusionPolicy(table={"acp": ["chart-demo"], "^team-": []})

    records = await _harbor_builder(harbor_source, cache, policy).refresh()

    assert {r.logical_path for r in records} == {"chart-demo-2.0.0.tgz", "app-1.0.0.tgz"}
    assert ("list_repositories", "acp", "chart-demo") in harbor_source.calls


async def test_harbor_strict_mode(harbor_source: FakeHarborSource, cache: CatalogCache) -> None:
    harbor_source.push("acp", "chart-demo", make_chart("chart-demo", "2.0.0"))
    harbor_source.push("acp", "chart-demo", make_chart("chart-demo", "1.0.0"))
    policy = InclusionPolicy(strict=[StrictTarget(repository="acp/chart-demo", version="2.0.0")])

    records = await _harbor_builder(harbor_source, cache, policy).refresh()

    assert len(records) == 1
    assert records[0].version == "2.0.0"
    assert harbor_source.calls == [("get_artifact", "acp", "chart-demo", "2.0.0")]


async def test_harbor_strict_target_failure_is_contained(
    harbor_source: FakeHarborSource, cache: CatalogCache
) -> None:
    harbor_source.push("acp", "chart-demo", make_chart("chart-demo", "2.0.0"))
    policy = InclusionPolicy(
        strict=[
            StrictTarget(repository="acp/missing", version="1.0.0"),
            StrictTarget(repository="acp/chart-demo", version="2.0.0"),
        ]
    )

    records = await _harbor_builder(harbor_source, cache, policy).refresh()

    assert [r.name for r in records] == ["chart-demo"]


async def test_harbor_listing_errors_skip_repository(
    harbor_source: FakeHarborSource, cache: CatalogCache
) -> None:
    harbor_source.push("acp", "broken", make_chart("broken", "1.0.0"))
    harbor_source.push("acp", "fine", make_chart("fine", "1.0.0"))
    harbor_source.push("private", "secret", make_chart("secret", "1.0.0"))
    harbor_source.errors["acp/broken"] = TransportError("HTTP 500", status=500)
    harbor_source.errors["private"] = SkipCandidateError("forbidden", status=403)

    records = await _harbor_builder(harbor_source, cache).refresh()

    assert [r.name for r in records] == ["fine"]


async def test_harbor_skips_artifacts_without_metadata(
    harbor_source: FakeHarborSource, cache: CatalogCache
) -> None:
    harbor_source.push("acp", "chart", make_chart("chart", "1.0.0"), extra_attrs={})
    harbor_source.push("acp", "chart", make_chart("chart", "1.1.0"))

    records = await _harbor_builder(harbor_source, cache).refresh()

    assert [r.version for r in records] == ["1.1.0"]


async def test_harbor_top_level_failure_raises(
    harbor_source: FakeHarborSource, cache: CatalogCache
) -> None:
    harbor_source.errors["_projects"] = SkipCandidateError("unauthorized", status=401)
    with pytest.raises(CatalogUnavailableError):
        await _harbor_builder(harbor_source, cache).refresh()


def test_harbor_coordinates_preference() -> None:
    artifact = ArtifactDescriptor(
        namespace="acp", repository="chart", digest="sha256:abc", tags=["latest", "1.0.0"]
    )
    assert harbor_coordinates(artifact, "1.0.0") == "acp/chart:1.0.0"
    assert harbor_coordinates(artifact, "2.0.0") == "acp/chart:latest"
    artifact.tags = []
    assert harbor_coordinates(artifact, "1.0.0") == "acp/chart@sha256:abc"
