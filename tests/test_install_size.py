"""Tests for the install-size resolver and its cache."""

import asyncio

import pytest

from npmsync.cache import MemoryCache
from npmsync.errors.exceptions import UpstreamError
from npmsync.registry.results import Fetched, PermanentFailure, TransientFailure
from npmsync.services.install_size import (
    InstallSizeResolver,
    InstallSizeService,
    Platform,
    matches_constraint,
    parse_specifier,
    resolve_version,
)

from helpers import RecordingSleep, manifest


class FakeFetcher:
    """Serves packuments from a dict and counts calls per name."""

    def __init__(self):
        self.packuments: dict[str, dict] = {}
        self.transient: set[str] = set()
        self.slow: set[str] = set()
        self.calls: dict[str, int] = {}

    def add(self, name: str, *versions: dict, latest: str | None = None) -> None:
        self.packuments[name] = {
            "name": name,
            "dist-tags": {"latest": latest or versions[-1]["version"]},
            "versions": {m["version"]: m for m in versions},
        }

    async def __call__(self, name: str):
        self.calls[name] = self.calls.get(name, 0) + 1
        if name in self.slow:
            await asyncio.sleep(5)
        if name in self.transient:
            return TransientFailure("HTTP 503")
        if name not in self.packuments:
            return PermanentFailure("HTTP 404", status_code=404)
        return Fetched(self.packuments[name])


@pytest.fixture
def fetcher():
    return FakeFetcher()


def _resolver(fetcher, **kwargs):
    kwargs.setdefault("sleep", RecordingSleep())
    return InstallSizeResolver(fetcher, **kwargs)


def test_parse_specifier_variants():
    assert parse_specifier("lodash", "^4.17.0") == ("lodash", "^4.17.0")
    assert parse_specifier("my-lodash", "npm:lodash@^4") == ("lodash", "^4")
    assert parse_specifier("types", "npm:@types/node@20") == ("@types/node", "20")
    assert parse_specifier("x", "git+https://github.com/x/x.git") is None
    assert parse_specifier("y", "file:../y") is None
    assert parse_specifier("z", "user/repo") is None
    assert parse_specifier("w", "") == ("w", "*")


def test_resolve_version_prefers_exact_then_tag_then_range():
    packument = {
        "dist-tags": {"latest": "1.2.0", "next": "2.0.0-beta.1"},
        "versions": {"1.0.0": {}, "1.2.0": {}, "1.3.0": {}, "2.0.0-beta.1": {}},
    }
    assert resolve_version(packument, "1.0.0") == "1.0.0"
    assert resolve_version(packument, "next") == "2.0.0-beta.1"
    assert resolve_version(packument, "^1.0.0") == "1.3.0"
    assert resolve_version(packument, "^3.0.0") is None


def test_platform_constraints_support_negation():
    assert matches_constraint(None, "linux")
    assert matches_constraint(["linux", "darwin"], "linux")
    assert not matches_constraint(["darwin"], "linux")
    assert not matches_constraint(["!linux"], "linux")
    assert matches_constraint(["!win32"], "linux")


@pytest.mark.asyncio
async def test_diamond_dependency_is_counted_once(fetcher):
    fetcher.add("a", manifest("a", "1.0.0", 100, {"b": "^1.0.0", "c": "^1.0.0"}))
    fetcher.add("b", manifest("b", "1.0.0", 10), manifest("b", "1.1.0", 20))
    fetcher.add("c", manifest("c", "1.0.0", 30, {"b": "^1.0.0"}))

    result = await _resolver(fetcher).resolve_install_size("a")

    assert result.version == "1.0.0"
    assert result.self_size == 100
    assert result.total_size == 150
    assert result.dependency_count == 2
    assert result.partial is False
    assert fetcher.calls["b"] == 1
    assert result.model_dump(by_alias=True) == {
        "name": "a",
        "version": "1.0.0",
        "selfSize": 100,
        "totalSize": 150,
        "dependencyCount": 2,
        "partial": False,
    }


@pytest.mark.asyncio
async def test_aliases_and_unresolvable_specifiers(fetcher):
    fetcher.add("app", manifest("app", "2.0.0", 5, {
        "my-lodash": "npm:lodash@^4",
        "local": "file:../local",
        "fork": "github:someone/fork",
        "remote": "https://example.com/pkg.tgz",
    }))
    fetcher.add("lodash", manifest("lodash", "4.17.21", 1000))

    result = await _resolver(fetcher).resolve_install_size("app", "2.0.0")

    assert result.dependency_count == 1
    assert result.total_size == 1005
    assert set(fetcher.calls) == {"app", "lodash"}


@pytest.mark.asyncio
async def test_platform_incompatible_optional_dependency_is_skipped(fetcher):
    root = manifest("watcher", "1.0.0", 50, optionalDependencies={"fsevents": "^2.0.0"})
    fetcher.add("watcher", root)
    fetcher.add("fsevents", manifest("fsevents", "2.3.3", 900, os=["darwin"]))

    result = await _resolver(fetcher, platform=Platform("linux", "x64")).resolve_install_size("watcher")

    assert result.dependency_count == 0
    assert result.total_size == 50


@pytest.mark.asyncio
async def test_package_cap_marks_partial(fetcher):
    fetcher.add("root", manifest("root", "1.0.0", 1, {"d1": "*", "d2": "*", "d3": "*"}))
    for name in ("d1", "d2", "d3"):
        fetcher.add(name, manifest(name, "1.0.0", 1))

    result = await _resolver(fetcher, max_packages=2).resolve_install_size("root")

    assert result.partial is True
    assert result.dependency_count == 1


@pytest.mark.asyncio
async def test_timeout_marks_partial(fetcher):
    fetcher.add("root", manifest("root", "1.0.0", 7, {"fast": "*", "slow": "*"}))
    fetcher.add("fast", manifest("fast", "1.0.0", 3))
    fetcher.add("slow", manifest("slow", "1.0.0", 3))
    fetcher.slow.add("slow")

    result = await _resolver(fetcher, timeout=0.1).resolve_install_size("root")

    assert result.partial is True
    assert result.self_size == 7


@pytest.mark.asyncio
async def test_missing_package_or_version_returns_none(fetcher):
    fetcher.add("exists", manifest("exists", "1.0.0"))
    resolver = _resolver(fetcher)

    assert await resolver.resolve_install_size("nope") is None
    assert await resolver.resolve_install_size("exists", "9.9.9") is None


@pytest.mark.asyncio
async def test_transient_root_failure_raises_after_retries(fetcher):
    fetcher.transient.add("flaky")
    sleep = RecordingSleep()

    with pytest.raises(UpstreamError) as excinfo:
        await _resolver(fetcher, sleep=sleep).resolve_install_size("flaky")

    assert excinfo.value.code == "REGISTRY_UNAVAILABLE"
    assert fetcher.calls["flaky"] == 3
    assert sleep.delays == [0.25, 0.5]


@pytest.mark.asyncio
async def test_transient_dependency_failure_is_skipped(fetcher):
    fetcher.add("root", manifest("root", "1.0.0", 10, {"flaky": "^1.0.0"}))
    fetcher.transient.add("flaky")

    result = await _resolver(fetcher).resolve_install_size("root")

    assert result.total_size == 10
    assert result.dependency_count == 0


@pytest.mark.asyncio
async def test_service_caches_complete_results(fetcher):
    fetcher.add("a", manifest("a", "1.0.0", 100))
    cache = MemoryCache()
    service = InstallSizeService(_resolver(fetcher), cache, ttl=60)

    first = await service.get("a")
    second = await service.get("a")

    assert first == second
    assert fetcher.calls["a"] == 1


@pytest.mark.asyncio
async def test_service_does_not_cache_partial_results(fetcher):
    fetcher.add("root", manifest("root", "1.0.0", 1, {"d1": "*", "d2": "*"}))
    fetcher.add("d1", manifest("d1", "1.0.0", 1))
    fetcher.add("d2", manifest("d2", "1.0.0", 1))
    cache = MemoryCache()
    service = InstallSizeService(_resolver(fetcher, max_packages=2), cache, ttl=60)

    assert (await service.get("root")).partial is True
    assert len(cache) == 0
