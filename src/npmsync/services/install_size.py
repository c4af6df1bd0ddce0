"""Install-size computation over a package's transitive dependency tree.

The resolver walks the tree breadth first, one level at a time. Each level
fetches the packuments of newly discovered dependency names in bounded
parallel batches, picks a concrete version for each range, drops versions
that cannot install on the target platform and sums ``dist.unpackedSize``.
Packuments are cached for the duration of a single resolution only.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import nodesemver

from npmsync.cache import Cache, CacheKey
from npmsync.errors.exceptions import UpstreamError
from npmsync.models.install_size import InstallSize, ResolvedPackage
from npmsync.registry.results import (
    Fetched,
    FetchResult,
    PermanentFailure,
    RetryPolicy,
    should_retry,
)

logger = logging.getLogger(__name__)

PackumentFetcher = Callable[[str], Awaitable[FetchResult]]

_UNRESOLVABLE_PREFIXES = ("http://", "https://", "git", "file:", "link:", "workspace:")


@dataclass(frozen=True)
class Platform:
    os: str = "linux"
    cpu: str = "x64"
    libc: str = "glibc"


def matches_constraint(allowed: list[str] | None, value: str) -> bool:
    """npm-style os/cpu/libc matching, with ``!name`` entries as exclusions."""
    if not allowed:
        return True
    if f"!{value}" in allowed:
        return False
    positives = [entry for entry in allowed if not entry.startswith("!")]
    if positives:
        return value in positives
    return True


def matches_platform(manifest: dict, platform: Platform) -> bool:
    return (
        matches_constraint(manifest.get("os"), platform.os)
        and matches_constraint(manifest.get("cpu"), platform.cpu)
        and matches_constraint(manifest.get("libc"), platform.libc)
    )


def parse_specifier(name: str, spec: str) -> tuple[str, str] | None:
    """Map a dependency entry onto the (package, range) to resolve.

    ``npm:`` aliases point at another package; URL, git, file and path
    specifiers cannot be resolved against the registry and give None.
    """
    spec = (spec or "").strip()
    if spec.startswith("npm:"):
        target = spec[4:]
        at = target.rfind("@")
        if at > 0:
            return target[:at], target[at + 1:] or "*"
        return target, "*"
    if spec.startswith(_UNRESOLVABLE_PREFIXES) or "/" in spec:
        return None
    return name, spec or "*"


def resolve_version(packument: dict, range_: str) -> str | None:
    """Pick the concrete version a range would install, or None."""
    versions = packument.get("versions") or {}
    if range_ in versions:
        return range_
    dist_tags = packument.get("dist-tags") or {}
    if range_ in dist_tags and dist_tags[range_] in versions:
        return dist_tags[range_]
    try:
        return nodesemver.max_satisfying(list(versions), range_, loose=True)
    except (ValueError, TypeError):
        return None


def dependencies_of(manifest: dict) -> dict[str, str]:
    deps: dict[str, str] = {}
    for section in ("dependencies", "optionalDependencies"):
        value = manifest.get(section)
        if isinstance(value, dict):
            deps.update({k: v for k, v in value.items() if isinstance(v, str)})
    return deps


def unpacked_size(manifest: dict) -> int:
    dist = manifest.get("dist") or {}
    size = dist.get("unpackedSize")
    return int(size) if isinstance(size, (int, float)) and size > 0 else 0


@dataclass
class _Traversal:
    packuments: dict[str, FetchResult] = field(default_factory=dict)
    resolved: dict[str, ResolvedPackage] = field(default_factory=dict)
    seen: set[str] = field(default_factory=set)
    partial: bool = False


class InstallSizeResolver:
    """Bounded breadth-first dependency resolver.

    Stops at ``max_packages`` resolved packages or after ``timeout``
    seconds, returning the sums gathered so far with ``partial=True``.
    """

    def __init__(
        self,
        fetch_packument: PackumentFetcher,
        max_packages: int = 500,
        timeout: float = 15.0,
        concurrency: int = 20,
        platform: Platform | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch_packument = fetch_packument
        self.max_packages = max_packages
        self.timeout = timeout
        self.concurrency = concurrency
        self.platform = platform or Platform()
        self.retry_policy = retry_policy or RetryPolicy(max_retries=2, base_delay=0.25, max_delay=2.0)
        self._sleep = sleep

    @classmethod
    def from_settings(cls, fetch_packument: PackumentFetcher, settings) -> "InstallSizeResolver":
        return cls(
            fetch_packument,
            max_packages=settings.resolver_max_packages,
            timeout=settings.resolver_timeout,
            concurrency=settings.resolver_concurrency,
            platform=Platform(settings.resolver_os, settings.resolver_cpu, settings.resolver_libc),
            retry_policy=RetryPolicy(
                max_retries=settings.resolver_fetch_retries, base_delay=0.25, max_delay=2.0
            ),
        )

    async def resolve_install_size(self, name: str, version: str | None = None) -> InstallSize | None:
        """Install size of ``name`` at ``version`` (default: latest).

        Returns None when the package or the requested version does not exist.
        Raises UpstreamError when the root packument cannot be fetched.
        """
        state = _Traversal()
        root_result = await self._fetch(state, name)
        if isinstance(root_result, PermanentFailure):
            return None
        if not isinstance(root_result, Fetched):
            raise UpstreamError(
                "REGISTRY_UNAVAILABLE",
                f"Could not fetch package '{name}' from the registry",
                {"reason": root_result.reason},
            )

        packument = root_result.value
        requested = version or (packument.get("dist-tags") or {}).get("latest")
        root_version = resolve_version(packument, requested) if requested else None
        if root_version is None:
            return None
        manifest = packument["versions"][root_version]
        root = ResolvedPackage(name=name, version=root_version, unpacked_size=unpacked_size(manifest))
        state.resolved[root.key] = root
        state.seen.add(name)

        started = time.monotonic()
        try:
            async with asyncio.timeout(self.timeout):
                await self._traverse(state, dependencies_of(manifest))
        except TimeoutError:
            state.partial = True
            logger.warning(
                "Install size for %s@%s timed out after %.1fs with %d packages",
                name, root_version, time.monotonic() - started, len(state.resolved),
            )

        total = sum(pkg.unpacked_size for pkg in state.resolved.values())
        return InstallSize(
            name=name,
            version=root_version,
            self_size=root.unpacked_size,
            total_size=total,
            dependency_count=len(state.resolved) - 1,
            partial=state.partial,
        )

    async def _traverse(self, state: _Traversal, level: dict[str, str]) -> None:
        while level:
            wanted: dict[str, str] = {}
            for dep_name, spec in level.items():
                target = parse_specifier(dep_name, spec)
                if target is None:
                    logger.debug("Skipping unresolvable specifier %s@%s", dep_name, spec)
                    continue
                target_name, range_ = target
                if target_name not in state.seen and target_name not in wanted:
                    wanted[target_name] = range_

            names = list(wanted)
            next_level: dict[str, str] = {}
            for start in range(0, len(names), self.concurrency):
                batch = names[start:start + self.concurrency]
                manifests = await asyncio.gather(
                    *(self._resolve_one(state, dep, wanted[dep]) for dep in batch)
                )
                for dep, manifest in zip(batch, manifests):
                    state.seen.add(dep)
                    if manifest is None:
                        continue
                    if len(state.resolved) >= self.max_packages:
                        state.partial = True
                        return
                    pkg = ResolvedPackage(
                        name=dep, version=manifest["version"], unpacked_size=unpacked_size(manifest)
                    )
                    state.resolved.setdefault(pkg.key, pkg)
                    for child, child_spec in dependencies_of(manifest).items():
                        next_level.setdefault(child, child_spec)
            level = next_level

    async def _resolve_one(self, state: _Traversal, name: str, range_: str) -> dict | None:
        """The installable manifest of ``name`` for ``range_``, or None."""
        result = await self._fetch(state, name)
        if not isinstance(result, Fetched):
            return None
        packument = result.value
        version = resolve_version(packument, range_)
        if version is None:
            return None
        manifest = dict(packument["versions"][version])
        if not matches_platform(manifest, self.platform):
            return None
        manifest["version"] = version
        return manifest

    async def _fetch(self, state: _Traversal, name: str) -> FetchResult:
        if name in state.packuments:
            return state.packuments[name]
        attempt = 1
        while True:
            result = await self.fetch_packument(name)
            if not should_retry(result, attempt, self.retry_policy):
                break
            await self._sleep(self.retry_policy.delay_for(attempt, result))
            attempt += 1
        state.packuments[name] = result
        return result


class InstallSizeService:
    """Resolver results cached across requests."""

    def __init__(self, resolver: InstallSizeResolver, cache: Cache, ttl: int):
        self.resolver = resolver
        self.cache = cache
        self.ttl = ttl

    async def get(self, name: str, version: str | None = None) -> InstallSize | None:
        key = CacheKey.install_size(name, version or "latest")
        cached = await self.cache.get(key)
        if cached is not None:
            return InstallSize.model_validate(cached)

        result = await self.resolver.resolve_install_size(name, version)
        if result is not None and not result.partial:
            await self.cache.set(key, result.model_dump(by_alias=True), self.ttl)
        return result
