"""Search documents and update analysis derived from registry packuments."""

import hashlib
import json
import logging
from datetime import datetime

import nodesemver

from npmsync.models.enums import Severity, UpdateType
from npmsync.models.notification import SecurityAnalysis, UpdateEnrichment, VersionAnalysis
from npmsync.registry.advisories import AdvisoryClient
from npmsync.registry.results import Fetched

logger = logging.getLogger(__name__)

NO_TEST_SCRIPT = 'echo "Error: no test specified" && exit 1'

_FUNDING_PLATFORMS = (
    ("github.com/sponsors", "github"),
    ("opencollective.com", "opencollective"),
    ("patreon.com", "patreon"),
    ("ko-fi.com", "ko-fi"),
)

SNIPPET_MAX_LENGTH = 280


def _url_of(value) -> str | None:
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("url") or None
    return None


def _person_name(value) -> str | None:
    if isinstance(value, str):
        return value.split("<", 1)[0].strip() or None
    if isinstance(value, dict):
        return value.get("name") or None
    return None


def funding_info(funding) -> tuple[str | None, list[str]]:
    """First funding URL and the distinct platforms it points at."""
    entries = funding if isinstance(funding, list) else [funding] if funding else []
    first_url = None
    platforms: list[str] = []
    for entry in entries:
        url = _url_of(entry)
        if not url:
            continue
        first_url = first_url or url
        platform = next((p for marker, p in _FUNDING_PLATFORMS if marker in url), "other")
        if platform not in platforms:
            platforms.append(platform)
    return first_url, platforms


def latest_manifest(packument: dict) -> tuple[str | None, dict]:
    latest = (packument.get("dist-tags") or {}).get("latest")
    versions = packument.get("versions") or {}
    if not latest:
        return None, {}
    return latest, versions.get(latest) or {}


def build_search_document(packument: dict) -> dict:
    """Index document for a packument, without popularity fields."""
    name = packument["name"]
    latest, manifest = latest_manifest(packument)
    deps = manifest.get("dependencies") or {}
    dep_specs = [v for v in deps.values() if isinstance(v, str)]
    scripts = manifest.get("scripts") or {}
    dist = manifest.get("dist") or {}
    funding_url, funding_platforms = funding_info(manifest.get("funding") or packument.get("funding"))
    modified = (packument.get("time") or {}).get("modified")
    bin_field = manifest.get("bin")
    repository = manifest.get("repository") or packument.get("repository")
    engines = manifest.get("engines")

    return {
        "id": name,
        "name": name,
        "description": manifest.get("description") or packument.get("description") or "",
        "version": latest or "",
        "keywords": [k for k in manifest.get("keywords") or packument.get("keywords") or [] if isinstance(k, str)],
        "license": manifest.get("license") if isinstance(manifest.get("license"), str) else None,
        "author": _person_name(manifest.get("author") or packument.get("author")),
        "homepage": manifest.get("homepage") or packument.get("homepage"),
        "repository": _url_of(repository),
        "bugs_url": _url_of(packument.get("bugs")),
        "modified": _to_timestamp(modified),
        "bin_commands": sorted(bin_field) if isinstance(bin_field, dict) else [],
        "engine_node": engines.get("node") if isinstance(engines, dict) else None,
        "os": manifest.get("os") or [],
        "cpu": manifest.get("cpu") or [],
        "is_monorepo": bool(manifest.get("workspaces")),
        "maintainers_count": len(packument.get("maintainers") or []),
        "contributors_count": len(packument.get("contributors") or []),
        "funding_url": funding_url,
        "funding_platforms": funding_platforms,
        "has_install_scripts": bool(scripts.get("preinstall") or scripts.get("install") or scripts.get("postinstall")),
        "has_git_deps": any(v.startswith(("git://", "git+")) or "github:" in v for v in dep_specs),
        "has_http_deps": any(v.startswith(("http://", "https://")) for v in dep_specs),
        "has_tests": bool(scripts.get("test")) and scripts.get("test") != NO_TEST_SCRIPT,
        "readme_size": len(packument.get("readme") or ""),
        "unpacked_size": int(dist.get("unpackedSize") or 0),
        "file_count": int(dist.get("fileCount") or 0),
        "deprecated": bool(manifest.get("deprecated")),
    }


def _to_timestamp(value) -> int | None:
    if not isinstance(value, str):
        return None
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return None


def document_hash(document: dict) -> str:
    """Stable hash of a search document; key order does not matter."""
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode()).hexdigest()


def _parse(version: str | None):
    if not version:
        return None
    try:
        return nodesemver.parse(version, True)
    except (ValueError, TypeError):
        return None


def analyze_version_change(previous: str | None, new: str) -> VersionAnalysis:
    """Classify a version bump. Under 0.x a minor bump counts as breaking."""
    old_v, new_v = _parse(previous), _parse(new)
    if old_v is None or new_v is None:
        return VersionAnalysis(update_type=UpdateType.UNKNOWN, is_breaking_change=False)

    if new_v.major != old_v.major:
        update_type = UpdateType.MAJOR
    elif new_v.minor != old_v.minor:
        update_type = UpdateType.MINOR
    elif new_v.patch != old_v.patch:
        update_type = UpdateType.PATCH
    elif new_v.prerelease != old_v.prerelease:
        update_type = UpdateType.PRERELEASE
    else:
        update_type = UpdateType.UNKNOWN

    breaking = update_type == UpdateType.MAJOR or (
        update_type == UpdateType.MINOR and new_v.major == 0
    )
    return VersionAnalysis(update_type=update_type, is_breaking_change=breaking)


def compute_severity(version: VersionAnalysis, security: SecurityAnalysis) -> Severity:
    if security.is_security_update:
        return Severity.CRITICAL
    if version.is_breaking_change:
        return Severity.IMPORTANT
    return Severity.INFO


def changelog_snippet(manifest: dict) -> str | None:
    text = manifest.get("deprecated") or manifest.get("description")
    if not isinstance(text, str) or not text.strip():
        return None
    text = " ".join(text.split())
    if len(text) > SNIPPET_MAX_LENGTH:
        text = text[:SNIPPET_MAX_LENGTH - 1].rstrip() + "…"
    return text


class UpdateEnricher:
    """Computes the UpdateEnrichment for a package moving between versions."""

    def __init__(self, advisories: AdvisoryClient | None):
        self.advisories = advisories

    async def analyze_security(self, name: str, previous: str | None, new: str) -> SecurityAnalysis:
        """Advisories that affected ``previous`` and no longer affect ``new``.

        Lookup failures make the update count as a non-security update.
        """
        if self.advisories is None or not previous:
            return SecurityAnalysis()
        before = await self.advisories.vulnerability_ids(name, previous)
        after = await self.advisories.vulnerability_ids(name, new)
        if not isinstance(before, Fetched) or not isinstance(after, Fetched):
            logger.info("Advisory lookup failed for %s, treating as non-security update", name)
            return SecurityAnalysis()
        fixed = sorted(set(before.value) - set(after.value))
        return SecurityAnalysis(
            is_security_update=bool(fixed),
            vulnerabilities_fixed=len(fixed),
            advisory_ids=fixed,
        )

    async def enrich(self, packument: dict, previous: str | None, new: str) -> UpdateEnrichment:
        version = analyze_version_change(previous, new)
        security = await self.analyze_security(packument["name"], previous, new)
        manifest = (packument.get("versions") or {}).get(new) or {}
        return UpdateEnrichment(
            severity=compute_severity(version, security),
            version_analysis=version,
            security_analysis=security,
            changelog_snippet=changelog_snippet(manifest),
        )
