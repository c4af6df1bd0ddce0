"""In-process fakes for the registry and the other HTTP services."""

import json
from collections import deque

import httpx


def manifest(name: str, version: str, size: int = 0, deps: dict | None = None, **extra) -> dict:
    data = {"name": name, "version": version, "dist": {"unpackedSize": size}}
    if deps:
        data["dependencies"] = deps
    data.update(extra)
    return data


class FakeRegistry:
    """Routes httpx requests by host onto canned registry, OSV, Typesense, Slack and email responses."""

    def __init__(self):
        self.packuments: dict[str, dict] = {}
        self.status_overrides: dict[str, deque[int]] = {}
        self.changes: list[dict] = []
        self.changes_failures: deque[int] = deque()
        self.update_seq = 1000
        self.head_status: int | None = None
        self.doc_ids: list[str] = []
        self.listing_fail_after: int | None = None
        self.downloads: dict[str, int] = {}
        self.vulns: dict[tuple[str, str], list[str]] = {}
        self.index: dict[str, dict] = {}
        self.slack_messages: list[dict] = []
        self.slack_responses: deque[tuple[int, dict]] = deque()
        self.emails: list[dict] = []
        self.email_statuses: deque[int] = deque()
        self.requests: list[httpx.Request] = []

    # -- setup helpers -------------------------------------------------

    def add_package(self, name: str, versions: list[dict], latest: str | None = None, **extra) -> dict:
        packument = {
            "name": name,
            "dist-tags": {"latest": latest or versions[-1]["version"]},
            "versions": {m["version"]: m for m in versions},
            "time": {"modified": "2024-05-01T12:00:00.000Z"},
        }
        packument.update(extra)
        self.packuments[name] = packument
        return packument

    def fail_packument(self, name: str, *statuses: int) -> None:
        self.status_overrides.setdefault(name, deque()).extend(statuses)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def packument_fetches(self, name: str) -> int:
        return sum(
            1 for r in self.requests
            if r.url.host == "registry.npmjs.org" and r.url.path.lstrip("/") == name
        )

    # -- routing -------------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        if host == "registry.npmjs.org":
            return self._packument(request)
        if host == "replicate.npmjs.com":
            return self._replicate(request)
        if host == "api.npmjs.org":
            name = request.url.path.split("/", 4)[-1]
            return httpx.Response(200, json={"downloads": self.downloads.get(name, 0), "package": name})
        if host == "api.osv.dev":
            body = json.loads(request.content)
            ids = self.vulns.get((body["package"]["name"], body["version"]), [])
            return httpx.Response(200, json={"vulns": [{"id": i} for i in ids]} if ids else {})
        if host == "localhost":
            return self._typesense(request)
        if host == "slack.com":
            self.slack_messages.append(json.loads(request.content))
            status, body = self.slack_responses.popleft() if self.slack_responses else (200, {"ok": True})
            return httpx.Response(status, json=body)
        if host == "api.resend.com":
            status = self.email_statuses.popleft() if self.email_statuses else 200
            if status == 200:
                self.emails.append(json.loads(request.content))
            return httpx.Response(status, json={"id": "email_1"} if status == 200 else {"message": "error"})
        return httpx.Response(404, json={"error": "unknown host"})

    def _packument(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.lstrip("/")
        overrides = self.status_overrides.get(name)
        if overrides:
            return httpx.Response(overrides.popleft(), json={"error": "injected"})
        packument = self.packuments.get(name)
        if packument is None:
            return httpx.Response(404, json={"error": "Not found"})
        return httpx.Response(200, json=packument)

    def _replicate(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/_changes"):
            if self.changes_failures:
                return httpx.Response(self.changes_failures.popleft(), json={"error": "injected"})
            since = int(request.url.params["since"])
            limit = int(request.url.params["limit"])
            results = [c for c in self.changes if c["seq"] > since][:limit]
            last_seq = results[-1]["seq"] if results else since
            return httpx.Response(200, json={"results": results, "last_seq": last_seq})
        if path.endswith("/_all_docs"):
            limit = int(request.url.params["limit"])
            start = request.url.params.get("startkey")
            ids = sorted(self.doc_ids)
            if start is not None:
                key = json.loads(start)
                if self.listing_fail_after is not None and ids.index(key) >= self.listing_fail_after:
                    return httpx.Response(503, json={"error": "unavailable"})
                ids = [i for i in ids if i >= key]
            rows = [{"id": i, "key": i, "value": {"rev": "1-a"}} for i in ids[:limit]]
            return httpx.Response(200, json={"total_rows": len(self.doc_ids), "offset": 0, "rows": rows})
        if self.head_status:
            return httpx.Response(self.head_status, json={"error": "injected"})
        return httpx.Response(200, json={"db_name": "registry", "update_seq": f"{self.update_seq}-g1AAAA"})

    def _typesense(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            doc = json.loads(request.content)
            self.index[doc["id"]] = doc
            return httpx.Response(201, json=doc)
        if request.method == "DELETE":
            doc_id = request.url.path.rsplit("/", 1)[-1]
            if self.index.pop(doc_id, None) is None:
                return httpx.Response(404, json={"message": "Not found"})
            return httpx.Response(200, json={"id": doc_id})
        return httpx.Response(405)


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def add_user(session, user_id: str, favorites=(), preferences: dict | None = None, slack: dict | None = None):
    """Seed a user with favorites, optional preferences and an optional Slack connection."""
    from npmsync.repositories.user_repo import FavoriteRepository, PreferencesRepository, UserRepository
    from npmsync.db.models.user import IntegrationConnectionRow

    await UserRepository(session).create(id=user_id, email=f"{user_id}@example.com", name=user_id)
    for package_name in favorites:
        await FavoriteRepository(session).add(user_id, package_name)
    if preferences is not None:
        await PreferencesRepository(session).upsert(user_id, **preferences)
    if slack is not None:
        session.add(IntegrationConnectionRow(
            id=f"int_{user_id}",
            user_id=user_id,
            provider="slack",
            enabled=slack.pop("enabled", True),
            config=slack,
        ))
    await session.commit()
