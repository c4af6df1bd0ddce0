"""Transactional email through a Resend-compatible HTTP API."""

import httpx

from npmsync.models.enums import DigestFrequency, Severity
from npmsync.models.jobs import DeliveryContent
from npmsync.models.notification import NotificationRecord
from npmsync.registry.results import FetchResult, TransientFailure, classify_response


class EmailClient:
    def __init__(self, http: httpx.AsyncClient, api_url: str, api_key: str, sender: str):
        self.http = http
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.sender = sender

    async def send(self, to: str, subject: str, text: str) -> FetchResult:
        try:
            response = await self.http.post(
                f"{self.api_url}/emails",
                json={"from": self.sender, "to": [to], "subject": subject, "text": text},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.TransportError as exc:
            return TransientFailure(f"{type(exc).__name__}: {exc}")
        return classify_response(response)


def render_critical_alert(content: DeliveryContent, site_url: str) -> tuple[str, str]:
    """Subject and plain-text body for an immediate critical alert."""
    subject = f"Security update: {content.package_name} {content.new_version}"
    lines = [
        f"{content.package_name} {content.new_version} is a critical update.",
    ]
    if content.previous_version:
        lines.append(f"Previous version: {content.previous_version}")
    if content.vulnerabilities_fixed:
        lines.append(f"Vulnerabilities fixed: {content.vulnerabilities_fixed}")
    if content.changelog_snippet:
        lines.extend(["", content.changelog_snippet])
    lines.extend(["", f"{site_url.rstrip('/')}/{content.package_name}"])
    return subject, "\n".join(lines)


_SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.IMPORTANT: 1, Severity.INFO: 2}


def render_digest(
    period: DigestFrequency, updates: list[NotificationRecord], site_url: str
) -> tuple[str, str]:
    """Subject and plain-text body summarising ``updates``, most severe first."""
    noun = "update" if len(updates) == 1 else "updates"
    subject = f"Your {period.value} npmsync digest: {len(updates)} package {noun}"
    base = site_url.rstrip("/")
    lines = []
    for update in sorted(updates, key=lambda u: _SEVERITY_ORDER[u.severity]):
        arrow = f"{update.previous_version} -> {update.new_version}" if update.previous_version else update.new_version
        tags = []
        if update.is_security_update:
            tags.append("security")
        if update.is_breaking_change:
            tags.append("breaking")
        suffix = f" ({', '.join(tags)})" if tags else ""
        lines.append(f"[{update.severity.value}] {update.package_name} {arrow}{suffix}")
        if update.changelog_snippet:
            lines.append(f"    {update.changelog_snippet}")
        lines.append(f"    {base}/{update.package_name}")
    lines.extend(["", f"Manage notification settings: {base}/settings/notifications"])
    return subject, "\n".join(lines)
