"""Slack delivery through the Web API ``chat.postMessage`` method."""

import logging

import httpx

from npmsync.models.jobs import DeliveryContent
from npmsync.registry.results import (
    Fetched,
    FetchResult,
    PermanentFailure,
    TransientFailure,
    classify_response,
)

logger = logging.getLogger(__name__)

_SEVERITY_EMOJI: dict[str, str] = {
    "critical": "\U0001f534",   # 🔴
    "important": "\U0001f7e0",  # 🟠
    "info": "\U0001f535",       # 🔵
}

# Slack-side conditions that clear up on their own
_TRANSIENT_SLACK_ERRORS = {"ratelimited", "internal_error", "fatal_error", "service_unavailable", "request_timeout"}


class SlackClient:
    """Posts Block Kit messages with a per-installation bot token."""

    def __init__(self, http: httpx.AsyncClient, api_url: str = "https://slack.com/api"):
        self.http = http
        self.api_url = api_url.rstrip("/")

    async def post_message(self, access_token: str, channel: str, text: str, blocks: list[dict]) -> FetchResult:
        """Send one message.

        Slack answers HTTP 200 with ``ok: false`` for most API errors, so the
        body decides between success, retry and permanent failure.
        """
        try:
            response = await self.http.post(
                f"{self.api_url}/chat.postMessage",
                json={"channel": channel, "text": text, "blocks": blocks},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TransportError as exc:
            return TransientFailure(f"{type(exc).__name__}: {exc}")

        result = classify_response(response)
        if not isinstance(result, Fetched):
            return result

        body = result.value
        if body.get("ok"):
            return result
        error = body.get("error") or "unknown_error"
        if error in _TRANSIENT_SLACK_ERRORS:
            return TransientFailure(f"slack error: {error}")
        return PermanentFailure(f"slack error: {error}", status_code=response.status_code)


def build_update_message(content: DeliveryContent, site_url: str) -> tuple[str, list[dict]]:
    """Fallback text and Block Kit blocks for a package update."""
    emoji = _SEVERITY_EMOJI.get(content.severity, "❓")
    arrow = f"{content.previous_version} → {content.new_version}" if content.previous_version else content.new_version
    title = f"{content.package_name} {arrow}"
    text = f"{emoji} {title}"

    tags = []
    if content.is_security_update:
        fixed = content.vulnerabilities_fixed
        tags.append(f"Security fix ({fixed} {'vulnerability' if fixed == 1 else 'vulnerabilities'})")
    if content.is_breaking_change:
        tags.append("Breaking change")

    blocks: list[dict] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": text, "emoji": True},
        },
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Severity:*\n{content.severity}"},
                {"type": "mrkdwn", "text": f"*Version:*\n{content.new_version}"},
            ],
        },
    ]
    if tags:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": " · ".join(tags)}]}
        )
    if content.changelog_snippet:
        blocks.append(
            {"type": "section", "text": {"type": "mrkdwn", "text": content.changelog_snippet}}
        )
    blocks.append(
        {
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View package"},
                    "url": f"{site_url.rstrip('/')}/{content.package_name}",
                }
            ],
        }
    )
    return text, blocks
