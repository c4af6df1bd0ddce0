"""Tests for chat and email delivery workers."""

import pytest

from npmsync.integrations.email import render_critical_alert
from npmsync.integrations.slack import build_update_message
from npmsync.models.enums import Severity
from npmsync.models.jobs import ChatDeliveryJob, DeliveryContent, EmailDeliveryJob
from npmsync.services.delivery import ChatDeliveryWorker, EmailDeliveryWorker
from npmsync.workers.base import Completed, Failed, RetryLater

from helpers import add_user

CONTENT = DeliveryContent(
    package_name="lodash",
    new_version="4.17.21",
    previous_version="4.17.20",
    severity=Severity.CRITICAL,
    is_security_update=True,
    vulnerabilities_fixed=1,
    changelog_snippet="Fixes prototype pollution in zipObjectDeep",
)


@pytest.fixture
def chat_worker(runtime):
    return ChatDeliveryWorker(runtime.session_factory, runtime.slack_client, "https://npmsync.dev")


@pytest.fixture
def email_worker(runtime):
    return EmailDeliveryWorker(runtime.email_client, "https://npmsync.dev")


def _chat_job(integration_id="int_usr_a"):
    return ChatDeliveryJob(integration_id=integration_id, user_id="usr_a", notification=CONTENT)


def test_slack_message_lists_security_fix():
    text, blocks = build_update_message(CONTENT, "https://npmsync.dev/")

    assert "lodash 4.17.20 → 4.17.21" in text
    assert blocks[0]["type"] == "header"
    context = next(b for b in blocks if b["type"] == "context")
    assert context["elements"][0]["text"] == "Security fix (1 vulnerability)"
    assert blocks[-1]["elements"][0]["url"] == "https://npmsync.dev/lodash"


def test_critical_alert_email_body():
    subject, body = render_critical_alert(CONTENT, "https://npmsync.dev")

    assert subject == "Security update: lodash 4.17.21"
    assert "Previous version: 4.17.20" in body
    assert "Vulnerabilities fixed: 1" in body
    assert body.endswith("https://npmsync.dev/lodash")


@pytest.mark.asyncio
async def test_chat_delivery_posts_to_configured_channel(chat_worker, db_session, fake_registry):
    await add_user(db_session, "usr_a", slack={"channel_id": "C123", "access_token": "xoxb-token"})

    outcome = await chat_worker.process(_chat_job())

    assert isinstance(outcome, Completed)
    assert fake_registry.slack_messages[0]["channel"] == "C123"
    request = next(r for r in fake_registry.requests if r.url.host == "slack.com")
    assert request.headers["Authorization"] == "Bearer xoxb-token"


@pytest.mark.asyncio
async def test_chat_delivery_without_integration_fails(chat_worker, db_session):
    await add_user(db_session, "usr_a", slack={"channel_id": "C123", "access_token": "t", "enabled": False})

    assert isinstance(await chat_worker.process(_chat_job()), Failed)
    assert isinstance(await chat_worker.process(_chat_job("int_missing")), Failed)


@pytest.mark.asyncio
async def test_slack_rate_limit_is_retried(chat_worker, db_session, fake_registry):
    await add_user(db_session, "usr_a", slack={"channel_id": "C123", "access_token": "t"})
    fake_registry.slack_responses.append((200, {"ok": False, "error": "ratelimited"}))
    fake_registry.slack_responses.append((200, {"ok": False, "error": "channel_not_found"}))

    assert isinstance(await chat_worker.process(_chat_job()), RetryLater)
    assert isinstance(await chat_worker.process(_chat_job()), Failed)


@pytest.mark.asyncio
async def test_email_delivery(email_worker, fake_registry):
    job = EmailDeliveryJob(to="usr_a@example.com", user_id="usr_a", notification=CONTENT)

    assert isinstance(await email_worker.process(job), Completed)
    assert fake_registry.emails[0]["to"] == ["usr_a@example.com"]

    fake_registry.email_statuses.extend([503, 422])
    assert isinstance(await email_worker.process(job), RetryLater)
    assert isinstance(await email_worker.process(job), Failed)
