"""Workers that deliver queued notifications to chat and email."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from npmsync.integrations.email import EmailClient, render_critical_alert
from npmsync.integrations.slack import SlackClient, build_update_message
from npmsync.models.jobs import ChatDeliveryJob, EmailDeliveryJob
from npmsync.registry.results import Fetched, FetchResult, PermanentFailure
from npmsync.repositories.integration_repo import IntegrationConnectionRepository
from npmsync.workers.base import BaseWorker, Completed, Failed, JobOutcome, RetryLater

logger = logging.getLogger(__name__)


def _outcome(result: FetchResult, detail: dict) -> JobOutcome:
    if isinstance(result, Fetched):
        return Completed(detail)
    if isinstance(result, PermanentFailure):
        return Failed(result.reason)
    return RetryLater(result.reason)


class ChatDeliveryWorker(BaseWorker):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        slack: SlackClient,
        site_url: str,
    ):
        self.session_factory = session_factory
        self.slack = slack
        self.site_url = site_url

    async def process(self, payload: ChatDeliveryJob) -> JobOutcome:
        async with self.session_factory() as session:
            integration = await IntegrationConnectionRepository(session).get(payload.integration_id)

        if integration is None or not integration.enabled:
            return Failed(f"integration {payload.integration_id} is missing or disabled")
        config = integration.config or {}
        channel, token = config.get("channel_id"), config.get("access_token")
        if not channel or not token:
            return Failed(f"integration {payload.integration_id} has no channel or token")

        text, blocks = build_update_message(payload.notification, self.site_url)
        result = await self.slack.post_message(token, channel, text, blocks)
        if isinstance(result, Fetched):
            logger.info(
                "Slack message sent to user %s for %s@%s",
                payload.user_id, payload.notification.package_name, payload.notification.new_version,
            )
        return _outcome(result, {"channel": channel})


class EmailDeliveryWorker(BaseWorker):
    def __init__(self, email: EmailClient, site_url: str):
        self.email = email
        self.site_url = site_url

    async def process(self, payload: EmailDeliveryJob) -> JobOutcome:
        subject, body = render_critical_alert(payload.notification, self.site_url)
        result = await self.email.send(payload.to, subject, body)
        if isinstance(result, Fetched):
            logger.info("Critical alert emailed to user %s for %s", payload.user_id, payload.notification.package_name)
        return _outcome(result, {"template": payload.template})
