"""Fan-out of package update notifications to the users following a package.

For each favoriting user whose preferences accept the update, the dispatcher
writes one in-app notification row and queues chat and email delivery jobs.
Delivery job ids are derived from (user, package, version), so a repeated
dispatch neither duplicates rows nor sends twice while a job is pending.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from npmsync.models.enums import Severity
from npmsync.models.jobs import (
    EXTERNAL_API_RETRY,
    ChatDeliveryJob,
    DeliveryContent,
    EmailDeliveryJob,
)
from npmsync.models.notification import DispatchResult, FavoritingUser, UpdateEnrichment
from npmsync.repositories.integration_repo import IntegrationConnectionRepository
from npmsync.repositories.notification_repo import NotificationRepository
from npmsync.repositories.user_repo import FavoriteRepository
from npmsync.workers.queue import JobQueue

logger = logging.getLogger(__name__)


def delivery_job_id(channel: str, user_id: str, package_name: str, new_version: str) -> str:
    return f"{channel}-{user_id}-{package_name}-{new_version}"


class NotificationDispatcher:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None,
        chat_queue: JobQueue,
        email_queue: JobQueue,
    ):
        self.session_factory = session_factory
        self.chat_queue = chat_queue
        self.email_queue = email_queue

    async def dispatch(
        self,
        package_name: str,
        enrichment: UpdateEnrichment,
        previous_version: str | None,
        new_version: str,
    ) -> DispatchResult:
        """Notify everyone following ``package_name`` about ``new_version``.

        Database trouble turns the whole dispatch into a no-op so the sync
        pipeline never blocks on notification storage.
        """
        if self.session_factory is None:
            logger.info("Database not available, skipping notifications for %s", package_name)
            return DispatchResult()

        content = DeliveryContent(
            package_name=package_name,
            new_version=new_version,
            previous_version=previous_version,
            severity=enrichment.severity,
            is_security_update=enrichment.security_analysis.is_security_update,
            is_breaking_change=enrichment.version_analysis.is_breaking_change,
            changelog_snippet=enrichment.changelog_snippet,
            vulnerabilities_fixed=enrichment.security_analysis.vulnerabilities_fixed,
        )

        try:
            async with self.session_factory() as session:
                users = await FavoriteRepository(session).list_favoriting_users(package_name)
                if not users:
                    return DispatchResult()

                notified = skipped = 0
                for user in users:
                    if not user.preferences.wants(content.severity, content.is_security_update):
                        skipped += 1
                        continue
                    await self._notify_user(session, user, content)
                    notified += 1
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Notification dispatch for %s failed: %s", package_name, exc)
            return DispatchResult()

        logger.info(
            "%s@%s: %d notified, %d skipped (severity: %s)",
            package_name, new_version, notified, skipped, content.severity,
        )
        return DispatchResult(notified=notified, skipped=skipped)

    async def _notify_user(self, session: AsyncSession, user: FavoritingUser, content: DeliveryContent) -> None:
        prefs = user.preferences

        if prefs.in_app_enabled:
            created = await NotificationRepository(session).insert_if_absent(
                user.user_id,
                content.package_name,
                content.new_version,
                previous_version=content.previous_version,
                severity=content.severity.value,
                is_security_update=content.is_security_update,
                is_breaking_change=content.is_breaking_change,
                changelog_snippet=content.changelog_snippet,
                vulnerabilities_fixed=content.vulnerabilities_fixed or None,
            )
            await session.commit()
            if not created:
                logger.debug(
                    "In-app notification for %s %s@%s already exists",
                    user.user_id, content.package_name, content.new_version,
                )

        if prefs.chat_enabled:
            integration = await IntegrationConnectionRepository(session).get_enabled(user.user_id)
            if integration is not None:
                await self._enqueue_delivery(
                    self.chat_queue,
                    ChatDeliveryJob(
                        integration_id=integration.id,
                        user_id=user.user_id,
                        notification=content,
                    ),
                    delivery_job_id("slack", user.user_id, content.package_name, content.new_version),
                )

        if prefs.email_immediate_critical and content.severity == Severity.CRITICAL:
            await self._enqueue_delivery(
                self.email_queue,
                EmailDeliveryJob(to=user.email, user_id=user.user_id, notification=content),
                delivery_job_id("email", user.user_id, content.package_name, content.new_version),
            )

    async def _enqueue_delivery(self, queue: JobQueue, payload: ChatDeliveryJob | EmailDeliveryJob, job_id: str) -> None:
        # A queue outage loses this one delivery; the in-app row is already stored
        try:
            await queue.enqueue(payload, EXTERNAL_API_RETRY.with_id(job_id))
        except Exception as exc:
            logger.error("Could not queue %s delivery %s: %s", queue.name, job_id, exc)
