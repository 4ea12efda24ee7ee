"""Fan-out of lifecycle events to in-app and email channels."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from deploygate.domain.errors import DeployGateError
from deploygate.domain.events.notification_events import EventKind, LifecycleEvent
from deploygate.domain.models.directory import User
from deploygate.domain.models.notification import (
    DeliveryChannel,
    DeliveryRecord,
    EmailMessage,
    InAppMessage,
)
from deploygate.domain.ports.repositories import UserRepository
from deploygate.domain.ports.services import EmailTransport, NotificationFeed
from deploygate.domain.services.recipient_resolver import RecipientResolver
from deploygate.domain.services.templates import (
    check_templates,
    default_templates,
    NotificationTemplate,
)


logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Delivers one event to every resolved recipient on every eligible channel.

    ``dispatch`` never raises: each (recipient, channel) pair ends up as a
    :class:`DeliveryRecord`, successful or not. Deliveries run concurrently,
    bounded by ``max_concurrency`` and each under ``delivery_timeout``.
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        user_repo: UserRepository,
        feed: NotificationFeed,
        email: EmailTransport,
        templates: dict[EventKind, NotificationTemplate] | None = None,
        max_concurrency: int = 8,
        delivery_timeout: float = 10.0,
        console_base_url: str = "",
    ) -> None:
        self._templates = templates if templates is not None else default_templates()
        check_templates(self._templates)
        self._resolver = resolver
        self._user_repo = user_repo
        self._feed = feed
        self._email = email
        self._max_concurrency = max(1, max_concurrency)
        self._delivery_timeout = delivery_timeout
        self._console_base_url = console_base_url

    def template_for(self, kind: str) -> NotificationTemplate | None:
        try:
            return self._templates.get(EventKind(kind))
        except ValueError:
            return None

    async def dispatch(self, event: LifecycleEvent) -> list[DeliveryRecord]:
        template = self.template_for(event.kind)
        if template is None:
            logger.warning("notification_kind_unknown", kind=event.kind, event_id=event.event_id)
            return []

        recipients = sorted(await self._resolver.resolve(event))
        fields = event.template_fields()
        title, body = template.render(fields)
        action_url = template.action_url(fields, self._console_base_url)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        records: list[DeliveryRecord] = []
        deliveries: list[Awaitable[DeliveryRecord]] = []

        if DeliveryChannel.IN_APP in template.channels:
            for recipient_id in recipients:
                message = InAppMessage(
                    user_id=recipient_id,
                    kind=event.kind,
                    severity=template.severity,
                    title=title,
                    body=body,
                    action_url=action_url,
                    resource_id=event.resource_id,
                    created_at=event.occurred_at,
                    expires_at=event.occurred_at + template.expires_after,
                )
                deliveries.append(self._deliver(
                    semaphore, recipient_id, DeliveryChannel.IN_APP,
                    lambda m=message: self._feed.push(m),
                ))

        if DeliveryChannel.EMAIL in template.channels and self._email.is_configured:
            users = await asyncio.gather(
                *(self._lookup_user(semaphore, recipient_id) for recipient_id in recipients)
            )
            for recipient_id, (user, lookup_error) in zip(recipients, users):
                if lookup_error is not None:
                    records.append(DeliveryRecord(
                        recipient_id=recipient_id,
                        channel=DeliveryChannel.EMAIL,
                        success=False,
                        error=lookup_error,
                    ))
                    continue
                if user is None or not user.has_usable_email:
                    continue
                email = EmailMessage(to=user.email or "", subject=title, body=body)
                deliveries.append(self._deliver(
                    semaphore, recipient_id, DeliveryChannel.EMAIL,
                    lambda e=email: self._email.send(e),
                ))

        records.extend(await asyncio.gather(*deliveries))

        failed = sum(1 for record in records if not record.success)
        logger.info(
            "notification_dispatched",
            kind=event.kind,
            deployment_id=event.deployment_id,
            recipients=len(recipients),
            deliveries=len(records),
            failed=failed,
        )
        return records

    async def _lookup_user(
        self, semaphore: asyncio.Semaphore, user_id: str
    ) -> tuple[User | None, str | None]:
        async with semaphore:
            try:
                return await self._user_repo.get_by_id(user_id), None
            except DeployGateError as exc:
                logger.warning("notification_user_lookup_failed", user_id=user_id, error=str(exc))
                return None, f"recipient lookup failed: {exc}"

    async def _deliver(
        self,
        semaphore: asyncio.Semaphore,
        recipient_id: str,
        channel: DeliveryChannel,
        send: Callable[[], Awaitable[str]],
    ) -> DeliveryRecord:
        async with semaphore:
            try:
                message_id = await asyncio.wait_for(send(), timeout=self._delivery_timeout)
            except asyncio.TimeoutError:
                error = f"{channel.value} delivery timed out after {self._delivery_timeout}s"
                logger.warning(
                    "notification_delivery_timeout",
                    recipient_id=recipient_id,
                    channel=channel.value,
                )
            except Exception as exc:
                # One failed pair must not affect the others.
                logger.warning(
                    "notification_delivery_failed",
                    recipient_id=recipient_id,
                    channel=channel.value,
                    error=str(exc),
                    exc_info=not isinstance(exc, DeployGateError),
                )
                error = str(exc) or type(exc).__name__
            else:
                return DeliveryRecord(
                    recipient_id=recipient_id,
                    channel=channel,
                    success=True,
                    message_id=message_id,
                )

        return DeliveryRecord(
            recipient_id=recipient_id, channel=channel, success=False, error=error
        )
