"""In-app notification feed routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from deploygate.api.dependencies.actor import get_actor
from deploygate.api.dependencies.services import get_notification_feed
from deploygate.api.schemas.deployment_schemas import NotificationResponse
from deploygate.domain.models.deployment import Actor
from deploygate.domain.ports.services import NotificationFeed


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    actor: Annotated[Actor, Depends(get_actor)],
    feed: Annotated[NotificationFeed, Depends(get_notification_feed)],
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[NotificationResponse]:
    """The caller's most recent unexpired notifications, newest first."""
    messages = await feed.list_for_user(actor.user_id, limit=limit)
    return [NotificationResponse.from_domain(m) for m in messages]
