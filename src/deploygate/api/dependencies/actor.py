"""Identity of the calling user.

Authentication happens upstream (gateway or reverse proxy), which forwards
the authenticated user in request headers.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Header, HTTPException, status

from deploygate.domain.models.deployment import Actor


USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"


async def get_actor(
    user_id: Annotated[str | None, Header(alias=USER_ID_HEADER)] = None,
    user_name: Annotated[str | None, Header(alias=USER_NAME_HEADER)] = None,
) -> Actor:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {USER_ID_HEADER} header",
        )
    return Actor(user_id=user_id, user_name=user_name or "")
