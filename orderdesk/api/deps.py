"""
FastAPI dependencies for authentication, authorization and sessions.

Bearer tokens are decoded into an ``Actor``; ``AdminActor`` additionally
requires the admin role. ``DatabaseSession`` is one transactional session per
request.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from orderdesk.core.logging import get_logger, set_actor_id
from orderdesk.core.security import Actor, ActorRole, TokenError, decode_token
from orderdesk.database.connection import get_db
from orderdesk.services.notifications.client import (
    NotificationClient,
    get_notification_client,
)

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> Actor:
    """
    Validate the bearer token and build the calling actor.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        logger.warning("Authentication failed: No credentials provided")
        raise credentials_exception

    try:
        actor = Actor.from_claims(decode_token(credentials.credentials))
    except TokenError as e:
        logger.warning(
            "Authentication failed",
            error=str(e),
            code=e.code,
        )
        raise credentials_exception from e

    set_actor_id(actor.id)
    return actor


def require_role(*allowed_roles: ActorRole):
    """
    Create dependency requiring one of the given roles.

    Example:
        @router.delete("/batches/{batch_id}")
        async def delete(actor: Annotated[Actor, Depends(require_role(ActorRole.ADMIN))]):
            ...
    """

    async def role_checker(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ) -> Actor:
        if actor.role not in allowed_roles:
            logger.warning(
                "Authorization failed: Insufficient permissions",
                actor_id=actor.id,
                role=actor.role.value,
                required_roles=[role.value for role in allowed_roles],
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return actor

    return role_checker


StaffActor = Annotated[Actor, Depends(require_role(ActorRole.ADMIN, ActorRole.OPERATOR))]
AdminActor = Annotated[Actor, Depends(require_role(ActorRole.ADMIN))]
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
Notifier = Annotated[NotificationClient, Depends(get_notification_client)]
