from typing import Any, Optional, cast
from uuid import UUID

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from app.shared.core.config import get_settings
from app.shared.core.exceptions import AuthError, ForbiddenError

logger = structlog.get_logger()
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """
    Represents the authenticated admin actor from the JWT.
    """

    id: UUID
    project_id: str
    environment_id: Optional[str] = None
    scopes: list[str] = Field(default_factory=list)

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


def decode_jwt(token: str) -> dict[str, Any]:
    """
    Decode and verify an admin JWT.

    Raises:
        AuthError if the token is missing, expired or tampered with.
    """
    settings = get_settings()
    if not settings.JWT_SECRET:
        logger.error("jwt_secret_missing_in_decode")
        raise AuthError("Authentication is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=["HS256"],
            audience=settings.JWT_AUDIENCE,
        )
        return cast(dict[str, Any], payload)
    except jwt.ExpiredSignatureError:
        logger.warning("jwt_expired")
        raise AuthError("Token has expired", code="token_expired")
    except jwt.InvalidTokenError as e:
        logger.warning("jwt_invalid", error=str(e))
        raise AuthError("Invalid token", code="token_invalid")


def authenticate(credential: str) -> CurrentUser:
    """Turn a raw bearer credential into an actor with project/environment scope."""
    payload = decode_jwt(credential)
    user_id = payload.get("sub")
    project_id = payload.get("project_id")
    if not user_id or not project_id:
        raise AuthError("Invalid token payload", code="token_invalid")

    scopes = payload.get("scopes") or []
    if isinstance(scopes, str):
        scopes = scopes.split()

    try:
        actor_id = UUID(str(user_id))
    except ValueError:
        raise AuthError("Invalid token subject", code="token_invalid")

    return CurrentUser(
        id=actor_id,
        project_id=str(project_id),
        environment_id=(str(payload["environment_id"]) if payload.get("environment_id") else None),
        scopes=[str(scope) for scope in scopes],
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    if credentials is None:
        raise AuthError("Not authenticated")
    user = authenticate(credentials.credentials)
    logger.info("user_authenticated", user_id=str(user.id), project_id=user.project_id)
    return user


def require_admin_scope(
    user: CurrentUser,
    project_id: str,
    environment_id: str,
) -> CurrentUser:
    """
    Ensure the actor may administer the given project/environment.

    A token without an environment claim covers every environment of its
    project.
    """
    settings = get_settings()
    if not user.has_scope(settings.ADMIN_SCOPE):
        raise ForbiddenError("Admin scope required")
    if user.project_id != project_id:
        raise ForbiddenError("Project access denied")
    if user.environment_id is not None and user.environment_id != environment_id:
        raise ForbiddenError("Environment access denied")
    return user.model_copy(update={"environment_id": environment_id})
