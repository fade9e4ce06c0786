import jwt
from uuid import UUID
from datetime import datetime, timezone, timedelta
from app.shared.core.config import get_settings

settings = get_settings()


def create_test_token(
    user_id: UUID,
    project_id: str,
    environment_id: str | None = None,
    scopes: list[str] | None = None,
    expires_in: timedelta = timedelta(hours=1),
    secret: str | None = None,
) -> str:
    """Generate an admin JWT the way the admin login flow issues them."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "project_id": project_id,
        "scopes": scopes if scopes is not None else ["admin"],
        "aud": settings.JWT_AUDIENCE,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    if environment_id is not None:
        payload["environment_id"] = environment_id
    return jwt.encode(payload, secret or settings.JWT_SECRET, algorithm="HS256")
