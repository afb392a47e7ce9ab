"""Owner identity resolution for API requests."""
from fastapi import HTTPException, Request, status

from excel_assessment.config import settings


def get_current_user_id(request: Request) -> str:
    """Resolve the caller's identity according to AUTH_MODE.

    "demo" maps every caller to DEMO_USER_ID. "header" reads the identity
    from AUTH_HEADER, as set by an authenticating proxy in front of the API.
    """
    if settings.AUTH_MODE == "header":
        user_id = request.headers.get(settings.AUTH_HEADER)
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized"
            )
        return user_id
    if settings.AUTH_MODE == "demo":
        return settings.DEMO_USER_ID
    raise RuntimeError(f"Unknown AUTH_MODE: {settings.AUTH_MODE}")
