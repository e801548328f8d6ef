"""HTTP Basic authentication for /v1 routes.

Credentials come from settings (BASIC_AUTH_USERNAME / BASIC_AUTH_PASSWORD).
An empty configured password rejects every request.
"""

import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from pricewatch.schemas.common import error_body

security = HTTPBasic(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=error_body("UNAUTHORIZED", message),
        headers={"WWW-Authenticate": "Basic"},
    )


def verify_credentials(username: str, password: str, *, expected_username: str, expected_password: str) -> bool:
    """Constant-time comparison of both fields."""
    if not expected_password:
        return False
    user_ok = secrets.compare_digest(username.encode("utf-8"), expected_username.encode("utf-8"))
    pass_ok = secrets.compare_digest(password.encode("utf-8"), expected_password.encode("utf-8"))
    return user_ok and pass_ok


async def require_basic_auth(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(security),
) -> str:
    """FastAPI dependency. Returns the authenticated username."""
    if credentials is None:
        raise _unauthorized("Authentication required")

    settings = request.app.state.settings
    if not verify_credentials(
        credentials.username,
        credentials.password,
        expected_username=settings.basic_auth_username,
        expected_password=settings.basic_auth_password,
    ):
        raise _unauthorized("Invalid credentials")
    return credentials.username
