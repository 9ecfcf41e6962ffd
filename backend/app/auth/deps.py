from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.security import decode_access_token
from app.services.errors import AuthError

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    if not credentials:
        raise AuthError("Missing authorization header")
    try:
        return decode_access_token(credentials.credentials)
    except ValueError:
        raise AuthError("Unauthorized") from None


def get_current_user_id(user: dict = Depends(get_current_user)) -> UUID:
    try:
        return UUID(str(user.get("sub")))
    except ValueError:
        raise AuthError("Unauthorized") from None
