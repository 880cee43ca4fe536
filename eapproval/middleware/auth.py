from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from eapproval.exceptions import ValidationError
from eapproval.services.auth_service import verify_access_token
from eapproval.services.chain_resolver import normalize_user_id

logger = structlog.get_logger()

security = HTTPBearer()


def _invalid_token() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "error": {
                "code": "AUTH_TOKEN_INVALID",
                "message": "Invalid or expired token",
            }
        },
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency: extract and verify JWT, return user claims dict.

    ``user_id`` is the canonical lowercase UUID of the ``sub`` claim, so it
    compares equal to the ids stored on requests and notices.
    """
    token = credentials.credentials
    try:
        payload = verify_access_token(token)
    except JWTError as e:
        logger.warning("auth_token_invalid", error=str(e))
        raise _invalid_token()
    try:
        user_id = normalize_user_id(payload.get("sub"), "sub")
    except ValidationError:
        logger.warning("auth_subject_invalid", sub=str(payload.get("sub")))
        raise _invalid_token()
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "name": payload.get("name"),
    }
