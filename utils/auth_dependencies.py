"""
FastAPI Authentication Dependencies
Internal API key check for the service-to-service endpoints
"""

import secrets
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from config import settings
from utils.structured_logging import get_logger, LogCategory

logger = get_logger("auth")


class AuthenticationError(Exception):
    pass


def extract_bearer_token(authorization: str) -> str:
    """Extract bearer token from Authorization header"""
    if not authorization:
        raise AuthenticationError("Authorization header missing")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization header format. Expected 'Bearer <token>'")

    return authorization[len("Bearer ") :].strip()


def verify_api_key(api_key: str) -> bool:
    """Verify API key against configured value"""
    return secrets.compare_digest(api_key.encode(), settings.BACKEND_API_KEY.encode())


async def require_api_key(
    request: Request, authorization: Optional[str] = Header(None, description="API key in format 'Bearer <key>'")
) -> str:
    """
    Require valid API key authentication
    Use this for the webhook relay and internal service calls
    """
    try:
        api_key = extract_bearer_token(authorization)
        if not verify_api_key(api_key):
            raise AuthenticationError("Invalid API key")
    except AuthenticationError as e:
        logger.warning(
            f"API key rejected for {request.url.path}: {e}",
            category=LogCategory.AUTHENTICATION,
            extra={"client": request.client.host if request.client else None},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e), headers={"WWW-Authenticate": "Bearer"}
        )
    return api_key
