"""
FastAPI dependencies for JWT authentication.
The token subject is the owner id every upload session is scoped to.
"""
import logging
from typing import Optional
import jwt
from fastapi import Header, HTTPException, status
from src.core import config

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


def verify_token(authorization: Optional[str] = Header(None)) -> str:
    """
    Verify the Bearer JWT and return the owner id it carries.

    Args:
        authorization: Authorization header value (Bearer <token>)

    Returns:
        Owner id from the token's `sub` claim

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    if not authorization:
        raise _unauthorized("Missing authorization header")

    scheme, _, token = authorization.partition(' ')
    if scheme != 'Bearer' or not token:
        raise _unauthorized("Invalid authorization header format")

    settings = config.settings
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.info("Rejected token: %s", e)
        raise _unauthorized("Invalid token")

    owner_id = payload.get('sub')
    if not owner_id:
        raise _unauthorized("Invalid token payload")
    return owner_id
