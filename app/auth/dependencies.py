"""
Authentication dependencies for FastAPI.
"""
from fastapi import Depends, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
import logging
import secrets

from app.core.config import settings
from app.core.exceptions import ApiException, quota_exception
from app.database.database import get_db
from app.database.models import User, APIKey, UsageStatus, utcnow
from app.auth.auth_utils import validate_api_key_format, verify_token
from app.models.schemas import ApiError, APIKeyContext
from app.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

# Security schemes
security = HTTPBearer()
optional_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Get current user from JWT token.

    Args:
        credentials: Authorization credentials
        db: Database session

    Returns:
        User: Current user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = verify_token(credentials.credentials)
    if token_data is None:
        raise credentials_exception

    user = db.query(User).filter(User.id == token_data.user_id).first()
    if user is None:
        raise credentials_exception

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )

    return user


def lookup_key(db: Session, secret: str) -> Optional[APIKey]:
    """Find the API key row for a secret."""
    return db.query(APIKey).filter(APIKey.key == secret).first()


def touch_last_used(db: Session, api_key: APIKey) -> None:
    """Record that a key was just used."""
    api_key.last_used = utcnow()
    db.commit()


async def require_api_key(
    apikey: Optional[str] = Query(None, description="API key"),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    db: Session = Depends(get_db)
) -> APIKeyContext:
    """
    Validate the API key sent as ``?apikey=`` or as a Bearer token.

    Raises:
        ApiException: 401 with MISSING_API_KEY, INVALID_API_KEY,
            INACTIVE_API_KEY or API_KEY_VALIDATION_ERROR
    """
    secret = apikey or (credentials.credentials if credentials else None)
    if not secret:
        raise ApiException(status.HTTP_401_UNAUTHORIZED, ApiError.MISSING_API_KEY)

    # malformed secrets cannot match a stored key
    if not validate_api_key_format(secret):
        raise ApiException(status.HTTP_401_UNAUTHORIZED, ApiError.INVALID_API_KEY)

    try:
        api_key = lookup_key(db, secret)
        if api_key is None:
            raise ApiException(status.HTTP_401_UNAUTHORIZED, ApiError.INVALID_API_KEY)
        if not api_key.is_active:
            raise ApiException(status.HTTP_401_UNAUTHORIZED, ApiError.INACTIVE_API_KEY)

        touch_last_used(db, api_key)
        return APIKeyContext(key_id=api_key.id, user_id=api_key.user_id)

    except SQLAlchemyError as e:
        logger.error(f"Error during API key validation: {e}")
        db.rollback()
        raise ApiException(status.HTTP_401_UNAUTHORIZED, ApiError.API_KEY_VALIDATION_ERROR)


async def enforce_quota(
    request: Request,
    api_key: APIKeyContext = Depends(require_api_key),
    services: ServiceContainer = Depends(get_services)
) -> APIKeyContext:
    """
    Reject the call when the user's plan quota is exhausted.

    Denied calls are still logged, with an error status, but flagged so
    they do not consume quota themselves.
    """
    decision = await services.quota_evaluator.check_quota(api_key.user_id)
    if not decision.allowed:
        services.log_queue.enqueue(
            api_key.user_id, api_key.key_id, request.url.path, UsageStatus.ERROR,
            quota_denied=True,
        )
        raise quota_exception(decision.reason, decision.limit)
    return api_key


async def verify_internal_token(
    x_internal_token: Optional[str] = Header(None)
) -> None:
    """Guard internal endpoints when INTERNAL_API_TOKEN is configured."""
    expected = settings.INTERNAL_API_TOKEN
    if expected is None:
        return
    if x_internal_token is None or not secrets.compare_digest(x_internal_token, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid internal token"
        )
