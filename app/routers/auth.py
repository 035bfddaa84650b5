"""
Authentication router for user accounts and API key management.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import date
from typing import List, Optional
import logging

from app.database.database import get_db
from app.database.models import User, APIKey
from app.auth.auth_utils import (
    verify_password, get_password_hash, create_access_token, create_api_key, mask_api_key
)
from app.auth.dependencies import get_current_user
from app.core.config import settings
from app.core.exceptions import ApiException
from app.models.schemas import (
    ApiError, APIKeyCreate, APIKeyCreated, APIKeyInfo, UserCreate, UserResponse, Token
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/register", response_model=UserResponse)
async def register(
    user_data: UserCreate,
    db: Session = Depends(get_db)
):
    """Register a new user."""
    existing_user = db.query(User).filter(
        (User.username == user_data.username) | (User.email == user_data.email)
    ).first()

    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Username or email already registered"
        )

    db_user = User(
        username=user_data.username,
        email=user_data.email,
        hashed_password=get_password_hash(user_data.password),
    )

    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    logger.info(f"New user registered: {db_user.username}")
    return db_user


@router.post("/login", response_model=Token)
async def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    """Login and get an access token."""
    user = db.query(User).filter(User.username == form_data.username).first()

    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Inactive user"
        )

    access_token = create_access_token(data={"sub": user.username, "user_id": user.id})
    logger.info(f"User logged in: {user.username}")

    return Token(
        access_token=access_token,
        token_type="bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return current_user


def _find_user_key(db: Session, user: User, api_key_id: int, active_only: bool = False) -> APIKey:
    query = db.query(APIKey).filter(APIKey.id == api_key_id, APIKey.user_id == user.id)
    if active_only:
        query = query.filter(APIKey.is_active == True)  # noqa: E712
    api_key = query.first()
    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found"
        )
    return api_key


@router.post("/api-keys", response_model=APIKeyCreated)
async def create_user_api_key(
    key_data: Optional[APIKeyCreate] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a new API key for the current user."""
    active_keys = db.query(APIKey).filter(
        APIKey.user_id == current_user.id,
        APIKey.is_active == True  # noqa: E712
    ).count()

    if active_keys >= settings.MAX_ACTIVE_API_KEYS:
        raise ApiException(
            status.HTTP_400_BAD_REQUEST,
            ApiError.API_KEY_LIMIT_REACHED,
            limit=settings.MAX_ACTIVE_API_KEYS,
        )

    name = (key_data.name if key_data else None) or f"API key {date.today().isoformat()}"
    db_api_key = APIKey(
        key=create_api_key(),
        name=name,
        user_id=current_user.id,
        is_active=True
    )

    db.add(db_api_key)
    db.commit()
    db.refresh(db_api_key)

    logger.info(f"API key {db_api_key.id} created for user: {current_user.username}")

    return APIKeyCreated(
        id=db_api_key.id,
        name=db_api_key.name,
        api_key=db_api_key.key,
        created_at=db_api_key.created_at,
    )


@router.get("/api-keys", response_model=List[APIKeyInfo])
async def list_user_api_keys(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List user's API keys (without revealing the actual keys)."""
    api_keys = (
        db.query(APIKey)
        .filter(APIKey.user_id == current_user.id)
        .order_by(APIKey.created_at.desc())
        .all()
    )

    return [
        APIKeyInfo(
            id=key.id,
            name=key.name,
            key_hint=mask_api_key(key.key),
            is_active=key.is_active,
            created_at=key.created_at,
            last_used=key.last_used,
        )
        for key in api_keys
    ]


@router.put("/api-keys/{api_key_id}/rotate", response_model=APIKeyCreated)
async def rotate_api_key(
    api_key_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Replace the secret of an active API key."""
    api_key = _find_user_key(db, current_user, api_key_id, active_only=True)

    api_key.key = create_api_key()
    db.commit()
    db.refresh(api_key)

    logger.info(f"API key rotated: {api_key_id}")

    return APIKeyCreated(
        id=api_key.id,
        name=api_key.name,
        api_key=api_key.key,
        created_at=api_key.created_at,
    )


@router.delete("/api-keys/{api_key_id}")
async def deactivate_api_key(
    api_key_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Deactivate an API key."""
    api_key = _find_user_key(db, current_user, api_key_id)

    api_key.is_active = False
    db.commit()

    logger.info(f"API key deactivated: {api_key_id}")

    return {"message": "API key deactivated successfully"}
