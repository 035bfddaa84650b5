"""
Pydantic models for request/response schemas.
"""
import math
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.database.models import SubscriptionStatus, UsageStatus


class ApiError(str, Enum):
    """Reason codes returned to API callers."""
    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"
    INACTIVE_API_KEY = "INACTIVE_API_KEY"
    API_KEY_VALIDATION_ERROR = "API_KEY_VALIDATION_ERROR"
    API_KEY_LIMIT_REACHED = "API_KEY_LIMIT_REACHED"
    DAILY_LIMIT_REACHED = "DAILY_LIMIT_REACHED"
    RATE_LIMIT_REACHED = "RATE_LIMIT_REACHED"
    RATE_LIMIT_CHECK_ERROR = "RATE_LIMIT_CHECK_ERROR"
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"

    def format(self, **params) -> str:
        """Render the message template for this code."""
        return API_ERROR_MESSAGES[self].format(**params)


API_ERROR_MESSAGES = {
    ApiError.MISSING_API_KEY: "Missing API key. Use the query parameter '?apikey=YOUR_API_KEY'",
    ApiError.INVALID_API_KEY: "Invalid API key",
    ApiError.INACTIVE_API_KEY: "Inactive or invalid API key",
    ApiError.API_KEY_VALIDATION_ERROR: "Error during API key validation",
    ApiError.API_KEY_LIMIT_REACHED: "Active API key limit reached ({limit} keys). Revoke a key before creating a new one.",
    ApiError.DAILY_LIMIT_REACHED: "Daily limit reached ({limit} calls per day)",
    ApiError.RATE_LIMIT_REACHED: "Rate limit reached ({limit} requests/minute)",
    ApiError.RATE_LIMIT_CHECK_ERROR: "Internal error during rate limit check",
    ApiError.PLAN_NOT_FOUND: "Plan '{plan_id}' not found",
}


class UserBase(BaseModel):
    """Base user model."""
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., pattern=r'^[^@]+@[^@]+\.[^@]+$')


class UserCreate(UserBase):
    """User creation model."""
    password: str = Field(..., min_length=8)


class UserResponse(UserBase):
    """User response model."""
    id: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Token(BaseModel):
    """Token response model."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenData(BaseModel):
    """Token data model."""
    username: Optional[str] = None
    user_id: Optional[int] = None


class APIKeyCreate(BaseModel):
    """API key creation request."""
    name: Optional[str] = Field(None, max_length=100)


class APIKeyCreated(BaseModel):
    """Returned once, when a key is created or rotated."""
    id: int
    name: str
    api_key: str
    created_at: datetime
    message: str = "Store this API key securely as it won't be shown again."


class APIKeyInfo(BaseModel):
    """API key listing entry (secret masked)."""
    id: int
    name: str
    key_hint: str
    is_active: bool
    created_at: datetime
    last_used: Optional[datetime] = None


class APIKeyContext(BaseModel):
    """Identity resolved from a validated API key."""
    key_id: int
    user_id: int


class PlanInfo(BaseModel):
    """Quota parameters of a plan."""
    id: str
    name: str
    daily_limit: Optional[int] = None
    request_interval: float = 0
    price: float = 0
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def has_daily_limit(self) -> bool:
        return self.daily_limit is not None and self.daily_limit >= 0

    @property
    def requests_per_minute(self) -> Optional[int]:
        """Per-minute allowance derived from request_interval, None when uncapped."""
        if self.request_interval <= 0:
            return None
        return max(1, math.floor(60 / self.request_interval))


class SubscriptionCreate(BaseModel):
    """Plan change request."""
    plan_id: str = Field(..., min_length=1)


class SubscriptionResponse(BaseModel):
    """Current subscription of a user."""
    plan_id: str
    status: SubscriptionStatus
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    plan: PlanInfo


class UsageLogEntry(BaseModel):
    """A single usage ledger row waiting to be written."""
    user_id: int
    api_key_id: int
    endpoint: str
    status: UsageStatus
    timestamp: datetime
    quota_denied: bool = False

    model_config = ConfigDict(frozen=True)


class QuotaDecision(BaseModel):
    """Outcome of a quota evaluation."""
    allowed: bool
    reason: Optional[ApiError] = None
    limit: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "QuotaDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: ApiError, limit: Optional[int] = None) -> "QuotaDecision":
        return cls(
            allowed=False,
            reason=reason,
            limit=limit,
            message=reason.format(limit=limit),
        )


class QuotaCheckRequest(BaseModel):
    """Internal quota check request."""
    user_id: int = Field(..., alias="userId", gt=0)

    model_config = ConfigDict(populate_by_name=True)


class UsageLogRequest(BaseModel):
    """Internal usage log request."""
    user_id: int = Field(..., alias="userId")
    key_id: int = Field(..., alias="keyId")
    endpoint: str = Field(..., min_length=1)
    status: UsageStatus = UsageStatus.SUCCESS

    model_config = ConfigDict(populate_by_name=True)


class UsageLogAccepted(BaseModel):
    """Acknowledgement of a queued usage log."""
    accepted: bool
    queued: int


class UsageBucket(BaseModel):
    """Call count for one bucket of the usage chart."""
    name: str
    total: int


class UsageSummary(BaseModel):
    """Quota consumption for the current user."""
    plan: PlanInfo
    calls_today: int
    calls_last_minute: int
    daily_remaining: Optional[int] = None
    requests_per_minute: Optional[int] = None


class CompanyResponse(BaseModel):
    """Company profile."""
    symbol: str
    company_name: str
    price: Optional[float] = None
    market_cap: Optional[float] = None
    beta: Optional[float] = None
    currency: Optional[str] = None
    exchange: Optional[str] = None
    industry: Optional[str] = None
    sector: Optional[str] = None
    country: Optional[str] = None
    is_etf: bool = False
    is_actively_trading: bool = True

    model_config = ConfigDict(from_attributes=True)


class CompanyPage(BaseModel):
    """Paginated company listing."""
    page: int
    limit: int
    total_count: int
    total_pages: int
    companies: List[CompanyResponse]
    message: str


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str
    code: Optional[str] = None
    status_code: int
    timestamp: datetime


class HealthCheckResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    version: str
    database: str
    log_queue_size: int
    log_entries_dropped: int
    cache_entries: int
