"""
Database models.
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Float, ForeignKey, Index, Numeric, Text
)
from sqlalchemy.orm import declarative_base
from enum import Enum as PyEnum
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class SubscriptionStatus(str, PyEnum):
    """Subscription lifecycle states."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class UsageStatus(str, PyEnum):
    """Outcome recorded for a metered call."""
    SUCCESS = "success"
    ERROR = "error"


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), onupdate=utcnow)


class APIKey(Base):
    """API Key model."""
    __tablename__ = "api_keys"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    last_used = Column(DateTime(timezone=True), nullable=True)


class Plan(Base):
    """Subscription plan reference data. A NULL daily_limit means unlimited."""
    __tablename__ = "plans"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    daily_limit = Column(Integer, nullable=True)
    request_interval = Column(Float, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    description = Column(Text, nullable=True)


class Subscription(Base):
    """User subscription to a plan."""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String, ForeignKey("plans.id"), nullable=False)
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default=SubscriptionStatus.ACTIVE.value)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class UsageLog(Base):
    """Append-only record of a metered call."""
    __tablename__ = "usage_logs"
    __table_args__ = (
        Index("ix_usage_logs_user_timestamp", "user_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False)
    api_key_id = Column(Integer, nullable=True)
    endpoint = Column(String, nullable=False)
    status = Column(String, nullable=False)
    # rejected by the quota check itself; such rows never consume quota
    quota_denied = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class Company(Base):
    """Company profile served by the metered data endpoints."""
    __tablename__ = "companies"

    symbol = Column(String, primary_key=True)
    company_name = Column(String, nullable=False)
    price = Column(Float, nullable=True)
    market_cap = Column(Float, nullable=True, index=True)
    beta = Column(Float, nullable=True)
    currency = Column(String, nullable=True)
    exchange = Column(String, nullable=True, index=True)
    industry = Column(String, nullable=True)
    sector = Column(String, nullable=True, index=True)
    country = Column(String, nullable=True)
    is_etf = Column(Boolean, default=False)
    is_actively_trading = Column(Boolean, default=True)
