"""
Company data router (metered and cached).
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from typing import Optional
import logging
import math

from app.database.database import get_db
from app.database.models import Company
from app.auth.dependencies import enforce_quota
from app.models.schemas import APIKeyContext, CompanyPage, CompanyResponse
from app.routers.metering import metered_response
from app.services.container import ServiceContainer, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/companies", tags=["companies"])


def _query_companies(
    db: Session,
    page: int,
    limit: int,
    sector: Optional[str],
    industry: Optional[str],
    exchange: Optional[str],
) -> CompanyPage:
    query = db.query(Company)
    if sector:
        query = query.filter(Company.sector == sector)
    if industry:
        query = query.filter(Company.industry == industry)
    if exchange:
        query = query.filter(Company.exchange == exchange)

    total_count = query.count()
    companies = (
        query.order_by(Company.market_cap.desc(), Company.symbol)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    if not companies:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No companies found."
        )

    total_pages = math.ceil(total_count / limit)
    return CompanyPage(
        page=page,
        limit=limit,
        total_count=total_count,
        total_pages=total_pages,
        companies=[CompanyResponse.model_validate(company) for company in companies],
        message=(
            f"companies retrieved successfully. Displaying page {page} of {total_pages} "
            f"(Total: {total_count} entries)."
        ),
    )


def _get_company(db: Session, symbol: str) -> CompanyResponse:
    company = db.get(Company, symbol.upper())
    if company is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No company found for the stock symbol '{symbol}'. Please verify the entered symbol."
        )
    return CompanyResponse.model_validate(company)


@router.get("", response_model=CompanyPage)
async def list_companies(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(20, ge=1, le=100, description="Page size"),
    sector: Optional[str] = Query(None),
    industry: Optional[str] = Query(None),
    exchange: Optional[str] = Query(None),
    api_key: APIKeyContext = Depends(enforce_quota),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """List companies by market capitalisation."""
    async def compute():
        return await run_in_threadpool(_query_companies, db, page, limit, sector, industry, exchange)

    return await metered_response(
        request, api_key, services, compute,
        vary_query=("page", "limit", "sector", "industry", "exchange"),
    )


@router.get("/{symbol}", response_model=CompanyResponse)
async def get_company(
    request: Request,
    symbol: str,
    api_key: APIKeyContext = Depends(enforce_quota),
    services: ServiceContainer = Depends(get_services),
    db: Session = Depends(get_db)
):
    """Get a single company profile."""
    async def compute():
        return await run_in_threadpool(_get_company, db, symbol)

    return await metered_response(request, api_key, services, compute)
