"""Read-only market views and the admin divergence report."""

from fastapi import APIRouter, Depends, Query

from assetmarket.core.auth import require_admin
from assetmarket.schemas.common import DivergenceReport, MarketOverview, SearchResponse, UserDashboard
from assetmarket.schemas.listing import MarketFeedResponse
from assetmarket.services import query_service, reconciliation_service

router = APIRouter(tags=["market"])


@router.get("/market/feed", response_model=MarketFeedResponse)
async def market_feed(
    category: str | None = Query(None),
    q: str | None = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    return await query_service.market_feed(category=category, q=q, page=page, page_size=page_size)


@router.get("/market/categories/{category}", response_model=MarketFeedResponse)
async def browse_category(
    category: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    return await query_service.browse_category(category, page=page, page_size=page_size)


@router.get("/market/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(20, ge=1, le=100),
):
    return await query_service.search(q, limit)


@router.get("/market/stats", response_model=MarketOverview)
async def market_stats():
    return await query_service.overview_stats()


@router.get("/market/users/{principal}", response_model=UserDashboard)
async def user_dashboard(principal: str):
    return await query_service.user_dashboard(principal)


@router.get("/admin/divergences", response_model=DivergenceReport)
async def divergence_report(_admin: str = Depends(require_admin)):
    return await reconciliation_service.scan_divergences()
