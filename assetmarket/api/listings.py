from fastapi import APIRouter, Depends, Query

from assetmarket.core.auth import get_current_principal
from assetmarket.schemas.listing import (
    ListingCreateRequest,
    ListingListResponse,
    ListingPriceUpdateRequest,
    ListingResponse,
    ReconcileResponse,
)
from assetmarket.schemas.transaction import TransactionResponse
from assetmarket.services.orchestrator_service import ConsistencyOrchestrator, get_orchestrator
from assetmarket.services.query_service import listing_to_response, transaction_to_response
from assetmarket.services.store_gateway import MarketplaceGateway, get_marketplace

router = APIRouter(prefix="/listings", tags=["listings"])


@router.post("", response_model=ListingResponse, status_code=201)
async def create_listing(
    req: ListingCreateRequest,
    orchestrator: ConsistencyOrchestrator = Depends(get_orchestrator),
    principal: str = Depends(get_current_principal),
):
    listing = await orchestrator.list_for_sale(principal, req)
    return listing_to_response(listing)


@router.get("", response_model=ListingListResponse)
async def list_listings(
    active: bool | None = Query(True),
    seller: str | None = Query(None),
    asset_id: int | None = Query(None),
    category: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    marketplace: MarketplaceGateway = Depends(get_marketplace),
):
    listings, total = await marketplace.list_listings(
        active=active, seller=seller, asset_id=asset_id, category=category,
        page=page, page_size=page_size,
    )
    return ListingListResponse(
        total=total,
        page=page,
        page_size=page_size,
        results=[listing_to_response(item) for item in listings],
    )


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: int,
    marketplace: MarketplaceGateway = Depends(get_marketplace),
):
    listing = await marketplace.get_listing(listing_id)
    return listing_to_response(listing)


@router.put("/{listing_id}/price", response_model=ListingResponse)
async def update_listing_price(
    listing_id: int,
    req: ListingPriceUpdateRequest,
    marketplace: MarketplaceGateway = Depends(get_marketplace),
    principal: str = Depends(get_current_principal),
):
    listing = await marketplace.update_listing_price(listing_id, principal, req.price)
    return listing_to_response(listing)


@router.delete("/{listing_id}", response_model=ListingResponse)
async def cancel_listing(
    listing_id: int,
    orchestrator: ConsistencyOrchestrator = Depends(get_orchestrator),
    principal: str = Depends(get_current_principal),
):
    listing = await orchestrator.cancel_listing(principal, listing_id)
    return listing_to_response(listing)


@router.post("/{listing_id}/purchase", response_model=TransactionResponse, status_code=201)
async def purchase_listing(
    listing_id: int,
    orchestrator: ConsistencyOrchestrator = Depends(get_orchestrator),
    principal: str = Depends(get_current_principal),
):
    tx = await orchestrator.purchase(principal, listing_id)
    return transaction_to_response(tx)


@router.post("/{listing_id}/reconcile", response_model=ReconcileResponse)
async def reconcile_listing(
    listing_id: int,
    orchestrator: ConsistencyOrchestrator = Depends(get_orchestrator),
    principal: str = Depends(get_current_principal),
):
    result = await orchestrator.reconcile_listing(principal, listing_id)
    return ReconcileResponse(**result)
