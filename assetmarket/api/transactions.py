from fastapi import APIRouter, Depends, Query

from assetmarket.core.auth import get_current_principal
from assetmarket.core.exceptions import ForbiddenError
from assetmarket.schemas.transaction import TransactionListResponse, TransactionResponse
from assetmarket.services.query_service import transaction_to_response
from assetmarket.services.store_gateway import MarketplaceGateway, get_marketplace

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.get("", response_model=TransactionListResponse)
async def list_transactions(
    role: str | None = Query(None, pattern="^(buyer|seller)$"),
    status: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    marketplace: MarketplaceGateway = Depends(get_marketplace),
    principal: str = Depends(get_current_principal),
):
    txns, total = await marketplace.list_transactions(
        principal=principal, role=role, status_filter=status, page=page, page_size=page_size,
    )
    return TransactionListResponse(
        total=total,
        page=page,
        page_size=page_size,
        transactions=[transaction_to_response(tx) for tx in txns],
    )


@router.get("/{tx_id}", response_model=TransactionResponse)
async def get_transaction(
    tx_id: int,
    marketplace: MarketplaceGateway = Depends(get_marketplace),
    principal: str = Depends(get_current_principal),
):
    tx = await marketplace.get_transaction(tx_id)
    if principal not in (tx.buyer, tx.seller):
        raise ForbiddenError("Not a party to this transaction")
    return transaction_to_response(tx)
