from fastapi import APIRouter, Depends, Query

from assetmarket.core.auth import get_current_principal
from assetmarket.schemas.asset import (
    AssetListResponse,
    AssetPriceUpdateRequest,
    AssetResponse,
    AssetTransferRequest,
    AssetUploadRequest,
)
from assetmarket.services.query_service import asset_to_response
from assetmarket.services.store_gateway import AssetRegistryGateway, get_registry

router = APIRouter(prefix="/assets", tags=["assets"])


@router.post("", response_model=AssetResponse, status_code=201)
async def upload_asset(
    req: AssetUploadRequest,
    registry: AssetRegistryGateway = Depends(get_registry),
    principal: str = Depends(get_current_principal),
):
    asset = await registry.upload_asset(principal, req)
    return asset_to_response(asset)


@router.get("", response_model=AssetListResponse)
async def list_assets(
    owner: str | None = Query(None),
    for_sale: bool | None = Query(None),
    category: str | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    registry: AssetRegistryGateway = Depends(get_registry),
):
    assets, total = await registry.list_assets(
        owner=owner, for_sale=for_sale, category=category, page=page, page_size=page_size,
    )
    return AssetListResponse(
        total=total,
        page=page,
        page_size=page_size,
        results=[asset_to_response(a) for a in assets],
    )


@router.get("/{asset_id}", response_model=AssetResponse)
async def get_asset(
    asset_id: int,
    registry: AssetRegistryGateway = Depends(get_registry),
):
    asset = await registry.get_asset(asset_id)
    return asset_to_response(asset)


@router.put("/{asset_id}/price", response_model=AssetResponse)
async def update_price(
    asset_id: int,
    req: AssetPriceUpdateRequest,
    registry: AssetRegistryGateway = Depends(get_registry),
    principal: str = Depends(get_current_principal),
):
    asset = await registry.update_price(asset_id, principal, req.price)
    return asset_to_response(asset)


@router.post("/{asset_id}/transfer", response_model=AssetResponse)
async def transfer_asset(
    asset_id: int,
    req: AssetTransferRequest,
    registry: AssetRegistryGateway = Depends(get_registry),
    principal: str = Depends(get_current_principal),
):
    """Give the asset away outside the marketplace. Any open listing goes stale."""
    asset = await registry.transfer_owner(asset_id, principal, req.new_owner)
    return asset_to_response(asset)
