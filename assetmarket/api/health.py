import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from assetmarket.core.exceptions import StoreUnavailableError
from assetmarket.schemas.common import HealthResponse
from assetmarket.services.store_gateway import (
    AssetRegistryGateway,
    MarketplaceGateway,
    get_marketplace,
    get_registry,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_VERSION = "0.1.0"


@router.get("/health", response_model=HealthResponse)
async def health_check(
    registry: AssetRegistryGateway = Depends(get_registry),
    marketplace: MarketplaceGateway = Depends(get_marketplace),
):
    registry_stats = await registry.stats()
    marketplace_stats = await marketplace.stats()

    return HealthResponse(
        status="healthy",
        version=_VERSION,
        assets_count=registry_stats["total_assets"],
        listings_count=marketplace_stats["total_listings"],
        transactions_count=marketplace_stats["total_transactions"],
        breakers={
            registry.store_name: registry.breaker.state.value,
            marketplace.store_name: marketplace.breaker.state.value,
        },
    )


@router.get("/health/ready")
async def readiness_check(
    registry: AssetRegistryGateway = Depends(get_registry),
    marketplace: MarketplaceGateway = Depends(get_marketplace),
):
    """Readiness probe: both stores must answer."""
    stores = {}
    for gateway in (registry, marketplace):
        try:
            await gateway.ping()
            stores[gateway.store_name] = "connected"
        except StoreUnavailableError:
            logger.exception("Readiness check failed: store '%s' unreachable", gateway.store_name)
            stores[gateway.store_name] = "unavailable"

    if all(state == "connected" for state in stores.values()):
        return {"status": "ready", "stores": stores}
    return JSONResponse(status_code=503, content={"status": "not_ready", "stores": stores})
