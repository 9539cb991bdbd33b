from pydantic import BaseModel

from assetmarket.schemas.asset import AssetResponse
from assetmarket.schemas.listing import ListingResponse
from assetmarket.schemas.transaction import TransactionResponse


class HealthResponse(BaseModel):
    status: str
    version: str
    assets_count: int
    listings_count: int
    transactions_count: int
    breakers: dict[str, str] = {}


class RegistryStats(BaseModel):
    total_assets: int
    assets_for_sale: int


class MarketplaceStats(BaseModel):
    total_listings: int
    active_listings: int
    total_transactions: int
    total_volume: int


class MarketOverview(BaseModel):
    registry: RegistryStats
    marketplace: MarketplaceStats


class SearchResponse(BaseModel):
    query: str
    assets: list[AssetResponse]
    listings: list[ListingResponse]


class UserDashboard(BaseModel):
    principal: str
    assets: list[AssetResponse]
    listings: list[ListingResponse]
    purchases: list[TransactionResponse]
    sales: list[TransactionResponse]


class DivergenceFinding(BaseModel):
    kind: str  # flag_without_listing | listing_without_flag | stale_listing | multiple_active_listings | pending_transaction
    asset_id: int
    listing_ids: list[int] = []
    transaction_id: int | None = None
    detail: str = ""


class DivergenceReport(BaseModel):
    assets_checked: int
    listings_checked: int
    findings: list[DivergenceFinding]
    scanned_at: str
