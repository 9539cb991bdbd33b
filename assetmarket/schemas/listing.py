from datetime import datetime

from pydantic import BaseModel, Field


class ListingCreateRequest(BaseModel):
    asset_id: int = Field(..., ge=1)
    price: int = Field(..., ge=0)
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=50)
    tags: list[str] = []


class ListingPriceUpdateRequest(BaseModel):
    price: int = Field(..., ge=0)


class ListingResponse(BaseModel):
    id: int
    asset_id: int
    seller: str
    price: int
    title: str
    description: str
    category: str
    tags: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ListingListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    results: list[ListingResponse]


class AssetSummary(BaseModel):
    id: int
    owner: str
    name: str
    content_type: str
    content_size: int
    preview_url: str | None = None
    is_for_sale: bool


class MarketListingResponse(ListingResponse):
    asset: AssetSummary | None = None


class MarketFeedResponse(BaseModel):
    total: int
    page: int
    page_size: int
    results: list[MarketListingResponse]


class ReconcileResponse(BaseModel):
    listing_id: int
    asset_id: int
    listing_active: bool
    asset_owner: str
    is_for_sale: bool
    actions: list[str]
