"""Read-side views composed from both stores.

Nothing here gates a mutation: the views are assembled from separate reads
and may be momentarily inconsistent while a compound operation is running.
"""

import json

from assetmarket.schemas.asset import AssetResponse
from assetmarket.schemas.common import (
    MarketOverview,
    MarketplaceStats,
    RegistryStats,
    SearchResponse,
    UserDashboard,
)
from assetmarket.schemas.listing import (
    AssetSummary,
    ListingResponse,
    MarketFeedResponse,
    MarketListingResponse,
)
from assetmarket.schemas.transaction import TransactionResponse
from assetmarket.services.store_gateway import get_marketplace, get_registry

DASHBOARD_LIMIT = 100


def _tags(raw) -> list[str]:
    if isinstance(raw, str):
        return json.loads(raw) if raw else []
    return list(raw or [])


def asset_to_response(asset) -> AssetResponse:
    return AssetResponse(
        id=asset.id,
        owner=asset.owner,
        name=asset.name,
        description=asset.description,
        category=asset.category,
        tags=_tags(asset.tags),
        content_hash=asset.content_hash,
        content_type=asset.content_type,
        content_size=asset.content_size,
        content_url=asset.content_url,
        preview_url=asset.preview_url,
        price=asset.price,
        is_for_sale=asset.is_for_sale,
        created_at=asset.created_at,
        updated_at=asset.updated_at,
    )


def listing_to_response(listing) -> ListingResponse:
    return ListingResponse(
        id=listing.id,
        asset_id=listing.asset_id,
        seller=listing.seller,
        price=listing.price,
        title=listing.title,
        description=listing.description,
        category=listing.category,
        tags=_tags(listing.tags),
        is_active=listing.is_active,
        created_at=listing.created_at,
        updated_at=listing.updated_at,
    )


def transaction_to_response(tx) -> TransactionResponse:
    return TransactionResponse.model_validate(tx)


def _market_listing(listing, asset) -> MarketListingResponse:
    summary = None
    if asset is not None:
        summary = AssetSummary(
            id=asset.id,
            owner=asset.owner,
            name=asset.name,
            content_type=asset.content_type,
            content_size=asset.content_size,
            preview_url=asset.preview_url,
            is_for_sale=asset.is_for_sale,
        )
    return MarketListingResponse(**listing_to_response(listing).model_dump(), asset=summary)


async def market_feed(
    category: str | None = None,
    q: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> MarketFeedResponse:
    """Active listings, newest first, each with a summary of its asset."""
    listings, total = await get_marketplace().list_listings(
        active=True, category=category, q=q or None, page=page, page_size=page_size,
    )

    assets = await get_registry().get_assets([item.asset_id for item in listings])
    return MarketFeedResponse(
        total=total,
        page=page,
        page_size=page_size,
        results=[_market_listing(item, assets.get(item.asset_id)) for item in listings],
    )


async def browse_category(category: str, page: int = 1, page_size: int = 20) -> MarketFeedResponse:
    return await market_feed(category=category, page=page, page_size=page_size)


async def search(q: str, limit: int = 20) -> SearchResponse:
    assets = await get_registry().search_assets(q, limit)
    listings = await get_marketplace().search_listings(q, limit)
    return SearchResponse(
        query=q,
        assets=[asset_to_response(a) for a in assets],
        listings=[listing_to_response(item) for item in listings],
    )


async def overview_stats() -> MarketOverview:
    registry_stats = await get_registry().stats()
    marketplace_stats = await get_marketplace().stats()
    return MarketOverview(
        registry=RegistryStats(**registry_stats),
        marketplace=MarketplaceStats(**marketplace_stats),
    )


async def user_dashboard(principal: str) -> UserDashboard:
    """Everything one principal owns, lists, bought and sold."""
    registry, marketplace = get_registry(), get_marketplace()
    assets, _ = await registry.list_assets(owner=principal, page_size=DASHBOARD_LIMIT)
    listings, _ = await marketplace.list_listings(active=None, seller=principal, page_size=DASHBOARD_LIMIT)
    purchases, _ = await marketplace.list_transactions(
        principal=principal, role="buyer", page_size=DASHBOARD_LIMIT,
    )
    sales, _ = await marketplace.list_transactions(
        principal=principal, role="seller", page_size=DASHBOARD_LIMIT,
    )
    return UserDashboard(
        principal=principal,
        assets=[asset_to_response(a) for a in assets],
        listings=[listing_to_response(item) for item in listings],
        purchases=[transaction_to_response(tx) for tx in purchases],
        sales=[transaction_to_response(tx) for tx in sales],
    )
