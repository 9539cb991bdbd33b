"""Asset store: the registry of asset records.

Every public coroutine here is one atomic store call: it runs inside a single
session and commits at most once. Ownership and the for-sale flag only change
through the functions in this module.
"""

import json
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetmarket.config import settings
from assetmarket.core.exceptions import (
    AssetNotFoundError,
    ForbiddenError,
    InvalidRequestError,
    NotOwnerError,
    OwnershipMismatchError,
    SelfPurchaseError,
)
from assetmarket.database import contains_pattern
from assetmarket.models.asset import Asset, utcnow
from assetmarket.schemas.asset import AssetUploadRequest
from assetmarket.services.storage_service import store_content

logger = logging.getLogger(__name__)


async def upload_asset(db: AsyncSession, owner: str, req: AssetUploadRequest) -> Asset:
    """Register a new asset owned by the caller. Assets start not for sale."""
    if not owner:
        raise ForbiddenError("Anonymous callers cannot upload assets")

    if req.content:
        content_hash, content_size, content_url = store_content(req.content)
    else:
        content_hash, content_size = req.content_hash, req.content_size
        content_url = req.content_url or ""

    now = utcnow()
    asset = Asset(
        owner=owner,
        name=req.name,
        description=req.description,
        category=req.category,
        tags=json.dumps(req.tags),
        content_hash=content_hash,
        content_type=req.content_type,
        content_size=content_size,
        content_url=content_url,
        preview_url=req.preview_url,
        price=req.price,
        is_for_sale=False,
        created_at=now,
        updated_at=now,
    )
    db.add(asset)
    await db.commit()
    await db.refresh(asset)
    logger.info("Asset %s registered by %s", asset.id, owner)
    return asset


async def get_asset(db: AsyncSession, asset_id: int) -> Asset:
    """Get an asset by ID or raise 404."""
    asset = await db.get(Asset, asset_id, populate_existing=True)
    if asset is None:
        raise AssetNotFoundError(asset_id)
    return asset


async def get_assets(db: AsyncSession, asset_ids: list[int]) -> dict[int, Asset]:
    if not asset_ids:
        return {}
    result = await db.execute(select(Asset).where(Asset.id.in_(set(asset_ids))))
    return {asset.id: asset for asset in result.scalars().all()}


async def list_assets(
    db: AsyncSession,
    owner: str | None = None,
    for_sale: bool | None = None,
    category: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Asset], int]:
    """List assets with optional filters, newest first."""
    query = select(Asset)
    count_query = select(func.count(Asset.id))

    if owner:
        query = query.where(Asset.owner == owner)
        count_query = count_query.where(Asset.owner == owner)
    if for_sale is not None:
        query = query.where(Asset.is_for_sale == for_sale)
        count_query = count_query.where(Asset.is_for_sale == for_sale)
    if category:
        cond = func.lower(Asset.category) == category.lower()
        query = query.where(cond)
        count_query = count_query.where(cond)

    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Asset.id.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def all_assets(db: AsyncSession) -> list[Asset]:
    result = await db.execute(select(Asset).order_by(Asset.id))
    return list(result.scalars().all())


async def search_assets(db: AsyncSession, q: str, limit: int = 50) -> list[Asset]:
    """Case-insensitive substring match over name, description, category and tags."""
    pattern = contains_pattern(q)
    cond = or_(
        func.lower(Asset.name).like(pattern, escape="\\"),
        func.lower(Asset.description).like(pattern, escape="\\"),
        func.lower(Asset.category).like(pattern, escape="\\"),
        func.lower(Asset.tags).like(pattern, escape="\\"),
    )
    result = await db.execute(select(Asset).where(cond).order_by(Asset.id.desc()).limit(limit))
    return list(result.scalars().all())


async def registry_stats(db: AsyncSession) -> dict:
    total = (await db.execute(select(func.count(Asset.id)))).scalar() or 0
    for_sale = (
        await db.execute(select(func.count(Asset.id)).where(Asset.is_for_sale.is_(True)))
    ).scalar() or 0
    return {"total_assets": total, "assets_for_sale": for_sale}


async def update_price(db: AsyncSession, asset_id: int, caller: str, new_price: int) -> Asset:
    """Change the asking price on the asset record (owner only)."""
    if new_price < 0:
        raise InvalidRequestError("Price must be a non-negative integer")
    asset = await _owned_asset(db, asset_id, caller, "Only the owner can update the asset price")
    asset.price = new_price
    asset.updated_at = utcnow()
    await db.commit()
    await db.refresh(asset)
    return asset


async def set_for_sale(db: AsyncSession, asset_id: int, caller: str, for_sale: bool) -> Asset:
    """Set the for-sale flag (owner only). Idempotent."""
    asset = await _owned_asset(db, asset_id, caller, "Only the owner can change sale status")
    if asset.is_for_sale == for_sale:
        return asset
    asset.is_for_sale = for_sale
    asset.updated_at = utcnow()
    await db.commit()
    await db.refresh(asset)
    return asset


async def transfer_owner(db: AsyncSession, asset_id: int, caller: str, new_owner: str) -> Asset:
    """Direct, non-marketplace transfer by the current owner. Clears the for-sale flag."""
    asset = await _owned_asset(db, asset_id, caller, "Only the owner can transfer ownership")
    if new_owner == caller:
        raise InvalidRequestError("Asset is already owned by the recipient")
    asset.owner = new_owner
    asset.is_for_sale = False
    asset.updated_at = utcnow()
    await db.commit()
    await db.refresh(asset)
    logger.info("Asset %s transferred directly from %s to %s", asset_id, caller, new_owner)
    return asset


async def marketplace_transfer(
    db: AsyncSession,
    asset_id: int,
    caller: str,
    expected_owner: str,
    new_owner: str,
) -> Asset:
    """Privileged sale transfer: moves ownership only if ``expected_owner`` still owns the asset.

    Compare-and-set at the row level, so a concurrent transfer can never be
    overwritten and a mismatch never writes anything.
    """
    if caller != settings.marketplace_principal:
        raise ForbiddenError("Only the marketplace principal may transfer assets on sale")
    if expected_owner == new_owner:
        raise SelfPurchaseError()

    result = await db.execute(
        update(Asset)
        .where(Asset.id == asset_id, Asset.owner == expected_owner)
        .values(owner=new_owner, is_for_sale=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        current = await db.get(Asset, asset_id)
        if current is None:
            raise AssetNotFoundError(asset_id)
        raise OwnershipMismatchError(asset_id, expected_owner)

    # Read back before committing: nothing after the commit may fail.
    asset = await get_asset(db, asset_id)
    await db.commit()
    logger.info("Asset %s sold: %s -> %s", asset_id, expected_owner, new_owner)
    return asset


async def _owned_asset(db: AsyncSession, asset_id: int, caller: str, message: str) -> Asset:
    asset = await get_asset(db, asset_id)
    if asset.owner != caller:
        raise NotOwnerError(message)
    return asset
