"""Marketplace store: listings and purchase transactions.

Like the asset store, each public coroutine is one atomic call against the
marketplace database. This store has no visibility into asset ownership;
callers that need ownership or exclusivity checks go through the orchestrator.
"""

import json
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assetmarket.config import settings
from assetmarket.core.exceptions import (
    InvalidTransactionStateError,
    ListingNotActiveError,
    ListingNotFoundError,
    NotActiveError,
    NotOwnerError,
    SelfPurchaseError,
    TransactionNotFoundError,
)
from assetmarket.database import contains_pattern
from assetmarket.models.listing import Listing, utcnow
from assetmarket.models.transaction import Transaction, TransactionStatus
from assetmarket.schemas.listing import ListingCreateRequest

logger = logging.getLogger(__name__)

COMPLETED = TransactionStatus.COMPLETED.value
PENDING = TransactionStatus.PENDING.value
FAILED = TransactionStatus.FAILED.value


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

async def create_listing(db: AsyncSession, seller: str, req: ListingCreateRequest) -> Listing:
    """Insert an active listing for ``seller``. Ownership is not checked here."""
    now = utcnow()
    listing = Listing(
        asset_id=req.asset_id,
        seller=seller,
        price=req.price,
        title=req.title,
        description=req.description,
        category=req.category,
        tags=json.dumps(req.tags),
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(listing)
    await db.commit()
    await db.refresh(listing)
    return listing


async def get_listing(db: AsyncSession, listing_id: int) -> Listing:
    """Get a listing by ID or raise 404."""
    listing = await db.get(Listing, listing_id, populate_existing=True)
    if listing is None:
        raise ListingNotFoundError(listing_id)
    return listing


async def list_listings(
    db: AsyncSession,
    active: bool | None = True,
    seller: str | None = None,
    asset_id: int | None = None,
    category: str | None = None,
    q: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Listing], int]:
    """List listings with optional filters, newest first."""
    query = select(Listing)
    count_query = select(func.count(Listing.id))

    if active is not None:
        query = query.where(Listing.is_active == active)
        count_query = count_query.where(Listing.is_active == active)
    if seller:
        query = query.where(Listing.seller == seller)
        count_query = count_query.where(Listing.seller == seller)
    if asset_id is not None:
        query = query.where(Listing.asset_id == asset_id)
        count_query = count_query.where(Listing.asset_id == asset_id)
    if category:
        cond = func.lower(Listing.category) == category.lower()
        query = query.where(cond)
        count_query = count_query.where(cond)
    if q:
        cond = _text_match(q)
        query = query.where(cond)
        count_query = count_query.where(cond)

    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Listing.id.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def active_listings_for_asset(db: AsyncSession, asset_id: int) -> list[Listing]:
    result = await db.execute(
        select(Listing)
        .where(Listing.asset_id == asset_id, Listing.is_active.is_(True))
        .order_by(Listing.id)
    )
    return list(result.scalars().all())


async def all_active_listings(db: AsyncSession) -> list[Listing]:
    result = await db.execute(
        select(Listing).where(Listing.is_active.is_(True)).order_by(Listing.id)
    )
    return list(result.scalars().all())


async def search_listings(db: AsyncSession, q: str, limit: int = 50) -> list[Listing]:
    """Case-insensitive match over active listings' title, description, category and tags."""
    result = await db.execute(
        select(Listing)
        .where(Listing.is_active.is_(True), _text_match(q))
        .order_by(Listing.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def update_listing_price(db: AsyncSession, listing_id: int, caller: str, new_price: int) -> Listing:
    """Reprice an active listing (seller only)."""
    listing = await get_listing(db, listing_id)
    if listing.seller != caller:
        raise NotOwnerError("Only the seller can update the listing price")
    if not listing.is_active:
        raise NotActiveError(listing_id)
    listing.price = new_price
    listing.updated_at = utcnow()
    await db.commit()
    await db.refresh(listing)
    return listing


async def cancel_listing(db: AsyncSession, listing_id: int, caller: str) -> Listing:
    """Deactivate an active listing.

    Allowed for the seller, and for the marketplace principal when it retires
    a listing whose asset changed hands outside the marketplace.
    """
    listing = await get_listing(db, listing_id)
    if caller not in (listing.seller, settings.marketplace_principal):
        raise NotOwnerError("Only the seller can cancel this listing")

    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.is_active.is_(True))
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise NotActiveError(listing_id)
    await db.commit()
    return await get_listing(db, listing_id)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

async def open_purchase(db: AsyncSession, listing_id: int, buyer: str) -> Transaction:
    """Record the buyer's intent as a pending transaction priced from the listing."""
    listing = await get_listing(db, listing_id)
    if not listing.is_active:
        raise ListingNotActiveError(listing_id)
    if buyer == listing.seller:
        raise SelfPurchaseError()

    tx = Transaction(
        asset_id=listing.asset_id,
        listing_id=listing.id,
        seller=listing.seller,
        buyer=buyer,
        price=listing.price,
        status=PENDING,
        transaction_time=utcnow(),
    )
    db.add(tx)
    await db.commit()
    await db.refresh(tx)
    return tx


async def record_transaction(db: AsyncSession, listing_id: int, buyer: str) -> Transaction:
    """Deactivate the listing and complete the buyer's transaction in one commit.

    Safe to retry: a completed transaction for the same buyer is returned as
    is. A pending transaction means ownership already moved, so it completes
    even if the listing was deactivated in the meantime.
    """
    listing = await get_listing(db, listing_id)
    if buyer == listing.seller:
        raise SelfPurchaseError()

    completed = await _transactions_for(db, listing_id, status=COMPLETED)
    for tx in completed:
        if tx.buyer == buyer:
            return tx
    if completed:
        raise ListingNotActiveError(listing_id)

    pending = [tx for tx in await _transactions_for(db, listing_id, status=PENDING) if tx.buyer == buyer]

    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.is_active.is_(True))
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1 and not pending:
        await db.rollback()
        raise ListingNotActiveError(listing_id)

    now = utcnow()
    if pending:
        tx = pending[0]
        tx.status = COMPLETED
        tx.completed_at = now
    else:
        tx = Transaction(
            asset_id=listing.asset_id,
            listing_id=listing.id,
            seller=listing.seller,
            buyer=buyer,
            price=listing.price,
            status=COMPLETED,
            transaction_time=now,
            completed_at=now,
        )
        db.add(tx)
    await db.commit()
    await db.refresh(tx)
    logger.info("Listing %s sold to %s (transaction %s)", listing_id, buyer, tx.id)
    return tx


async def fail_purchase(db: AsyncSession, tx_id: int, reason: str) -> Transaction:
    """Move a pending transaction to failed. Idempotent for already-failed rows."""
    tx = await get_transaction(db, tx_id)
    if tx.status == FAILED:
        return tx
    if tx.status != PENDING:
        raise InvalidTransactionStateError(tx.status, PENDING)
    tx.status = FAILED
    tx.failure_reason = reason
    await db.commit()
    await db.refresh(tx)
    return tx


async def get_transaction(db: AsyncSession, tx_id: int) -> Transaction:
    tx = await db.get(Transaction, tx_id, populate_existing=True)
    if tx is None:
        raise TransactionNotFoundError(tx_id)
    return tx


async def pending_transactions(db: AsyncSession, listing_id: int | None = None) -> list[Transaction]:
    query = select(Transaction).where(Transaction.status == PENDING)
    if listing_id is not None:
        query = query.where(Transaction.listing_id == listing_id)
    result = await db.execute(query.order_by(Transaction.id))
    return list(result.scalars().all())


async def sale_for_listing(db: AsyncSession, listing_id: int, buyer: str) -> Transaction | None:
    """The buyer's pending or completed transaction on a listing, if there is one."""
    result = await db.execute(
        select(Transaction)
        .where(
            Transaction.listing_id == listing_id,
            Transaction.buyer == buyer,
            Transaction.status.in_((PENDING, COMPLETED)),
        )
        .order_by(Transaction.id.desc())
        .limit(1)
    )
    return result.scalars().first()


async def list_transactions(
    db: AsyncSession,
    principal: str | None = None,
    role: str | None = None,  # buyer | seller | None for both
    status_filter: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[Transaction], int]:
    """List transactions, optionally filtered by principal as buyer and/or seller."""
    query = select(Transaction)
    count_query = select(func.count(Transaction.id))

    if principal:
        if role == "buyer":
            cond = Transaction.buyer == principal
        elif role == "seller":
            cond = Transaction.seller == principal
        else:
            cond = (Transaction.buyer == principal) | (Transaction.seller == principal)
        query = query.where(cond)
        count_query = count_query.where(cond)

    if status_filter:
        query = query.where(Transaction.status == status_filter)
        count_query = count_query.where(Transaction.status == status_filter)

    total = (await db.execute(count_query)).scalar() or 0

    query = query.order_by(Transaction.id.desc())
    query = query.offset((page - 1) * page_size).limit(page_size)
    result = await db.execute(query)
    return list(result.scalars().all()), total


async def marketplace_stats(db: AsyncSession) -> dict:
    total_listings = (await db.execute(select(func.count(Listing.id)))).scalar() or 0
    active_listings = (
        await db.execute(select(func.count(Listing.id)).where(Listing.is_active.is_(True)))
    ).scalar() or 0
    total_transactions, total_volume = (
        await db.execute(
            select(func.count(Transaction.id), func.coalesce(func.sum(Transaction.price), 0))
            .where(Transaction.status == COMPLETED)
        )
    ).one()
    return {
        "total_listings": total_listings,
        "active_listings": active_listings,
        "total_transactions": total_transactions or 0,
        "total_volume": int(total_volume or 0),
    }


async def _transactions_for(db: AsyncSession, listing_id: int, status: str) -> list[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.listing_id == listing_id, Transaction.status == status)
        .order_by(Transaction.id)
    )
    return list(result.scalars().all())


def _text_match(q: str):
    pattern = contains_pattern(q)
    return or_(
        func.lower(Listing.title).like(pattern, escape="\\"),
        func.lower(Listing.description).like(pattern, escape="\\"),
        func.lower(Listing.category).like(pattern, escape="\\"),
        func.lower(Listing.tags).like(pattern, escape="\\"),
    )
