"""Tests for the marketplace store: listings and transaction lifecycle."""

import pytest

from assetmarket.config import settings
from assetmarket.core.exceptions import (
    InvalidTransactionStateError,
    ListingNotActiveError,
    ListingNotFoundError,
    NotActiveError,
    NotOwnerError,
    SelfPurchaseError,
)
from assetmarket.schemas.listing import ListingCreateRequest
from assetmarket.services import marketplace_service


def _listing_req(asset_id: int = 1, price: int = 100, **overrides) -> ListingCreateRequest:
    data = {
        "asset_id": asset_id,
        "price": price,
        "title": "Sci-fi crate",
        "description": "PBR crate with variants",
        "category": "Models",
        "tags": ["crate", "scifi"],
    }
    data.update(overrides)
    return ListingCreateRequest(**data)


# ---------------------------------------------------------------------------
# listings
# ---------------------------------------------------------------------------

async def test_create_listing_is_active(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())

    assert listing.id >= 1
    assert listing.seller == "alice"
    assert listing.is_active is True


async def test_get_missing_listing(marketplace_db):
    with pytest.raises(ListingNotFoundError):
        await marketplace_service.get_listing(marketplace_db, 12345)


async def test_list_listings_filters_and_paginates(marketplace_db):
    for i in range(5):
        await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=i + 1))
    await marketplace_service.create_listing(marketplace_db, "bob", _listing_req(asset_id=10, category="Audio"))

    page, total = await marketplace_service.list_listings(marketplace_db, seller="alice", page=1, page_size=2)
    assert total == 5
    assert len(page) == 2
    assert page[0].id > page[1].id  # newest first

    audio, total = await marketplace_service.list_listings(marketplace_db, category="audio")
    assert total == 1
    assert audio[0].seller == "bob"


async def test_active_listings_for_asset(marketplace_db):
    first = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=7))
    await marketplace_service.cancel_listing(marketplace_db, first.id, "alice")
    second = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=7))

    active = await marketplace_service.active_listings_for_asset(marketplace_db, 7)
    assert [item.id for item in active] == [second.id]


async def test_search_listings_only_active(marketplace_db):
    live = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(title="Robot arm"))
    gone = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(title="Robot leg"))
    await marketplace_service.cancel_listing(marketplace_db, gone.id, "alice")

    found = await marketplace_service.search_listings(marketplace_db, "ROBOT")
    assert [item.id for item in found] == [live.id]


async def test_search_listings_treats_wildcards_literally(marketplace_db):
    discounted = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(title="100% robot"))
    await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(title="Robot torso"))

    found = await marketplace_service.search_listings(marketplace_db, "%")
    assert [item.id for item in found] == [discounted.id]


async def test_list_listings_text_filter_counts_every_match(marketplace_db):
    for i in range(4):
        await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=i + 1, title=f"Robot {i}"))
    await marketplace_service.create_listing(marketplace_db, "bob", _listing_req(asset_id=9, title="Barrel"))
    await marketplace_service.create_listing(
        marketplace_db, "bob", _listing_req(asset_id=10, title="Robot voice", category="Audio"),
    )

    second_page, total = await marketplace_service.list_listings(marketplace_db, q="robot", page=2, page_size=3)
    assert total == 5
    assert len(second_page) == 2

    audio, total = await marketplace_service.list_listings(marketplace_db, q="robot", category="audio")
    assert total == 1
    assert audio[0].seller == "bob"


async def test_update_listing_price_seller_only(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())

    updated = await marketplace_service.update_listing_price(marketplace_db, listing.id, "alice", 250)
    assert updated.price == 250

    with pytest.raises(NotOwnerError):
        await marketplace_service.update_listing_price(marketplace_db, listing.id, "bob", 1)


async def test_update_price_of_inactive_listing(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")

    with pytest.raises(NotActiveError):
        await marketplace_service.update_listing_price(marketplace_db, listing.id, "alice", 250)


async def test_cancel_listing_rules(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())

    with pytest.raises(NotOwnerError):
        await marketplace_service.cancel_listing(marketplace_db, listing.id, "bob")

    cancelled = await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")
    assert cancelled.is_active is False

    with pytest.raises(NotActiveError):
        await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")


async def test_marketplace_principal_can_cancel(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    cancelled = await marketplace_service.cancel_listing(
        marketplace_db, listing.id, settings.marketplace_principal,
    )
    assert cancelled.is_active is False


# ---------------------------------------------------------------------------
# transactions
# ---------------------------------------------------------------------------

async def test_open_purchase_copies_listing_price(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(price=420))

    tx = await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")

    assert tx.status == "pending"
    assert tx.price == 420
    assert tx.seller == "alice"
    assert tx.asset_id == listing.asset_id


async def test_open_purchase_rejects_seller_and_inactive(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())

    with pytest.raises(SelfPurchaseError):
        await marketplace_service.open_purchase(marketplace_db, listing.id, "alice")

    await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")
    with pytest.raises(ListingNotActiveError):
        await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")


async def test_record_transaction_without_pending(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(price=80))

    tx = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")

    assert tx.status == "completed"
    assert tx.price == 80
    assert tx.completed_at is not None
    refreshed = await marketplace_service.get_listing(marketplace_db, listing.id)
    assert refreshed.is_active is False


async def test_record_transaction_completes_pending(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    pending = await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")

    tx = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")

    assert tx.id == pending.id
    assert tx.status == "completed"


async def test_record_transaction_is_idempotent_for_same_buyer(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    first = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")
    again = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")

    assert again.id == first.id
    txns, total = await marketplace_service.list_transactions(marketplace_db, principal="bob")
    assert total == 1


async def test_record_transaction_rejects_second_buyer(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")

    with pytest.raises(ListingNotActiveError):
        await marketplace_service.record_transaction(marketplace_db, listing.id, "carol")


async def test_record_transaction_on_cancelled_listing(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")

    with pytest.raises(ListingNotActiveError):
        await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")


async def test_pending_purchase_completes_after_concurrent_deactivation(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    pending = await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")
    await marketplace_service.cancel_listing(marketplace_db, listing.id, "alice")

    tx = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")
    assert tx.id == pending.id
    assert tx.status == "completed"


async def test_fail_purchase_transitions(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    pending = await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")

    failed = await marketplace_service.fail_purchase(marketplace_db, pending.id, "transfer failed")
    assert failed.status == "failed"
    assert failed.failure_reason == "transfer failed"

    again = await marketplace_service.fail_purchase(marketplace_db, pending.id, "other")
    assert again.failure_reason == "transfer failed"


async def test_fail_completed_purchase_is_invalid(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    tx = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")

    with pytest.raises(InvalidTransactionStateError):
        await marketplace_service.fail_purchase(marketplace_db, tx.id, "too late")


async def test_sale_for_listing(marketplace_db):
    listing = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req())
    bob = await marketplace_service.open_purchase(marketplace_db, listing.id, "bob")
    carol = await marketplace_service.open_purchase(marketplace_db, listing.id, "carol")
    await marketplace_service.fail_purchase(marketplace_db, carol.id, "lost the race")

    found = await marketplace_service.sale_for_listing(marketplace_db, listing.id, "bob")
    assert found.id == bob.id
    assert await marketplace_service.sale_for_listing(marketplace_db, listing.id, "carol") is None

    completed = await marketplace_service.record_transaction(marketplace_db, listing.id, "bob")
    found = await marketplace_service.sale_for_listing(marketplace_db, listing.id, "bob")
    assert found.id == completed.id
    assert found.status == "completed"


async def test_list_transactions_by_role(marketplace_db):
    first = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=1))
    second = await marketplace_service.create_listing(marketplace_db, "bob", _listing_req(asset_id=2))
    await marketplace_service.record_transaction(marketplace_db, first.id, "bob")
    await marketplace_service.record_transaction(marketplace_db, second.id, "carol")

    _, both = await marketplace_service.list_transactions(marketplace_db, principal="bob")
    purchases, bought = await marketplace_service.list_transactions(marketplace_db, principal="bob", role="buyer")
    sales, sold = await marketplace_service.list_transactions(marketplace_db, principal="bob", role="seller")

    assert both == 2
    assert bought == 1 and purchases[0].seller == "alice"
    assert sold == 1 and sales[0].buyer == "carol"


async def test_marketplace_stats_counts_completed_only(marketplace_db):
    first = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=1, price=100))
    second = await marketplace_service.create_listing(marketplace_db, "alice", _listing_req(asset_id=2, price=50))
    await marketplace_service.record_transaction(marketplace_db, first.id, "bob")
    await marketplace_service.open_purchase(marketplace_db, second.id, "carol")

    stats = await marketplace_service.marketplace_stats(marketplace_db)
    assert stats == {
        "total_listings": 2,
        "active_listings": 1,
        "total_transactions": 1,
        "total_volume": 100,
    }
