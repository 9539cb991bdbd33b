"""Cross-store sagas for listing, cancelling and purchasing assets.

The registry and the marketplace commit independently. Each compound
operation below issues the authoritative mutation first, then the dependent
one, and never unwinds a committed step. When a dependent step cannot be
applied after a bounded number of attempts the caller gets a
``PartialListingFailure`` naming the step that is still outstanding;
``reconcile_listing`` re-applies only that step.

Purchase:
    1  listing must be active                      (marketplace read)
    2  buyer must not own the asset                 (registry read)
    3a pending transaction, price copied            (marketplace write)
    3  transfer owner iff seller still owns it      (registry write, privileged)
    4  deactivate listing + complete transaction    (marketplace write, retried)
    5  clear the for-sale flag                      (registry write, retried)
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any

from assetmarket.config import settings
from assetmarket.core.exceptions import (
    AlreadyListedError,
    ListingNotActiveError,
    MarketError,
    NotOwnerError,
    OwnershipMismatchError,
    PartialListingFailure,
    SelfPurchaseError,
    StaleListingError,
    StoreUnavailableError,
)
from assetmarket.models.listing import Listing
from assetmarket.models.transaction import Transaction
from assetmarket.schemas.listing import ListingCreateRequest
from assetmarket.services.store_gateway import (
    AssetRegistryGateway,
    MarketplaceGateway,
    get_marketplace,
    get_registry,
)

logger = logging.getLogger(__name__)


class KeyedLock:
    """One asyncio lock per key, dropped again once nobody holds or waits for it."""

    def __init__(self) -> None:
        self._locks: dict[Any, asyncio.Lock] = {}
        self._users: Counter = Counter()

    @asynccontextmanager
    async def hold(self, key):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


def _reason(exc: MarketError) -> str:
    return exc.detail if isinstance(exc.detail, str) else str(exc.detail)


class ConsistencyOrchestrator:
    def __init__(
        self,
        registry: AssetRegistryGateway,
        marketplace: MarketplaceGateway,
        *,
        principal: str | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.registry = registry
        self.marketplace = marketplace
        self.principal = principal or settings.marketplace_principal
        self._max_attempts = max(1, max_attempts or settings.saga_max_attempts)
        self._backoff = settings.saga_retry_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._asset_locks = KeyedLock()

    # ------------------------------------------------------------------
    # List for sale
    # ------------------------------------------------------------------

    async def list_for_sale(self, caller: str, req: ListingCreateRequest) -> Listing:
        async with self._asset_locks.hold(req.asset_id):
            asset = await self.registry.get_asset(req.asset_id)
            if asset.owner != caller:
                raise NotOwnerError("Only the owner can list this asset")

            active = await self.marketplace.active_listings_for_asset(asset.id)
            if active:
                raise AlreadyListedError(asset.id, active[0].id)

            listing = await self.marketplace.create_listing(caller, req)

            try:
                await self._retry("set_for_sale", self.registry.set_for_sale, asset.id, caller, True)
            except MarketError as exc:
                logger.warning(
                    "Listing %s is active but asset %s is not flagged for sale: %s",
                    listing.id, asset.id, _reason(exc),
                )
                raise PartialListingFailure(listing.id, asset.id, "set_for_sale", _reason(exc))

            logger.info("Asset %s listed by %s as listing %s", asset.id, caller, listing.id)
            return listing

    # ------------------------------------------------------------------
    # Cancel listing
    # ------------------------------------------------------------------

    async def cancel_listing(self, caller: str, listing_id: int) -> Listing:
        peek = await self.marketplace.get_listing(listing_id)
        async with self._asset_locks.hold(peek.asset_id):
            listing = await self.marketplace.cancel_listing(listing_id, caller)

            try:
                await self._retry("clear_for_sale", self.registry.set_for_sale, listing.asset_id, caller, False)
            except NotOwnerError:
                # Asset left the seller's hands; that transfer already cleared the flag.
                logger.info("Listing %s cancelled after asset %s changed owner", listing_id, listing.asset_id)
            except MarketError as exc:
                logger.warning(
                    "Listing %s cancelled but asset %s still flagged for sale: %s",
                    listing_id, listing.asset_id, _reason(exc),
                )
                raise PartialListingFailure(listing_id, listing.asset_id, "clear_for_sale", _reason(exc))

            return listing

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    async def purchase(self, buyer: str, listing_id: int) -> Transaction:
        peek = await self.marketplace.get_listing(listing_id)
        async with self._asset_locks.hold(peek.asset_id):
            listing = await self.marketplace.get_listing(listing_id)
            if not listing.is_active:
                raise ListingNotActiveError(listing_id)

            asset = await self.registry.get_asset(listing.asset_id)
            if buyer in (asset.owner, listing.seller):
                raise SelfPurchaseError()

            pending = await self.marketplace.open_purchase(listing_id, buyer)

            try:
                await self.registry.marketplace_transfer(asset.id, self.principal, listing.seller, buyer)
            except OwnershipMismatchError:
                if await self._sold_elsewhere(listing_id, asset.id, pending):
                    raise ListingNotActiveError(listing_id)
                logger.warning(
                    "Listing %s is stale: asset %s no longer owned by %s",
                    listing_id, asset.id, listing.seller,
                )
                await self._best_effort(
                    "fail pending transaction",
                    self.marketplace.fail_purchase,
                    pending.id,
                    "asset changed hands outside the marketplace",
                )
                await self._best_effort(
                    "retire stale listing",
                    self.marketplace.cancel_listing,
                    listing_id,
                    self.principal,
                )
                raise StaleListingError(listing_id, asset.id)
            except StoreUnavailableError as exc:
                # The transfer may have committed before the store went away.
                try:
                    current = await self._retry("verify_transfer", self.registry.get_asset, asset.id)
                except MarketError:
                    logger.warning(
                        "Outcome of transfer of asset %s to %s unknown; transaction %s left pending",
                        asset.id, buyer, pending.id,
                    )
                    raise PartialListingFailure(
                        listing_id, asset.id, "record_transaction", _reason(exc), transaction_id=pending.id,
                    )
                if current.owner != buyer:
                    await self._best_effort(
                        "fail pending transaction",
                        self.marketplace.fail_purchase,
                        pending.id,
                        f"ownership transfer failed: {_reason(exc)}",
                    )
                    raise
                logger.info("Transfer of asset %s to %s landed despite: %s", asset.id, buyer, _reason(exc))
            except MarketError as exc:
                await self._best_effort(
                    "fail pending transaction",
                    self.marketplace.fail_purchase,
                    pending.id,
                    f"ownership transfer failed: {_reason(exc)}",
                )
                raise

            # Ownership has moved; from here on nothing is undone.
            try:
                tx = await self._retry("record_transaction", self.marketplace.record_transaction, listing_id, buyer)
            except MarketError as exc:
                logger.warning(
                    "Asset %s transferred to %s but listing %s not settled: %s",
                    asset.id, buyer, listing_id, _reason(exc),
                )
                raise PartialListingFailure(
                    listing_id, asset.id, "record_transaction", _reason(exc), transaction_id=pending.id,
                )

            try:
                await self._retry("clear_for_sale", self.registry.set_for_sale, asset.id, buyer, False)
            except MarketError as exc:
                logger.warning(
                    "Sale of listing %s settled but asset %s still flagged for sale: %s",
                    listing_id, asset.id, _reason(exc),
                )
                raise PartialListingFailure(
                    listing_id, asset.id, "clear_for_sale", _reason(exc), transaction_id=tx.id,
                )

            return tx

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_listing(self, caller: str, listing_id: int) -> dict:
        """Converge both stores for the listing's asset. Idempotent.

        Never re-runs an ownership transfer: pending purchases are completed
        if the buyer already owns the asset and failed otherwise.
        """
        peek = await self.marketplace.get_listing(listing_id)
        async with self._asset_locks.hold(peek.asset_id):
            listing = await self.marketplace.get_listing(listing_id)
            asset = await self.registry.get_asset(listing.asset_id)
            pending = await self.marketplace.pending_transactions(listing_id)

            parties = {asset.owner, listing.seller, self.principal} | {tx.buyer for tx in pending}
            if caller not in parties and caller not in settings.admin_principal_set:
                raise NotOwnerError("Only parties to this listing can reconcile it")

            actions: list[str] = []
            for tx in pending:
                if tx.buyer == asset.owner:
                    try:
                        await self.marketplace.record_transaction(listing_id, tx.buyer)
                        actions.append(f"completed_transaction:{tx.id}")
                        continue
                    except ListingNotActiveError:
                        pass
                await self.marketplace.fail_purchase(tx.id, "ownership was not transferred to the buyer")
                actions.append(f"failed_transaction:{tx.id}")

            listing = await self.marketplace.get_listing(listing_id)
            if listing.is_active and listing.seller != asset.owner:
                listing = await self.marketplace.cancel_listing(listing_id, self.principal)
                actions.append(f"retired_stale_listing:{listing_id}")

            active = await self.marketplace.active_listings_for_asset(asset.id)
            should_be_for_sale = any(item.seller == asset.owner for item in active)
            if asset.is_for_sale != should_be_for_sale:
                asset = await self.registry.set_for_sale(asset.id, asset.owner, should_be_for_sale)
                actions.append("set_for_sale" if should_be_for_sale else "cleared_for_sale")

            if actions:
                logger.info("Reconciled listing %s: %s", listing_id, ", ".join(actions))
            return {
                "listing_id": listing.id,
                "asset_id": asset.id,
                "listing_active": listing.is_active,
                "asset_owner": asset.owner,
                "is_for_sale": asset.is_for_sale,
                "actions": actions,
            }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _retry(self, step: str, operation, *args):
        """Run an idempotent step, retrying only while the store is unavailable."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                return await operation(*args)
            except StoreUnavailableError as exc:
                if attempt == self._max_attempts:
                    raise
                logger.warning(
                    "Step %s failed (attempt %d/%d): %s", step, attempt, self._max_attempts, _reason(exc),
                )
                await asyncio.sleep(self._backoff * (2 ** (attempt - 1)))

    async def _sold_elsewhere(self, listing_id: int, asset_id: int, pending: Transaction) -> bool:
        """Whether the asset's current owner bought it through this same listing.

        If so, this purchase lost a race with another process and its pending
        transaction is failed. The listing itself is left to the winner.
        """
        try:
            current = await self.registry.get_asset(asset_id)
            winner = await self.marketplace.sale_for_listing(listing_id, current.owner)
        except MarketError as exc:
            logger.warning("Could not check listing %s for a competing sale: %s", listing_id, _reason(exc))
            return False
        if winner is None or winner.id == pending.id:
            return False

        logger.info(
            "Listing %s already sold to %s (transaction %s); failing transaction %s",
            listing_id, winner.buyer, winner.id, pending.id,
        )
        await self._best_effort(
            "fail pending transaction",
            self.marketplace.fail_purchase,
            pending.id,
            "listing was sold to another buyer",
        )
        return True

    async def _best_effort(self, what: str, operation, *args) -> None:
        try:
            await operation(*args)
        except MarketError as exc:
            logger.warning("Could not %s: %s", what, _reason(exc))


_orchestrator: ConsistencyOrchestrator | None = None


def get_orchestrator() -> ConsistencyOrchestrator:
    """Process-wide orchestrator bound to the current gateways."""
    global _orchestrator
    registry, marketplace = get_registry(), get_marketplace()
    if _orchestrator is None or _orchestrator.registry is not registry or _orchestrator.marketplace is not marketplace:
        _orchestrator = ConsistencyOrchestrator(registry, marketplace)
    return _orchestrator
