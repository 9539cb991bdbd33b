"""Gateways: the only way callers reach a store.

A gateway call is one store operation executed in its own session. Calls to a
store are serialised by the gateway's lock, so no two operations on the same
store interleave. Waiting for the lock is bounded; once a call starts it is
never cancelled. Driver-level failures surface as ``StoreUnavailableError``
and feed the store's circuit breaker.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assetmarket.config import settings
from assetmarket.core.exceptions import MarketError, StoreUnavailableError
from assetmarket.services import asset_service, marketplace_service
from assetmarket.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreGateway:
    store_name = "store"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        breaker: CircuitBreaker | None = None,
        call_timeout: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self.breaker = breaker or CircuitBreaker(
            name=self.store_name,
            failure_threshold=settings.store_breaker_failure_threshold,
            recovery_timeout=settings.store_breaker_recovery_seconds,
        )
        self._call_timeout = settings.store_call_timeout_seconds if call_timeout is None else call_timeout

    async def _call(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        if not self.breaker.allow_request():
            raise StoreUnavailableError(self.store_name, "temporarily unavailable (circuit open)")
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self._call_timeout)
        except asyncio.TimeoutError:
            self.breaker.record_failure()
            logger.warning("Store '%s' busy: %s not started", self.store_name, operation.__name__)
            raise StoreUnavailableError(self.store_name, "busy")
        try:
            async with self._session_factory() as db:
                result = await operation(db, *args, **kwargs)
        except MarketError:
            self.breaker.record_success()
            raise
        except (OperationalError, InterfaceError) as exc:
            self.breaker.record_failure()
            logger.warning("Store '%s' failed during %s: %s", self.store_name, operation.__name__, exc)
            raise StoreUnavailableError(self.store_name) from exc
        except Exception as exc:
            # Counts as a failure so the HALF_OPEN trial slot is always released.
            self.breaker.record_failure()
            logger.warning(
                "Store '%s' raised %s during %s", self.store_name, type(exc).__name__, operation.__name__,
            )
            raise
        finally:
            self._lock.release()
        self.breaker.record_success()
        return result

    async def ping(self) -> bool:
        async def _select_one(db: AsyncSession) -> bool:
            await db.execute(text("SELECT 1"))
            return True

        return await self._call(_select_one)


class AssetRegistryGateway(StoreGateway):
    store_name = "asset_registry"

    async def upload_asset(self, owner, req):
        return await self._call(asset_service.upload_asset, owner, req)

    async def get_asset(self, asset_id):
        return await self._call(asset_service.get_asset, asset_id)

    async def get_assets(self, asset_ids):
        return await self._call(asset_service.get_assets, asset_ids)

    async def list_assets(self, **filters):
        return await self._call(asset_service.list_assets, **filters)

    async def all_assets(self):
        return await self._call(asset_service.all_assets)

    async def search_assets(self, q, limit=50):
        return await self._call(asset_service.search_assets, q, limit)

    async def stats(self):
        return await self._call(asset_service.registry_stats)

    async def update_price(self, asset_id, caller, new_price):
        return await self._call(asset_service.update_price, asset_id, caller, new_price)

    async def set_for_sale(self, asset_id, caller, for_sale):
        return await self._call(asset_service.set_for_sale, asset_id, caller, for_sale)

    async def transfer_owner(self, asset_id, caller, new_owner):
        return await self._call(asset_service.transfer_owner, asset_id, caller, new_owner)

    async def marketplace_transfer(self, asset_id, caller, expected_owner, new_owner):
        return await self._call(asset_service.marketplace_transfer, asset_id, caller, expected_owner, new_owner)


class MarketplaceGateway(StoreGateway):
    store_name = "marketplace"

    async def create_listing(self, seller, req):
        return await self._call(marketplace_service.create_listing, seller, req)

    async def get_listing(self, listing_id):
        return await self._call(marketplace_service.get_listing, listing_id)

    async def list_listings(self, **filters):
        return await self._call(marketplace_service.list_listings, **filters)

    async def active_listings_for_asset(self, asset_id):
        return await self._call(marketplace_service.active_listings_for_asset, asset_id)

    async def all_active_listings(self):
        return await self._call(marketplace_service.all_active_listings)

    async def search_listings(self, q, limit=50):
        return await self._call(marketplace_service.search_listings, q, limit)

    async def update_listing_price(self, listing_id, caller, new_price):
        return await self._call(marketplace_service.update_listing_price, listing_id, caller, new_price)

    async def cancel_listing(self, listing_id, caller):
        return await self._call(marketplace_service.cancel_listing, listing_id, caller)

    async def open_purchase(self, listing_id, buyer):
        return await self._call(marketplace_service.open_purchase, listing_id, buyer)

    async def record_transaction(self, listing_id, buyer):
        return await self._call(marketplace_service.record_transaction, listing_id, buyer)

    async def fail_purchase(self, tx_id, reason):
        return await self._call(marketplace_service.fail_purchase, tx_id, reason)

    async def get_transaction(self, tx_id):
        return await self._call(marketplace_service.get_transaction, tx_id)

    async def pending_transactions(self, listing_id=None):
        return await self._call(marketplace_service.pending_transactions, listing_id)

    async def sale_for_listing(self, listing_id, buyer):
        return await self._call(marketplace_service.sale_for_listing, listing_id, buyer)

    async def list_transactions(self, **filters):
        return await self._call(marketplace_service.list_transactions, **filters)

    async def stats(self):
        return await self._call(marketplace_service.marketplace_stats)


_registry: AssetRegistryGateway | None = None
_marketplace: MarketplaceGateway | None = None


def get_registry() -> AssetRegistryGateway:
    """Get or create the process-wide asset registry gateway."""
    global _registry
    if _registry is None:
        from assetmarket.database import registry_session

        _registry = AssetRegistryGateway(registry_session)
    return _registry


def get_marketplace() -> MarketplaceGateway:
    """Get or create the process-wide marketplace gateway."""
    global _marketplace
    if _marketplace is None:
        from assetmarket.database import marketplace_session

        _marketplace = MarketplaceGateway(marketplace_session)
    return _marketplace


def configure_gateways(
    registry: AssetRegistryGateway | None,
    marketplace: MarketplaceGateway | None,
) -> None:
    """Replace the process-wide gateways (``None`` restores lazy defaults)."""
    global _registry, _marketplace
    _registry = registry
    _marketplace = marketplace
