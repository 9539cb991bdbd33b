"""Divergence detection between the asset registry and the marketplace.

Read-only: the scan reports where the two stores disagree and leaves repair
to ``ConsistencyOrchestrator.reconcile_listing``. Findings are computed from
two snapshots taken one after the other, so a compound operation in flight
while scanning can show up as a transient finding.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any

from assetmarket.core.exceptions import StoreUnavailableError
from assetmarket.services.store_gateway import (
    AssetRegistryGateway,
    MarketplaceGateway,
    get_marketplace,
    get_registry,
)

logger = logging.getLogger(__name__)

FLAG_WITHOUT_LISTING = "flag_without_listing"
LISTING_WITHOUT_FLAG = "listing_without_flag"
STALE_LISTING = "stale_listing"
MULTIPLE_ACTIVE_LISTINGS = "multiple_active_listings"
PENDING_TRANSACTION = "pending_transaction"


async def scan_divergences(
    registry: AssetRegistryGateway | None = None,
    marketplace: MarketplaceGateway | None = None,
) -> dict[str, Any]:
    """Compare both stores and return a report of every disagreement found."""
    registry = registry or get_registry()
    marketplace = marketplace or get_marketplace()

    assets = await registry.all_assets()
    active = await marketplace.all_active_listings()
    pending = await marketplace.pending_transactions()

    active_by_asset: dict[int, list] = defaultdict(list)
    for listing in active:
        active_by_asset[listing.asset_id].append(listing)

    findings: list[dict[str, Any]] = []

    for asset in assets:
        listings = active_by_asset.get(asset.id, [])
        by_owner = [item for item in listings if item.seller == asset.owner]

        if len(listings) > 1:
            findings.append({
                "kind": MULTIPLE_ACTIVE_LISTINGS,
                "asset_id": asset.id,
                "listing_ids": [item.id for item in listings],
                "transaction_id": None,
                "detail": f"{len(listings)} active listings for one asset",
            })

        for item in listings:
            if item.seller != asset.owner:
                findings.append({
                    "kind": STALE_LISTING,
                    "asset_id": asset.id,
                    "listing_ids": [item.id],
                    "transaction_id": None,
                    "detail": f"listed by {item.seller}, owned by {asset.owner}",
                })

        if asset.is_for_sale and not by_owner:
            findings.append({
                "kind": FLAG_WITHOUT_LISTING,
                "asset_id": asset.id,
                "listing_ids": [],
                "transaction_id": None,
                "detail": "asset flagged for sale without an active listing by its owner",
            })
        elif by_owner and not asset.is_for_sale:
            findings.append({
                "kind": LISTING_WITHOUT_FLAG,
                "asset_id": asset.id,
                "listing_ids": [item.id for item in by_owner],
                "transaction_id": None,
                "detail": "active listing but asset not flagged for sale",
            })

    # Listings whose asset the registry has never heard of.
    known = {asset.id for asset in assets}
    for asset_id, listings in active_by_asset.items():
        if asset_id not in known:
            findings.append({
                "kind": STALE_LISTING,
                "asset_id": asset_id,
                "listing_ids": [item.id for item in listings],
                "transaction_id": None,
                "detail": "listed asset does not exist in the registry",
            })

    for tx in pending:
        findings.append({
            "kind": PENDING_TRANSACTION,
            "asset_id": tx.asset_id,
            "listing_ids": [tx.listing_id],
            "transaction_id": tx.id,
            "detail": f"purchase by {tx.buyer} not settled",
        })

    return {
        "assets_checked": len(assets),
        "listings_checked": len(active),
        "findings": findings,
        "scanned_at": datetime.now(timezone.utc).isoformat(),
    }


async def divergence_scan_loop(interval_seconds: float) -> None:
    """Scan periodically and log what was found. Runs until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            report = await scan_divergences()
        except StoreUnavailableError as exc:
            logger.warning("Divergence scan skipped: %s", exc.detail)
            continue
        except Exception:
            logger.exception("Divergence scan failed")
            continue

        if report["findings"]:
            logger.warning(
                "Divergence scan: %d finding(s) across %d assets",
                len(report["findings"]), report["assets_checked"],
            )
        else:
            logger.info("Divergence scan clean (%d assets)", report["assets_checked"])
