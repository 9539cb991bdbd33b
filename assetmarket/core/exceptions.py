from fastapi import HTTPException, status


class MarketError(HTTPException):
    """Base for every typed failure returned by the stores and the orchestrator."""

    code = "market_error"


class AssetNotFoundError(MarketError):
    code = "asset_not_found"

    def __init__(self, asset_id: int):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Asset {asset_id} not found")


class ListingNotFoundError(MarketError):
    code = "listing_not_found"

    def __init__(self, listing_id: int):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Listing {listing_id} not found")


class TransactionNotFoundError(MarketError):
    code = "transaction_not_found"

    def __init__(self, tx_id: int):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transaction {tx_id} not found")


class NotOwnerError(MarketError):
    code = "not_owner"

    def __init__(self, detail: str = "Caller is not the owner"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class ForbiddenError(MarketError):
    code = "forbidden"

    def __init__(self, detail: str = "Operation not permitted for this caller"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class NotActiveError(MarketError):
    code = "not_active"

    def __init__(self, listing_id: int):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=f"Listing {listing_id} is not active")


class ListingNotActiveError(MarketError):
    code = "listing_not_active"

    def __init__(self, listing_id: int):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Listing {listing_id} is no longer available for purchase",
        )


class AlreadyListedError(MarketError):
    code = "already_listed"

    def __init__(self, asset_id: int, listing_id: int):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Asset {asset_id} already has active listing {listing_id}",
        )


class SelfPurchaseError(MarketError):
    code = "self_purchase"

    def __init__(self):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot purchase your own asset")


class OwnershipMismatchError(MarketError):
    code = "ownership_mismatch"

    def __init__(self, asset_id: int, expected_owner: str):
        self.asset_id = asset_id
        self.expected_owner = expected_owner
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Asset {asset_id} is no longer owned by '{expected_owner}'",
        )


class StaleListingError(MarketError):
    code = "stale_listing"

    def __init__(self, listing_id: int, asset_id: int):
        self.listing_id = listing_id
        self.asset_id = asset_id
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Listing {listing_id} is stale: asset {asset_id} changed hands outside the marketplace",
        )


class InvalidTransactionStateError(MarketError):
    code = "invalid_transaction_state"

    def __init__(self, current: str, expected: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Transaction is '{current}', expected '{expected}'",
        )


class InvalidRequestError(MarketError):
    code = "invalid_request"

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class PartialListingFailure(MarketError):
    """The caller's intent was committed but a mirrored fact did not converge.

    Returned as 202: clients should show the operation as succeeded and call
    the reconcile endpoint for ``listing_id`` to close the divergence.
    """

    code = "partial_listing_failure"

    def __init__(
        self,
        listing_id: int,
        asset_id: int,
        pending_step: str,
        reason: str = "",
        transaction_id: int | None = None,
    ):
        self.listing_id = listing_id
        self.asset_id = asset_id
        self.pending_step = pending_step
        self.reason = reason
        self.transaction_id = transaction_id
        super().__init__(
            status_code=status.HTTP_202_ACCEPTED,
            detail={
                "error": self.code,
                "listing_id": listing_id,
                "asset_id": asset_id,
                "transaction_id": transaction_id,
                "pending_step": pending_step,
                "reason": reason,
                "reconcile": f"/api/v1/listings/{listing_id}/reconcile",
            },
        )


class StoreUnavailableError(MarketError):
    code = "store_unavailable"

    def __init__(self, store: str, reason: str = "unavailable"):
        self.store = store
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Store '{store}' is {reason}; retry the request",
        )


class UnauthorizedError(MarketError):
    code = "unauthorized"

    def __init__(self, detail: str = "Invalid or missing authentication"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
