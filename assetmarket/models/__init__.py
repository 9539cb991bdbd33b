from assetmarket.models.asset import Asset
from assetmarket.models.listing import Listing
from assetmarket.models.transaction import Transaction, TransactionStatus

__all__ = [
    "Asset",
    "Listing",
    "Transaction",
    "TransactionStatus",
]
