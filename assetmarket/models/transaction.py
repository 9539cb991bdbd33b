import enum
from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text

from assetmarket.database import MarketplaceBase


def utcnow():
    return datetime.now(timezone.utc)


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Transaction(MarketplaceBase):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(Integer, nullable=False)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False)
    seller = Column(String(128), nullable=False)
    buyer = Column(String(128), nullable=False)
    price = Column(BigInteger, nullable=False)  # Copied from the listing when the purchase opens

    # State machine: pending -> completed | failed
    status = Column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    failure_reason = Column(Text)

    transaction_time = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("seller <> buyer", name="ck_tx_distinct_parties"),
        CheckConstraint("price >= 0", name="ck_tx_price_unsigned"),
        Index("idx_tx_buyer", "buyer"),
        Index("idx_tx_seller", "seller"),
        Index("idx_tx_listing", "listing_id"),
        Index("idx_tx_status", "status"),
        {"sqlite_autoincrement": True},
    )
