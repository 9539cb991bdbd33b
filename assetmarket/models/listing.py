from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text

from assetmarket.database import MarketplaceBase


def utcnow():
    return datetime.now(timezone.utc)


class Listing(MarketplaceBase):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    asset_id = Column(Integer, nullable=False)  # Lives in the registry; no cross-store FK
    seller = Column(String(128), nullable=False)
    price = Column(BigInteger, nullable=False)  # Authoritative for purchase, may differ from Asset.price
    title = Column(String(255), nullable=False)
    description = Column(Text, default="")
    category = Column(String(50), nullable=False)
    tags = Column(Text, default="[]")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_listings_price_unsigned"),
        Index("idx_listings_asset", "asset_id"),
        Index("idx_listings_seller", "seller"),
        Index("idx_listings_active", "is_active"),
        Index("idx_listings_category", "category"),
        {"sqlite_autoincrement": True},
    )
