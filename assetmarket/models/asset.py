from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text

from assetmarket.database import RegistryBase


def utcnow():
    return datetime.now(timezone.utc)


class Asset(RegistryBase):
    __tablename__ = "assets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(128), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, default="")
    category = Column(String(50), nullable=False)
    tags = Column(Text, default="[]")  # JSON array of searchable tags

    # Immutable content reference; bytes live in the content store
    content_hash = Column(String(71), nullable=False)  # sha256:<64 hex chars>
    content_type = Column(String(50), nullable=False)  # glb | gltf | obj | fbx | png ...
    content_size = Column(BigInteger, nullable=False)
    content_url = Column(String(512), nullable=False, default="")
    preview_url = Column(String(512), nullable=True)

    price = Column(BigInteger, nullable=False, default=0)  # Smallest currency unit
    is_for_sale = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_assets_price_unsigned"),
        Index("idx_assets_owner", "owner"),
        Index("idx_assets_category", "category"),
        Index("idx_assets_for_sale", "is_for_sale"),
        {"sqlite_autoincrement": True},
    )
