from datetime import datetime

from pydantic import BaseModel


class TransactionResponse(BaseModel):
    id: int
    asset_id: int
    listing_id: int
    seller: str
    buyer: str
    price: int
    status: str
    failure_reason: str | None = None
    transaction_time: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    transactions: list[TransactionResponse]
