from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class AssetUploadRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    category: str = Field(..., min_length=1, max_length=50)
    tags: list[str] = []
    price: int = Field(default=0, ge=0)
    content_type: str = Field(..., min_length=1, max_length=50)  # glb | gltf | obj | fbx | png ...
    # Either inline base64 content (stored in the content store) or a pre-registered reference
    content: str | None = None
    content_hash: str | None = Field(default=None, pattern="^sha256:[0-9a-f]{64}$")
    content_size: int | None = Field(default=None, ge=0)
    content_url: str | None = Field(default=None, max_length=512)
    preview_url: str | None = Field(default=None, max_length=512)

    @model_validator(mode="after")
    def _content_reference(self):
        if self.content:
            return self
        if not self.content_hash or self.content_size is None:
            raise ValueError("Provide either 'content' or both 'content_hash' and 'content_size'")
        return self


class AssetPriceUpdateRequest(BaseModel):
    price: int = Field(..., ge=0)


class AssetTransferRequest(BaseModel):
    new_owner: str = Field(..., min_length=1, max_length=128)


class AssetResponse(BaseModel):
    id: int
    owner: str
    name: str
    description: str
    category: str
    tags: list[str]
    content_hash: str
    content_type: str
    content_size: int
    content_url: str
    preview_url: str | None = None
    price: int
    is_for_sale: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AssetListResponse(BaseModel):
    total: int
    page: int
    page_size: int
    results: list[AssetResponse]
