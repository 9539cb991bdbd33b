"""Boundary to the content store.

The registry never inspects asset bytes. Inline uploads are written here and
only the resulting hash/type/size triple travels into the asset record.
"""

import base64
import binascii

from assetmarket.config import settings
from assetmarket.core.exceptions import InvalidRequestError
from assetmarket.storage.hashfs import HashFS

CONTENT_URL_SCHEME = "content://"

# Singleton storage instance
_storage: HashFS | None = None


def get_storage() -> HashFS:
    """Get or create the global content store."""
    global _storage
    if _storage is None:
        _storage = HashFS(root_dir=settings.content_store_path)
    return _storage


def set_storage(storage: HashFS | None) -> None:
    global _storage
    _storage = storage


def store_content(encoded: str) -> tuple[str, int, str]:
    """Persist base64 content. Returns ``(content_hash, size, content_url)``."""
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidRequestError("Asset content must be valid base64")
    if not raw:
        raise InvalidRequestError("Asset content is empty")
    content_hash = get_storage().put(raw)
    return content_hash, len(raw), CONTENT_URL_SCHEME + content_hash
