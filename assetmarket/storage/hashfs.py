import hashlib
from pathlib import Path

HASH_PREFIX = "sha256:"


class HashFS:
    """Content-addressed blob store keyed by SHA-256.

    Blobs are sharded as ``root/ab/cd/abcd...`` so no directory grows unbounded.
    Writes are idempotent: storing the same bytes twice yields the same key.
    """

    def __init__(self, root_dir: str, depth: int = 2, width: int = 2):
        self.root = Path(root_dir)
        self.depth = depth
        self.width = width
        self.root.mkdir(parents=True, exist_ok=True)

    def put(self, content: bytes) -> str:
        """Store content and return its prefixed hash."""
        hex_hash = hashlib.sha256(content).hexdigest()
        path = self._path_for(hex_hash)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".tmp")
            tmp.write_bytes(content)
            tmp.replace(path)
        return HASH_PREFIX + hex_hash

    def get(self, content_hash: str) -> bytes | None:
        path = self._lookup(content_hash)
        return path.read_bytes() if path is not None else None

    def exists(self, content_hash: str) -> bool:
        return self._lookup(content_hash) is not None

    def _lookup(self, content_hash: str) -> Path | None:
        hex_hash = content_hash.removeprefix(HASH_PREFIX).lower()
        if len(hex_hash) != 64 or any(c not in "0123456789abcdef" for c in hex_hash):
            return None
        path = self._path_for(hex_hash)
        return path if path.is_file() else None

    def _path_for(self, hex_hash: str) -> Path:
        shards = [hex_hash[i * self.width:(i + 1) * self.width] for i in range(self.depth)]
        return self.root.joinpath(*shards, hex_hash)
