"""
Local filesystem storage provider for development.
Saves objects to a local directory instead of a remote bucket.
"""
import json
from datetime import datetime
from typing import Optional
from pathlib import Path

from ..errors import StorageError
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider for development."""

    name = "local"

    def __init__(self, base_dir: str = "var/storage"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        parts = [p for p in key.replace("\\", "/").split("/") if p not in ("", ".", "..")]
        return self.base_dir.joinpath("objects", *parts)

    def _meta_path(self, key: str) -> Path:
        path = self._get_path(key)
        return path.with_name(path.name + ".meta.json")

    def put_object(self, key: str, data: bytes, *, public_read: bool, expires: datetime) -> None:
        path = self._get_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            self._meta_path(key).write_text(
                json.dumps(
                    {
                        "acl": "public-read" if public_read else "private",
                        "expires": expires.isoformat(),
                        "size": len(data),
                    }
                )
            )
        except OSError as e:
            raise StorageError(f"local write failed for {key}: {e}") from e

    def read_metadata(self, key: str) -> Optional[dict]:
        meta = self._meta_path(key)
        if not meta.exists():
            return None
        return json.loads(meta.read_text())

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        path = self._get_path(key)
        if path.exists():
            return path.resolve().as_uri()
        return None

    def exists(self, key: str) -> bool:
        """Check if an object exists locally."""
        return self._get_path(key).exists()

    def delete(self, key: str) -> None:
        """Delete an object from local storage."""
        for path in (self._get_path(key), self._meta_path(key)):
            path.unlink(missing_ok=True)
