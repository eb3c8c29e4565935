from datetime import datetime
from typing import Optional


class StorageProvider:
    name = "base"

    def put_object(self, key: str, data: bytes, *, public_read: bool, expires: datetime) -> None:
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
