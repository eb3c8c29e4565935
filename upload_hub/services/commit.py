"""
Commit pipeline: push an assembled file to the object store and record its
key against the owner.

Steps run in order and each depends on the previous one:

1. resolve the owner's object key
2. upload the file bytes (public-read, fixed expiry)
3. record the key on the owner

The owner record is only touched after the remote write has succeeded. A
remote object written before a failed step 3 is not rolled back, and the
local assembled file is always kept.
"""
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..errors import CommitError, OwnerNotFoundError, StorageError
from ..storage.provider import StorageProvider


logger = structlog.get_logger(__name__)


class Owners(Protocol):
    def resolve_object_key(self, owner_id: str, filename: Optional[str] = None) -> str: ...

    def record_object_key(self, owner_id: str, key: str) -> None: ...


class CommitPipeline:
    def __init__(self, storage: StorageProvider, owners: Owners, expires_at: datetime):
        self.storage = storage
        self.owners = owners
        self.expires_at = expires_at

    def commit(self, owner_id: str, assembled_path: Path) -> str:
        assembled_path = Path(assembled_path)
        log = logger.bind(owner_id=str(owner_id), path=str(assembled_path))

        try:
            key = self.owners.resolve_object_key(owner_id, assembled_path.name)
        except (OwnerNotFoundError, SQLAlchemyError) as e:
            log.error("resolve_key_failed", error=str(e))
            raise CommitError(f"cannot resolve object key: {e}") from e

        try:
            data = assembled_path.read_bytes()
            self.storage.put_object(key, data, public_read=True, expires=self.expires_at)
        except (OSError, StorageError) as e:
            log.error("remote_write_failed", key=key, error=str(e))
            raise CommitError(f"cannot write {key}: {e}") from e
        log.info("remote_write_done", key=key, size=len(data), provider=self.storage.name)

        try:
            self.owners.record_object_key(owner_id, key)
        except (OwnerNotFoundError, SQLAlchemyError) as e:
            log.error("record_key_failed", key=key, error=str(e))
            raise CommitError(f"cannot record key {key}: {e}") from e

        return key
