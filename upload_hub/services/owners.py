"""
Owning-entity lookups used by the commit pipeline.
Owners are user accounts; the pipeline only reads and writes their object key.
"""
import os
import uuid
from datetime import datetime
from typing import Callable, Optional

import structlog
from slugify import slugify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import OwnerNotFoundError
from ..models.models import User


logger = structlog.get_logger(__name__)


def canonical_key(user: User, filename: Optional[str] = None) -> str:
    owner = f"{slugify(user.username) or 'user'}-{user.id.hex}"
    if not filename:
        return f"owners/{owner}/upload"
    stem, ext = os.path.splitext(filename)
    return f"owners/{owner}/{slugify(stem) or 'upload'}{ext.lower()}"


class OwnerDirectory:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _get(self, db: Session, owner_id: str) -> User:
        try:
            pk = uuid.UUID(str(owner_id))
        except ValueError as e:
            raise OwnerNotFoundError(f"invalid owner id {owner_id!r}") from e
        user = db.get(User, pk)
        if user is None:
            raise OwnerNotFoundError(f"owner {owner_id} not found")
        return user

    def display_name(self, owner_id: str) -> str:
        with self._session_factory() as db:
            return self._get(db, owner_id).display_name

    def resolve_object_key(self, owner_id: str, filename: Optional[str] = None) -> str:
        """Existing key for the owner, or the canonical key derived from it."""
        with self._session_factory() as db:
            user = self._get(db, owner_id)
            return user.object_key or canonical_key(user, filename)

    def record_object_key(self, owner_id: str, key: str) -> None:
        with self._session_factory() as db:
            user = self._get(db, owner_id)
            user.object_key = key
            user.object_updated_at = datetime.utcnow()
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise
        logger.info("object_key_recorded", owner_id=str(owner_id), key=key)
