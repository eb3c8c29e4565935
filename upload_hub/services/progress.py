import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional, Set

import structlog

from ..config import settings
from ..errors import InvalidUploadError, UploadError


logger = structlog.get_logger(__name__)


@dataclass
class UploadProgress:
    upload_id: str
    total_parts: int
    received: Set[int] = field(default_factory=set)
    combining: bool = False
    # Set once the chunks are merged; the upload then only waits on its commit
    assembled_path: Optional[Path] = None
    touched_at: float = 0.0

    def missing(self) -> Set[int]:
        return set(range(self.total_parts)) - self.received

    def is_complete(self) -> bool:
        return not self.missing()


class UploadProgressTracker:
    """
    Per-upload record of which part indices have been stored.

    Reassembly is claimed through ``mark_received``, which hands out the
    claim at most once per upload, and only once every index is present.
    After reassembly the record stays until the commit succeeds, so a
    retried part re-runs the commit instead of starting a new upload.

    Records idle for longer than ``max_idle_s`` are dropped. The chunk
    directory remains the source of truth and re-seeds a dropped record.
    """

    def __init__(self, max_idle_s: float = 24 * 60 * 60, clock: Callable[[], float] = time.monotonic) -> None:
        self._uploads: Dict[str, UploadProgress] = {}
        self._lock = asyncio.Lock()
        self._max_idle_s = max_idle_s
        self._clock = clock

    def knows(self, upload_id: str) -> bool:
        return upload_id in self._uploads

    def get(self, upload_id: str) -> Optional[UploadProgress]:
        return self._uploads.get(upload_id)

    def _prune(self, now: float) -> None:
        stale = [
            upload_id
            for upload_id, progress in self._uploads.items()
            if not progress.combining and now - progress.touched_at > self._max_idle_s
        ]
        for upload_id in stale:
            del self._uploads[upload_id]
        if stale:
            logger.info("progress_pruned", uploads=stale)

    def _record(self, upload_id: str, total_parts: int) -> UploadProgress:
        now = self._clock()
        self._prune(now)
        progress = self._uploads.get(upload_id)
        if progress is None:
            progress = UploadProgress(upload_id=upload_id, total_parts=total_parts)
            self._uploads[upload_id] = progress
        elif progress.total_parts != total_parts:
            raise InvalidUploadError(
                f"upload {upload_id} declared {progress.total_parts} parts, now {total_parts}"
            )
        progress.touched_at = now
        return progress

    async def mark_received(
        self,
        upload_id: str,
        index: int,
        total_parts: int,
        already_stored: Iterable[int] = (),
    ) -> bool:
        """Record ``index``; return True when the caller should reassemble."""
        async with self._lock:
            is_new = not self.knows(upload_id)
            progress = self._record(upload_id, total_parts)
            if is_new:
                progress.received.update(already_stored)
            progress.received.add(index)
            if progress.combining or progress.assembled_path is not None or not progress.is_complete():
                return False
            progress.combining = True
            logger.info("upload_complete", upload_id=upload_id, total_parts=total_parts)
            return True

    async def mark_assembled(self, upload_id: str, total_parts: int, path: Path, claimed: bool = False) -> None:
        """Record that the chunks are merged into ``path`` and only the commit remains."""
        async with self._lock:
            progress = self._record(upload_id, total_parts)
            progress.received = set(range(total_parts))
            progress.assembled_path = Path(path)
            progress.combining = claimed

    async def claim_commit(self, upload_id: str) -> Optional[Path]:
        """Claim the pending commit of ``upload_id``; None when nothing awaits a commit."""
        async with self._lock:
            progress = self._uploads.get(upload_id)
            if progress is None or progress.assembled_path is None:
                return None
            if progress.combining:
                raise UploadError(
                    f"upload {upload_id} is already being committed",
                    client_message="Upload is still being saved!",
                )
            progress.combining = True
            progress.touched_at = self._clock()
            return progress.assembled_path

    async def release(self, upload_id: str) -> None:
        async with self._lock:
            progress = self._uploads.get(upload_id)
            if progress is not None:
                progress.combining = False

    async def forget(self, upload_id: str) -> None:
        async with self._lock:
            self._uploads.pop(upload_id, None)


# Process-wide tracker
tracker = UploadProgressTracker(max_idle_s=settings.progress_idle_ttl_s)
