import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import anyio
import structlog

from ..errors import FileTooLargeError, InvalidUploadError, UploadError
from ..schemas.uploads import PartForm
from .chunk_store import (
    assembled_awaiting_commit,
    safe_component,
    store_part,
    store_whole_file,
    stored_indices,
    upload_dir,
)
from .commit import CommitPipeline
from .progress import UploadProgressTracker
from .reassembler import combine


logger = structlog.get_logger(__name__)


@dataclass
class UploadResult:
    upload_id: str
    combined: bool = False
    path: Optional[Path] = None
    object_key: Optional[str] = None


class UploadService:
    """
    Routes each incoming part to the chunk store, and once every part of an
    upload is on disk runs reassembly and the commit pipeline before
    returning. Blocking file and network work runs in worker threads.
    """

    def __init__(
        self,
        uploads_root: Path,
        tracker: UploadProgressTracker,
        commit: Optional[CommitPipeline] = None,
        chunk_dir_name: str = "chunks",
        max_file_size: int = 0,
    ):
        self.uploads_root = Path(uploads_root)
        self.tracker = tracker
        self.commit = commit
        self.chunk_dir_name = chunk_dir_name
        self.max_file_size = max_file_size

    def is_valid_size(self, size: int) -> bool:
        return self.max_file_size == 0 or size < self.max_file_size

    async def handle_part(
        self,
        form: PartForm,
        source: BinaryIO,
        owner_id: Optional[str] = None,
        size: Optional[int] = None,
    ) -> UploadResult:
        upload_id = safe_component(form.upload_id, "upload id")
        safe_component(form.filename, "filename")
        if form.filename == self.chunk_dir_name:
            raise InvalidUploadError(f"filename {form.filename!r} collides with the chunk directory")
        log = logger.bind(upload_id=upload_id)

        declared = form.total_file_size if form.total_file_size is not None else (size or 0)
        if not self.is_valid_size(declared):
            log.warning("upload_too_large", size=declared, max_file_size=self.max_file_size)
            raise FileTooLargeError(f"{declared} bytes exceeds {self.max_file_size}")

        if not form.is_chunked:
            path = await anyio.to_thread.run_sync(
                store_whole_file, self.uploads_root, upload_id, form.filename, source
            )
            return UploadResult(upload_id=upload_id, path=path)

        index, total = form.part_index, form.total_parts
        already_stored = ()
        if not self.tracker.knows(upload_id):
            assembled = await anyio.to_thread.run_sync(
                assembled_awaiting_commit, self.uploads_root, upload_id, form.filename, self.chunk_dir_name
            )
            if assembled is not None:
                await self.tracker.mark_assembled(upload_id, total, assembled)
            else:
                # Chunks written before a restart still count towards completion
                already_stored = await anyio.to_thread.run_sync(
                    stored_indices, self.uploads_root, upload_id, total, self.chunk_dir_name
                )

        pending = await self.tracker.claim_commit(upload_id)
        if pending is not None:
            # The part is already inside the assembled file
            source.close()
            log.info("commit_retry", path=str(pending))
            return await self._commit(upload_id, pending, owner_id)

        chunk_path = await anyio.to_thread.run_sync(
            store_part, self.uploads_root, upload_id, index, total, source, self.chunk_dir_name
        )

        if not await self.tracker.mark_received(upload_id, index, total, already_stored):
            return UploadResult(upload_id=upload_id, path=chunk_path)

        try:
            path = await anyio.to_thread.run_sync(
                combine, self.uploads_root, upload_id, form.filename, total, self.chunk_dir_name
            )
        except UploadError:
            await self.tracker.release(upload_id)
            raise

        await self.tracker.mark_assembled(upload_id, total, path, claimed=True)
        return await self._commit(upload_id, path, owner_id)

    async def _commit(self, upload_id: str, path: Path, owner_id: Optional[str]) -> UploadResult:
        # The claim is held by the caller; a failure hands it back for the next retry
        key = None
        try:
            if owner_id and self.commit is not None:
                key = await anyio.to_thread.run_sync(self.commit.commit, owner_id, path)
            else:
                logger.info(
                    "commit_skipped",
                    upload_id=upload_id,
                    reason="no owner id" if not owner_id else "no pipeline",
                )
        except UploadError:
            await self.tracker.release(upload_id)
            raise
        await self.tracker.forget(upload_id)
        return UploadResult(upload_id=upload_id, combined=True, path=path, object_key=key)

    async def delete_upload(self, upload_id: str) -> None:
        directory = upload_dir(self.uploads_root, upload_id)
        try:
            await anyio.to_thread.run_sync(shutil.rmtree, directory)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error("delete_upload_failed", upload_id=upload_id, error=str(e))
            await anyio.to_thread.run_sync(lambda: shutil.rmtree(directory, ignore_errors=True))
            raise UploadError(f"cannot delete {directory}: {e}", client_message="Problem deleting file!") from e
        finally:
            await self.tracker.forget(upload_id)
        logger.info("upload_deleted", upload_id=upload_id)
