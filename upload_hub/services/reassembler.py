import os
import shutil
from pathlib import Path

import structlog

from ..errors import IncompleteUploadError, ReassemblyError
from .chunk_store import COPY_BUFFER, TEMP_PREFIX, chunk_dir, chunk_filename, safe_component, upload_dir


logger = structlog.get_logger(__name__)


def combine(
    root: Path,
    upload_id: str,
    filename: str,
    total_parts: int,
    chunk_dir_name: str = "chunks",
) -> Path:
    """
    Concatenate the chunks of ``upload_id`` in index order into
    ``<root>/<upload_id>/<filename>`` and return that path.

    Chunks are copied one at a time. The chunk directory is removed only
    after every chunk has been written; on failure it is left in place.
    """
    chunks = chunk_dir(root, upload_id, chunk_dir_name)
    destination = upload_dir(root, upload_id) / safe_component(filename, "filename")

    try:
        names = sorted(n for n in os.listdir(chunks) if not n.startswith(TEMP_PREFIX))
    except OSError as e:
        logger.error("list_chunks_failed", upload_id=upload_id, error=str(e))
        raise ReassemblyError(f"cannot list {chunks}: {e}") from e

    expected = [chunk_filename(i, total_parts) for i in range(total_parts)]
    if names != expected:
        missing = sorted(set(expected) - set(names))
        logger.error("chunks_incomplete", upload_id=upload_id, missing=missing, found=len(names))
        raise IncompleteUploadError(f"upload {upload_id} is missing chunks {missing}")

    # A leftover from an earlier failed combine must not be appended to
    try:
        destination.unlink(missing_ok=True)
        with open(destination, "ab") as out:
            for name in names:
                with open(chunks / name, "rb") as part:
                    shutil.copyfileobj(part, out, COPY_BUFFER)
    except OSError as e:
        logger.error("append_chunk_failed", upload_id=upload_id, error=str(e))
        raise ReassemblyError(f"cannot assemble {destination}: {e}") from e

    logger.info("chunks_combined", upload_id=upload_id, parts=len(names), path=str(destination))

    try:
        shutil.rmtree(chunks)
    except OSError as e:
        logger.warning("delete_chunks_failed", upload_id=upload_id, error=str(e))

    return destination
