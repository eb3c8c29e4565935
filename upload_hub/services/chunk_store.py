"""
Chunk store.

Places incoming parts at predictable paths under the uploads root::

    <root>/<upload_id>/<chunk_dir_name>/<zero-padded index>   (chunked)
    <root>/<upload_id>/<filename>                            (single-shot / assembled)

Chunk names are zero-padded to the digit count of the declared part total so
that a lexical sort of the chunk directory equals numeric index order.
"""
import os
import shutil
from pathlib import Path
from typing import BinaryIO, Optional, Set

import structlog

from ..errors import ChunkStoreError, InvalidUploadError


logger = structlog.get_logger(__name__)

COPY_BUFFER = 1024 * 1024
TEMP_PREFIX = "."


def chunk_filename(index: int, total_parts: int) -> str:
    """Zero-pad ``index`` to the decimal width of ``total_parts``."""
    if total_parts < 1:
        raise InvalidUploadError(f"total_parts must be >= 1, got {total_parts}")
    if index < 0 or index >= total_parts:
        raise InvalidUploadError(f"part index {index} outside 0..{total_parts - 1}")
    return str(index).zfill(len(str(total_parts)))


def safe_component(value: str, what: str) -> str:
    # Upload ids and filenames become path segments; keep them to one level.
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise InvalidUploadError(f"unsafe {what}: {value!r}")
    return value


def upload_dir(root: Path, upload_id: str) -> Path:
    return Path(root) / safe_component(upload_id, "upload id")


def chunk_dir(root: Path, upload_id: str, chunk_dir_name: str = "chunks") -> Path:
    return upload_dir(root, upload_id) / chunk_dir_name


def move_file(destination_dir: Path, source: BinaryIO, destination_name: str) -> Path:
    """
    Stream ``source`` into ``destination_dir/destination_name``.

    The bytes land in a dot-prefixed temporary sibling first and are renamed
    into place only after the copy completes, so a failed copy never shows up
    under the final name. ``source`` is consumed: it is closed either way.
    """
    destination_dir = Path(destination_dir)
    destination = destination_dir / destination_name
    temp = destination_dir / f"{TEMP_PREFIX}{destination_name}.incoming"
    try:
        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("create_dir_failed", path=str(destination_dir), error=str(e))
            raise ChunkStoreError(f"cannot create {destination_dir}: {e}") from e

        try:
            with open(temp, "wb") as out:
                shutil.copyfileobj(source, out, COPY_BUFFER)
            os.replace(temp, destination)
        except (OSError, ValueError) as e:
            logger.error("copy_failed", path=str(destination), error=str(e))
            try:
                temp.unlink(missing_ok=True)
            except OSError:
                pass
            raise ChunkStoreError(f"cannot write {destination}: {e}") from e
    finally:
        try:
            source.close()
        except OSError:
            pass

    logger.debug("file_moved", path=str(destination))
    return destination


def store_part(
    root: Path,
    upload_id: str,
    index: int,
    total_parts: int,
    source: BinaryIO,
    chunk_dir_name: str = "chunks",
) -> Path:
    name = chunk_filename(index, total_parts)
    path = move_file(chunk_dir(root, upload_id, chunk_dir_name), source, name)
    logger.info("chunk_stored", upload_id=upload_id, index=index, total_parts=total_parts)
    return path


def store_whole_file(root: Path, upload_id: str, filename: str, source: BinaryIO) -> Path:
    name = safe_component(filename, "filename")
    try:
        path = move_file(upload_dir(root, upload_id), source, name)
    except ChunkStoreError as e:
        raise ChunkStoreError(str(e), client_message="Problem copying the file!") from e
    logger.info("file_stored", upload_id=upload_id, filename=filename)
    return path


def stored_indices(root: Path, upload_id: str, total_parts: int, chunk_dir_name: str = "chunks") -> Set[int]:
    """Indices whose chunk file for this ``total_parts`` is already on disk."""
    directory = chunk_dir(root, upload_id, chunk_dir_name)
    try:
        names = set(os.listdir(directory))
    except FileNotFoundError:
        return set()
    return {i for i in range(total_parts) if chunk_filename(i, total_parts) in names}


def assembled_awaiting_commit(
    root: Path, upload_id: str, filename: str, chunk_dir_name: str = "chunks"
) -> Optional[Path]:
    """The assembled file of an upload whose chunks are already merged, if any."""
    assembled = upload_dir(root, upload_id) / safe_component(filename, "filename")
    if assembled.is_file() and not chunk_dir(root, upload_id, chunk_dir_name).exists():
        return assembled
    return None
