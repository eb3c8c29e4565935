import io
import itertools
import os
import shutil

import pytest

from upload_hub.errors import IncompleteUploadError, ReassemblyError
from upload_hub.services import reassembler
from upload_hub.services.chunk_store import store_part
from upload_hub.services.reassembler import combine


def _split(data: bytes, parts: int):
    size = -(-len(data) // parts)
    return [data[i * size:(i + 1) * size] for i in range(parts)]


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_any_arrival_order_reassembles_original(uploads_root, order):
    original = os.urandom(4096 + 17)
    chunks = _split(original, 4)
    for i in order:
        store_part(uploads_root, "up", i, 4, io.BytesIO(chunks[i]))

    path = combine(uploads_root, "up", "file.bin", 4)

    assert path.read_bytes() == original
    assert not (uploads_root / "up" / "chunks").exists()


def test_two_digit_padding_keeps_order(uploads_root):
    chunks = [bytes([i]) * 3 for i in range(12)]
    for i in reversed(range(12)):
        store_part(uploads_root, "up", i, 12, io.BytesIO(chunks[i]))

    path = combine(uploads_root, "up", "f", 12)
    assert path.read_bytes() == b"".join(chunks)


def test_missing_chunk_dir_fails(uploads_root):
    with pytest.raises(ReassemblyError):
        combine(uploads_root, "nope", "f", 2)


def test_gap_is_reported_and_chunks_kept(uploads_root):
    store_part(uploads_root, "up", 0, 3, io.BytesIO(b"a"))
    store_part(uploads_root, "up", 2, 3, io.BytesIO(b"c"))

    with pytest.raises(IncompleteUploadError):
        combine(uploads_root, "up", "f", 3)

    assert sorted(os.listdir(uploads_root / "up" / "chunks")) == ["0", "2"]
    assert not (uploads_root / "up" / "f").exists()


def test_stale_destination_is_not_appended_to(uploads_root):
    (uploads_root / "up").mkdir()
    (uploads_root / "up" / "f").write_bytes(b"leftover")
    store_part(uploads_root, "up", 0, 1, io.BytesIO(b"fresh"))

    assert combine(uploads_root, "up", "f", 1).read_bytes() == b"fresh"


def test_mid_stream_failure_keeps_chunks(uploads_root, monkeypatch):
    for i, data in enumerate([b"a", b"b", b"c"]):
        store_part(uploads_root, "up", i, 3, io.BytesIO(data))

    real_copy = shutil.copyfileobj
    calls = []

    def flaky_copy(src, dst, length=0):
        calls.append(src)
        if len(calls) == 2:
            raise OSError("disk full")
        return real_copy(src, dst, length)

    monkeypatch.setattr(reassembler.shutil, "copyfileobj", flaky_copy)

    with pytest.raises(ReassemblyError):
        combine(uploads_root, "up", "f", 3)

    assert sorted(os.listdir(uploads_root / "up" / "chunks")) == ["0", "1", "2"]
    assert all(f.closed for f in calls)


def test_chunk_cleanup_failure_is_not_fatal(uploads_root, monkeypatch):
    store_part(uploads_root, "up", 0, 1, io.BytesIO(b"data"))

    def refuse(path, *args, **kwargs):
        raise PermissionError("busy")

    monkeypatch.setattr(reassembler.shutil, "rmtree", refuse)

    path = combine(uploads_root, "up", "f", 1)
    assert path.read_bytes() == b"data"
    assert (uploads_root / "up" / "chunks").exists()


def test_incoming_temporaries_are_ignored(uploads_root):
    store_part(uploads_root, "up", 0, 1, io.BytesIO(b"data"))
    (uploads_root / "up" / "chunks" / ".0.incoming").write_bytes(b"junk")

    assert combine(uploads_root, "up", "f", 1).read_bytes() == b"data"
