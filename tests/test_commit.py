import uuid

import pytest
from sqlalchemy.exc import OperationalError

from upload_hub.errors import CommitError
from upload_hub.services.commit import CommitPipeline

from conftest import EXPIRES, FailingStorage


@pytest.fixture
def assembled(tmp_path):
    path = tmp_path / "photo.JPG"
    path.write_bytes(b"\xff\xd8 jpeg bytes")
    return path


def test_commit_uploads_then_records_key(owners, storage, owner_id, assembled, load_user):
    key = CommitPipeline(storage, owners, EXPIRES).commit(owner_id, assembled)

    assert key == f"owners/ada-lovelace-{uuid.UUID(owner_id).hex}/photo.jpg"
    assert storage.puts == [key]
    assert storage.exists(key)
    meta = storage.read_metadata(key)
    assert meta["acl"] == "public-read"
    assert meta["expires"].startswith("2099-12-31")
    assert load_user(owner_id).object_key == key


def test_existing_key_is_reused(owners, storage, owner_id, assembled):
    owners.record_object_key(owner_id, "owners/custom/avatar.png")
    key = CommitPipeline(storage, owners, EXPIRES).commit(owner_id, assembled)
    assert key == "owners/custom/avatar.png"


def test_remote_failure_leaves_owner_and_file_untouched(
    owners, tmp_path, owner_id, assembled, load_user
):
    failing = FailingStorage(tmp_path / "objects")

    with pytest.raises(CommitError):
        CommitPipeline(failing, owners, EXPIRES).commit(owner_id, assembled)

    assert failing.puts
    assert assembled.exists()
    assert load_user(owner_id).object_key is None


def test_unknown_owner_stops_before_remote_write(owners, storage, assembled):
    with pytest.raises(CommitError):
        CommitPipeline(storage, owners, EXPIRES).commit(str(uuid.uuid4()), assembled)
    assert storage.puts == []


def test_invalid_owner_id(owners, storage, assembled):
    with pytest.raises(CommitError):
        CommitPipeline(storage, owners, EXPIRES).commit("not-a-uuid", assembled)
    assert storage.puts == []


def test_missing_assembled_file(owners, storage, owner_id, tmp_path):
    with pytest.raises(CommitError):
        CommitPipeline(storage, owners, EXPIRES).commit(owner_id, tmp_path / "gone.bin")
    assert storage.puts == []


class BrokenOwners:
    def resolve_object_key(self, owner_id, filename=None):
        return "owners/x/file.bin"

    def record_object_key(self, owner_id, key):
        raise OperationalError("UPDATE users", {}, Exception("database is locked"))


def test_record_failure_is_a_commit_failure(storage, assembled):
    with pytest.raises(CommitError):
        CommitPipeline(storage, BrokenOwners(), EXPIRES).commit("o", assembled)
    # No rollback of the remote write
    assert storage.exists("owners/x/file.bin")
