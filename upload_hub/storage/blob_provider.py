from datetime import datetime, timedelta
from email.utils import format_datetime
from typing import Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import (
    BlobServiceClient,
    BlobSasPermissions,
    ContentSettings,
    generate_blob_sas,
)

from ..config import Settings
from ..errors import StorageError
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self, settings: Settings) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container
        self._timeout = settings.remote_write_timeout_s

    def _client(self, key: str):
        return self._service.get_blob_client(self._container, key.lstrip("/"))

    def put_object(self, key: str, data: bytes, *, public_read: bool, expires: datetime) -> None:
        # Azure has no per-blob ACL; anonymous read is granted on the container.
        # The intent and the expiry travel with the blob as metadata and headers.
        content_settings = ContentSettings(
            content_type="application/octet-stream",
            cache_control="public" if public_read else "private",
        )
        metadata = {
            "acl": "public-read" if public_read else "private",
            "expires": format_datetime(expires, usegmt=True),
        }
        try:
            self._client(key).upload_blob(
                data,
                overwrite=True,
                content_settings=content_settings,
                metadata=metadata,
                timeout=self._timeout,
            )
        except AzureError as e:
            raise StorageError(f"blob upload failed for {key}: {e}") from e

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        expiry = datetime.utcnow() + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._container,
            blob_name=key.lstrip("/"),
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expiry,
        )
        return f"{self._client(key).url}?{sas}"

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def delete(self, key: str) -> None:
        try:
            self._client(key).delete_blob()
        except ResourceNotFoundError:
            pass
