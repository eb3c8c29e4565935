import structlog

from ..config import Settings
from .provider import StorageProvider


logger = structlog.get_logger(__name__)


def get_storage(settings: Settings) -> StorageProvider:
    """
    Build the storage provider named by ``STORAGE_PROVIDER``.
    Falls back to LocalStorageProvider when the Azure blob target is not configured.
    """
    kind = settings.storage_provider.lower()
    if kind == "s3":
        from .s3_provider import S3StorageProvider

        return S3StorageProvider(settings)
    if kind == "blob":
        if settings.azure_blob_connection and settings.azure_blob_container:
            from .blob_provider import BlobStorageProvider

            return BlobStorageProvider(settings)
        logger.warning("blob_storage_not_configured", fallback="local")
    elif kind != "local":
        raise ValueError(f"unknown STORAGE_PROVIDER {settings.storage_provider!r}")

    from .local_provider import LocalStorageProvider

    return LocalStorageProvider(settings.local_storage_dir)
