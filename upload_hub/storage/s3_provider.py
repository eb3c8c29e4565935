from datetime import datetime
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings
from ..errors import StorageError
from .provider import StorageProvider


class S3StorageProvider(StorageProvider):
    name = "s3"

    def __init__(self, settings: Settings, client=None) -> None:
        if not settings.s3_bucket:
            raise RuntimeError("S3_BUCKET must be set")
        self._bucket = settings.s3_bucket
        self._client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
            config=Config(
                connect_timeout=settings.remote_write_timeout_s,
                read_timeout=settings.remote_write_timeout_s,
                retries={"max_attempts": 3},
            ),
        )

    def put_object(self, key: str, data: bytes, *, public_read: bool, expires: datetime) -> None:
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=key.lstrip("/"),
                Body=data,
                Expires=expires,
                ACL="public-read" if public_read else "private",
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"s3 put_object failed for {key}: {e}") from e

    def get_download_url(self, key: str, expires_s: int) -> Optional[str]:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": key.lstrip("/")},
            ExpiresIn=expires_s,
        )

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key.lstrip("/"))
        except ClientError:
            return False
        return True

    def delete(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key.lstrip("/"))
        except ClientError:
            pass
