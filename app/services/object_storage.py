"""
S3-compatible Object Storage service.
Stores the bytes of uploaded files; share metadata lives in the database.

boto3 클라이언트는 동기 API이므로 스레드 풀에서 실행하여 이벤트 루프를 막지 않는다.
"""
import asyncio
import logging
from functools import partial
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings
from app.exceptions import StorageError
from app.utils.prometheus_metrics import record_external_request

logger = logging.getLogger("app.storage")


class ObjectStorageService:
    """
    Opaque blob store with path-based put/get/delete.

    버킷 관리 전략:
    1. 단일 버킷 사용 (uploads)
    2. 사용자별 경로: {user_id|anonymous}/{epoch_ms}-{random}
    """

    def __init__(self):
        self.settings = get_settings()
        self._s3_client = None

    def _get_s3_client(self):
        """
        Get or create the S3 client.

        Returns:
            Configured boto3 S3 client
        """
        if self._s3_client is not None:
            return self._s3_client

        if not self.settings.storage_access_key or not self.settings.storage_secret_key:
            raise StorageError(
                "Object storage credentials not configured. "
                "Please set STORAGE_ACCESS_KEY and STORAGE_SECRET_KEY environment variables."
            )

        self._s3_client = boto3.client(
            "s3",
            aws_access_key_id=self.settings.storage_access_key,
            aws_secret_access_key=self.settings.storage_secret_key,
            endpoint_url=self.settings.storage_endpoint_url or None,
            region_name=self.settings.storage_region_name,
            config=Config(
                signature_version="s3v4",
                s3={"addressing_style": "path"},  # S3 호환 스토리지는 대부분 path-style
            ),
        )
        return self._s3_client

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def upload_file(
        self,
        file_content: bytes,
        object_name: str,
        content_type: str,
    ) -> str:
        """
        Upload a file to Object Storage.

        Args:
            file_content: The file content as bytes
            object_name: Path of the object in the bucket
            content_type: MIME type of the file

        Returns:
            The object path (same as object_name)
        """
        client = self._get_s3_client()
        try:
            async with record_external_request("object_storage"):
                await self._run(
                    client.put_object,
                    Bucket=self.settings.storage_bucket,
                    Key=object_name,
                    Body=file_content,
                    ContentType=content_type,
                )
        except (BotoCoreError, ClientError) as e:
            logger.error("File upload failed", exc_info=e, extra={"event": "storage", "object": object_name})
            raise StorageError("File upload failed")
        return object_name

    async def download_file(self, object_name: str) -> bytes:
        """
        Download a file from Object Storage.

        Args:
            object_name: Path of the object in the bucket

        Returns:
            The file content as bytes
        """
        client = self._get_s3_client()

        def _get() -> bytes:
            response = client.get_object(Bucket=self.settings.storage_bucket, Key=object_name)
            return response["Body"].read()

        try:
            async with record_external_request("object_storage"):
                return await self._run(_get)
        except (BotoCoreError, ClientError) as e:
            logger.error("File download failed", exc_info=e, extra={"event": "storage", "object": object_name})
            raise StorageError("File download failed")

    async def delete_file(self, object_name: str) -> bool:
        """
        Delete a file from Object Storage.

        Returns:
            True if deletion was successful (missing objects count as deleted)
        """
        try:
            client = self._get_s3_client()
            async with record_external_request("object_storage"):
                await self._run(
                    client.delete_object,
                    Bucket=self.settings.storage_bucket,
                    Key=object_name,
                )
            return True
        except (BotoCoreError, ClientError, StorageError) as e:
            logger.error("File deletion failed", exc_info=e, extra={"event": "storage", "object": object_name})
            return False


# Singleton instance
_storage_service: Optional[ObjectStorageService] = None


def get_storage_service() -> ObjectStorageService:
    """Get the singleton storage service instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = ObjectStorageService()
    return _storage_service
