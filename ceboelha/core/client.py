"""S3 client manager for handling S3 connections and bucket administration."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Protocol, runtime_checkable

from aiobotocore.client import AioBaseClient
from aiobotocore.session import get_session
from boto3.session import Session
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ceboelha.core.exceptions import S3ConnectionError, StoreError
from ceboelha.core.settings import CeboelhaSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class S3ClientProtocol(Protocol):
    """Protocol for the S3 operations the document store relies on."""

    async def get_object(self, Bucket: str, Key: str, **kwargs) -> dict[str, Any]:
        """Get an object from S3."""
        ...

    async def put_object(
        self, Bucket: str, Key: str, Body: bytes | str, **kwargs
    ) -> dict[str, Any]:
        """Put an object to S3 (optionally conditional via IfMatch/IfNoneMatch)."""
        ...

    async def delete_object(self, Bucket: str, Key: str, **kwargs) -> dict[str, Any]:
        """Delete an object from S3."""
        ...

    async def list_objects_v2(self, Bucket: str, **kwargs) -> dict[str, Any]:
        """List objects in S3."""
        ...


def adjust_endpoint_url(
    endpoint_url: str | None, bucket_name: str | None
) -> str | None:
    """Adjust endpoint URL for path-style addressing if needed.

    Args:
        endpoint_url: The S3 endpoint URL
        bucket_name: The S3 bucket name

    Returns:
        Adjusted endpoint URL or None
    """
    if not endpoint_url:
        return None
    if bucket_name and f"{bucket_name}." in endpoint_url:
        return endpoint_url.replace(f"{bucket_name}.", "")
    return endpoint_url


class S3ClientManager:
    """Creates S3 clients from settings.

    The async client is used by the API and background tasks; the sync boto3
    client is only used for one-off bucket administration from the CLI.
    """

    def __init__(self, settings: CeboelhaSettings):
        self.settings = settings
        self._sync_client: BaseClient | None = None
        self._async_session = None
        self._endpoint_url = adjust_endpoint_url(
            settings.aws_url, settings.aws_bucket_name
        )
        self._client_config = Config(
            s3={"addressing_style": "path"},
            retries={
                "max_attempts": settings.aws_retry_attempts,
                "mode": "standard",
            },
            connect_timeout=5,
            read_timeout=10,
        )

    def _client_kwargs(self) -> dict:
        return {
            "region_name": self.settings.aws_default_region,
            "aws_access_key_id": self.settings.aws_access_key_id,
            "aws_secret_access_key": self.settings.aws_secret_access_key,
            "endpoint_url": self._endpoint_url,
            "config": self._client_config,
        }

    def get_sync_client(self) -> BaseClient:
        """Get or create a synchronous S3 client.

        Returns:
            A boto3 S3 client

        Raises:
            S3ConnectionError: If client creation fails
        """
        if self._sync_client is None:
            try:
                self._sync_client = Session().client("s3", **self._client_kwargs())
            except BotoCoreError as e:
                raise S3ConnectionError(
                    message=f"Failed to create sync S3 client: {e}",
                    original_error=e,
                    endpoint=self._endpoint_url,
                )
        return self._sync_client

    @asynccontextmanager
    async def get_async_client(self) -> AsyncGenerator[AioBaseClient, None]:
        """Get an async S3 client within a context manager.

        Yields:
            An aiobotocore S3 client

        Raises:
            S3ConnectionError: If client creation fails
        """
        if self._async_session is None:
            self._async_session = get_session()

        try:
            async with self._async_session.create_client(
                "s3", **self._client_kwargs()
            ) as client:
                yield client
        except BotoCoreError as e:
            raise S3ConnectionError(
                message=f"S3 connection failed: {e}",
                original_error=e,
                endpoint=self._endpoint_url,
            )

    def ensure_bucket_exists(self, lifecycle_rules: list[dict] | None = None) -> bool:
        """Ensure the configured bucket exists, creating it if necessary.

        Args:
            lifecycle_rules: Optional S3 lifecycle rules to install on the bucket

        Returns:
            True if the bucket was created, False if it already existed

        Raises:
            S3ConnectionError: If bucket creation fails
            StoreError: If the bucket check fails for another reason
        """
        client = self.get_sync_client()
        bucket = self.settings.aws_bucket_name
        created = False
        try:
            client.head_bucket(Bucket=bucket)
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            # Handle both numeric codes and named codes
            if error_code in ("404", "NoSuchBucket", "NotFound"):
                try:
                    client.create_bucket(Bucket=bucket)
                    created = True
                    logger.info("Created bucket %s", bucket)
                except ClientError as create_error:
                    raise S3ConnectionError(
                        message=f"Failed to create bucket: {create_error}",
                        original_error=create_error,
                        endpoint=self._endpoint_url,
                    )
            elif error_code == "403":
                raise StoreError(
                    "AccessDenied: permission denied checking bucket existence",
                    operation="head_bucket",
                )
            else:
                raise StoreError(f"Error checking bucket: {e}", operation="head_bucket")
        except BotoCoreError as e:
            raise S3ConnectionError(
                message=f"Unexpected error checking bucket: {e}",
                original_error=e,
                endpoint=self._endpoint_url,
            )

        if lifecycle_rules:
            try:
                client.put_bucket_lifecycle_configuration(
                    Bucket=bucket,
                    LifecycleConfiguration={"Rules": lifecycle_rules},
                )
            except ClientError as e:
                raise StoreError(
                    f"Failed to install lifecycle rules: {e}",
                    operation="put_bucket_lifecycle_configuration",
                    original_error=e,
                )
        return created
