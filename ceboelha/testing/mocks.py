"""Mock S3 client for testing Ceboelha without external dependencies."""

import hashlib
import json
from datetime import datetime, timezone
from typing import Dict
from unittest.mock import AsyncMock

from botocore.exceptions import ClientError


def _precondition_failed(operation: str) -> ClientError:
    return ClientError(
        {
            "Error": {
                "Code": "PreconditionFailed",
                "Message": "At least one of the pre-conditions you specified did not hold",
            },
            "ResponseMetadata": {"HTTPStatusCode": 412},
        },
        operation,
    )


class InMemoryS3:
    """In-memory S3 mock for testing.

    This class provides a fully async-compatible mock S3 client that stores
    all data in memory. Besides plain object operations it honours the
    conditional write headers the document store depends on: ``IfNoneMatch="*"``
    (create only if absent) and ``IfMatch=<etag>`` (compare-and-swap). ETags are
    quoted MD5 digests of the body, like real S3 for single-part uploads.

    Example:
        >>> s3 = InMemoryS3()
        >>> await s3.put_object(Bucket="test", Key="data.json", Body=b'{"id": 1}')
        >>> response = await s3.get_object(Bucket="test", Key="data.json")
        >>> data = await response["Body"].read()
    """

    def __init__(self):
        """Initialize the in-memory S3 mock."""
        # Storage: {bucket_name: {key: bytes}}
        self._storage: Dict[str, Dict[str, bytes]] = {}
        # Metadata: {bucket_name: {key: dict}}
        self._metadata: Dict[str, Dict[str, dict]] = {}
        # Successful put_object calls, handy for assertions
        self.put_count = 0

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure a bucket exists in storage."""
        if bucket not in self._storage:
            self._storage[bucket] = {}
            self._metadata[bucket] = {}

    async def create_bucket(self, Bucket: str, **kwargs) -> dict:
        """Create a new bucket."""
        self._ensure_bucket(Bucket)
        return {}

    async def head_bucket(self, Bucket: str, **kwargs) -> dict:
        """Check if a bucket exists.

        Raises:
            ClientError: If bucket doesn't exist
        """
        if Bucket not in self._storage:
            raise ClientError(
                {"Error": {"Code": "404", "Message": "Bucket not found"}},
                "HeadBucket"
            )
        return {}

    async def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes | str,
        ContentType: str = "application/octet-stream",
        IfMatch: str | None = None,
        IfNoneMatch: str | None = None,
        **kwargs
    ) -> dict:
        """Store an object in the mock S3.

        Args:
            Bucket: The bucket name
            Key: The object key
            Body: The object data (bytes or string)
            ContentType: The content type
            IfMatch: Only write if the current ETag equals this value
            IfNoneMatch: ``"*"`` to only write if the key does not exist

        Returns:
            Dict with ETag

        Raises:
            ClientError: ``PreconditionFailed`` if a condition does not hold
        """
        self._ensure_bucket(Bucket)

        if isinstance(Body, str):
            Body = Body.encode("utf-8")

        # No awaits between the check and the write, so this is atomic
        # with respect to other coroutines.
        current = self._metadata[Bucket].get(Key)
        if IfNoneMatch == "*" and Key in self._storage[Bucket]:
            raise _precondition_failed("PutObject")
        if IfMatch is not None and (current is None or current["ETag"] != IfMatch):
            raise _precondition_failed("PutObject")

        self.put_count += 1
        self._storage[Bucket][Key] = Body
        self._metadata[Bucket][Key] = {
            "ContentType": ContentType,
            "ContentLength": len(Body),
            "LastModified": datetime.now(timezone.utc),
            "ETag": f'"{hashlib.md5(Body).hexdigest()}"',
        }

        return {"ETag": self._metadata[Bucket][Key]["ETag"]}

    async def get_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        """Retrieve an object from the mock S3.

        Returns:
            Dict with Body (AsyncMock with read method) and ETag

        Raises:
            ClientError: If object doesn't exist
        """
        if Bucket not in self._storage or Key not in self._storage[Bucket]:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject"
            )

        body = AsyncMock()
        body.read = AsyncMock(return_value=self._storage[Bucket][Key])

        metadata = self._metadata[Bucket][Key]

        return {
            "Body": body,
            "ContentType": metadata["ContentType"],
            "ContentLength": metadata["ContentLength"],
            "LastModified": metadata["LastModified"],
            "ETag": metadata["ETag"],
        }

    async def delete_object(self, Bucket: str, Key: str, **kwargs) -> dict:
        """Delete an object from the mock S3 (missing keys are not an error)."""
        if Bucket in self._storage and Key in self._storage[Bucket]:
            del self._storage[Bucket][Key]
            self._metadata[Bucket].pop(Key, None)
        return {}

    async def list_objects_v2(
        self,
        Bucket: str,
        Prefix: str = "",
        MaxKeys: int = 1000,
        ContinuationToken: str | None = None,
        **kwargs
    ) -> dict:
        """List objects in a bucket.

        Args:
            Bucket: The bucket name
            Prefix: Filter by key prefix
            MaxKeys: Maximum number of keys to return
            ContinuationToken: Pagination token

        Returns:
            Dict with Contents and pagination info
        """
        if Bucket not in self._storage:
            return {"KeyCount": 0, "IsTruncated": False}

        all_keys = sorted(
            key for key in self._storage[Bucket] if key.startswith(Prefix)
        )

        start_idx = int(ContinuationToken) if ContinuationToken else 0
        end_idx = start_idx + MaxKeys
        page_keys = all_keys[start_idx:end_idx]

        if not page_keys:
            return {"KeyCount": 0, "IsTruncated": False}

        contents = [
            {
                "Key": key,
                "Size": self._metadata[Bucket][key]["ContentLength"],
                "LastModified": self._metadata[Bucket][key]["LastModified"],
                "ETag": self._metadata[Bucket][key]["ETag"],
            }
            for key in page_keys
        ]

        result = {
            "Contents": contents,
            "KeyCount": len(contents),
            "MaxKeys": MaxKeys,
            "Prefix": Prefix,
            "IsTruncated": end_idx < len(all_keys),
        }

        if result["IsTruncated"]:
            result["NextContinuationToken"] = str(end_idx)

        return result

    def clear(self) -> None:
        """Clear all stored data."""
        self._storage.clear()
        self._metadata.clear()

    def keys(self, bucket: str, prefix: str = "") -> list[str]:
        """List stored keys (for testing assertions)."""
        return sorted(k for k in self._storage.get(bucket, {}) if k.startswith(prefix))

    def get_bucket_data(self, bucket: str, prefix: str = "") -> dict:
        """Get every JSON document in a bucket (for testing assertions).

        Returns:
            Dict of {key: data} for the bucket, index markers excluded
        """
        return {
            key: json.loads(data.decode("utf-8"))
            for key, data in self._storage.get(bucket, {}).items()
            if key.startswith(prefix) and key.endswith(".json")
        }
