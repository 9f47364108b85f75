"""Shared pytest configuration."""

import asyncio

import pytest
from botocore.exceptions import ClientError

from ceboelha.testing.mocks import InMemoryS3

pytest_plugins = ["ceboelha.testing.fixtures"]


class YieldingS3(InMemoryS3):
    """InMemoryS3 that yields to the event loop before every call.

    The plain mock completes each call without suspending, so coroutines
    gathered together never interleave. Yielding first lets concurrent
    read-modify-write cycles actually race.
    """

    async def get_object(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().get_object(*args, **kwargs)

    async def put_object(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().put_object(*args, **kwargs)


class FailingS3(InMemoryS3):
    """InMemoryS3 whose writes under ``prefix`` fail with an S3 server error.

    Args:
        prefix: Key prefix of the writes to fail
        failures: How many writes to fail; ``None`` fails all of them
    """

    def __init__(self, prefix: str, failures: int | None = 1):
        super().__init__()
        self.prefix = prefix
        self.failures = failures

    async def put_object(self, Bucket: str, Key: str, *args, **kwargs):
        if Key.startswith(self.prefix) and self.failures != 0:
            if self.failures is not None:
                self.failures -= 1
            raise ClientError(
                {
                    "Error": {"Code": "InternalError", "Message": "We encountered an internal error"},
                    "ResponseMetadata": {"HTTPStatusCode": 500},
                },
                "PutObject",
            )
        return await super().put_object(Bucket, Key, *args, **kwargs)


@pytest.fixture
def racing_s3() -> YieldingS3:
    s3 = YieldingS3()
    s3._ensure_bucket("test-bucket")
    return s3


@pytest.fixture
def failing_s3():
    """Factory for a FailingS3 with the test bucket created."""

    def factory(prefix: str, failures: int | None = 1) -> FailingS3:
        s3 = FailingS3(prefix, failures)
        s3._ensure_bucket("test-bucket")
        return s3

    return factory
