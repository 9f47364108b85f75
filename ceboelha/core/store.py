"""JSON document store on top of S3.

Each document lives at ``{base_path}{plural}/{id}.json``. Two kinds of index
objects sit next to the documents under ``{base_path}_index/{plural}/``:

* unique indexes, ``{field}/{value}``, whose body is the owning document id.
  They are created with ``If-None-Match: *`` so uniqueness is enforced by S3
  itself rather than by a read-then-write check.
* group indexes, ``{field}/{value}/{id}``, empty marker objects used to list
  every document sharing a value (e.g. all refresh tokens of a user).

Updates that must not lose concurrent writes go through :meth:`update_atomic`,
which is a compare-and-swap loop on the object ETag.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import ClassVar, Generic, TypeVar
from urllib.parse import quote

from botocore.exceptions import ClientError
from pydantic import BaseModel, Field

from ceboelha.core.clock import Clock, utcnow
from ceboelha.core.exceptions import ConflictError, StaleDocumentError, StoreError

logger = logging.getLogger(__name__)

# Error codes S3 uses when IfMatch / IfNoneMatch preconditions fail
_PRECONDITION_CODES = {"PreconditionFailed", "412", "ConditionalRequestConflict", "409"}
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class BaseDocument(BaseModel):
    """Base model for every document persisted in the store.

    Subclasses set ``_plural_name`` and may declare ``_unique_fields`` and
    ``_indexed_fields`` to get unique and group indexes maintained for them.
    """

    _plural_name: ClassVar[str] = ""
    _unique_fields: ClassVar[tuple[str, ...]] = ()
    _indexed_fields: ClassVar[tuple[str, ...]] = ()

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def plural_name(cls) -> str:
        return cls._plural_name or f"{cls.__name__.lower()}s"


T = TypeVar("T", bound=BaseDocument)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def _index_value(value) -> str:
    return quote(str(value), safe="")


class DocumentStore(Generic[T]):
    """CRUD, index lookups and atomic updates for one document type."""

    def __init__(
        self,
        model: type[T],
        s3_client,
        bucket_name: str,
        base_path: str = "",
        clock: Clock = utcnow,
    ):
        """Initialize the store.

        Args:
            model: The document class handled by this store
            s3_client: An async S3 client (aiobotocore or the in-memory mock)
            bucket_name: The S3 bucket name
            base_path: Key prefix shared by every document and index
            clock: Source of ``updated_at`` timestamps
        """
        self.model = model
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.base_path = base_path
        self.clock = clock
        self._prefix = f"{base_path}{model.plural_name()}/"
        self._index_prefix = f"{base_path}_index/{model.plural_name()}/"

    # ----- keys -----

    def key_for(self, doc_id: uuid.UUID | str) -> str:
        return f"{self._prefix}{doc_id}.json"

    def _unique_key(self, field: str, value) -> str:
        return f"{self._index_prefix}{field}/{_index_value(value)}"

    def _group_prefix(self, field: str, value) -> str:
        return f"{self._index_prefix}{field}/{_index_value(value)}/"

    # ----- raw S3 access -----

    async def _get_raw(self, key: str) -> tuple[bytes, str] | None:
        try:
            response = await self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return None
            raise StoreError(
                f"Failed to read {key}: {e}", operation="get_object", key=key, original_error=e
            )
        body = await response["Body"].read()
        return body, response.get("ETag", "")

    async def _put_raw(
        self,
        key: str,
        body: bytes,
        if_match: str | None = None,
        if_none_match: bool = False,
        content_type: str = "application/json",
    ) -> str:
        params = {
            "Bucket": self.bucket_name,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if if_match:
            params["IfMatch"] = if_match
        elif if_none_match:
            params["IfNoneMatch"] = "*"

        try:
            response = await self.s3_client.put_object(**params)
        except ClientError as e:
            if _error_code(e) in _PRECONDITION_CODES:
                raise StaleDocumentError(
                    f"Conditional write failed for {key}", operation="put_object", key=key
                )
            raise StoreError(
                f"Failed to write {key}: {e}", operation="put_object", key=key, original_error=e
            )
        return response.get("ETag", "")

    async def _delete_raw(self, key: str) -> None:
        try:
            await self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return
            raise StoreError(
                f"Failed to delete {key}: {e}",
                operation="delete_object",
                key=key,
                original_error=e,
            )

    async def _list_keys(self, prefix: str) -> AsyncIterator[str]:
        continuation_token = None
        while True:
            params = {"Bucket": self.bucket_name, "Prefix": prefix, "MaxKeys": 1000}
            if continuation_token:
                params["ContinuationToken"] = continuation_token
            try:
                response = await self.s3_client.list_objects_v2(**params)
            except ClientError as e:
                raise StoreError(
                    f"Failed to list {prefix}: {e}",
                    operation="list_objects_v2",
                    key=prefix,
                    original_error=e,
                )

            for obj in response.get("Contents", []):
                yield obj["Key"]

            if not response.get("IsTruncated", False):
                break
            continuation_token = response.get("NextContinuationToken")

    # ----- serialization -----

    def _dump(self, doc: T) -> bytes:
        return doc.model_dump_json().encode("utf-8")

    def _load(self, body: bytes) -> T:
        return self.model.model_validate_json(body)

    # ----- reads -----

    async def get(self, doc_id: uuid.UUID | str) -> T | None:
        """Get a document by id.

        Args:
            doc_id: The document id

        Returns:
            The document if found, None otherwise
        """
        found = await self.get_with_etag(doc_id)
        return found[0] if found else None

    async def get_with_etag(self, doc_id: uuid.UUID | str) -> tuple[T, str] | None:
        """Get a document together with the ETag needed for a conditional save."""
        raw = await self._get_raw(self.key_for(doc_id))
        if raw is None:
            return None
        body, etag = raw
        return self._load(body), etag

    async def find_one(self, field: str, value) -> T | None:
        found = await self.find_one_with_etag(field, value)
        return found[0] if found else None

    async def find_one_with_etag(self, field: str, value) -> tuple[T, str] | None:
        """Look up a document through a unique index.

        Args:
            field: A field listed in the model's ``_unique_fields``
            value: The value to look up

        Returns:
            ``(document, etag)`` or None if no document holds that value
        """
        if field not in self.model._unique_fields:
            raise ValueError(f"{self.model.__name__}.{field} is not uniquely indexed")

        raw = await self._get_raw(self._unique_key(field, value))
        if raw is None:
            return None

        doc_id = raw[0].decode("utf-8")
        found = await self.get_with_etag(doc_id)
        # A dangling or outdated index entry counts as "not found"
        if found is None or getattr(found[0], field) != value:
            return None
        return found

    async def list_by(self, field: str, value) -> list[T]:
        """List every document whose group-indexed ``field`` equals ``value``."""
        if field not in self.model._indexed_fields:
            raise ValueError(f"{self.model.__name__}.{field} is not group indexed")

        prefix = self._group_prefix(field, value)
        ids = [key[len(prefix):] async for key in self._list_keys(prefix)]
        docs = await asyncio.gather(*(self.get(doc_id) for doc_id in ids))
        return [doc for doc in docs if doc is not None and getattr(doc, field) == value]

    async def scan(self) -> AsyncIterator[T]:
        """Iterate over every document of this type."""
        async for key in self._list_keys(self._prefix):
            if not key.endswith(".json"):
                continue
            raw = await self._get_raw(key)
            if raw is None:
                continue
            try:
                yield self._load(raw[0])
            except ValueError as e:
                logger.warning(f"Skipping unreadable document {key}: {e}")

    # ----- writes -----

    async def _reserve_unique(self, field: str, value, doc_id: uuid.UUID) -> str:
        key = self._unique_key(field, value)
        try:
            await self._put_raw(key, str(doc_id).encode(), if_none_match=True)
        except StaleDocumentError:
            raise ConflictError(
                f"{self.model.__name__} with this {field} already exists", field=field
            )
        return key

    async def _write_group_markers(self, doc: T) -> None:
        for field in self.model._indexed_fields:
            value = getattr(doc, field)
            if value is not None:
                await self._put_raw(
                    f"{self._group_prefix(field, value)}{doc.id}",
                    b"",
                    content_type="application/octet-stream",
                )

    async def create(self, doc: T) -> T:
        """Create a new document, enforcing unique indexes.

        Args:
            doc: The document to create

        Returns:
            The created document

        Raises:
            ConflictError: If a unique field value is already taken
            StaleDocumentError: If a document with the same id already exists
        """
        reserved: list[str] = []
        try:
            for field in self.model._unique_fields:
                value = getattr(doc, field)
                if value is not None:
                    reserved.append(await self._reserve_unique(field, value, doc.id))

            await self._put_raw(self.key_for(doc.id), self._dump(doc), if_none_match=True)
        except Exception:
            # Release reservations so the values can be claimed again
            for key in reserved:
                try:
                    await self._delete_raw(key)
                except StoreError as e:
                    logger.error(f"Failed to release unique index {key}: {e}")
            raise

        await self._write_group_markers(doc)
        return doc

    async def save(self, doc: T, etag: str | None = None) -> str:
        """Overwrite a document, optionally only if it is unchanged since ``etag``.

        Unique fields are treated as immutable: saving does not move indexes.

        Returns:
            The new ETag

        Raises:
            StaleDocumentError: If ``etag`` no longer matches the stored object
        """
        doc.updated_at = self.clock()
        return await self._put_raw(self.key_for(doc.id), self._dump(doc), if_match=etag)

    async def update_atomic(
        self,
        doc_id: uuid.UUID | str,
        mutate: Callable[[T], T | None],
        default: Callable[[], T] | None = None,
        retries: int = 8,
    ) -> T | None:
        """Read-modify-write a single document without losing concurrent updates.

        ``mutate`` receives the current document (or ``default()`` when it does
        not exist yet) and changes it in place or returns a replacement. The
        write is conditional on the ETag that was read; on conflict the whole
        cycle is retried with fresh data.

        Args:
            doc_id: The document id
            mutate: Function applying the change
            default: Factory for upserts; when None a missing document is left alone
            retries: Maximum number of compare-and-swap attempts

        Returns:
            The stored document, or None if it does not exist and no default was given

        Raises:
            StaleDocumentError: If every attempt lost against a concurrent writer
        """
        if default is not None and self.model._unique_fields:
            raise ValueError("Upserts are not supported for uniquely indexed models")

        for attempt in range(retries):
            found = await self.get_with_etag(doc_id)
            if found is None:
                if default is None:
                    return None
                doc, etag = default(), None
            else:
                doc, etag = found

            doc = mutate(doc) or doc
            doc.updated_at = self.clock()
            try:
                if etag is None:
                    await self._put_raw(self.key_for(doc.id), self._dump(doc), if_none_match=True)
                    await self._write_group_markers(doc)
                else:
                    await self._put_raw(self.key_for(doc.id), self._dump(doc), if_match=etag)
                return doc
            except StaleDocumentError:
                logger.debug(
                    f"Concurrent update on {self.model.__name__} {doc_id}, retrying ({attempt + 1})"
                )
                await asyncio.sleep(0)

        raise StaleDocumentError(
            f"Gave up updating {self.model.__name__} {doc_id} after {retries} attempts",
            operation="update_atomic",
            key=self.key_for(doc_id),
        )

    async def delete(self, doc_id: uuid.UUID | str) -> bool:
        """Delete a document along with its index entries.

        Returns:
            True if the document existed
        """
        doc = await self.get(doc_id)
        if doc is None:
            return False

        for field in self.model._unique_fields:
            value = getattr(doc, field)
            if value is None:
                continue
            key = self._unique_key(field, value)
            raw = await self._get_raw(key)
            # Only drop the index if it still points at this document
            if raw is not None and raw[0].decode("utf-8") == str(doc.id):
                await self._delete_raw(key)

        for field in self.model._indexed_fields:
            value = getattr(doc, field)
            if value is not None:
                await self._delete_raw(f"{self._group_prefix(field, value)}{doc.id}")

        await self._delete_raw(self.key_for(doc.id))
        return True
