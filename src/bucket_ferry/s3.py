# src/bucket_ferry/s3.py
"""
S3 store adapters built on aiobotocore.

`S3SourceStore` implements the read side (bucket enumeration, paginated
listing, streaming reads) and `S3DestinationStore` the write side. Writes
are buffered up to one part: small objects are committed with a single
`PutObject`, larger ones with a multipart upload that is only completed on
`finish` and aborted on failure, so a failed copy never leaves an object
behind.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Tuple

import aiohttp
from botocore.exceptions import BotoCoreError, ClientError

from bucket_ferry.exceptions import (
    CreationConflictError,
    NotFoundError,
    PartialWriteError,
    TransientIOError,
)
from bucket_ferry.stores import ObjectListing, Page

if TYPE_CHECKING:
    from aiobotocore.response import StreamingBody
    from types_aiobotocore_s3.client import S3Client
    from types_aiobotocore_s3.type_defs import (
        GetObjectOutputTypeDef,
        ListBucketsOutputTypeDef,
        ListObjectsV2OutputTypeDef,
    )

logger: logging.Logger = logging.getLogger(__name__)

_NOT_FOUND_CODES: frozenset = frozenset({"404", "NoSuchBucket", "NoSuchKey", "NotFound"})
_CONFLICT_CODES: frozenset = frozenset({"BucketAlreadyOwnedByYou", "BucketAlreadyExists"})
_S3_ERRORS: Tuple[type, ...] = (
    ClientError,
    BotoCoreError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
)


def _error_code(error: ClientError) -> str:
    """Extracts the S3 error code from a botocore `ClientError`."""
    return str(error.response.get("Error", {}).get("Code", ""))


def _is_not_found(error: BaseException) -> bool:
    return isinstance(error, ClientError) and _error_code(error) in _NOT_FOUND_CODES


class S3SourceStore:
    """Read-side adapter over an aiobotocore S3 client."""

    def __init__(self, client: "S3Client", chunk_size: int = 1024**2) -> None:
        """
        Initializes the source adapter.

        Args:
            client (S3Client): An open aiobotocore S3 client.
            chunk_size (int): Size of the chunks yielded by read streams.
        """
        self._client: "S3Client" = client
        self._chunk_size: int = chunk_size

    async def list_buckets(self) -> List[str]:
        """
        Lists every bucket in the source account.

        Returns:
            List[str]: Bucket names in the order the provider returned them.
        """
        try:
            response: "ListBucketsOutputTypeDef" = await self._client.list_buckets()
        except _S3_ERRORS as e:
            raise TransientIOError(f"Failed to list buckets: {e}", bucket="") from e
        return [bucket["Name"] for bucket in response.get("Buckets", [])]

    async def list_objects_page(
        self, bucket: str, max_keys: int, cursor: Optional[str] = None
    ) -> Page:
        """
        Fetches one page of a bucket listing.

        Args:
            bucket (str): The bucket to list.
            max_keys (int): Maximum number of entries in the page.
            cursor (str, optional): Continuation token from the previous page.

        Returns:
            Page: The listed objects and the continuation token, if any.
        """
        params: Dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
        if cursor is not None:
            params["ContinuationToken"] = cursor
        try:
            response: "ListObjectsV2OutputTypeDef" = await self._client.list_objects_v2(
                **params
            )
        except _S3_ERRORS as e:
            if _is_not_found(e):
                raise NotFoundError(
                    f"Source bucket '{bucket}' does not exist.", bucket=bucket
                ) from e
            raise TransientIOError(
                f"Failed to list bucket '{bucket}': {e}", bucket=bucket
            ) from e

        items: Tuple[ObjectListing, ...] = tuple(
            ObjectListing(key=obj["Key"], size=obj.get("Size", 0))
            for obj in response.get("Contents", [])
        )
        next_cursor: Optional[str] = (
            response.get("NextContinuationToken") if response.get("IsTruncated") else None
        )
        return Page(items=items, next_cursor=next_cursor)

    async def open_read_stream(self, bucket: str, key: str) -> AsyncIterator[bytes]:
        """
        Streams an object's bytes in chunks.

        Args:
            bucket (str): The source bucket.
            key (str): The object key.

        Yields:
            bytes: Consecutive chunks of the object body.
        """
        try:
            response: "GetObjectOutputTypeDef" = await self._client.get_object(
                Bucket=bucket, Key=key
            )
            body: "StreamingBody" = response["Body"]
            try:
                while True:
                    chunk: bytes = await body.read(self._chunk_size)
                    if not chunk:
                        break
                    yield chunk
            finally:
                body.close()
        except _S3_ERRORS as e:
            if _is_not_found(e):
                raise NotFoundError(
                    f"Object '{key}' vanished from '{bucket}'.", bucket=bucket, key=key
                ) from e
            raise TransientIOError(
                f"Failed to read 's3://{bucket}/{key}': {e}", bucket=bucket, key=key
            ) from e


class S3ObjectWriter:
    """
    Write stream for one S3 object.

    Memory use is bounded by one part. The object becomes visible only when
    `finish` succeeds.
    """

    def __init__(
        self, client: "S3Client", bucket: str, key: str, part_size: int
    ) -> None:
        self._client: "S3Client" = client
        self._bucket: str = bucket
        self._key: str = key
        self._part_size: int = part_size
        self._buffer: bytearray = bytearray()
        self._upload_id: Optional[str] = None
        self._parts: List[Dict[str, Any]] = []

    async def write(self, data: bytes) -> None:
        """
        Buffers data, flushing every full part to a multipart upload.

        Args:
            data (bytes): The next chunk of the object.
        """
        self._buffer.extend(data)
        while len(self._buffer) >= self._part_size:
            part: bytes = bytes(self._buffer[: self._part_size])
            del self._buffer[: self._part_size]
            await self._upload_part(part)

    async def _upload_part(self, body: bytes) -> None:
        try:
            if self._upload_id is None:
                created: Dict[str, Any] = await self._client.create_multipart_upload(
                    Bucket=self._bucket, Key=self._key
                )
                self._upload_id = created["UploadId"]
            part_number: int = len(self._parts) + 1
            uploaded: Dict[str, Any] = await self._client.upload_part(
                Bucket=self._bucket,
                Key=self._key,
                UploadId=self._upload_id,
                PartNumber=part_number,
                Body=body,
            )
            self._parts.append({"ETag": uploaded["ETag"], "PartNumber": part_number})
        except _S3_ERRORS as e:
            raise PartialWriteError(
                f"Failed to upload part of '{self._key}': {e}",
                bucket=self._bucket,
                key=self._key,
            ) from e

    async def finish(self) -> None:
        """Commits the object, either as a single PUT or by completing the upload."""
        if self._upload_id is not None and self._buffer:
            await self._upload_part(bytes(self._buffer))
            self._buffer.clear()
        try:
            if self._upload_id is None:
                body: bytes = bytes(self._buffer)
                await self._client.put_object(
                    Bucket=self._bucket,
                    Key=self._key,
                    Body=body,
                    ContentLength=len(body),
                )
            else:
                await self._client.complete_multipart_upload(
                    Bucket=self._bucket,
                    Key=self._key,
                    UploadId=self._upload_id,
                    MultipartUpload={"Parts": self._parts},
                )
        except _S3_ERRORS as e:
            raise PartialWriteError(
                f"Failed to commit '{self._key}': {e}",
                bucket=self._bucket,
                key=self._key,
            ) from e
        self._buffer.clear()

    async def abort(self) -> None:
        """Discards buffered data and aborts any multipart upload in progress."""
        self._buffer.clear()
        if self._upload_id is None:
            return
        upload_id: str = self._upload_id
        self._upload_id = None
        try:
            await self._client.abort_multipart_upload(
                Bucket=self._bucket, Key=self._key, UploadId=upload_id
            )
        except _S3_ERRORS as e:
            # An unfinished upload is never listed as an object.
            logger.warning(
                f"Could not abort multipart upload for '{self._key}' "
                f"in '{self._bucket}': {e}"
            )


class S3DestinationStore:
    """Write-side adapter over an aiobotocore S3 client."""

    def __init__(
        self,
        client: "S3Client",
        region: str = "us-east-1",
        part_size: int = 8 * 1024**2,
    ) -> None:
        """
        Initializes the destination adapter.

        Args:
            client (S3Client): An open aiobotocore S3 client.
            region (str): Region used as the location constraint of new buckets.
            part_size (int): Multipart part size in bytes.
        """
        self._client: "S3Client" = client
        self._region: str = region
        self._part_size: int = part_size

    async def bucket_exists(self, bucket: str) -> bool:
        """HEAD the bucket; False on 404, `TransientIOError` on anything else."""
        try:
            await self._client.head_bucket(Bucket=bucket)
            return True
        except _S3_ERRORS as e:
            if _is_not_found(e):
                return False
            raise TransientIOError(
                f"Failed to check bucket '{bucket}': {e}", bucket=bucket
            ) from e

    async def create_bucket(self, bucket: str) -> None:
        """
        Creates a bucket in the configured region.

        Args:
            bucket (str): The bucket name.
        """
        params: Dict[str, Any] = {"Bucket": bucket}
        if self._region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        try:
            await self._client.create_bucket(**params)
        except _S3_ERRORS as e:
            if isinstance(e, ClientError) and _error_code(e) in _CONFLICT_CODES:
                raise CreationConflictError(
                    f"Bucket '{bucket}' already exists.", bucket=bucket
                ) from e
            raise TransientIOError(
                f"Failed to create bucket '{bucket}': {e}", bucket=bucket
            ) from e

    async def object_exists(self, bucket: str, key: str) -> bool:
        """HEAD the object; False on 404, `TransientIOError` on anything else."""
        try:
            await self._client.head_object(Bucket=bucket, Key=key)
            return True
        except _S3_ERRORS as e:
            if _is_not_found(e):
                return False
            raise TransientIOError(
                f"Failed to check 's3://{bucket}/{key}': {e}", bucket=bucket, key=key
            ) from e

    async def open_write_stream(self, bucket: str, key: str) -> S3ObjectWriter:
        return S3ObjectWriter(self._client, bucket, key, self._part_size)
