# src/bucket_ferry/gcs.py
"""
Google Cloud Storage destination adapter.

The google-cloud-storage client is synchronous, so every call runs on a
thread pool owned by the store. The pool is sized to the maximum intra-page
concurrency: with the loop's default executor, copies beyond its worker
count would queue for a thread, and that wait would be measured as latency.
Objects are written through a resumable upload session that is finalized
only when the writer is closed; an aborted writer leaves the session
unfinalized and no object is ever created.
"""

import asyncio
import functools
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Optional, TypeVar

from google.api_core.exceptions import Conflict, GoogleAPIError
from google.cloud import storage
from google.cloud.storage.fileio import BlobWriter
from requests.exceptions import RequestException

from bucket_ferry.exceptions import (
    CreationConflictError,
    PartialWriteError,
    TransientIOError,
)

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

_GCS_ERRORS = (GoogleAPIError, RequestException)
_UPLOAD_CHUNK_QUANTUM: int = 256 * 1024


async def _run_blocking(
    executor: Optional[Executor], func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Runs a blocking SDK call on `executor`, or the loop's default one if None."""
    loop: asyncio.AbstractEventLoop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        executor, functools.partial(func, *args, **kwargs)
    )


class _AbortableBlobWriter(BlobWriter):
    """
    A `BlobWriter` that can be abandoned without finalizing the upload.

    `io` objects close themselves when garbage collected, and closing a
    `BlobWriter` commits whatever was written. Once aborted, `close` is a no-op.
    """

    _aborted: bool = False

    def abort(self) -> None:
        self._aborted = True

    def close(self) -> None:
        if self._aborted:
            return
        super().close()


class GCSObjectWriter:
    """Write stream for one GCS object."""

    def __init__(
        self,
        blob: storage.Blob,
        chunk_size: int,
        executor: Optional[Executor] = None,
    ) -> None:
        """
        Args:
            blob (storage.Blob): The destination blob.
            chunk_size (int): Resumable upload chunk size, a multiple of 256 KiB.
            executor (Executor, optional): Pool for the blocking upload calls.
        """
        self._blob: storage.Blob = blob
        self._chunk_size: int = chunk_size
        self._executor: Optional[Executor] = executor
        self._writer: Optional[_AbortableBlobWriter] = None

    def _open(self) -> _AbortableBlobWriter:
        return _AbortableBlobWriter(self._blob, chunk_size=self._chunk_size)

    def _fail(self, action: str, error: Exception) -> PartialWriteError:
        return PartialWriteError(
            f"Failed to {action} 'gs://{self._blob.bucket.name}/{self._blob.name}': {error}",
            bucket=self._blob.bucket.name,
            key=self._blob.name,
        )

    async def write(self, data: bytes) -> None:
        try:
            if self._writer is None:
                self._writer = await _run_blocking(self._executor, self._open)
            await _run_blocking(self._executor, self._writer.write, data)
        except Exception as e:
            raise self._fail("write", e) from e

    async def finish(self) -> None:
        """Finalizes the resumable upload, making the object visible."""
        try:
            if self._writer is None:
                self._writer = await _run_blocking(self._executor, self._open)
            await _run_blocking(self._executor, self._writer.close)
        except Exception as e:
            raise self._fail("commit", e) from e

    async def abort(self) -> None:
        if self._writer is not None:
            self._writer.abort()
            self._writer = None
            logger.debug(
                f"Abandoned upload session for 'gs://{self._blob.bucket.name}/{self._blob.name}'."
            )


class GCSDestinationStore:
    """Write-side adapter over a google-cloud-storage client."""

    def __init__(
        self,
        client: storage.Client,
        location: Optional[str] = None,
        chunk_size: int = 8 * 1024**2,
        max_workers: int = 32,
    ) -> None:
        """
        Initializes the destination adapter.

        Args:
            client (storage.Client): An authenticated storage client.
            location (str, optional): Location of buckets created by the adapter.
            chunk_size (int): Upload chunk size, rounded down to a multiple of 256 KiB.
            max_workers (int): Threads for blocking SDK calls. Should be at
                least the maximum number of concurrent object copies.
        """
        self._client: storage.Client = client
        self._location: Optional[str] = location
        self._chunk_size: int = max(
            _UPLOAD_CHUNK_QUANTUM, chunk_size - chunk_size % _UPLOAD_CHUNK_QUANTUM
        )
        self._executor: ThreadPoolExecutor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="bucket-ferry-gcs"
        )

    def close(self) -> None:
        """Shuts down the thread pool, waiting for calls in flight."""
        self._executor.shutdown(wait=True)

    async def bucket_exists(self, bucket: str) -> bool:
        try:
            return await _run_blocking(
                self._executor, self._client.bucket(bucket).exists
            )
        except _GCS_ERRORS as e:
            raise TransientIOError(
                f"Failed to check GCS bucket '{bucket}': {e}", bucket=bucket
            ) from e

    async def create_bucket(self, bucket: str) -> None:
        """
        Creates a bucket in the configured project and location.

        Args:
            bucket (str): The bucket name.
        """
        try:
            await _run_blocking(
                self._executor,
                self._client.create_bucket,
                bucket,
                location=self._location,
            )
        except Conflict as e:
            raise CreationConflictError(
                f"GCS bucket '{bucket}' already exists.", bucket=bucket
            ) from e
        except _GCS_ERRORS as e:
            raise TransientIOError(
                f"Failed to create GCS bucket '{bucket}': {e}", bucket=bucket
            ) from e

    async def object_exists(self, bucket: str, key: str) -> bool:
        try:
            return await _run_blocking(
                self._executor, self._client.bucket(bucket).blob(key).exists
            )
        except _GCS_ERRORS as e:
            raise TransientIOError(
                f"Failed to check 'gs://{bucket}/{key}': {e}", bucket=bucket, key=key
            ) from e

    async def open_write_stream(self, bucket: str, key: str) -> GCSObjectWriter:
        blob: storage.Blob = self._client.bucket(bucket).blob(key)
        return GCSObjectWriter(blob, self._chunk_size, self._executor)
