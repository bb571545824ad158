# src/bucket_ferry/engine.py
"""
The batched, resumable transfer loop for one bucket pair.

The engine walks the source listing one page at a time. Every object of a
page is checked and copied in its own task, bounded by a semaphore, and the
engine waits for all of them before it lists the next page. An object that
fails is logged and recorded; it never stops its siblings or the listing.
Listing and bucket creation errors propagate and abort the job.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from bucket_ferry.checker import CheckErrorPolicy, should_copy
from bucket_ferry.config import AppConfig
from bucket_ferry.controller import ConcurrencyController
from bucket_ferry.copier import copy_object
from bucket_ferry.db import CheckpointDB, job_id
from bucket_ferry.exceptions import (
    BucketFerryError,
    CreationConflictError,
    NotFoundError,
    TransientIOError,
)
from bucket_ferry.stores import DestinationStore, ObjectListing, Page, SourceStore

logger: logging.Logger = logging.getLogger(__name__)


class ObjectStatus(Enum):
    """Terminal state of one object within a job."""

    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ObjectOutcome:
    """
    The result of processing a single listed object.

    Attributes:
        key (str): The object key.
        status (ObjectStatus): Whether the object was copied, skipped or failed.
        bytes (int): Bytes written to the destination.
        duration_s (float): Time spent checking and copying the object.
        error (str, optional): A description of the failure, if any.
    """

    key: str
    status: ObjectStatus
    bytes: int = 0
    duration_s: float = 0.0
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status is ObjectStatus.SKIPPED

    @property
    def failed(self) -> bool:
        return self.status is ObjectStatus.FAILED


@dataclass
class TransferReport:
    """
    Aggregated result of one transfer job.

    Attributes:
        source_bucket (str): The bucket that was listed.
        destination_bucket (str): The bucket objects were copied into.
        bucket_created (bool): Whether the job created the destination bucket.
        resumed (bool): Whether listing started from a saved checkpoint.
        pages (int): Number of listing calls issued.
        copied (int): Objects copied.
        skipped (int): Objects already present at the destination.
        bytes_copied (int): Total bytes copied.
        failed_keys (List[str]): Keys of objects that failed.
        interrupted (bool): Whether a shutdown stopped the job early.
    """

    source_bucket: str
    destination_bucket: str
    bucket_created: bool = False
    resumed: bool = False
    pages: int = 0
    copied: int = 0
    skipped: int = 0
    bytes_copied: int = 0
    failed_keys: List[str] = field(default_factory=list)
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.failed_keys and not self.interrupted

    def record(self, outcome: ObjectOutcome) -> None:
        """Adds one object outcome to the totals."""
        if outcome.status is ObjectStatus.COPIED:
            self.copied += 1
            self.bytes_copied += outcome.bytes
        elif outcome.status is ObjectStatus.SKIPPED:
            self.skipped += 1
        else:
            self.failed_keys.append(outcome.key)


class BatchTransferEngine:
    """Mirrors the objects of a source bucket into a destination bucket."""

    def __init__(
        self,
        source: SourceStore,
        dest: DestinationStore,
        app_config: AppConfig,
        shutdown_event: Optional[asyncio.Event] = None,
        checkpoints: Optional[CheckpointDB] = None,
        controller: Optional[ConcurrencyController] = None,
        on_outcome: Optional[Callable[[ObjectOutcome], None]] = None,
        checkpoint_scope: str = "",
    ) -> None:
        """
        Initializes the engine.

        Args:
            source (SourceStore): The store to list and read from.
            dest (DestinationStore): The store to write to.
            app_config (AppConfig): The application configuration.
            shutdown_event (asyncio.Event, optional): When set, the engine
                finishes the current page and stops listing.
            checkpoints (CheckpointDB, optional): Persistent cursor store.
            controller (ConcurrencyController, optional): Intra-page
                concurrency controller; one is created from `app_config`
                when omitted.
            on_outcome (Callable[[ObjectOutcome], None], optional): Called
                once per resolved object, e.g. to drive a progress display.
            checkpoint_scope (str): Source account and destination identity
                that checkpoint keys are scoped to.
        """
        self._source: SourceStore = source
        self._dest: DestinationStore = dest
        self._config: AppConfig = app_config
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._checkpoints: Optional[CheckpointDB] = checkpoints
        self._controller: ConcurrencyController = controller or ConcurrencyController(
            app_config
        )
        self._on_outcome: Optional[Callable[[ObjectOutcome], None]] = on_outcome
        self._checkpoint_scope: str = checkpoint_scope
        self._check_policy: CheckErrorPolicy = CheckErrorPolicy(
            app_config.check_error_policy
        )

    async def transfer(
        self, src_bucket: str, dst_bucket: str, batch_size: Optional[int] = None
    ) -> TransferReport:
        """
        Runs one transfer job to completion, failure or interruption.

        Args:
            src_bucket (str): The source bucket.
            dst_bucket (str): The destination bucket, created if absent.
            batch_size (int, optional): Objects per listing call. Defaults to
                `AppConfig.batch_size`.

        Returns:
            TransferReport: The job totals. `succeeded` is False if any
                object failed or the job was interrupted.

        Raises:
            NotFoundError: If the source bucket does not exist.
            TransientIOError: If a listing call or the bucket setup fails.
        """
        page_size: int = batch_size or self._config.batch_size
        report: TransferReport = TransferReport(src_bucket, dst_bucket)
        report.bucket_created = await self._ensure_bucket(dst_bucket)

        job: str = job_id(src_bucket, dst_bucket, self._checkpoint_scope)
        cursor: Optional[str] = (
            self._checkpoints.get_cursor(job) if self._checkpoints else None
        )
        if cursor is not None:
            report.resumed = True
            logger.info(f"Resuming '{src_bucket}' from saved checkpoint.")

        while True:
            if self._shutdown_event.is_set():
                report.interrupted = True
                logger.warning(
                    f"Shutdown requested. Stopping '{src_bucket}' after "
                    f"{report.pages} page(s)."
                )
                break

            page: Page = await self._list_page(src_bucket, page_size, cursor, report)
            report.pages += 1

            outcomes: List[ObjectOutcome] = await self._process_page(
                page, src_bucket, dst_bucket
            )
            for outcome in outcomes:
                report.record(outcome)
            self._controller.observe(outcomes)

            cursor = page.next_cursor
            if cursor is None:
                break
            if self._checkpoints and not report.failed_keys:
                self._checkpoints.set_cursor(job, cursor)

        if self._checkpoints and report.succeeded:
            self._checkpoints.clear(job)
        return report

    async def _ensure_bucket(self, bucket: str) -> bool:
        """
        Creates the destination bucket if it does not exist.

        Returns:
            bool: True if this call created the bucket.
        """
        if await self._dest.bucket_exists(bucket):
            logger.debug(f"Destination bucket '{bucket}' exists.")
            return False

        logger.info(f"Destination bucket '{bucket}' does not exist. Creating it.")
        try:
            await self._dest.create_bucket(bucket)
        except CreationConflictError:
            logger.info(f"Destination bucket '{bucket}' was created concurrently.")
            return False
        logger.info(f"Destination bucket '{bucket}' created successfully.")
        return True

    async def _list_page(
        self,
        bucket: str,
        page_size: int,
        cursor: Optional[str],
        report: TransferReport,
    ) -> Page:
        """
        Lists one page, falling back to a fresh listing if a saved cursor is rejected.
        """
        try:
            return await self._source.list_objects_page(bucket, page_size, cursor)
        except NotFoundError:
            raise
        except TransientIOError as e:
            if not (report.resumed and report.pages == 0 and self._checkpoints):
                raise
            logger.warning(
                f"Saved checkpoint for '{bucket}' was rejected ({e}). "
                "Listing from the beginning."
            )
            self._checkpoints.clear(
                job_id(bucket, report.destination_bucket, self._checkpoint_scope)
            )
            report.resumed = False
            return await self._source.list_objects_page(bucket, page_size, None)

    async def _process_page(
        self, page: Page, src_bucket: str, dst_bucket: str
    ) -> List[ObjectOutcome]:
        """
        Resolves every object of a page concurrently and waits for all of them.

        Args:
            page (Page): The page to process.
            src_bucket (str): The source bucket.
            dst_bucket (str): The destination bucket.

        Returns:
            List[ObjectOutcome]: One outcome per item, in listing order.
        """
        if not page.items:
            return []

        width: int = min(len(page.items), self._controller.limit)
        semaphore: asyncio.Semaphore = asyncio.Semaphore(width)
        logger.debug(
            f"Processing {len(page.items)} objects from '{src_bucket}' "
            f"with concurrency {width}."
        )
        tasks: List[asyncio.Task[ObjectOutcome]] = [
            asyncio.create_task(
                self._process_object(item, src_bucket, dst_bucket, semaphore)
            )
            for item in page.items
        ]
        results: List[ObjectOutcome | BaseException] = await asyncio.gather(
            *tasks, return_exceptions=True
        )

        outcomes: List[ObjectOutcome] = []
        for item, result in zip(page.items, results):
            if isinstance(result, BaseException):
                outcome: ObjectOutcome = ObjectOutcome(
                    key=item.key, status=ObjectStatus.FAILED, error=repr(result)
                )
                logger.error(f"Task for '{item.key}' ended abnormally: {result!r}")
                self._notify(outcome)
                outcomes.append(outcome)
            else:
                outcomes.append(result)
        return outcomes

    async def _process_object(
        self,
        item: ObjectListing,
        src_bucket: str,
        dst_bucket: str,
        semaphore: asyncio.Semaphore,
    ) -> ObjectOutcome:
        """Checks and, if needed, copies one object. Never raises for object errors."""
        async with semaphore:
            start_time: float = time.monotonic()
            outcome: ObjectOutcome
            try:
                if await should_copy(
                    self._dest,
                    dst_bucket,
                    item.key,
                    attempts=self._config.check_max_attempts,
                    on_error=self._check_policy,
                ):
                    copied: int = await copy_object(
                        self._source,
                        self._dest,
                        src_bucket,
                        dst_bucket,
                        item.key,
                        expected_size=item.size,
                    )
                    outcome = ObjectOutcome(
                        key=item.key,
                        status=ObjectStatus.COPIED,
                        bytes=copied,
                        duration_s=time.monotonic() - start_time,
                    )
                    logger.info(f"Object '{item.key}' copied to '{dst_bucket}'.")
                else:
                    outcome = ObjectOutcome(
                        key=item.key,
                        status=ObjectStatus.SKIPPED,
                        duration_s=time.monotonic() - start_time,
                    )
                    logger.debug(
                        f"Object '{item.key}' already exists in '{dst_bucket}'."
                    )
            except BucketFerryError as e:
                err_tag: str = type(e).__name__
                outcome = ObjectOutcome(
                    key=item.key,
                    status=ObjectStatus.FAILED,
                    duration_s=time.monotonic() - start_time,
                    error=f"{err_tag}: {e}",
                )
                logger.error(f"Failed to copy '{item.key}': {err_tag} - {e}")
            except Exception as e:
                outcome = ObjectOutcome(
                    key=item.key,
                    status=ObjectStatus.FAILED,
                    duration_s=time.monotonic() - start_time,
                    error=f"{type(e).__name__}: {e}",
                )
                logger.exception(f"An unexpected error occurred copying '{item.key}'")

        self._notify(outcome)
        return outcome

    def _notify(self, outcome: ObjectOutcome) -> None:
        if self._on_outcome is not None:
            self._on_outcome(outcome)
