# src/bucket_ferry/pipeline.py
"""Core orchestration logic for the bucket-ferry pipeline."""

import asyncio
import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from rich.progress import (
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from bucket_ferry.config import AppConfig
from bucket_ferry.controller import ConcurrencyController
from bucket_ferry.db import CheckpointDB
from bucket_ferry.engine import (
    BatchTransferEngine,
    ObjectOutcome,
    ObjectStatus,
    TransferReport,
)
from bucket_ferry.exceptions import BucketFerryError
from bucket_ferry.stores import DestinationStore, SourceStore

logger: logging.Logger = logging.getLogger(__name__)


@dataclass
class RunSummary:
    """
    The outcome of a whole run.

    Attributes:
        reports (List[TransferReport]): One report per job that ran to the end
            of its listing or was interrupted.
        errors (Dict[str, str]): Bucket name -> error message for aborted jobs.
        interrupted (bool): Whether a shutdown stopped the run early.
    """

    reports: List[TransferReport] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return (
            not self.errors
            and not self.interrupted
            and all(report.succeeded for report in self.reports)
        )

    @property
    def failed_buckets(self) -> List[str]:
        failed: List[str] = [r.source_bucket for r in self.reports if not r.succeeded]
        return failed + list(self.errors)


class BucketFerryPipeline:
    """Mirrors every source bucket into a same-named destination bucket."""

    def __init__(
        self,
        source: SourceStore,
        dest: DestinationStore,
        app_config: AppConfig,
        shutdown_event: Optional[asyncio.Event] = None,
        show_progress: bool = True,
        checkpoint_scope: str = "",
    ) -> None:
        """
        Initializes the pipeline with already constructed stores.

        Args:
            source (SourceStore): The source store.
            dest (DestinationStore): The destination store.
            app_config (AppConfig): The application configuration.
            shutdown_event (asyncio.Event, optional): Event to signal graceful shutdown.
            show_progress (bool): Whether to render a rich progress display.
            checkpoint_scope (str): Scope of the checkpoint keys, see
                `Config.checkpoint_scope`.
        """
        self._source: SourceStore = source
        self._dest: DestinationStore = dest
        self._config: AppConfig = app_config
        self._shutdown_event: asyncio.Event = shutdown_event or asyncio.Event()
        self._show_progress: bool = show_progress
        self._checkpoint_scope: str = checkpoint_scope

    async def _select_buckets(self) -> Tuple[List[str], List[str]]:
        """
        Enumerates the source buckets, restricted to `AppConfig.buckets` if set.

        Returns:
            Tuple[List[str], List[str]]: Bucket names to transfer, in
                enumeration order, and requested names the source account
                does not list.
        """
        available: List[str] = await self._source.list_buckets()
        if not self._config.buckets:
            return available, []
        requested: List[str] = list(dict.fromkeys(self._config.buckets))
        selected: List[str] = [name for name in available if name in requested]
        missing: List[str] = [name for name in requested if name not in available]
        return selected, missing

    async def run(self) -> RunSummary:
        """
        Executes one transfer job per source bucket, one at a time.

        A job that aborts is logged and recorded; the run carries on with the
        next bucket.

        Returns:
            RunSummary: Per-bucket reports and job-level errors.
        """
        logger.info("Starting bucket-ferry pipeline.")
        summary: RunSummary = RunSummary()

        buckets: List[str]
        missing: List[str]
        buckets, missing = await self._select_buckets()
        for bucket in missing:
            # Never create a destination bucket for a source that does not exist.
            logger.error(f"Requested bucket '{bucket}' is not listed by the source.")
            summary.errors[bucket] = f"Source bucket '{bucket}' does not exist."
        if not buckets:
            logger.info("No source buckets to transfer. Pipeline finished.")
            return summary
        logger.info(f"Found {len(buckets)} bucket(s) to transfer.")

        controller: ConcurrencyController = ConcurrencyController(self._config)
        progress: Progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.completed} objects"),
            TextColumn("([bold cyan]copied: {task.fields[copied]})"),
            TimeElapsedColumn(),
            transient=True,
            disable=not self._show_progress,
        )

        with ExitStack() as stack:
            checkpoints: Optional[CheckpointDB] = None
            if self._config.checkpoints_enabled:
                checkpoints = stack.enter_context(
                    CheckpointDB(
                        self._config.data_dir / "checkpoints.lmdb",
                        self._config.db_map_size_mb,
                    )
                )
            stack.enter_context(progress)

            for bucket in buckets:
                if self._shutdown_event.is_set():
                    summary.interrupted = True
                    logger.warning("Shutdown requested. Not starting further buckets.")
                    break

                task_id: TaskID = progress.add_task(bucket, total=None, copied=0)

                copied: Dict[str, int] = {"count": 0}

                def on_outcome(
                    outcome: ObjectOutcome,
                    task_id: TaskID = task_id,
                    copied: Dict[str, int] = copied,
                ) -> None:
                    if outcome.status is ObjectStatus.COPIED:
                        copied["count"] += 1
                    progress.update(task_id, advance=1, copied=copied["count"])

                engine: BatchTransferEngine = BatchTransferEngine(
                    self._source,
                    self._dest,
                    self._config,
                    shutdown_event=self._shutdown_event,
                    checkpoints=checkpoints,
                    controller=controller,
                    on_outcome=on_outcome,
                    checkpoint_scope=self._checkpoint_scope,
                )
                await self._run_job(engine, bucket, summary)
                progress.update(task_id, visible=False)

        if summary.succeeded:
            logger.info("Bucket-ferry pipeline completed successfully.")
        return summary

    async def _run_job(
        self, engine: BatchTransferEngine, bucket: str, summary: RunSummary
    ) -> None:
        """Runs the engine for one bucket and records its outcome in the summary."""
        logger.info(f"Transferring bucket '{bucket}'.")
        try:
            report: TransferReport = await engine.transfer(
                bucket, bucket, self._config.batch_size
            )
        except BucketFerryError as e:
            logger.error(f"Transfer of bucket '{bucket}' aborted: {e}")
            summary.errors[bucket] = str(e)
            return

        summary.reports.append(report)
        if report.interrupted:
            summary.interrupted = True
        if report.failed_keys:
            logger.error(
                f"Bucket '{bucket}' finished with {len(report.failed_keys)} failed "
                f"object(s); {report.copied} copied, {report.skipped} skipped."
            )
        elif report.interrupted:
            logger.warning(
                f"Bucket '{bucket}' interrupted after {report.pages} page(s); "
                f"{report.copied} copied, {report.skipped} skipped."
            )
        else:
            logger.info(
                f"All objects from bucket '{bucket}' checked and copied: "
                f"{report.copied} copied, {report.skipped} already present."
            )
