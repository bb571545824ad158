# src/bucket_ferry/cli.py
"""Command-line interface for the bucket-ferry tool."""

import asyncio
import logging
import sys
from contextlib import AsyncExitStack, asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator, Tuple

import click
from aiobotocore.session import AioSession, get_session
from botocore.config import Config as BotoConfig
from dotenv import load_dotenv
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage
from rich.logging import RichHandler

from bucket_ferry.config import AppConfig, Config, GCSConfig, S3Config
from bucket_ferry.exceptions import BucketFerryError, ConfigError
from bucket_ferry.gcs import GCSDestinationStore
from bucket_ferry.s3 import S3DestinationStore, S3SourceStore
from bucket_ferry.signals import TransferShutdown
from bucket_ferry.stores import DestinationStore, SourceStore

if TYPE_CHECKING:
    from types_aiobotocore_s3.client import S3Client

    from bucket_ferry.pipeline import RunSummary

logger: logging.Logger = logging.getLogger(__name__)


def setup_logging(level: str) -> None:
    """Configure rich-based logging for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # Silence noisy loggers
    for logger_name in ["botocore", "aiobotocore", "s3transfer", "urllib3", "google"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def _gcs_client(gcs_config: GCSConfig) -> storage.Client:
    """
    Builds an authenticated google-cloud-storage client.

    Args:
        gcs_config (GCSConfig): The destination configuration.

    Returns:
        storage.Client: A client bound to the configured project.
    """
    try:
        if gcs_config.keyfile_path is not None:
            return storage.Client.from_service_account_json(
                str(gcs_config.keyfile_path), project=gcs_config.project_id
            )
        return storage.Client(project=gcs_config.project_id)
    except (GoogleAuthError, OSError, ValueError) as e:
        raise ConfigError(f"Could not create GCS client: {e}") from e


@asynccontextmanager
async def open_stores(
    config: Config,
) -> AsyncIterator[Tuple[SourceStore, DestinationStore]]:
    """
    Creates the source and destination stores for a run.

    The aiobotocore clients stay open for as long as the context is active.

    Args:
        config (Config): The application configuration.

    Yields:
        Tuple[SourceStore, DestinationStore]: The two stores.
    """
    session: AioSession = get_session()
    boto_config: BotoConfig = BotoConfig(
        signature_version="s3v4",
        max_pool_connections=config.app.max_concurrency + 50,
        retries={"max_attempts": config.app.client_max_attempts, "mode": "standard"},
    )
    async with AsyncExitStack() as stack:
        source_client: "S3Client" = await stack.enter_async_context(
            session.create_client(
                "s3", **config.source.as_boto_dict(), config=boto_config
            )
        )
        source: SourceStore = S3SourceStore(source_client, config.app.chunk_size_bytes)

        dest: DestinationStore
        if isinstance(config.destination, GCSConfig):
            gcs_dest: GCSDestinationStore = GCSDestinationStore(
                _gcs_client(config.destination),
                location=config.destination.location,
                chunk_size=config.app.part_size_bytes,
                max_workers=config.app.max_concurrency,
            )
            stack.callback(gcs_dest.close)
            dest = gcs_dest
        else:
            dest_config: S3Config = config.destination
            dest_client: "S3Client" = await stack.enter_async_context(
                session.create_client(
                    "s3", **dest_config.as_boto_dict(), config=boto_config
                )
            )
            dest = S3DestinationStore(
                dest_client, dest_config.region, config.app.part_size_bytes
            )

        yield source, dest


async def main_async(config: Config) -> "RunSummary":
    """
    Asynchronously execute the transfer pipeline.

    Args:
        config (Config): The application configuration.

    Returns:
        RunSummary: The outcome of every bucket job.
    """
    # Lazily import to keep CLI startup fast
    from bucket_ferry.pipeline import BucketFerryPipeline

    async with TransferShutdown() as shutdown:
        async with open_stores(config) as (source, dest):
            pipeline: BucketFerryPipeline = BucketFerryPipeline(
                source,
                dest,
                config.app,
                shutdown.requested,
                checkpoint_scope=config.checkpoint_scope,
            )
            return await pipeline.run()


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--batch-size",
    type=click.IntRange(1, 1000),
    default=1000,
    help="Number of objects listed and processed per page.",
    show_default=True,
)
@click.option(
    "--max-concurrency",
    type=click.IntRange(min=1),
    default=256,
    help="Maximum number of concurrent object copies within a page.",
    show_default=True,
)
@click.option(
    "--no-controller",
    is_flag=True,
    default=False,
    help="Disable adaptive concurrency and always use --max-concurrency.",
)
@click.option(
    "--bucket",
    "buckets",
    multiple=True,
    help="Only transfer this bucket. Can be given several times.",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, dir_okay=True, writable=True, resolve_path=True),
    default="data",
    help="Directory to store pagination checkpoints.",
    show_default=True,
)
@click.option(
    "--no-checkpoints",
    is_flag=True,
    default=False,
    help="Always list every bucket from the beginning.",
)
@click.option(
    "--check-attempts",
    type=click.IntRange(min=1),
    default=1,
    help="Attempts for each destination existence check.",
    show_default=True,
)
@click.option(
    "--skip-on-check-error",
    is_flag=True,
    default=False,
    help=(
        "Report an object as failed when its existence check keeps failing, "
        "instead of copying it."
    ),
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Set the logging level.",
    show_default=True,
)
def cli(**kwargs: Any) -> None:
    """
    Mirror S3 buckets into same-named destination buckets.

    Every bucket of the source account is listed page by page, and each
    object that does not yet exist at the destination is streamed across.
    Missing destination buckets are created. Nothing is ever deleted, so the
    command can be re-run safely; already copied objects are skipped.

    Credentials and provider settings must be set via environment variables
    (a .env file is loaded if present).
    """
    load_dotenv()
    setup_logging(kwargs["log_level"])

    try:
        min_concurrency: int = min(16, kwargs["max_concurrency"])
        app_config: AppConfig = AppConfig(
            batch_size=kwargs["batch_size"],
            min_concurrency=min_concurrency,
            max_concurrency=kwargs["max_concurrency"],
            controller_enabled=not kwargs["no_controller"],
            buckets=tuple(kwargs["buckets"]),
            data_dir=Path(kwargs["data_dir"]),
            checkpoints_enabled=not kwargs["no_checkpoints"],
            check_max_attempts=kwargs["check_attempts"],
            check_error_policy="skip" if kwargs["skip_on_check_error"] else "copy",
        )
        config: Config = Config(app=app_config)

        summary: "RunSummary" = asyncio.run(main_async(config))
    except asyncio.CancelledError:
        logger.critical(
            "Run aborted by a second shutdown signal. Re-run to continue from "
            "the last saved checkpoint."
        )
        sys.exit(130)
    except BucketFerryError as e:
        logger.critical(f"A critical application error occurred: {e}")
        sys.exit(1)
    except Exception:
        logger.critical(
            "An unexpected error caused the application to fail:", exc_info=True
        )
        sys.exit(1)

    if summary.succeeded:
        logger.info("✅ Run completed successfully.")
        return
    if summary.interrupted:
        logger.warning("Run interrupted. Re-run to continue where it stopped.")
    for bucket in summary.failed_buckets:
        logger.error(f"Bucket '{bucket}' did not complete.")
    sys.exit(1)


if __name__ == "__main__":
    cli()
