# src/bucket_ferry/checker.py
"""Decides whether an object still has to be copied to the destination."""

import logging
from enum import Enum

from bucket_ferry.exceptions import TransientIOError
from bucket_ferry.stores import DestinationStore

logger: logging.Logger = logging.getLogger(__name__)


class CheckErrorPolicy(Enum):
    """What to do when every existence-check attempt for an object fails."""

    SKIP = "skip"
    COPY = "copy"


class ExistenceCheckFailed(TransientIOError):
    """Raised when an object is skipped because its existence could not be checked."""

    pass


async def should_copy(
    dest: DestinationStore,
    bucket: str,
    key: str,
    attempts: int = 1,
    on_error: CheckErrorPolicy = CheckErrorPolicy.COPY,
) -> bool:
    """
    Returns True if the object is absent from the destination bucket.

    A failing check is retried immediately, up to `attempts` calls in total.
    If all of them fail, the `COPY` policy treats the object as absent; the
    `SKIP` policy raises `ExistenceCheckFailed` so the caller can report the
    object as failed without copying it.

    Args:
        dest (DestinationStore): The destination store.
        bucket (str): The destination bucket.
        key (str): The object key.
        attempts (int): Total number of existence checks to try.
        on_error (CheckErrorPolicy): Fallback when no check succeeds.

    Returns:
        bool: Whether the object should be copied.
    """
    last_error: TransientIOError
    for attempt in range(1, attempts + 1):
        try:
            return not await dest.object_exists(bucket, key)
        except TransientIOError as e:
            last_error = e
            logger.warning(
                f"Existence check for '{key}' failed "
                f"(attempt {attempt}/{attempts}): {e}"
            )

    if on_error is CheckErrorPolicy.COPY:
        logger.warning(f"Treating '{key}' as absent after failed existence checks.")
        return True
    raise ExistenceCheckFailed(
        f"Could not determine whether '{key}' exists: {last_error}",
        bucket=bucket,
        key=key,
    ) from last_error
