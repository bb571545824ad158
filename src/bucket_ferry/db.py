# src/bucket_ferry/db.py
"""
Persistent pagination checkpoints in an LMDB database.

For every transfer job the database remembers the continuation cursor of the
next page to list, so an interrupted run can pick up where the previous one
stopped instead of listing (and existence-checking) the whole bucket again.
"""

import hashlib
import logging
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

import lmdb

from bucket_ferry.exceptions import CheckpointError

logger: logging.Logger = logging.getLogger(__name__)


def job_id(src_bucket: str, dst_bucket: str, scope: str = "") -> str:
    """
    Builds the checkpoint key of a source/destination bucket pair.

    Args:
        src_bucket (str): The source bucket.
        dst_bucket (str): The destination bucket.
        scope (str): Identifies the source account and destination provider,
            see `Config.checkpoint_scope`. It is hashed to keep keys short.

    Returns:
        str: The LMDB key for the job.
    """
    scope_digest: str = hashlib.sha256(scope.encode("utf-8")).hexdigest()[:16]
    return f"{scope_digest}\x00{src_bucket}\x00{dst_bucket}"


class CheckpointDB:
    """
    A wrapper around an LMDB environment mapping job ids to cursors.

    A stored cursor always points past pages whose objects were all copied
    or skipped; the engine stops advancing it once an object has failed.
    """

    def __init__(self, db_path: Path, map_size_mb: int = 64) -> None:
        """
        Initializes and opens the LMDB environment.

        Args:
            db_path (Path): The directory path for the LMDB database.
            map_size_mb (int): The maximum size of the database in megabytes.
        """
        self._env: Optional[lmdb.Environment] = None
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._env = lmdb.open(str(db_path), map_size=map_size_mb * 1024**2)
            logger.info(f"Checkpoint database opened at '{db_path}'")
        except lmdb.Error as e:
            logger.error(f"Failed to open LMDB database at '{db_path}': {e}")
            raise CheckpointError(f"LMDB initialization failed: {e}") from e

    def __enter__(self) -> "CheckpointDB":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.close()

    def _require_env(self) -> lmdb.Environment:
        if not self._env:
            raise CheckpointError("LMDB environment is not open.")
        return self._env

    def get_cursor(self, job: str) -> Optional[str]:
        """
        Retrieves the saved cursor of a job.

        Args:
            job (str): The job id, see `job_id`.

        Returns:
            Optional[str]: The cursor if one is saved, else None.
        """
        with self._require_env().begin() as txn:
            value: Optional[bytes] = txn.get(job.encode("utf-8"))
            return value.decode("utf-8") if value else None

    def set_cursor(self, job: str, cursor: str) -> None:
        """
        Saves the cursor of the next page to list for a job.

        Args:
            job (str): The job id.
            cursor (str): The continuation cursor.
        """
        env: lmdb.Environment = self._require_env()
        try:
            with env.begin(write=True) as txn:
                txn.put(job.encode("utf-8"), cursor.encode("utf-8"))
        except lmdb.MapFullError as e:
            raise CheckpointError("LMDB database is full.") from e

    def clear(self, job: str) -> None:
        """Removes the checkpoint of a finished job."""
        with self._require_env().begin(write=True) as txn:
            txn.delete(job.encode("utf-8"))

    def close(self) -> None:
        """Closes the LMDB environment."""
        if self._env:
            db_path: str = self._env.path()
            self._env.sync(True)
            self._env.close()
            self._env = None
            logger.info(f"Checkpoint database closed at '{db_path}'.")
