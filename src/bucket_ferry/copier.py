# src/bucket_ferry/copier.py
"""
Streaming copy of a single object between two stores.

Bytes are piped chunk by chunk from the source read stream into the
destination write stream, so memory use does not depend on object size.
The destination object is committed only after the whole source stream has
been consumed and its length checked.
"""

import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from bucket_ferry.exceptions import PartialWriteError
from bucket_ferry.stores import DestinationStore, ObjectWriter, SourceStore

logger: logging.Logger = logging.getLogger(__name__)


async def copy_object(
    source: SourceStore,
    dest: DestinationStore,
    src_bucket: str,
    dst_bucket: str,
    key: str,
    expected_size: Optional[int] = None,
) -> int:
    """
    Copies one object byte for byte under the same key.

    Args:
        source (SourceStore): The store to read from.
        dest (DestinationStore): The store to write to.
        src_bucket (str): The source bucket.
        dst_bucket (str): The destination bucket.
        key (str): The object key, used on both sides.
        expected_size (int, optional): Size reported by the listing. A
            mismatch fails the copy before anything is committed.

    Returns:
        int: The number of bytes copied.

    Raises:
        TransientIOError: If reading the source fails.
        PartialWriteError: If writing or committing the destination fails.
    """
    writer: ObjectWriter = await dest.open_write_stream(dst_bucket, key)
    copied: int = 0
    try:
        stream: AsyncIterator[bytes] = source.open_read_stream(src_bucket, key)
        async with aclosing(stream):
            async for chunk in stream:
                await writer.write(chunk)
                copied += len(chunk)

        if expected_size is not None and copied != expected_size:
            raise PartialWriteError(
                f"Size mismatch for '{key}': listed {expected_size} bytes, "
                f"read {copied}",
                bucket=dst_bucket,
                key=key,
            )
        await writer.finish()
    except BaseException:
        await writer.abort()
        raise

    logger.debug(f"Streamed {copied} bytes for '{key}' to '{dst_bucket}'.")
    return copied
