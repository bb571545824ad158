# src/bucket_ferry/stores.py
"""
Object store capabilities used by the transfer engine.

The engine never talks to a provider SDK directly. It sees a source store
that can enumerate buckets, list a bucket page by page and stream an
object's bytes, and a destination store that can check and create buckets,
check objects and accept an object as a stream of chunks.
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Protocol, Tuple


@dataclass(frozen=True)
class ObjectListing:
    """
    One entry of a source listing.

    Attributes:
        key (str): The object key.
        size (int): The object size in bytes, as reported by the listing.
    """

    key: str
    size: int


@dataclass(frozen=True)
class Page:
    """
    The result of one listing call.

    Attributes:
        items (Tuple[ObjectListing, ...]): Objects in listing order.
        next_cursor (str, optional): Continuation token for the next page,
            None when the listing is exhausted.
    """

    items: Tuple[ObjectListing, ...]
    next_cursor: Optional[str] = None


class ObjectWriter(Protocol):
    """
    A write stream for a single destination object.

    Nothing is visible at the destination until `finish` returns. Errors from
    `write` and `finish` are raised as `PartialWriteError`.
    """

    async def write(self, data: bytes) -> None: ...

    async def finish(self) -> None: ...

    async def abort(self) -> None: ...


class SourceStore(Protocol):
    """Read-side capabilities of an object store."""

    async def list_buckets(self) -> List[str]: ...

    async def list_objects_page(
        self, bucket: str, max_keys: int, cursor: Optional[str] = None
    ) -> Page: ...

    def open_read_stream(self, bucket: str, key: str) -> AsyncIterator[bytes]: ...


class DestinationStore(Protocol):
    """Write-side capabilities of an object store."""

    async def bucket_exists(self, bucket: str) -> bool: ...

    async def create_bucket(self, bucket: str) -> None: ...

    async def object_exists(self, bucket: str, key: str) -> bool: ...

    async def open_write_stream(self, bucket: str, key: str) -> ObjectWriter: ...
