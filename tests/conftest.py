# tests/conftest.py
"""
Pytest configuration and fixtures for the bucket-ferry unit tests.

This module provides in-memory implementations of the source and destination
store capabilities. They keep objects in dictionaries, record every listing
and commit, and allow failures to be injected per key, so the engine can be
exercised without any cloud provider.
"""

import asyncio
from collections import Counter
from typing import AsyncIterator, Dict, List, Optional, Set, Tuple

import pytest

from bucket_ferry.config import AppConfig
from bucket_ferry.exceptions import (
    CreationConflictError,
    NotFoundError,
    PartialWriteError,
    TransientIOError,
)
from bucket_ferry.stores import ObjectListing, Page


class InMemorySourceStore:
    """
    A source store backed by dictionaries.

    Attributes:
        buckets (Dict[str, Dict[str, bytes]]): Bucket -> key -> content.
        list_calls (List[Tuple[str, Optional[str], int]]): One entry per
            listing call: bucket, cursor, number of items returned.
        broken_reads (Dict[str, int]): Key -> byte offset at which reads fail.
        failing_listings (Dict[str, int]): Bucket -> page index (0-based)
            whose listing call raises `TransientIOError`.
    """

    def __init__(self, chunk_size: int = 4) -> None:
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.list_calls: List[Tuple[str, Optional[str], int]] = []
        self.broken_reads: Dict[str, int] = {}
        self.failing_listings: Dict[str, int] = {}
        self._chunk_size: int = chunk_size

    def add_bucket(self, name: str, objects: Optional[Dict[str, bytes]] = None) -> None:
        self.buckets[name] = dict(objects or {})

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """Returns bucket -> key -> size, for before/after comparisons."""
        return {
            bucket: {key: len(data) for key, data in objects.items()}
            for bucket, objects in self.buckets.items()
        }

    async def list_buckets(self) -> List[str]:
        return list(self.buckets)

    async def list_objects_page(
        self, bucket: str, max_keys: int, cursor: Optional[str] = None
    ) -> Page:
        await asyncio.sleep(0)
        page_index: int = sum(1 for call in self.list_calls if call[0] == bucket)
        if self.failing_listings.get(bucket) == page_index:
            self.list_calls.append((bucket, cursor, 0))
            raise TransientIOError(f"Listing of '{bucket}' timed out.", bucket=bucket)
        if bucket not in self.buckets:
            self.list_calls.append((bucket, cursor, 0))
            raise NotFoundError(f"Source bucket '{bucket}' does not exist.", bucket=bucket)
        if cursor is not None and not cursor.isdigit():
            self.list_calls.append((bucket, cursor, 0))
            raise TransientIOError("The continuation token is invalid.", bucket=bucket)

        keys: List[str] = sorted(self.buckets[bucket])
        start: int = int(cursor) if cursor else 0
        selected: List[str] = keys[start : start + max_keys]
        end: int = start + max_keys
        self.list_calls.append((bucket, cursor, len(selected)))
        return Page(
            items=tuple(
                ObjectListing(key=key, size=len(self.buckets[bucket][key]))
                for key in selected
            ),
            next_cursor=str(end) if end < len(keys) else None,
        )

    async def open_read_stream(self, bucket: str, key: str) -> AsyncIterator[bytes]:
        data: bytes = self.buckets[bucket][key]
        fail_at: Optional[int] = self.broken_reads.get(key)
        for offset in range(0, len(data), self._chunk_size):
            await asyncio.sleep(0)
            if fail_at is not None and offset >= fail_at:
                raise TransientIOError(
                    f"Connection reset reading '{key}'.", bucket=bucket, key=key
                )
            yield data[offset : offset + self._chunk_size]


class InMemoryObjectWriter:
    """Collects chunks and commits them to the store on `finish`."""

    def __init__(self, store: "InMemoryDestinationStore", bucket: str, key: str) -> None:
        self._store: "InMemoryDestinationStore" = store
        self._bucket: str = bucket
        self._key: str = key
        self.chunks: List[bytes] = []

    async def write(self, data: bytes) -> None:
        await asyncio.sleep(0)
        if self._key in self._store.failing_writes:
            raise PartialWriteError(
                f"Write stream for '{self._key}' broke.", bucket=self._bucket, key=self._key
            )
        self.chunks.append(data)

    async def finish(self) -> None:
        await asyncio.sleep(0)
        if self._key in self._store.failing_commits:
            raise PartialWriteError(
                f"Commit of '{self._key}' failed.", bucket=self._bucket, key=self._key
            )
        self._store.buckets[self._bucket][self._key] = b"".join(self.chunks)
        self._store.commits[(self._bucket, self._key)] += 1

    async def abort(self) -> None:
        self.chunks.clear()
        self._store.aborted.append(self._key)


class InMemoryDestinationStore:
    """
    A destination store backed by dictionaries.

    Attributes:
        buckets (Dict[str, Dict[str, bytes]]): Bucket -> key -> content.
        create_calls (List[str]): Buckets passed to `create_bucket`.
        commits (Counter): (bucket, key) -> number of committed writes.
        aborted (List[str]): Keys whose writer was aborted.
        failing_writes (Set[str]): Keys whose `write` raises.
        failing_commits (Set[str]): Keys whose `finish` raises.
        failing_checks (Dict[str, int]): Key -> remaining failing existence checks.
        conflict_on_create (bool): Simulate another actor creating the bucket first.
        max_active_checks (int): Highest number of concurrent existence checks seen.
    """

    def __init__(self) -> None:
        self.buckets: Dict[str, Dict[str, bytes]] = {}
        self.create_calls: List[str] = []
        self.commits: Counter = Counter()
        self.aborted: List[str] = []
        self.failing_writes: Set[str] = set()
        self.failing_commits: Set[str] = set()
        self.failing_checks: Dict[str, int] = {}
        self.conflict_on_create: bool = False
        self.max_active_checks: int = 0
        self._active_checks: int = 0

    async def bucket_exists(self, bucket: str) -> bool:
        return bucket in self.buckets

    async def create_bucket(self, bucket: str) -> None:
        self.create_calls.append(bucket)
        self.buckets.setdefault(bucket, {})
        if self.conflict_on_create:
            raise CreationConflictError(f"Bucket '{bucket}' already exists.", bucket=bucket)

    async def object_exists(self, bucket: str, key: str) -> bool:
        self._active_checks += 1
        self.max_active_checks = max(self.max_active_checks, self._active_checks)
        try:
            await asyncio.sleep(0.001)
            if self.failing_checks.get(key, 0) > 0:
                self.failing_checks[key] -= 1
                raise TransientIOError(
                    f"HEAD '{key}' timed out.", bucket=bucket, key=key
                )
            return key in self.buckets.get(bucket, {})
        finally:
            self._active_checks -= 1

    async def open_write_stream(self, bucket: str, key: str) -> InMemoryObjectWriter:
        return InMemoryObjectWriter(self, bucket, key)


@pytest.fixture(scope="function")
def source_store() -> InMemorySourceStore:
    """
    Provide an empty in-memory source store.

    Returns:
        InMemorySourceStore: A fresh source store for one test.
    """
    return InMemorySourceStore()


@pytest.fixture(scope="function")
def dest_store() -> InMemoryDestinationStore:
    """
    Provide an empty in-memory destination store.

    Returns:
        InMemoryDestinationStore: A fresh destination store for one test.
    """
    return InMemoryDestinationStore()


@pytest.fixture(scope="function")
def app_config() -> AppConfig:
    """
    Provide an AppConfig with a fixed concurrency and no checkpoints.

    Returns:
        AppConfig: A configuration for use in tests.
    """
    return AppConfig(
        min_concurrency=1,
        max_concurrency=8,
        controller_enabled=False,
        checkpoints_enabled=False,
    )


def make_objects(count: int, prefix: str = "obj") -> Dict[str, bytes]:
    """Builds `count` small objects with distinct contents."""
    return {f"{prefix}_{i:05d}.txt": f"content of {i}".encode() for i in range(count)}


@pytest.fixture(scope="function")
def objects_factory():
    """
    Provide the `make_objects` helper to tests.

    Returns:
        Callable[[int, str], Dict[str, bytes]]: The object factory.
    """
    return make_objects
