# src/bucket_ferry/exceptions.py
"""
Custom exceptions for the bucket-ferry application.

Store-level errors carry the bucket (and, where relevant, the key) they
occurred on, so callers can tell a job-fatal failure from an object that
only needs to be skipped.
"""

from typing import Optional


class BucketFerryError(Exception):
    """Base exception for all application-specific errors."""

    pass


class ConfigError(BucketFerryError):
    """Raised for configuration-related issues."""

    pass


class CheckpointError(BucketFerryError):
    """Raised for LMDB checkpoint store errors, like the database being full."""

    pass


class StoreError(BucketFerryError):
    """
    Base class for errors raised by an object store adapter.

    Attributes:
        bucket (str): The bucket the failing operation targeted.
        key (str, optional): The object key, for object-level operations.
    """

    def __init__(self, message: str, bucket: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.bucket: str = bucket
        self.key: Optional[str] = key


class NotFoundError(StoreError):
    """Raised when a source bucket does not exist at listing time."""

    pass


class TransientIOError(StoreError):
    """Raised on a network, timeout or provider error during any store call."""

    pass


class CreationConflictError(StoreError):
    """Raised when a bucket being created already exists."""

    pass


class PartialWriteError(StoreError):
    """Raised when a write stream fails; the object was not committed."""

    pass
