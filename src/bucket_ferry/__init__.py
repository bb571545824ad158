# src/bucket_ferry/__init__.py
"""
bucket-ferry: a resumable, idempotent bucket mirroring tool.

This package copies every bucket of a source S3 account into same-named
buckets at a destination (Google Cloud Storage or S3), page by page, skipping
objects that already exist so interrupted runs can simply be repeated.

The primary entry points for programmatic use are `BatchTransferEngine`
(one bucket pair) and `BucketFerryPipeline` (a whole account).
"""

from typing import List

from bucket_ferry.engine import BatchTransferEngine, TransferReport
from bucket_ferry.pipeline import BucketFerryPipeline, RunSummary

__all__: List[str] = [
    "BatchTransferEngine",
    "BucketFerryPipeline",
    "RunSummary",
    "TransferReport",
]
