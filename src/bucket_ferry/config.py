# src/bucket_ferry/config.py
"""
Configuration for the bucket-ferry pipeline.

This module centralizes all configuration, loading credentials and endpoint
identifiers from environment variables and providing typed dataclasses for
use throughout the application.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

from bucket_ferry.exceptions import ConfigError

_MIN_PART_SIZE_BYTES: int = 5 * 1024**2


def _get_env_var(name: str, default: Optional[str] = None) -> str:
    """
    Retrieves a required environment variable.

    Args:
        name (str): The name of the environment variable.
        default (str, optional): The default value if the variable is not set.

    Returns:
        str: The value of the environment variable.
    """
    value: Optional[str] = os.environ.get(name, default)
    if not value:
        raise ConfigError(f"Environment variable '{name}' must be set.")
    return value


def _get_optional_env_var(name: str) -> Optional[str]:
    """Returns an environment variable, or None if it is unset or empty."""
    return os.environ.get(name) or None


@dataclass(frozen=True)
class S3Config:
    """
    Represents the configuration for an S3 or S3-compatible account.

    Attributes:
        access_key_id (str): The access key ID.
        secret_access_key (str): The secret access key.
        region (str): The AWS region, also used as the location of created buckets.
        endpoint_url (str, optional): Custom endpoint for S3-compatible services.
    """

    access_key_id: str
    secret_access_key: str
    region: str = "us-east-1"
    endpoint_url: Optional[str] = None

    @property
    def identity(self) -> str:
        """A stable name for the account and endpoint, used to scope checkpoints."""
        return f"s3:{self.endpoint_url or 'aws'}:{self.access_key_id}"

    def as_boto_dict(self) -> Dict[str, Optional[str]]:
        """
        Returns the configuration as a dictionary suitable for aiobotocore clients.

        Returns:
            Dict[str, Optional[str]]: A dictionary of client parameters.
        """
        return {
            "endpoint_url": self.endpoint_url,
            "aws_access_key_id": self.access_key_id,
            "aws_secret_access_key": self.secret_access_key,
            "region_name": self.region,
        }

    @classmethod
    def from_env(cls, prefix: str) -> "S3Config":
        """
        Builds an S3 configuration from `<prefix>_*` environment variables.

        Args:
            prefix (str): Variable prefix, e.g. `FERRY_SOURCE`.

        Returns:
            S3Config: The loaded configuration.
        """
        return cls(
            access_key_id=_get_env_var(f"{prefix}_ACCESS_KEY_ID"),
            secret_access_key=_get_env_var(f"{prefix}_SECRET_ACCESS_KEY"),
            region=_get_env_var(f"{prefix}_REGION", "us-east-1"),
            endpoint_url=_get_optional_env_var(f"{prefix}_ENDPOINT_URL"),
        )


@dataclass(frozen=True)
class GCSConfig:
    """
    Represents the configuration for a Google Cloud Storage project.

    Attributes:
        project_id (str): The GCP project that owns the destination buckets.
        keyfile_path (Path, optional): Service-account JSON key file. When
            unset, application default credentials are used.
        location (str, optional): Location for buckets created by the pipeline.
    """

    project_id: str
    keyfile_path: Optional[Path] = None
    location: Optional[str] = None

    @property
    def identity(self) -> str:
        return f"gcs:{self.project_id}"

    @classmethod
    def from_env(cls, prefix: str) -> "GCSConfig":
        """
        Builds a GCS configuration from `<prefix>_*` environment variables.

        Args:
            prefix (str): Variable prefix, e.g. `FERRY_DESTINATION`.

        Returns:
            GCSConfig: The loaded configuration.
        """
        keyfile: Optional[str] = _get_optional_env_var(f"{prefix}_KEYFILE_PATH")
        return cls(
            project_id=_get_env_var(f"{prefix}_PROJECT_ID"),
            keyfile_path=Path(keyfile) if keyfile else None,
            location=_get_optional_env_var(f"{prefix}_LOCATION"),
        )


DestinationConfig = Union[GCSConfig, S3Config]


def _load_source() -> S3Config:
    return S3Config.from_env("FERRY_SOURCE")


def _load_destination() -> DestinationConfig:
    """
    Loads the destination configuration for the selected provider.

    Returns:
        DestinationConfig: A `GCSConfig` or an `S3Config`.
    """
    provider: str = _get_env_var("FERRY_DESTINATION_PROVIDER", "gcs").lower()
    if provider == "gcs":
        return GCSConfig.from_env("FERRY_DESTINATION")
    if provider == "s3":
        return S3Config.from_env("FERRY_DESTINATION")
    raise ConfigError(
        f"Unsupported destination provider '{provider}'. Expected 'gcs' or 's3'."
    )


@dataclass(frozen=True)
class AppConfig:
    """
    Defines the application's operational parameters.

    Attributes:
        batch_size (int): Maximum number of objects listed per page.
        min_concurrency (int): The minimum number of concurrent object transfers.
        max_concurrency (int): The maximum number of concurrent object transfers.
        controller_enabled (bool): Whether to adapt concurrency between pages.
        controller_error_rate_threshold (float): Error rate to trigger decrease.
        controller_latency_spike_factor (float): Latency multiplier to trigger decrease.
        controller_decrease_factor (float): Multiplier for concurrency decrease.
        controller_increase_amount (int): Additive amount for concurrency increase.
        controller_warmup_pages (int): Pages observed before latency spikes count.
        check_max_attempts (int): Attempts for a destination existence check.
        check_error_policy (str): `copy` (default) or `skip` when every check
            attempt fails.
        chunk_size_bytes (int): Read chunk size for source streams.
        part_size_bytes (int): Multipart part size for S3 destinations.
        client_max_attempts (int): Retry attempts configured on the S3 clients.
        data_dir (Path): Directory to store the LMDB checkpoint database.
        db_map_size_mb (int): The maximum size of the database in megabytes.
        checkpoints_enabled (bool): Whether to persist pagination checkpoints.
        buckets (Tuple[str, ...]): Buckets to transfer; empty means all.
    """

    batch_size: int = 1000
    min_concurrency: int = 16
    max_concurrency: int = 256
    controller_enabled: bool = True
    controller_error_rate_threshold: float = 0.1
    controller_latency_spike_factor: float = 3.0
    controller_decrease_factor: float = 0.75
    controller_increase_amount: int = 16
    controller_warmup_pages: int = 2
    check_max_attempts: int = 1
    check_error_policy: str = "copy"
    chunk_size_bytes: int = 1024**2
    part_size_bytes: int = 8 * 1024**2
    client_max_attempts: int = 5
    data_dir: Path = field(default_factory=lambda: Path("data"))
    db_map_size_mb: int = 64
    checkpoints_enabled: bool = True
    buckets: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.batch_size < 1 or self.batch_size > 1000:
            raise ConfigError("batch_size must be between 1 and 1000.")
        if self.min_concurrency < 1:
            raise ConfigError("min_concurrency must be at least 1.")
        if self.max_concurrency < self.min_concurrency:
            raise ConfigError("max_concurrency must not be below min_concurrency.")
        if self.check_max_attempts < 1:
            raise ConfigError("check_max_attempts must be at least 1.")
        if self.check_error_policy not in ("skip", "copy"):
            raise ConfigError("check_error_policy must be 'skip' or 'copy'.")
        if self.chunk_size_bytes < 1:
            raise ConfigError("chunk_size_bytes must be positive.")
        if self.part_size_bytes < _MIN_PART_SIZE_BYTES:
            raise ConfigError(
                f"part_size_bytes must be at least {_MIN_PART_SIZE_BYTES} bytes."
            )


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration container for the entire application.

    Attributes:
        source (S3Config): Configuration for the source S3 account.
        destination (DestinationConfig): Configuration for the destination
            provider, selected by `FERRY_DESTINATION_PROVIDER`.
        app (AppConfig): General application settings.
    """

    source: S3Config = field(default_factory=_load_source)
    destination: DestinationConfig = field(default_factory=_load_destination)
    app: AppConfig = field(default_factory=AppConfig)

    @property
    def checkpoint_scope(self) -> str:
        """
        Identifies the source account and destination of this configuration.

        Checkpoints are keyed by this scope, so a cursor saved against one
        account or provider is never reused against another with the same
        bucket names.

        Returns:
            str: The scope string.
        """
        return f"{self.source.identity}>{self.destination.identity}"
