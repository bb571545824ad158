# tests/e2e/conftest.py
"""
Pytest fixtures for the bucket-ferry end-to-end tests.

This module sets up the testing environment, including:
- Spinning up Docker containers for source and destination S3 services (MinIO).
- Providing fixtures for S3 services endpoints and credentials.
- Creating and cleaning up an isolated bucket pair for each test function.
"""

import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Generator

import boto3
import pytest
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError
from requests.exceptions import ConnectionError
from types_boto3_s3.service_resource import Bucket, S3ServiceResource

from bucket_ferry.config import AppConfig, Config

# --- Constants ---
S3_ACCESS_KEY: str = "minio-key"
S3_SECRET_KEY: str = "minio-secret"
S3_REGION: str = "us-east-1"


# --- Docker Fixtures ---
@pytest.fixture(scope="session")
def docker_compose_file(pytestconfig: pytest.Config) -> str:
    """
    Locate the docker-compose.yml file for the test suite.

    Args:
        pytestconfig (pytest.Config): The pytest configuration object.

    Returns:
        str: The absolute path to the docker-compose.yml file.
    """
    return str(Path(pytestconfig.rootpath) / "tests" / "docker-compose.yml")


@pytest.fixture(scope="session")
def docker_compose_project_name() -> str:
    return "bucket-ferry-tests"


def _is_s3_responsive(url: str) -> bool:
    """
    Check if the MinIO health endpoint is responsive.

    Args:
        url (str): The base URL of the MinIO API.

    Returns:
        bool: True if the service is responsive, False otherwise.
    """
    try:
        response: requests.Response = requests.get(f"{url}/minio/health/live")
        return response.status_code == 200
    except ConnectionError:
        return False


def _service(docker_ip: str, docker_services: Any, name: str) -> Dict[str, Any]:
    port: int = docker_services.port_for(name, 9000)
    api_url: str = f"http://{docker_ip}:{port}"
    docker_services.wait_until_responsive(
        timeout=30.0, pause=0.1, check=lambda: _is_s3_responsive(api_url)
    )
    return {
        "endpoint_url": api_url,
        "aws_access_key_id": S3_ACCESS_KEY,
        "aws_secret_access_key": S3_SECRET_KEY,
        "region_name": S3_REGION,
    }


@pytest.fixture(scope="session")
def source_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """
    Ensure the source S3 service is running and return its connection details.

    Args:
        docker_ip (str): The IP address of the Docker host, provided by pytest-docker.
        docker_services (Any): The pytest-docker services fixture.

    Returns:
        Dict[str, Any]: Connection details for the source S3 service.
    """
    return _service(docker_ip, docker_services, "minio-source")


@pytest.fixture(scope="session")
def dest_s3_service(docker_ip: str, docker_services: Any) -> Dict[str, Any]:
    """Ensure the destination S3 service is running and return its connection details."""
    return _service(docker_ip, docker_services, "minio-destination")


def _resource(service: Dict[str, Any]) -> S3ServiceResource:
    boto_config: BotoConfig = BotoConfig(
        retries={"max_attempts": 0, "mode": "standard"}
    )
    return boto3.resource("s3", **service, config=boto_config)


# --- Application Fixtures ---
@pytest.fixture(scope="function")
def bucket_name(
    source_s3_service: Dict[str, Any],
    dest_s3_service: Dict[str, Any],
) -> Generator[str, None, None]:
    """
    Create a unique source bucket and remove it, and its mirror, afterwards.

    The destination bucket is deliberately not created: the pipeline must
    create it.

    Args:
        source_s3_service (Dict[str, Any]): Connection details for the source S3.
        dest_s3_service (Dict[str, Any]): Connection details for the destination S3.

    Yields:
        str: The bucket name shared by source and destination.
    """
    name: str = f"ferry-{uuid.uuid4()}"
    _resource(source_s3_service).create_bucket(Bucket=name)

    yield name

    for service in (source_s3_service, dest_s3_service):
        try:
            bucket: Bucket = _resource(service).Bucket(name)
            bucket.objects.all().delete()
            bucket.delete()
        except ClientError as e:
            if e.response["Error"]["Code"] != "NoSuchBucket":
                raise


@pytest.fixture(scope="function")
def seed_objects(
    source_s3_service: Dict[str, Any],
) -> Callable[[str, int], Dict[str, bytes]]:
    """
    Provide a factory that uploads `count` small objects into a source bucket.

    Returns:
        Callable[[str, int], Dict[str, bytes]]: Factory returning key -> content.
    """

    def _seed(bucket: str, count: int) -> Dict[str, bytes]:
        resource: S3ServiceResource = _resource(source_s3_service)
        objects: Dict[str, bytes] = {
            f"data/obj_{i:04d}.txt": f"content of object {i}".encode()
            for i in range(count)
        }
        for key, body in objects.items():
            resource.Object(bucket, key).put(Body=body)
        return objects

    return _seed


@pytest.fixture(scope="function")
def test_config(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    bucket_name: str,
    source_s3_service: Dict[str, Any],
    dest_s3_service: Dict[str, Any],
) -> Config:
    """
    Provide a Config pointing at both MinIO services, restricted to the test bucket.

    Args:
        monkeypatch (pytest.MonkeyPatch): Used to set the FERRY_* variables.
        tmp_path (Path): Isolated data directory for checkpoints.
        bucket_name (str): The test bucket.
        source_s3_service (Dict[str, Any]): Source connection details.
        dest_s3_service (Dict[str, Any]): Destination connection details.

    Returns:
        Config: A Config instance for use in tests.
    """
    for prefix, service in (
        ("FERRY_SOURCE", source_s3_service),
        ("FERRY_DESTINATION", dest_s3_service),
    ):
        monkeypatch.setenv(f"{prefix}_ENDPOINT_URL", service["endpoint_url"])
        monkeypatch.setenv(f"{prefix}_ACCESS_KEY_ID", S3_ACCESS_KEY)
        monkeypatch.setenv(f"{prefix}_SECRET_ACCESS_KEY", S3_SECRET_KEY)
        monkeypatch.setenv(f"{prefix}_REGION", S3_REGION)
    monkeypatch.setenv("FERRY_DESTINATION_PROVIDER", "s3")

    app_config: AppConfig = AppConfig(
        batch_size=10,
        min_concurrency=2,
        max_concurrency=10,
        data_dir=tmp_path,
        buckets=(bucket_name,),
    )
    return Config(app=app_config)
