from __future__ import annotations

from typing import Any

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ingest_catalog.app.config import Settings
from ingest_catalog.app.errors import TransientStoreError


TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "Throttling",
        "RequestLimitExceeded",
        "InternalServerError",
        "InternalFailure",
        "ServiceUnavailable",
    }
)


def aws_client(settings: Settings, service: str) -> Any:
    return boto3.client(
        service,
        endpoint_url=settings.aws_endpoint_url or None,
        region_name=settings.aws_region,
    )


def aws_resource(settings: Settings, service: str) -> Any:
    return boto3.resource(
        service,
        endpoint_url=settings.aws_endpoint_url or None,
        region_name=settings.aws_region,
    )


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def raise_if_transient(exc: Exception, store: str) -> None:
    """Re-raise connection and throttling failures as TransientStoreError."""
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        raise TransientStoreError(f"{store} is unreachable: {exc}", {"store": store}) from exc
    if isinstance(exc, ClientError) and error_code(exc) in TRANSIENT_ERROR_CODES:
        raise TransientStoreError(f"{store} is throttling or unavailable: {exc}", {"store": store}) from exc
