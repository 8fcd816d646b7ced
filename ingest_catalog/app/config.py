from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    api_title: str = "Ingest Catalog API"
    api_version: str = "0.1.0"
    database_url: str = "sqlite:///./ingest_catalog.db"
    auth_enabled: bool = False
    auth_token: str = ""
    auth_read_token: str = ""
    log_level: str = "INFO"
    log_json: bool = False
    statement_timeout_ms: int = 30000
    db_retries: int = 3
    db_retry_min_timeout: float = 0.5
    db_retry_max_timeout: float = 5.0
    db_retry_factor: float = 2.0
    store_mode: str = "local"
    aws_region: str = "us-east-1"
    aws_endpoint_url: str = ""
    granules_table: str = "GranulesTable"
    executions_table: str = "ExecutionsTable"
    search_url: str = "http://localhost:9200"
    search_index: str = "cumulus"
    search_timeout_seconds: float = 10.0
    execution_topic_arn: str = ""
    granule_topic_arn: str = ""
    bulk_concurrency: int = 10
    granule_ordering: str = "execution"
    cmr_ingest_url: str = ""
    cmr_provider: str = ""
    cmr_token: str = ""
    stack_name: str = "cumulus"
    message_consumer_arn: str = ""
    kinesis_inbound_logger_arn: str = ""
    invoke_target_arn: str = ""
    default_queue_url: str = ""
    worker_poll_interval_ms: int = 1000

    @staticmethod
    def from_env() -> "Settings":
        def b(name: str, default: bool = False) -> bool:
            value = os.getenv(name)
            if value is None:
                return default
            return value.strip().lower() in {"1", "true", "yes", "on"}

        def i(name: str, default: int) -> int:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError:
                return default

        def f(name: str, default: float) -> float:
            value = os.getenv(name)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError:
                return default

        return Settings(
            api_title=os.getenv("API_TITLE", "Ingest Catalog API"),
            api_version=os.getenv("API_VERSION", "0.1.0"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./ingest_catalog.db"),
            auth_enabled=b("AUTH_ENABLED", False),
            auth_token=os.getenv("AUTH_TOKEN", ""),
            auth_read_token=os.getenv("AUTH_READ_TOKEN", ""),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=b("LOG_JSON", False),
            statement_timeout_ms=i("STATEMENT_TIMEOUT_MS", 30000),
            db_retries=i("DB_RETRIES", 3),
            db_retry_min_timeout=f("DB_RETRY_MIN_TIMEOUT", 0.5),
            db_retry_max_timeout=f("DB_RETRY_MAX_TIMEOUT", 5.0),
            db_retry_factor=f("DB_RETRY_FACTOR", 2.0),
            store_mode=os.getenv("STORE_MODE", "local"),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            aws_endpoint_url=os.getenv("AWS_ENDPOINT_URL", ""),
            granules_table=os.getenv("GRANULES_TABLE", "GranulesTable"),
            executions_table=os.getenv("EXECUTIONS_TABLE", "ExecutionsTable"),
            search_url=os.getenv("SEARCH_URL", "http://localhost:9200"),
            search_index=os.getenv("SEARCH_INDEX", "cumulus"),
            search_timeout_seconds=f("SEARCH_TIMEOUT_SECONDS", 10.0),
            execution_topic_arn=os.getenv("EXECUTION_TOPIC_ARN", ""),
            granule_topic_arn=os.getenv("GRANULE_TOPIC_ARN", ""),
            bulk_concurrency=i("BULK_CONCURRENCY", 10),
            granule_ordering=os.getenv("GRANULE_ORDERING", "execution"),
            cmr_ingest_url=os.getenv("CMR_INGEST_URL", ""),
            cmr_provider=os.getenv("CMR_PROVIDER", ""),
            cmr_token=os.getenv("CMR_TOKEN", ""),
            stack_name=os.getenv("STACK_NAME", "cumulus"),
            message_consumer_arn=os.getenv("MESSAGE_CONSUMER_ARN", ""),
            kinesis_inbound_logger_arn=os.getenv("KINESIS_INBOUND_LOGGER_ARN", ""),
            invoke_target_arn=os.getenv("INVOKE_TARGET_ARN", ""),
            default_queue_url=os.getenv("DEFAULT_QUEUE_URL", ""),
            worker_poll_interval_ms=i("WORKER_POLL_INTERVAL_MS", 1000),
        )
