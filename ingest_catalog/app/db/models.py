from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ingest_catalog.app.db.session import Base


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


GRANULE_STATUSES = ("running", "completed", "failed", "queued")
EXECUTION_STATUSES = ("running", "completed", "failed", "unknown")
TERMINAL_STATUSES = frozenset({"completed", "failed"})


class Collection(Base):
    __tablename__ = "collections"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255))
    version: Mapped[str] = mapped_column(String(255))
    meta: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (UniqueConstraint("name", "version", name="uq_collections_name_version"),)


class Provider(Base):
    __tablename__ = "providers"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    protocol: Mapped[str] = mapped_column(String(32), default="s3")
    host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class AsyncOperation(Base):
    __tablename__ = "async_operations"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(64), unique=True)
    description: Mapped[str] = mapped_column(Text, default="")
    operation_type: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[str] = mapped_column(String(32), default="PENDING", index=True)
    payload: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    output: Mapped[object | None] = mapped_column(JSON, nullable=True)
    task_arn: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class Execution(Base):
    __tablename__ = "executions"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    arn: Mapped[str] = mapped_column(String(512), unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    workflow_name: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(32), index=True)
    parent_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("executions.cumulus_id", ondelete="SET NULL"), nullable=True
    )
    async_operation_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("async_operations.cumulus_id"), nullable=True
    )
    collection_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("collections.cumulus_id"), nullable=True
    )
    original_payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    final_payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)


class Granule(Base):
    __tablename__ = "granules"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    granule_id: Mapped[str] = mapped_column(String(255), index=True)
    collection_cumulus_id: Mapped[int] = mapped_column(Integer, ForeignKey("collections.cumulus_id"))
    provider_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("providers.cumulus_id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), index=True)
    published: Mapped[bool] = mapped_column(Boolean, default=False)
    cmr_link: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    final_payload: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    error: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (
        UniqueConstraint("granule_id", "collection_cumulus_id", name="uq_granules_granule_collection"),
        Index("ix_granules_status_updated", "status", "updated_at"),
    )


class File(Base):
    __tablename__ = "files"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    granule_cumulus_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("granules.cumulus_id", ondelete="CASCADE"), index=True
    )
    bucket: Mapped[str] = mapped_column(String(255))
    key: Mapped[str] = mapped_column(Text)
    file_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    checksum_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    checksum_value: Mapped[str | None] = mapped_column(String(255), nullable=True)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (UniqueConstraint("bucket", "key", name="uq_files_bucket_key"),)


class GranuleExecution(Base):
    __tablename__ = "granules_executions"

    granule_cumulus_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("granules.cumulus_id", ondelete="CASCADE"), primary_key=True
    )
    execution_cumulus_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("executions.cumulus_id", ondelete="CASCADE"), primary_key=True
    )

    __table_args__ = (Index("ix_granules_executions_execution", "execution_cumulus_id"),)


class Rule(Base):
    __tablename__ = "rules"

    cumulus_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    workflow: Mapped[str] = mapped_column(String(255))
    type: Mapped[str] = mapped_column(String(32), index=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)
    arn: Mapped[str | None] = mapped_column(String(512), nullable=True)
    log_event_arn: Mapped[str | None] = mapped_column(String(512), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    collection_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("collections.cumulus_id"), nullable=True
    )
    provider_cumulus_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("providers.cumulus_id"), nullable=True
    )
    meta: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    payload: Mapped[dict[str, object]] = mapped_column(JSON, default=dict)
    queue_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_name_prefix: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc)
