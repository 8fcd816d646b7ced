"""Generic CRUD and upsert over a single catalog table.

Every method takes the caller's ``Session`` so a coordinator can compose
several model operations inside one transaction. Calls are wrapped in the
model's ``RetryPolicy``; errors other than uniqueness conflicts and lookup
cardinality surface as raised by SQLAlchemy.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import ColumnElement, and_, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ingest_catalog.app.db.session import Base
from ingest_catalog.app.errors import AmbiguousMatchError, ConflictError, NotFoundError
from ingest_catalog.app.services.retry import RetryConfig, RetryPolicy


ModelT = TypeVar("ModelT", bound=Base)

Identifier = Mapping[str, Any] | int

# Sessions outlive single writes; reads must not serve a stale identity map.
FRESH_READ = {"populate_existing": True}


@dataclass
class SearchSpec:
    """Equality filters, inclusive ranges, ordering and pagination."""

    filters: dict[str, Any] = field(default_factory=dict)
    ranges: dict[str, tuple[Any | None, Any | None]] = field(default_factory=dict)
    sort_by: str | None = None
    order: str = "asc"
    limit: int | None = None
    offset: int = 0


def dialect_insert(db: Session):  # noqa: ANN201
    name = db.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Upsert is not supported for dialect '{name}'")


class RecordModel(Generic[ModelT]):
    orm: ClassVar[type[Base]]
    table_name: ClassVar[str]
    natural_keys: ClassVar[tuple[str, ...]]

    def __init__(self, retry: RetryPolicy | None = None) -> None:
        self._retry = retry or RetryPolicy(RetryConfig.no_retry())

    def _column(self, name: str):  # noqa: ANN202
        try:
            return getattr(self.orm, name)
        except AttributeError as exc:
            raise ValueError(f"{self.table_name} has no column '{name}'") from exc

    def _criteria(self, identifier: Identifier) -> list[ColumnElement[bool]]:
        if isinstance(identifier, int):
            return [self._column("cumulus_id") == identifier]
        if not identifier:
            raise ValueError(f"Refusing to match every row in {self.table_name}")
        return [self._column(key) == value for key, value in identifier.items()]

    def _describe(self, identifier: Identifier) -> dict[str, Any]:
        if isinstance(identifier, int):
            return {"cumulus_id": identifier}
        return dict(identifier)

    def create(self, db: Session, record: Mapping[str, Any]) -> ModelT:
        """Insert ``record``; ConflictError if its natural key is taken."""
        natural_key = {key: record[key] for key in self.natural_keys if key in record}

        def insert() -> ModelT:
            row = self.orm(**record)
            with db.begin_nested():
                db.add(row)
            return row

        try:
            return self._retry.call(insert, description=f"{self.table_name}.create")
        except IntegrityError as exc:
            if len(natural_key) == len(self.natural_keys) and self.exists(db, natural_key):
                raise ConflictError(
                    f"A record already exists in {self.table_name} for {natural_key}",
                    {"table": self.table_name, "identifiers": natural_key},
                ) from exc
            raise

    def get(self, db: Session, identifier: Identifier) -> ModelT:
        """Return exactly one row matching ``identifier``."""
        stmt = select(self.orm).where(and_(*self._criteria(identifier))).limit(2)
        rows = self._retry.call(
            lambda: list(db.execute(stmt, execution_options=FRESH_READ).scalars().all()),
            description=f"{self.table_name}.get",
        )
        if not rows:
            raise NotFoundError(
                f"Record in {self.table_name} with identifiers {self._describe(identifier)} does not exist.",
                {"table": self.table_name, "identifiers": self._describe(identifier)},
            )
        if len(rows) > 1:
            raise AmbiguousMatchError(
                f"More than one record in {self.table_name} matches {self._describe(identifier)}",
                {"table": self.table_name, "identifiers": self._describe(identifier)},
            )
        return rows[0]

    def find(self, db: Session, identifier: Identifier, *, for_update: bool = False) -> ModelT | None:
        stmt = select(self.orm).where(and_(*self._criteria(identifier)))
        if for_update:
            stmt = stmt.with_for_update()
        return self._retry.call(
            lambda: db.execute(stmt, execution_options=FRESH_READ).scalar_one_or_none(),
            description=f"{self.table_name}.find",
        )

    def exists(self, db: Session, identifier: Identifier) -> bool:
        stmt = select(select(self.orm).where(and_(*self._criteria(identifier))).exists())
        return bool(
            self._retry.call(lambda: db.execute(stmt).scalar(), description=f"{self.table_name}.exists")
        )

    def upsert(
        self,
        db: Session,
        record: Mapping[str, Any],
        conflict_columns: Sequence[str] | None = None,
        merge_columns: Sequence[str] | None = None,
        where: ColumnElement[bool] | Callable[[Any], ColumnElement[bool]] | None = None,
    ) -> list[ModelT]:
        """Insert ``record`` or merge it into the row it conflicts with.

        Returns the resulting row, or an empty list when ``where`` kept the
        conflicting row from being updated. ``where`` may be a callable
        receiving the proposed row (``excluded``). With nothing to merge the
        existing row is returned unchanged.
        """
        conflict = list(conflict_columns or self.natural_keys)
        if merge_columns is None:
            merge = [key for key in record if key not in conflict and key != "cumulus_id"]
        else:
            merge = list(merge_columns)

        insert_stmt = dialect_insert(db)(self.orm).values(**record)
        if callable(where):
            where = where(insert_stmt.excluded)
        if merge:
            stmt = insert_stmt.on_conflict_do_update(
                index_elements=conflict,
                set_={column: insert_stmt.excluded[column] for column in merge},
                where=where,
            )
        else:
            stmt = insert_stmt.on_conflict_do_nothing(index_elements=conflict)

        def run() -> list[ModelT]:
            return list(
                db.scalars(
                    stmt.returning(self.orm),
                    execution_options={"populate_existing": True},
                ).all()
            )

        rows = self._retry.call(run, description=f"{self.table_name}.upsert")
        if not rows and not merge:
            existing = self.find(db, {key: record[key] for key in conflict})
            return [existing] if existing is not None else []
        return rows

    def _search_statement(self, spec: SearchSpec):  # noqa: ANN202
        criteria: list[ColumnElement[bool]] = []
        for key, value in spec.filters.items():
            column = self._column(key)
            if isinstance(value, (list, tuple, set, frozenset)):
                criteria.append(column.in_(list(value)))
            else:
                criteria.append(column == value)
        for key, (lower, upper) in spec.ranges.items():
            column = self._column(key)
            if lower is not None:
                criteria.append(column >= lower)
            if upper is not None:
                criteria.append(column <= upper)
        stmt = select(self.orm)
        if criteria:
            stmt = stmt.where(and_(*criteria))
        return stmt

    def search(self, db: Session, spec: SearchSpec | None = None) -> list[ModelT]:
        spec = spec or SearchSpec()
        stmt = self._search_statement(spec)
        if spec.sort_by:
            column = self._column(spec.sort_by)
            stmt = stmt.order_by(column.desc() if spec.order.lower() == "desc" else column.asc())
        else:
            stmt = stmt.order_by(self._default_order())
        if spec.offset:
            stmt = stmt.offset(spec.offset)
        if spec.limit is not None:
            stmt = stmt.limit(spec.limit)
        return self._retry.call(
            lambda: list(db.execute(stmt, execution_options=FRESH_READ).scalars().all()),
            description=f"{self.table_name}.search",
        )

    def count(self, db: Session, spec: SearchSpec | None = None) -> int:
        spec = spec or SearchSpec()
        inner = self._search_statement(spec).subquery()
        stmt = select(func.count()).select_from(inner)
        return int(self._retry.call(lambda: db.execute(stmt).scalar_one(), description=f"{self.table_name}.count"))

    def search_by_cumulus_ids(self, db: Session, cumulus_ids: Iterable[int]) -> list[ModelT]:
        ids = list(cumulus_ids)
        if not ids:
            return []
        return self.search(db, SearchSpec(filters={"cumulus_id": ids}))

    def delete(self, db: Session, identifier: Identifier) -> int:
        """Remove the matching row; an absent row is a no-op returning 0."""
        stmt = delete(self.orm).where(and_(*self._criteria(identifier)))
        result = self._retry.call(lambda: db.execute(stmt), description=f"{self.table_name}.delete")
        return int(result.rowcount or 0)

    def _default_order(self):  # noqa: ANN202
        if hasattr(self.orm, "cumulus_id"):
            return self._column("cumulus_id").asc()
        return self._column(self.natural_keys[0]).asc()
