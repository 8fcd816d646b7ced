from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ingest_catalog.app.config import Settings


Base = declarative_base()

_engines: dict[str, Engine] = {}
_engines_lock = threading.Lock()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(settings: Settings) -> Engine:
    """Process-wide engine for ``settings.database_url``, created on first use."""
    with _engines_lock:
        engine = _engines.get(settings.database_url)
        if engine is not None:
            return engine

        engine_kwargs: dict[str, object] = {}
        if settings.database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            engine_kwargs["pool_pre_ping"] = True

        engine = create_engine(settings.database_url, future=True, **engine_kwargs)
        if engine.dialect.name == "sqlite":
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        _engines[settings.database_url] = engine
        return engine


def build_session_factory(settings: Settings) -> sessionmaker[Session]:
    return sessionmaker(
        bind=get_engine(settings),
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def apply_statement_timeout(db: Session, timeout_ms: int) -> None:
    if timeout_ms <= 0:
        return
    if db.get_bind().dialect.name != "postgresql":
        return
    # SET LOCAL does not accept bind parameters
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@contextmanager
def catalog_transaction(db: Session, statement_timeout_ms: int) -> Iterator[Session]:
    """Scope one logical write to a single catalog transaction.

    The caller commits inside the block; any exception escaping the block
    rolls the transaction back.
    """
    apply_statement_timeout(db, statement_timeout_ms)
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
