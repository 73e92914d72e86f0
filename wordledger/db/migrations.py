"""
Versioned schema migrations, applied once at startup.

Each migration is (version, description, fn(connection)). Applied versions are
recorded in schema_migrations; run_migrations() applies the missing ones in
order inside a single transaction per migration.
"""
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, select
from sqlalchemy.engine import Connection, Engine

from wordledger.db.base import Base
from wordledger.models.callback_record import CallbackRecord
from wordledger.models.payment import Payment
from wordledger.models.user_word_balance import UserWordBalance

logger = logging.getLogger(__name__)

_meta = MetaData()

schema_migrations = Table(
    "schema_migrations",
    _meta,
    Column("version", Integer, primary_key=True),
    Column("description", String, nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


def _create_ledger_tables(conn: Connection) -> None:
    Base.metadata.create_all(
        conn,
        tables=[
            Payment.__table__,
            CallbackRecord.__table__,
            UserWordBalance.__table__,
        ],
    )


MIGRATIONS: list[tuple[int, str, Callable[[Connection], None]]] = [
    (1, "create payments, payment_callbacks, user_word_balances", _create_ledger_tables),
]


def applied_versions(engine: Engine) -> set[int]:
    _meta.create_all(engine, tables=[schema_migrations])
    with engine.connect() as conn:
        return set(conn.execute(select(schema_migrations.c.version)).scalars())


def run_migrations(engine: Engine) -> list[int]:
    """Apply pending migrations. Returns the versions applied in this call."""
    done = applied_versions(engine)
    applied: list[int] = []
    for version, description, fn in sorted(MIGRATIONS, key=lambda m: m[0]):
        if version in done:
            continue
        with engine.begin() as conn:
            fn(conn)
            conn.execute(
                schema_migrations.insert().values(
                    version=version,
                    description=description,
                    applied_at=datetime.now(timezone.utc),
                )
            )
        logger.info("schema_migration_applied", extra={"version": version, "description": description})
        applied.append(version)
    return applied
