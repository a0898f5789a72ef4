"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine, Session

from alert_relay.config import settings

logger = logging.getLogger(__name__)

_IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
engine_kwargs = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False
if settings.database_url in _IN_MEMORY_URLS:
    # One shared connection, otherwise every thread sees its own empty database
    engine_kwargs["poolclass"] = StaticPool

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
    **engine_kwargs,
)

# (table, index name, columns) that must exist for idempotent inserts to work
_REQUIRED_UNIQUE_INDEXES = [
    ("trade", "uq_trade_open_id", "trade_id, open_marker"),
    ("notification_record", "uq_notification_record", "trade_id, recipient_id, alert_type"),
    ("notification_key", "ix_notification_key_key", "key"),
    ("channel_link", "ix_channel_link_recipient_id", "recipient_id"),
    ("channel_link", "ix_channel_link_chat_id", "chat_id"),
]

# (table, column, DDL type) added after the first release
_ADDED_COLUMNS = [
    ("user", "last_login_at", "TIMESTAMP"),
]


def _run_migrations():
    """Backfill columns and unique indexes on tables created before they were declared."""
    from sqlalchemy import text

    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    for table, column, ddl_type in _ADDED_COLUMNS:
        if table not in tables:
            continue
        columns = {c["name"] for c in inspector.get_columns(table)}
        if column in columns:
            continue
        logger.info(f"Migrating: adding column {table}.{column}")
        with engine.connect() as conn:
            conn.execute(text(f'ALTER TABLE "{table}" ADD COLUMN {column} {ddl_type}'))
            conn.commit()

    for table, index_name, columns in _REQUIRED_UNIQUE_INDEXES:
        if table not in tables:
            continue
        indexes = {idx["name"]: idx["unique"] for idx in inspector.get_indexes(table)}
        constraints = {uc["name"] for uc in inspector.get_unique_constraints(table)}
        if indexes.get(index_name) or index_name in constraints:
            continue
        logger.info(f"Migrating: creating unique index {index_name} on {table}")
        with engine.connect() as conn:
            if index_name in indexes:
                # Same name, declared without unique=True in an earlier release
                conn.execute(text(f"DROP INDEX {index_name}"))
            try:
                conn.execute(text(f'CREATE UNIQUE INDEX {index_name} ON "{table}" ({columns})'))
            except IntegrityError as e:
                conn.rollback()
                logger.error(f"Migration of {index_name} failed, remove duplicate {table} rows first: {e}")
                continue
            conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import alert_relay.models  # noqa: F401  registers every table on the metadata

    SQLModel.metadata.create_all(engine)
    _run_migrations()


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
