"""SQLModel database engine and session management."""

import logging

from sqlalchemy import inspect
from sqlmodel import SQLModel, create_engine, Session

from airtrack.config import settings

logger = logging.getLogger(__name__)

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def _run_migrations():
    """Run lightweight schema migrations for legacy trade tables."""
    from sqlalchemy import text

    inspector = inspect(engine)

    if "trade" not in inspector.get_table_names():
        return

    # Early deployments stored the entry level in a "price" column
    columns = {col["name"] for col in inspector.get_columns("trade")}
    if "price" in columns and "entry_price" not in columns:
        logger.info("Migrating: renaming trade.price -> trade.entry_price")
        with engine.connect() as conn:
            conn.execute(text("ALTER TABLE trade RENAME COLUMN price TO entry_price"))
            conn.commit()

    # Statuses and sides were once written lowercase
    with engine.connect() as conn:
        result = conn.execute(text(
            "UPDATE trade SET status = UPPER(status), side = UPPER(side) "
            "WHERE status <> UPPER(status) OR side <> UPPER(side)"
        ))
        if result.rowcount:
            logger.info(f"Migrating: normalized {result.rowcount} trade rows to uppercase")
        conn.commit()


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import airtrack.models  # noqa: F401  (registers tables on the metadata)

    SQLModel.metadata.create_all(engine)
    _run_migrations()


def get_session() -> Session:
    """Dependency that yields a database session."""
    with Session(engine) as session:
        yield session
