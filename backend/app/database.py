from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import declarative_base, sessionmaker
from .config import settings

# Database URL
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def make_engine(url: str):
    """Create an engine, applying the SQLite tuning when the URL is SQLite"""
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(
        url,
        connect_args={
            "check_same_thread": False,
            "timeout": 30
        },
        pool_pre_ping=True
    )

    # Enable WAL mode and foreign keys for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


engine = make_engine(SQLALCHEMY_DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


def upsert(db, model, values: dict, index_elements: list, set_: dict):
    """
    Execute INSERT ... ON CONFLICT DO UPDATE for the given model.

    Args:
        db: Database session
        model: Mapped class to insert into
        values: Column values for the new row
        index_elements: Columns forming the unique key
        set_: Column assignments applied when the key already exists

    The statement is atomic in the database, so concurrent writers for the
    same key never produce duplicate rows.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        insert = postgresql.insert
    elif dialect == "sqlite":
        insert = sqlite.insert
    else:
        raise NotImplementedError(f"upsert is not supported for dialect {dialect}")

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)
    db.execute(stmt)
