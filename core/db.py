"""
Database configuration
"""
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine
from core.config import get_settings

# Create engine lazily to allow test configuration to be applied
_engine = None


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """
    SQLite ships with foreign keys off; turn them on so
    ON DELETE CASCADE behaves as it does on PostgreSQL.
    """
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine():
    """
    Get or create the database engine.
    This lazy initialization allows test settings to be applied properly.
    """
    global _engine
    if _engine is None:
        _engine = create_engine(str(get_settings().SQLALCHEMY_DATABASE_URI), echo=False)
    return _engine


def reset_engine():
    """
    Reset the engine to None.
    This is useful for tests that need to switch between different settings.
    """
    global _engine
    _engine = None


def create_db_and_tables():
    """Create all tables registered on the SQLModel metadata"""
    # Register table models before create_all
    import api.files.models  # noqa: F401
    SQLModel.metadata.create_all(get_engine())

