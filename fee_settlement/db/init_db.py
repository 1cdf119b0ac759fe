"""Database initialization utilities."""
import logging
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from fee_settlement.db.base import Base, import_models
from fee_settlement.db.session import engine as default_engine

logger = logging.getLogger(__name__)


def init_db(bind: Optional[Engine] = None) -> None:
    """
    Initialize the database by creating all missing tables.

    Note: This is suitable for development/testing only.
    For production, use migrations instead.
    """
    bind = bind or default_engine
    try:
        import_models()
        existing_tables = inspect(bind).get_table_names()
        Base.metadata.create_all(bind=bind)
        logger.info(f"Database initialized ({len(existing_tables)} tables already present)")
    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


def drop_db(bind: Optional[Engine] = None) -> None:
    """
    Drop all database tables.

    WARNING: This will delete all data! Only for development/testing purposes.
    """
    bind = bind or default_engine
    import_models()
    Base.metadata.drop_all(bind=bind)
    logger.warning("All database tables dropped")

