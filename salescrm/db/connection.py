"""
Database Connection Management
Handles PostgreSQL connections with context manager pattern.
"""

import psycopg2
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager
from pathlib import Path
import logging

from salescrm.config import config

logger = logging.getLogger(__name__)


@contextmanager
def get_db_connection(database_url: str = None):
    """
    Context manager for database connections.
    Automatically commits on success, rollbacks on error, and closes connection.

    Usage:
        with get_db_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM contacts")
            results = cur.fetchall()
    """
    conn = None
    try:
        conn = psycopg2.connect(database_url or config.DATABASE_URL)
        logger.debug("Database connection established")
        yield conn
        conn.commit()
        logger.debug("Transaction committed")
    except Exception as e:
        if conn:
            conn.rollback()
            logger.error(f"Transaction rolled back due to error: {e}")
        raise
    finally:
        if conn:
            conn.close()
            logger.debug("Database connection closed")


@contextmanager
def get_db_cursor(dict_cursor=True, database_url: str = None):
    """
    Context manager for database cursor.
    Returns RealDictCursor by default for row-as-dict results.

    Usage:
        with get_db_cursor() as cur:
            cur.execute("SELECT * FROM contacts WHERE id = %s", (contact_id,))
            contact = cur.fetchone()  # Returns dict-like object
    """
    with get_db_connection(database_url) as conn:
        cursor_factory = RealDictCursor if dict_cursor else None
        cur = conn.cursor(cursor_factory=cursor_factory)
        try:
            yield cur
        finally:
            cur.close()


SCHEMA_PATH = Path(__file__).parent / 'schema.sql'


def apply_schema(database_url: str = None) -> None:
    """
    Create the CRM tables and indexes if they don't exist yet.
    Safe to re-run: every statement in schema.sql is IF NOT EXISTS.
    """
    statements = SCHEMA_PATH.read_text(encoding='utf-8')
    with get_db_cursor(dict_cursor=False, database_url=database_url) as cur:
        cur.execute(statements)
    logger.info(f"Schema applied from {SCHEMA_PATH.name}")
