#!/usr/bin/env python3
"""
PonyORM database models for the local snapshot store.

The client only needs a tiny key/value table: one row holds the full
snapshot blob, another the last selected member name.
"""
from datetime import datetime
from pathlib import Path
import logging

from pony.orm import Database, LongStr, Optional, PrimaryKey, Required


logger = logging.getLogger(__name__)

# Initialize database
db = Database()
_bound_path = None


class StoredItem(db.Entity):
    """
    A single value in local storage.

    Attributes
    ----------
    key : str
        Storage key (e.g., "reysol_attendance_data")
    value : str
        Serialized value, usually a JSON document
    updated_at : datetime
        When the value was last written
    """
    key = PrimaryKey(str)
    value = Optional(LongStr)
    updated_at = Required(datetime, default=datetime.now)

    def __str__(self) -> str:
        return f"{self.key} ({self.updated_at})"


def bind_database(db_path: str) -> None:
    """
    Bind the database to a SQLite file and create the table.

    The binding is process-wide. A later call with a different path keeps
    the first binding and logs a warning.

    Parameters
    ----------
    db_path : str
        Path to SQLite database file, or ``":memory:"``
    """
    global _bound_path
    filename = db_path if db_path == ':memory:' else str(Path(db_path).expanduser().resolve())
    if db.provider is not None:
        if filename != _bound_path:
            logger.warning("Database already bound to %s, ignoring %s", _bound_path, filename)
        return
    if filename == ':memory:':
        db.bind(provider='sqlite', filename=':memory:')
    else:
        # Pony resolves relative filenames against the calling module
        db.bind(provider='sqlite', filename=filename, create_db=True)
    _bound_path = filename
    db.generate_mapping(create_tables=True)
