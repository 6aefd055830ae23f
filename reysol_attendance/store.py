#!/usr/bin/env python3
"""
Local snapshot store backed by a PonyORM key/value table.

The store is a cache: every failure to read or write it is logged and
treated as a miss, never raised to the caller.
"""
from datetime import datetime
from typing import Optional
import json
import logging
import time

from pony.orm import db_session

from .config import CURRENT_USER_KEY, DEFAULT_DB_PATH, STORAGE_KEY
from .models import StoredItem, bind_database
from .snapshot import Snapshot


logger = logging.getLogger(__name__)


class LocalSnapshotStore:
    """
    Persist the full snapshot and the last selected member locally.

    Both values live in the same table under separate keys.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, key: str = STORAGE_KEY,
                 current_user_key: str = CURRENT_USER_KEY) -> None:
        """
        Initialize the store and bind the database.

        Parameters
        ----------
        db_path : str
            Path to SQLite database file, or ``":memory:"``
        key : str
            Storage key of the snapshot blob
        current_user_key : str
            Storage key of the last selected member name
        """
        self.db_path = db_path
        self.key = key
        self.current_user_key = current_user_key
        bind_database(db_path)

    def _read(self, key: str) -> Optional[str]:
        with db_session:
            item = StoredItem.get(key=key)
            return item.value if item is not None else None

    def _write(self, key: str, value: str) -> None:
        with db_session:
            item = StoredItem.get(key=key)
            if item is None:
                StoredItem(key=key, value=value)
            else:
                item.value = value
                item.updated_at = datetime.now()

    def load(self) -> Optional[Snapshot]:
        """
        Load the persisted snapshot.

        Returns
        -------
        Optional[Snapshot]
            Snapshot, or None when nothing is stored or the blob is unusable
        """
        try:
            raw = self._read(self.key)
        except Exception as e:
            logger.error("Error reading local snapshot: %s", e)
            return None
        if not raw:
            return None

        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.error("Error parsing local snapshot: %s", e)
            return None
        if not isinstance(data, dict):
            logger.error("Local snapshot is not an object, ignoring it")
            return None

        try:
            snapshot = Snapshot.from_local_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Local snapshot has an unexpected shape: %s", e)
            return None
        logger.debug("Loaded local snapshot saved at %s", data.get('timestamp'))
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        """
        Persist the snapshot, replacing any previous one.

        Parameters
        ----------
        snapshot : Snapshot
            Snapshot to store
        """
        payload = json.dumps(
            snapshot.to_local_dict(timestamp=int(time.time() * 1000)),
            ensure_ascii=False,
        )
        try:
            self._write(self.key, payload)
        except Exception as e:
            logger.error("Error saving local snapshot: %s", e)

    def load_current_user(self) -> str:
        """Last selected member name, or an empty string."""
        try:
            return self._read(self.current_user_key) or ''
        except Exception as e:
            logger.error("Error reading current user: %s", e)
            return ''

    def save_current_user(self, name: str) -> None:
        try:
            self._write(self.current_user_key, name or '')
        except Exception as e:
            logger.error("Error saving current user: %s", e)

    def clear(self) -> None:
        """Remove both stored values."""
        try:
            with db_session:
                for key in (self.key, self.current_user_key):
                    item = StoredItem.get(key=key)
                    if item is not None:
                        item.delete()
        except Exception as e:
            logger.error("Error clearing local storage: %s", e)
