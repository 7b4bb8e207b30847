"""Message store factory.

We read the database location via python-dotenv so deployments can point
the installation at a different file without editing config.json.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

import settings
from adapters.sqlite_storage import SQLiteMessageStore


def build_store() -> SQLiteMessageStore:
    """Create the SQLite store and make sure its schema exists."""

    load_dotenv()

    db_path = os.getenv("CONSTELLATION_DB_PATH") or settings.DB_PATH
    directory = os.path.dirname(db_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    logging.getLogger(__name__).info("Opening message store at %s", db_path)

    store = SQLiteMessageStore(db_path, timeout=settings.STORE_TIMEOUT)
    store.init_db()
    return store
