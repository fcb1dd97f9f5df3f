import sqlite3
import datetime
import json
import logging
import os
import threading

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class SqliteStore:
    def __init__(self, db_file):
        self.db_file = db_file
        self._lock = threading.Lock()

    def get_db(self):
        conn = sqlite3.connect(self.db_file)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self):
        folder = os.path.dirname(self.db_file)
        if folder:
            os.makedirs(folder, exist_ok=True)
        try:
            conn = self.get_db()
            try:
                cursor = conn.cursor()
                cursor.execute('''
                    CREATE TABLE IF NOT EXISTS documents (
                        collection TEXT NOT NULL,
                        key TEXT NOT NULL,
                        body TEXT NOT NULL,
                        created_at TEXT,
                        PRIMARY KEY (collection, key)
                    )
                ''')
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception("Database init error")
            raise PersistenceError("could not initialize database") from e
        logger.info("Database initialized: %s", self.db_file)

    def get(self, collection, key):
        try:
            conn = self.get_db()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT body FROM documents WHERE collection = ? AND key = ?",
                    (collection, key),
                )
                row = cursor.fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception("Error fetching %s/%s", collection, key)
            raise PersistenceError(f"could not read {collection}") from e
        if row:
            return json.loads(row["body"])
        return None

    def put(self, collection, key, doc):
        self.put_many(collection, {key: doc})

    def put_many(self, collection, docs):
        self.put_batch({collection: docs})

    def put_batch(self, batches):
        created_at = datetime.datetime.now().isoformat()
        with self._lock:
            try:
                conn = self.get_db()
                try:
                    # one transaction: all documents or none
                    with conn:
                        for collection, docs in batches.items():
                            for key, doc in docs.items():
                                conn.execute(
                                    "INSERT INTO documents (collection, key, body, created_at) VALUES (?, ?, ?, ?) "
                                    "ON CONFLICT(collection, key) DO UPDATE SET body = excluded.body",
                                    (collection, key, json.dumps(doc), created_at),
                                )
                finally:
                    conn.close()
            except sqlite3.Error as e:
                logger.exception("Error writing %s", ", ".join(batches))
                raise PersistenceError(f"could not write {', '.join(batches)}") from e

    def all(self, collection):
        try:
            conn = self.get_db()
            try:
                cursor = conn.cursor()
                cursor.execute(
                    "SELECT body FROM documents WHERE collection = ? ORDER BY created_at",
                    (collection,),
                )
                rows = cursor.fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            logger.exception("Error fetching %s", collection)
            raise PersistenceError(f"could not read {collection}") from e
        return [json.loads(row["body"]) for row in rows]
