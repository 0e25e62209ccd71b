"""
PostgreSQL-Cache fuer Kontakte einer Adressbuch-Collection.

Tabellen:
    carddav_contacts  - ein Eintrag pro UID und Collection
    carddav_sync_tags - letzter Change-Tag pro Collection
"""
import logging
from typing import List, Optional

from ..models import LocalCacheEntry, OfflineState
from .base import BookCache
from .connection import DatabaseConnection

logger = logging.getLogger(__name__)


class PostgresBookCache(BookCache):
    """
    Cache in PostgreSQL.

    Args:
        db: DatabaseConnection
        collection: Schluessel der Collection (z.B. ihre URL)
    """

    CONTACTS_TABLE = "carddav_contacts"
    TAGS_TABLE = "carddav_sync_tags"

    def __init__(self, db: DatabaseConnection, collection: str):
        self._db = db
        self.collection = collection
        self._db.ensure_healthy()
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.CONTACTS_TABLE} (
                    collection TEXT NOT NULL,
                    uid TEXT NOT NULL,
                    revision TEXT NOT NULL DEFAULT '',
                    object TEXT NOT NULL DEFAULT '',
                    reference TEXT NOT NULL DEFAULT '',
                    offline_state VARCHAR(30) NOT NULL DEFAULT 'synced',
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, uid)
                )
            """)
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.TAGS_TABLE} (
                    collection TEXT PRIMARY KEY,
                    sync_tag TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

    def _row_to_entry(self, row) -> LocalCacheEntry:
        return LocalCacheEntry(
            uid=row["uid"],
            revision=row["revision"] or "",
            serialized_object=row["object"] or "",
            reference=row["reference"] or "",
            offline_state=OfflineState(row["offline_state"])
        )

    def entries(self) -> List[LocalCacheEntry]:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                SELECT uid, revision, object, reference, offline_state
                FROM {self.CONTACTS_TABLE}
                WHERE collection = %s
                ORDER BY uid
            """, (self.collection,))
            return [self._row_to_entry(row) for row in cursor.fetchall()]

    def get(self, uid: str) -> Optional[LocalCacheEntry]:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                SELECT uid, revision, object, reference, offline_state
                FROM {self.CONTACTS_TABLE}
                WHERE collection = %s AND uid = %s
            """, (self.collection, uid))
            row = cursor.fetchone()
        return self._row_to_entry(row) if row else None

    def put(self, entry: LocalCacheEntry) -> None:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                INSERT INTO {self.CONTACTS_TABLE}
                    (collection, uid, revision, object, reference, offline_state)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (collection, uid) DO UPDATE SET
                    revision = EXCLUDED.revision,
                    object = EXCLUDED.object,
                    reference = EXCLUDED.reference,
                    offline_state = EXCLUDED.offline_state,
                    updated_at = NOW()
            """, (
                self.collection,
                entry.uid,
                entry.revision,
                entry.serialized_object,
                entry.reference,
                entry.offline_state.value
            ))

    def remove(self, uid: str) -> bool:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                DELETE FROM {self.CONTACTS_TABLE}
                WHERE collection = %s AND uid = %s
            """, (self.collection, uid))
            deleted = cursor.rowcount
        return deleted > 0

    def get_sync_tag(self) -> Optional[str]:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                SELECT sync_tag FROM {self.TAGS_TABLE} WHERE collection = %s
            """, (self.collection,))
            row = cursor.fetchone()
        return row["sync_tag"] if row else None

    def set_sync_tag(self, sync_tag: Optional[str]) -> None:
        with self._db.transaction() as cursor:
            cursor.execute(f"""
                INSERT INTO {self.TAGS_TABLE} (collection, sync_tag)
                VALUES (%s, %s)
                ON CONFLICT (collection) DO UPDATE SET
                    sync_tag = EXCLUDED.sync_tag,
                    updated_at = NOW()
            """, (self.collection, sync_tag))
        logger.debug(f"Stored sync tag for {self.collection}")
