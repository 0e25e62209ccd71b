"""
Sync-Service fuer die Kontaktsynchronisation.

Orchestriert Backend, Cache und Conflict Resolution. Scheduling der
Durchlaeufe liegt beim Aufrufer.
"""
import logging
import uuid
from dataclasses import replace
from typing import Optional, Dict

from .backend import WebDAVBookBackend
from .cache.base import BookCache
from .cancellable import Cancellable
from .conflict_resolver import ConflictResolver
from .errors import NotFoundError, PreconditionFailedError
from .models import (
    ConflictResolution,
    Contact,
    LocalCacheEntry,
    OfflineState,
    RemoteItemRef,
    SaveResult,
)
from .vcard_parser import ETAG_ATTRIBUTE, contact_revision

logger = logging.getLogger(__name__)


class SyncService:
    """
    Haupt-Sync-Service.

    Koordiniert Synchronisation zwischen Cache und Backend.
    """

    def __init__(self, backend: WebDAVBookBackend, cache: Optional[BookCache] = None):
        """
        Initialisiert Sync-Service.

        Args:
            backend: Verbundenes WebDAVBookBackend
            cache: Lokaler Cache (Standard: Cache des Backends)
        """
        self.backend = backend
        self.cache = cache or backend.cache
        self.resolver = ConflictResolver()

    def sync(self, cancellable: Optional[Cancellable] = None) -> Dict[str, int]:
        """
        Fuehrt einen Sync-Durchlauf durch.

        Der neue Change-Tag wird nur gespeichert, wenn kein Eintrag offen
        geblieben ist, damit der naechste Durchlauf sie erneut findet.

        Returns:
            Dict mit Statistiken (created, modified, removed, pending)
        """
        stats = {'created': 0, 'modified': 0, 'removed': 0, 'pending': 0}

        last_token = self.cache.get_sync_tag()
        changes = self.backend.get_changes(last_token, cancellable)

        for ref in changes.created:
            if ref.is_fetched:
                self._store_ref(ref)
                stats['created'] += 1

        for ref in changes.modified:
            if ref.is_fetched:
                self._store_ref(ref)
                stats['modified'] += 1

        for entry in changes.removed:
            if self.cache.remove(entry.uid):
                stats['removed'] += 1

        pending = changes.pending
        stats['pending'] = len(pending)

        if pending:
            logger.warning(f"{len(pending)} contact(s) could not be fetched, keeping old sync tag")
        elif changes.new_token and changes.new_token != last_token:
            self.cache.set_sync_tag(changes.new_token)

        logger.info(f"Sync of {self.backend.config.collection_url} finished: {stats}")
        return stats

    def save(
        self,
        contact: Contact,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> SaveResult:
        """
        Speichert einen lokalen Kontakt auf dem Server und im Cache.

        Args:
            contact: Kontakt mit UID
            conflict_resolution: Strategie bei veralteter Revision

        Raises:
            PreconditionFailedError: Bei Konflikt und FAIL
        """
        entry = self.cache.get(contact.uid) if contact.uid else None
        reference = entry.reference if entry and entry.reference else None
        overwrite = reference is not None

        if entry is not None and not contact_revision(contact):
            contact = replace(contact, x_attributes=dict(contact.x_attributes))
            contact.set_x_attribute(ETAG_ATTRIBUTE, entry.revision or None)

        try:
            result = self.backend.save_contact(contact, reference, overwrite, conflict_resolution, cancellable)
        except PreconditionFailedError:
            if conflict_resolution == ConflictResolution.FAIL:
                raise
            return self._resolve_conflict(contact, reference, conflict_resolution, cancellable)

        self._store_contact(contact, result.reference, result.revision)
        return result

    def _resolve_conflict(
        self,
        contact: Contact,
        reference: Optional[str],
        conflict_resolution: ConflictResolution,
        cancellable: Optional[Cancellable]
    ) -> SaveResult:
        remote, href = self.backend.load_contact(contact.uid, reference, cancellable)
        decision = self.resolver.resolve(conflict_resolution, contact, remote)
        logger.info(f"Conflict on {contact.uid}: {decision.reason}")

        if decision.action in ("pull", "none"):
            self._store_contact(remote, href, contact_revision(remote))
            return SaveResult(uid=contact.uid, reference=href, revision=contact_revision(remote))

        if decision.action == "copy":
            copy = replace(contact, uid=str(uuid.uuid4()), x_attributes=dict(contact.x_attributes))
            copy.set_x_attribute(ETAG_ATTRIBUTE, None)
            result = self.backend.save_contact(copy, None, False, conflict_resolution, cancellable)
            self._store_contact(copy, result.reference, result.revision)
            self._store_contact(remote, href, contact_revision(remote))
            return result

        result = self.backend.save_contact(
            contact, href, True, ConflictResolution.KEEP_LOCAL, cancellable
        )
        self._store_contact(contact, result.reference, result.revision)
        return result

    def remove(
        self,
        uid: str,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> bool:
        """
        Loescht einen Kontakt auf dem Server und im Cache.

        Returns:
            True bei Erfolg, False wenn er auf dem Server nicht existierte
        """
        entry = self.cache.get(uid)
        if entry is None:
            raise NotFoundError(f"Contact {uid} is not cached")

        try:
            self.backend.remove_contact(
                uid, entry.reference, entry.serialized_object, conflict_resolution, cancellable
            )
        except NotFoundError:
            logger.info(f"Contact {uid} was already gone on the server")
            self.cache.remove(uid)
            return False

        self.cache.remove(uid)
        return True

    def _store_ref(self, ref: RemoteItemRef) -> None:
        self.cache.put(LocalCacheEntry(
            uid=ref.uid,
            revision=ref.revision,
            serialized_object=ref.serialized_object or "",
            reference=ref.reference,
            offline_state=OfflineState.SYNCED
        ))

    def _store_contact(self, contact: Contact, reference: str, revision: Optional[str]) -> None:
        # Ohne ETag vom Server bleibt die Revision leer; der naechste Sync laedt neu
        stored = replace(contact, x_attributes=dict(contact.x_attributes))
        stored.set_x_attribute(ETAG_ATTRIBUTE, revision or None)
        self.cache.put(LocalCacheEntry(
            uid=contact.uid,
            revision=revision or "",
            serialized_object=self.backend.vcard_parser.serialize(stored),
            reference=reference,
            offline_state=OfflineState.SYNCED
        ))
