"""
Change Detector.

Entscheidet pro Sync-Durchlauf, ob der Change-Tag reicht oder ein Listing
verglichen werden muss, und liefert das ChangeSet. Das Listing fragt nur
Referenzen und ETags ab; Inhalte laedt der BatchFetcher.
"""
import logging
from dataclasses import replace
from typing import Dict, List, Optional
from urllib.parse import urlsplit

from .batch_fetcher import BatchFetcher
from .cancellable import Cancellable
from .errors import SyncConnectionError, TransportError
from .models import ChangeSet, LocalCacheEntry, RemoteItemRef
from .transport.multistatus import ItemVisitor, PropertyReader, maybe_dequote, NS_CARDDAV
from .transport.session import DEPTH_THIS_AND_CHILDREN
from .uri_mapper import is_collection_href

logger = logging.getLogger(__name__)

LISTING_BODY = '''<?xml version="1.0" encoding="UTF-8"?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:getetag/>
  </D:prop>
</D:propfind>'''

EXISTING_BODY = '''<?xml version="1.0" encoding="UTF-8"?>
<C:addressbook-query xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">
  <D:prop>
    <D:getetag/>
    <C:address-data>
      <C:prop name="VERSION"/>
      <C:prop name="UID"/>
    </C:address-data>
  </D:prop>
</C:addressbook-query>'''


class KnownItemsCollector(ItemVisitor):
    """Sammelt {Referenz: RemoteItemRef} aus einem flachen Listing."""

    def __init__(self, request_path: Optional[str]):
        self.request_path = request_path
        self.items: Dict[str, RemoteItemRef] = {}

    def on_item(self, reference: str, status_code: int, props: PropertyReader) -> bool:
        if status_code != 200:
            return True

        # Collection selbst ueberspringen (iCloud liefert sie mit)
        if is_collection_href(reference, self.request_path):
            return True

        etag = maybe_dequote(props.text("D:getetag"))
        if not etag:
            # Fehlerhafte Daten des Servers stoppen das Listing nicht
            logger.warning(f"Listing entry {reference} has no etag, skipping")
            return True

        # UID ist an dieser Stelle noch unbekannt
        self.items[reference] = RemoteItemRef(reference=reference, revision=etag)
        return True


class ExistingItemsCollector(ItemVisitor):
    """Sammelt UID, ETag und Referenz aus einer addressbook-query."""

    def __init__(self, backend):
        self._parser = backend.vcard_parser
        self.items: List[RemoteItemRef] = []

    def on_namespace_init(self, namespaces):
        namespaces["C"] = NS_CARDDAV

    def on_item(self, reference: str, status_code: int, props: PropertyReader) -> bool:
        if status_code != 200:
            return True

        contact = self._parser.parse_or_none(props.text("C:address-data"))
        if contact is None or not contact.uid:
            return True

        etag = maybe_dequote(props.text("D:getetag")) or ""
        self.items.append(RemoteItemRef(reference=reference, revision=etag, uid=contact.uid))
        return True


class ChangeDetector:
    """
    Ermittelt Aenderungen seit dem letzten Sync.

    Args:
        backend: WebDAVBookBackend
        fetcher: BatchFetcher fuer created/modified Eintraege
    """

    def __init__(self, backend, fetcher: Optional[BatchFetcher] = None):
        self.backend = backend
        self.fetcher = fetcher or BatchFetcher(backend)

    def get_changes(
        self,
        last_token: Optional[str],
        cancellable: Optional[Cancellable] = None
    ) -> ChangeSet:
        """
        Holt Aenderungen seit last_token.

        Args:
            last_token: Change-Tag vom letzten Sync (None fuer Initial-Sync)
            cancellable: Optionales Abbruch-Signal

        Returns:
            ChangeSet mit new_token und created/modified/removed
        """
        backend = self.backend
        session = backend.require_session()

        with backend.classifier.classified():
            changes = ChangeSet()

            if backend.state.supports_fast_change_token:
                try:
                    new_token = session.getctag(None, cancellable)
                except TransportError as e:
                    # Ab jetzt fuer diese Session nur noch Listing
                    backend.state.supports_fast_change_token = False
                    logger.info(f"getctag not usable, disabling change tag for this session: {e}")
                    if backend.session is None:
                        raise SyncConnectionError("Session lost while fetching change tag") from e
                else:
                    changes.new_token = new_token
                    if new_token and last_token and new_token == last_token:
                        logger.debug("Change tag unchanged, nothing to do")
                        return changes

            known_items = self._list_known_items(session, cancellable)
            self._diff_against_cache(known_items, changes, cancellable)

            changes.created = list(known_items.values())

            logger.info(
                f"Changes: {len(changes.created)} created, {len(changes.modified)} modified, "
                f"{len(changes.removed)} removed"
            )

            if changes.created or changes.modified:
                self.fetcher.fetch(changes.created, changes.modified, cancellable)

            return changes

    def _list_known_items(self, session, cancellable: Optional[Cancellable]) -> Dict[str, RemoteItemRef]:
        request_path = urlsplit(self.backend.config.collection_url).path or None
        collector = KnownItemsCollector(request_path)
        session.propfind(None, DEPTH_THIS_AND_CHILDREN, LISTING_BODY, collector, cancellable)
        return collector.items

    def _diff_against_cache(
        self,
        known_items: Dict[str, RemoteItemRef],
        changes: ChangeSet,
        cancellable: Optional[Cancellable]
    ) -> None:
        """
        Vergleicht den Cache mit dem Listing.

        Uebrig gebliebene known_items sind danach die neuen Eintraege.
        """
        modified: List[RemoteItemRef] = []
        removed: List[LocalCacheEntry] = []

        def visit(entry: LocalCacheEntry) -> bool:
            # Offline angelegte Eintraege haben noch keine Referenz
            if not entry.reference:
                return True

            ref = known_items.pop(entry.reference, None)
            if ref is None:
                removed.append(replace(entry))
            elif ref.revision != entry.revision:
                if not ref.uid:
                    ref.uid = entry.uid
                modified.append(ref)
            return True

        self.backend.cache.search(visit, cancellable)

        modified.reverse()
        removed.reverse()
        changes.modified = modified
        changes.removed = removed

    def list_existing(self, cancellable: Optional[Cancellable] = None) -> List[RemoteItemRef]:
        """
        Listet alle Kontakte mit UID, ETag und Referenz.

        Returns:
            RemoteItemRefs in Server-Reihenfolge (ohne Inhalt)
        """
        backend = self.backend
        session = backend.require_session()

        with backend.classifier.classified():
            collector = ExistingItemsCollector(backend)
            session.report(None, DEPTH_THIS_AND_CHILDREN, EXISTING_BODY, collector, cancellable)
            return collector.items
