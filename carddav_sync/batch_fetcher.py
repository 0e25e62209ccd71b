"""
Batch Fetcher.

Laedt den Inhalt von Remote-Eintraegen per addressbook-multiget in Paketen
zu hoechstens 100 Referenzen.
"""
import logging
from itertools import chain
from typing import Iterable, List, Optional
from xml.sax.saxutils import escape

from .cancellable import Cancellable
from .models import Contact, RemoteItemRef
from .transport.multistatus import ItemVisitor, PropertyReader, maybe_dequote, NS_CARDDAV
from .uri_mapper import href_path
from .vcard_parser import VCardParser, ETAG_ATTRIBUTE

logger = logging.getLogger(__name__)

MAX_MULTIGET_AMOUNT = 100

MULTIGET_HEAD = '''<?xml version="1.0" encoding="UTF-8"?>
<C:addressbook-multiget xmlns:D="DAV:" xmlns:C="urn:ietf:params:xml:ns:carddav">
  <D:prop>
    <D:getetag/>
    <C:address-data/>
  </D:prop>
'''
MULTIGET_TAIL = '</C:addressbook-multiget>'


def build_multiget_body(batch: List[RemoteItemRef]) -> str:
    hrefs = "".join(f"  <D:href>{escape(href_path(ref.reference))}</D:href>\n" for ref in batch)
    return MULTIGET_HEAD + hrefs + MULTIGET_TAIL


def update_ref_with_contact(
    ref: RemoteItemRef,
    contact: Contact,
    etag: Optional[str],
    parser: VCardParser
) -> None:
    """
    Uebernimmt geladenen Inhalt in einen RemoteItemRef.

    Das ETag der Antwort wird zur Revision; fehlt es, bleibt die bekannte.
    """
    if not etag:
        etag = ref.revision

    contact.set_x_attribute(ETAG_ATTRIBUTE, etag)
    ref.serialized_object = parser.serialize(contact)

    if not ref.uid:
        ref.uid = contact.uid or ""

    ref.revision = etag


class MultigetCorrelator(ItemVisitor):
    """
    Ordnet multiget-Antworten den angefragten Referenzen zu.

    Antwortet der Server in Anfrage-Reihenfolge, rueckt der Cursor mit und die
    Suche bleibt kurz. Die Zuordnung selbst ist immer exakt per Referenz.
    """

    def __init__(self, batch: List[RemoteItemRef], parser: VCardParser):
        self._batch = batch
        self._parser = parser
        self._cursor = 0
        self.matched = 0

    def on_namespace_init(self, namespaces):
        namespaces["C"] = NS_CARDDAV

    def on_item(self, reference: str, status_code: int, props: PropertyReader) -> bool:
        if status_code != 200:
            return True

        address_data = props.text("C:address-data")
        if not address_data:
            return True

        contact = self._parser.parse_or_none(address_data)
        if contact is None or not contact.uid:
            logger.warning(f"Skipping invalid vCard for {reference}")
            return True

        etag = maybe_dequote(props.text("D:getetag"))

        for index in range(self._cursor, len(self._batch)):
            ref = self._batch[index]
            if ref.reference == reference:
                if index == self._cursor:
                    self._cursor += 1
                update_ref_with_contact(ref, contact, etag, self._parser)
                self.matched += 1
                break

        return True


class BatchFetcher:
    """
    Holt den vollen Inhalt fuer created/modified Eintraege.

    Args:
        backend: WebDAVBookBackend
        batch_size: Maximale Anzahl Referenzen pro REPORT
    """

    def __init__(self, backend, batch_size: int = MAX_MULTIGET_AMOUNT):
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.backend = backend
        self.batch_size = batch_size

    def fetch(
        self,
        created: Iterable[RemoteItemRef],
        modified: Iterable[RemoteItemRef] = (),
        cancellable: Optional[Cancellable] = None
    ) -> List[RemoteItemRef]:
        """
        Laedt alle Eintraege in Paketen.

        created und modified bilden eine gemeinsame Warteschlange; ein Paket
        darf beide Listen ueberspannen.

        Returns:
            Eintraege, die nach dem Abruf noch ohne Inhalt sind
        """
        created = list(created)
        modified = list(modified)

        batch: List[RemoteItemRef] = []
        for ref in chain(created, modified):
            if not ref.reference:
                logger.warning(f"Skipping item without reference (uid={ref.uid!r})")
                continue
            batch.append(ref)
            if len(batch) == self.batch_size:
                self._fetch_batch(batch, cancellable)
                batch = []

        if batch:
            self._fetch_batch(batch, cancellable)

        pending = [ref for ref in chain(created, modified) if not ref.is_fetched]
        if pending:
            logger.warning(f"{len(pending)} item(s) still pending after multiget")
        return pending

    def _fetch_batch(self, batch: List[RemoteItemRef], cancellable: Optional[Cancellable]) -> None:
        session = self.backend.require_session()
        correlator = MultigetCorrelator(batch, self.backend.vcard_parser)

        session.report(None, None, build_multiget_body(batch), correlator, cancellable)

        logger.debug(f"multiget: {correlator.matched}/{len(batch)} matched")
