"""
Item Resolver.

Einzelne Lade-, Speicher- und Loeschoperationen gegen die Collection,
inklusive Fallback auf aus der UID abgeleitete URIs.
"""
import logging
from dataclasses import replace
from typing import Optional, Tuple

from .cancellable import Cancellable
from .errors import NotFoundError, TransportError, ValidationError
from .error_classifier import HTTP_NOT_FOUND
from .models import Contact, ConflictResolution, ProviderQuirk, SaveResult
from .transport.session import CONTENT_TYPE_VCARD
from .uri_mapper import uid_to_uri, DEFAULT_EXTENSION
from .vcard_parser import ETAG_ATTRIBUTE, contact_revision

logger = logging.getLogger(__name__)


class ItemResolver:
    """
    Direkte Operationen auf einzelnen Kontakten.

    Args:
        backend: WebDAVBookBackend
    """

    def __init__(self, backend):
        self.backend = backend

    @property
    def _is_google(self) -> bool:
        return self.backend.state.provider_quirk == ProviderQuirk.GOOGLE

    def _uri_for(self, uid: str, extension: Optional[str]) -> str:
        return uid_to_uri(self.backend.config.collection_url, uid, extension)

    def load(
        self,
        uid: str,
        reference: Optional[str] = None,
        cancellable: Optional[Cancellable] = None
    ) -> Tuple[Contact, str]:
        """
        Laedt einen Kontakt.

        Args:
            uid: UID des Kontakts
            reference: Bekannte Referenz aus dem Cache (oder None)

        Returns:
            (Contact mit gestempeltem ETag, href)

        Raises:
            NotFoundError: Wenn der Kontakt nicht existiert
            ValidationError: Wenn die Antwort keine gueltige vCard ist
        """
        if not uid:
            raise ValidationError("uid is required")

        backend = self.backend
        session = backend.require_session()

        with backend.classifier.classified():
            result = None

            if reference:
                try:
                    result = session.get_data(reference, cancellable)
                except TransportError as e:
                    logger.debug(f"Loading {uid} by reference {reference} failed: {e}")

            if result is None and backend.state.supports_fast_change_token:
                try:
                    new_token = session.getctag(None, cancellable)
                except TransportError:
                    new_token = None

                # Adressbuch unveraendert -> der Kontakt kann nicht da sein
                if new_token and new_token == backend.cache.get_sync_tag():
                    raise NotFoundError(f"Contact {uid} not found")

            if result is None:
                uri = self._uri_for(uid, None if self._is_google else DEFAULT_EXTENSION)
                try:
                    result = session.get_data(uri, cancellable)
                except TransportError as e:
                    # Google zaehlt Fehlversuche gegen das Quota, daher nur einmal
                    if self._is_google or not e.matches(HTTP_NOT_FOUND):
                        raise
                    result = session.get_data(self._uri_for(uid, None), cancellable)

            href, etag, content = result
            contact = None
            if href and etag and content:
                contact = backend.vcard_parser.parse_or_none(content)

            if contact is None:
                raise ValidationError("Received object is not a valid vCard")

            contact.set_x_attribute(ETAG_ATTRIBUTE, etag)
            return contact, href

    def save(
        self,
        contact: Contact,
        reference: Optional[str] = None,
        overwrite: bool = False,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> SaveResult:
        """
        Speichert einen Kontakt.

        Args:
            contact: Kontakt mit UID (gestempeltes ETag dient als Vorbedingung)
            reference: Bekannte Referenz; None fuer neue Kontakte
            overwrite: True wenn ein bestehender Kontakt ersetzt wird
            conflict_resolution: KEEP_LOCAL schreibt ohne Vorbedingung

        Returns:
            SaveResult mit uid, Referenz und neuer Revision (falls geliefert)

        Raises:
            ValidationError: Ohne UID, ohne Serialisierung oder beim
                Ueberschreiben ohne Referenz
        """
        uid = contact.uid
        etag = contact_revision(contact)

        # Das ETag gehoert nicht auf den Server
        upload = replace(contact, x_attributes=dict(contact.x_attributes))
        upload.set_x_attribute(ETAG_ATTRIBUTE, None)

        vcard_string = self.backend.vcard_parser.serialize(upload) if uid else None

        if not uid or not vcard_string or (overwrite and not reference):
            raise ValidationError("Object to save is not a valid vCard")

        backend = self.backend
        session = backend.require_session()

        with backend.classifier.classified():
            href = reference or self._uri_for(uid, DEFAULT_EXTENSION)

            if overwrite and conflict_resolution == ConflictResolution.KEEP_LOCAL:
                precondition = ""
            elif overwrite:
                precondition = etag
            else:
                precondition = None

            new_href, new_etag = session.put_data(href, precondition, CONTENT_TYPE_VCARD, vcard_string, cancellable)

            logger.info(f"Saved contact {uid} to {new_href}")
            return SaveResult(uid=uid, reference=new_href, revision=new_etag)

    def remove(
        self,
        uid: str,
        reference: Optional[str],
        serialized_object: str,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> None:
        """
        Loescht einen Kontakt.

        Liefert die Referenz 404, werden die aus der UID abgeleiteten URIs
        (mit, dann ohne Endung) versucht.

        Raises:
            ValidationError: Ohne Referenz oder mit ungueltigem Objekt
            NotFoundError: Wenn keine der URIs existiert
        """
        if not reference:
            raise ValidationError(f"Cannot remove contact {uid} without a resource reference")

        contact = self.backend.vcard_parser.parse_or_none(serialized_object)
        if contact is None:
            raise ValidationError("Object to remove is not a valid vCard")

        etag = contact_revision(contact) if conflict_resolution == ConflictResolution.FAIL else None

        backend = self.backend
        session = backend.require_session()

        with backend.classifier.classified():
            try:
                session.delete(reference, etag, cancellable)
            except TransportError as e:
                if not e.matches(HTTP_NOT_FOUND):
                    raise
                logger.debug(f"Reference {reference} not found, trying URIs derived from {uid}")
                try:
                    session.delete(self._uri_for(uid, DEFAULT_EXTENSION), etag, cancellable)
                except TransportError as e2:
                    if not e2.matches(HTTP_NOT_FOUND):
                        raise
                    session.delete(self._uri_for(uid, None), etag, cancellable)

            logger.info(f"Removed contact {uid}")
