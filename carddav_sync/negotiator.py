"""
Capability Negotiator.

Baut die Session auf, prueft ob die URL ein Adressbuch ist und uebersetzt
das Ergebnis in ein AuthOutcome. Enthaelt die Fallbacks fuer iCloud und
Google, die OPTIONS auf der Collection mit 404 beantworten.
"""
import logging
from typing import Optional, Dict, Any, Set, Tuple

from .cancellable import Cancellable
from .errors import (
    TransportError,
    TransportErrorKind,
    SyncError,
    ProtocolError,
    TLSError,
)
from .error_classifier import HTTP_UNAUTHORIZED, HTTP_FORBIDDEN, HTTP_NOT_FOUND
from .models import AuthOutcome, ConnectResult, ProviderQuirk
from .transport.session import WebDAVSession, CAPABILITY_ADDRESSBOOK
from .uri_mapper import host_of, parent_collection

logger = logging.getLogger(__name__)

ICLOUD_DOMAIN = ".icloud.com"
GOOGLE_CONTENT_DOMAIN = ".googleusercontent.com"
GOOGLE_HOSTS = ("www.google.com", "apidata.googleusercontent.com")

WRITE_METHODS = ("PUT", "POST", "DELETE")


def _credentials_given(credentials: Optional[Dict[str, Any]]) -> bool:
    return bool(credentials) and any(credentials.values())


def detect_provider_quirk(uri: str) -> ProviderQuirk:
    host = host_of(uri)
    if host in GOOGLE_HOSTS:
        return ProviderQuirk.GOOGLE
    if ICLOUD_DOMAIN in host:
        return ProviderQuirk.ICLOUD
    return ProviderQuirk.NONE


class CapabilityNegotiator:
    """
    Verbindungsaufbau fuer ein Backend.

    Args:
        backend: WebDAVBookBackend, dessen Session und SessionState gesetzt werden
        session_factory: Erzeugt die Transport-Session (config, credentials)
    """

    def __init__(self, backend, session_factory=WebDAVSession):
        self.backend = backend
        self._session_factory = session_factory

    def connect(
        self,
        credentials: Optional[Dict[str, Any]] = None,
        cancellable: Optional[Cancellable] = None
    ) -> ConnectResult:
        """
        Verbindet mit der Collection.

        Args:
            credentials: Dict mit username, password (leer fuer anonymen Zugriff)
            cancellable: Optionales Abbruch-Signal

        Returns:
            ConnectResult mit AuthOutcome und ggf. Fehler/Zertifikat
        """
        backend = self.backend

        if backend.session is not None:
            return ConnectResult(AuthOutcome.ACCEPTED)

        session = self._session_factory(backend.config, credentials or {})
        backend.session = session

        # Wird erst beim ersten Fehlschlag im Sync zurueckgenommen
        backend.state.supports_fast_change_token = True

        try:
            capabilities, allows = self._query_options(session, cancellable)
            self._apply_capabilities(capabilities, allows)
            self._check_change_tag(session, cancellable)
        except (TransportError, SyncError) as e:
            result = self._failure_result(session, credentials, e)
            logger.warning(f"Connect to {backend.config.collection_url} failed: {result.outcome.value}: {e}")

            session.close()
            backend.session = None
            backend.state.connected = False
            return result

        backend.state.connected = True
        logger.info(
            f"Connected to {backend.config.collection_url} "
            f"(writable={backend.state.writable}, quirk={backend.state.provider_quirk.value})"
        )
        return ConnectResult(AuthOutcome.ACCEPTED)

    def _query_options(
        self,
        session: WebDAVSession,
        cancellable: Optional[Cancellable]
    ) -> Tuple[Set[str], Set[str]]:
        """OPTIONS mit Provider-Fallbacks."""
        url = self.backend.config.collection_url
        try:
            return session.options(None, cancellable)
        except TransportError as e:
            if not e.matches(HTTP_NOT_FOUND):
                raise

            host = host_of(url)
            if ICLOUD_DOMAIN in host:
                parent = parent_collection(url)
                if parent is None:
                    raise
                logger.info(f"OPTIONS on {url} returned 404, retrying on parent {parent}")
                return session.options(parent, cancellable)

            if GOOGLE_CONTENT_DOMAIN in host:
                # Google lehnt OPTIONS ab, Faehigkeiten sind bekannt
                logger.info(f"OPTIONS on {url} returned 404, using fixed Google capabilities")
                return {CAPABILITY_ADDRESSBOOK}, {"PUT"}

            raise

    def _apply_capabilities(self, capabilities: Set[str], allows: Set[str]) -> None:
        state = self.backend.state
        url = self.backend.config.collection_url

        if CAPABILITY_ADDRESSBOOK not in {c.lower() for c in capabilities}:
            raise ProtocolError(f"Given URL “{url}” doesn’t reference WebDAV address book")

        # POST fuer Server, die PUT auf Collections nicht melden (FastMail)
        upper = {a.upper() for a in allows}
        state.writable = any(method in upper for method in WRITE_METHODS)
        state.provider_quirk = detect_provider_quirk(url)

    def _check_change_tag(self, session: WebDAVSession, cancellable: Optional[Cancellable]) -> None:
        """
        Einmaliger getctag-Versuch.

        Manche Server (Google) erlauben OPTIONS ohne Anmeldung. Nur 401 bricht
        ab; ein fehlender getctag ist kein Grund, die Verbindung zu verweigern.
        """
        try:
            session.getctag(None, cancellable)
        except TransportError as e:
            if e.matches(HTTP_UNAUTHORIZED):
                raise
            logger.debug(f"getctag check on connect failed, ignoring: {e}")

    def _failure_result(
        self,
        session: WebDAVSession,
        credentials: Optional[Dict[str, Any]],
        error: Exception
    ) -> ConnectResult:
        credentials_empty = not _credentials_given(credentials) and session.requires_credentials

        # CancelledError und ProtocolError ("kein Adressbuch") bleiben unveraendert
        if not isinstance(error, TransportError):
            return ConnectResult(AuthOutcome.ERROR, error)

        classified = self.backend.classifier.classify(error)

        if error.kind == TransportErrorKind.TLS:
            pem = classified.certificate_pem if isinstance(classified, TLSError) else None
            details = classified.certificate_errors if isinstance(classified, TLSError) else None
            return ConnectResult(AuthOutcome.ERROR_TLS, classified, pem, details)

        outcome = AuthOutcome.ERROR
        if error.matches(HTTP_FORBIDDEN) and credentials_empty:
            outcome = AuthOutcome.REQUIRED
        elif error.matches(HTTP_UNAUTHORIZED):
            outcome = AuthOutcome.REQUIRED if credentials_empty else AuthOutcome.REJECTED
        elif error.kind == TransportErrorKind.CONNECTION_REFUSED or (
                not session.requires_credentials and error.matches(HTTP_NOT_FOUND)):
            outcome = AuthOutcome.REJECTED

        return ConnectResult(outcome, classified)
