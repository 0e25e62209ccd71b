"""
WebDAV Adressbuch-Backend.

Fassade ueber Negotiator, ChangeDetector, BatchFetcher und ItemResolver.
Besitzt die Transport-Session und den SessionState einer Verbindung.
"""
import logging
from typing import Optional, Dict, Any, List, Tuple

from .batch_fetcher import BatchFetcher
from .cache.base import BookCache
from .cancellable import Cancellable
from .change_detector import ChangeDetector
from .config import BackendConfig
from .error_classifier import ErrorClassifier
from .item_resolver import ItemResolver
from .models import (
    ChangeSet,
    ConflictResolution,
    ConnectResult,
    Contact,
    RemoteItemRef,
    SaveResult,
    SessionState,
)
from .negotiator import CapabilityNegotiator
from .transport.session import WebDAVSession
from .vcard_parser import VCardParser

logger = logging.getLogger(__name__)

PROPERTY_CAPABILITIES = "capabilities"

BACKEND_CAPABILITIES = ("net", "do-initial-query", "contact-lists")
META_CAPABILITIES = ("refresh-supported", "bulk-adds", "bulk-modifies", "bulk-removes")


class WebDAVBookBackend:
    """
    Backend fuer eine CardDAV-Adressbuch-Collection.

    Verwendung:
        backend = WebDAVBookBackend(BackendConfig.from_env(), MemoryBookCache())
        result = backend.connect({"username": "max", "password": "geheim"})
        if result.accepted:
            changes = backend.get_changes(cache.get_sync_tag())
    """

    def __init__(self, config: BackendConfig, cache: BookCache, session_factory=WebDAVSession):
        self.config = config
        self.cache = cache
        self.state = SessionState()
        self.session: Optional[WebDAVSession] = None
        self.vcard_parser = VCardParser()
        self.classifier = ErrorClassifier(lambda: self.session)

        self.negotiator = CapabilityNegotiator(self, session_factory)
        self.fetcher = BatchFetcher(self)
        self.detector = ChangeDetector(self, self.fetcher)
        self.resolver = ItemResolver(self)

    def require_session(self) -> WebDAVSession:
        if self.session is None:
            raise RuntimeError("Not connected")
        return self.session

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.state.connected

    @property
    def is_writable(self) -> bool:
        return self.state.writable

    # === Verbindung ===

    def connect(
        self,
        credentials: Optional[Dict[str, Any]] = None,
        cancellable: Optional[Cancellable] = None
    ) -> ConnectResult:
        """Verbindet mit der Collection (siehe CapabilityNegotiator)."""
        return self.negotiator.connect(credentials, cancellable)

    def disconnect(self) -> None:
        """Bricht laufende Requests ab und gibt die Session frei."""
        if self.session is not None:
            self.session.close()
        self.session = None
        self.state.reset()
        logger.info(f"Disconnected from {self.config.collection_url}")

    # === Sync ===

    def get_changes(
        self,
        last_token: Optional[str],
        cancellable: Optional[Cancellable] = None
    ) -> ChangeSet:
        return self.detector.get_changes(last_token, cancellable)

    def list_existing(self, cancellable: Optional[Cancellable] = None) -> List[RemoteItemRef]:
        return self.detector.list_existing(cancellable)

    # === Einzelne Kontakte ===

    def load_contact(
        self,
        uid: str,
        reference: Optional[str] = None,
        cancellable: Optional[Cancellable] = None
    ) -> Tuple[Contact, str]:
        return self.resolver.load(uid, reference, cancellable)

    def save_contact(
        self,
        contact: Contact,
        reference: Optional[str] = None,
        overwrite: bool = False,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> SaveResult:
        return self.resolver.save(contact, reference, overwrite, conflict_resolution, cancellable)

    def remove_contact(
        self,
        uid: str,
        reference: Optional[str],
        serialized_object: str,
        conflict_resolution: ConflictResolution = ConflictResolution.FAIL,
        cancellable: Optional[Cancellable] = None
    ) -> None:
        self.resolver.remove(uid, reference, serialized_object, conflict_resolution, cancellable)

    # === Eigenschaften ===

    def get_ssl_error_details(self) -> Optional[Tuple[Optional[str], Optional[str]]]:
        """(certificate_pem, certificate_errors) oder None ohne Session."""
        if self.session is None:
            return None
        return self.session.ssl_error_details()

    def get_backend_property(self, name: str) -> Optional[str]:
        if name == PROPERTY_CAPABILITIES:
            return ",".join(BACKEND_CAPABILITIES + META_CAPABILITIES)
        return None
