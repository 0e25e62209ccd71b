"""
Fehler-Taxonomie fuer die CardDAV-Synchronisation.

TransportError ist der rohe Fehler der HTTP-Schicht. Alle anderen Klassen sind
Domain-Fehler, die der Error Classifier am Ende einer Operation erzeugt.
"""
from enum import Enum
from typing import Optional


class TransportErrorKind(Enum):
    HTTP = "http"
    TLS = "tls"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION = "connection"
    INVALID_RESPONSE = "invalid_response"


class TransportError(Exception):
    """Roher Fehler der WebDAV-Session (HTTP-Status, TLS, Netzwerk)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        kind: TransportErrorKind = TransportErrorKind.HTTP
    ):
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind

    def matches(self, status_code: int) -> bool:
        return self.kind == TransportErrorKind.HTTP and self.status_code == status_code


class SyncError(Exception):
    """Basisklasse aller Domain-Fehler."""


class SyncConnectionError(SyncError):
    """Netzwerk nicht erreichbar, DNS-Fehler oder Verbindung abgelehnt."""


class AuthenticationKind(Enum):
    REQUIRED = "required"
    FAILED = "failed"


class AuthenticationError(SyncError):
    """Authentifizierung erforderlich oder fehlgeschlagen."""

    def __init__(self, message: str, kind: AuthenticationKind = AuthenticationKind.REQUIRED):
        super().__init__(message)
        self.kind = kind

    @property
    def required(self) -> bool:
        return self.kind == AuthenticationKind.REQUIRED


class TLSError(SyncError):
    """Sicherer Kanal nicht verfuegbar."""

    def __init__(
        self,
        message: str,
        certificate_pem: Optional[str] = None,
        certificate_errors: Optional[str] = None
    ):
        super().__init__(message)
        self.certificate_pem = certificate_pem
        self.certificate_errors = certificate_errors


class NotFoundError(SyncError):
    """Ressource existiert nicht."""


class PreconditionFailedError(SyncError):
    """Revision ist veraltet (If-Match schlug fehl)."""


class ProtocolError(SyncError):
    """Unerwartete oder fehlerhafte Server-Antwort."""


class ValidationError(SyncError, ValueError):
    """Ungueltiger Datensatz oder fehlender Identifier."""


class CancelledError(SyncError):
    """Operation wurde abgebrochen."""
