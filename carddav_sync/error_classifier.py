"""
Error Classifier.

Uebersetzt rohe TransportError in die Domain-Fehler-Taxonomie. Wird einmal
am Ende jeder Top-Level-Operation angewendet, damit Fallbacks innerhalb einer
Operation noch den rohen Fehler sehen.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from .errors import (
    TransportError,
    TransportErrorKind,
    SyncError,
    SyncConnectionError,
    AuthenticationError,
    AuthenticationKind,
    TLSError,
    NotFoundError,
    PreconditionFailedError,
    ProtocolError,
)
from .transport.session import WebDAVSession

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_PRECONDITION_FAILED = 412


class ErrorClassifier:
    """
    Klassifiziert Transportfehler.

    Args:
        session_provider: Liefert die aktuelle Session (oder None nach Disconnect)
    """

    def __init__(self, session_provider: Callable[[], Optional[WebDAVSession]]):
        self._session_provider = session_provider

    def classify(self, error: TransportError) -> SyncError:
        """Gibt den passenden Domain-Fehler fuer einen Transportfehler zurueck."""
        session = self._session_provider()
        message = str(error)

        if error.kind == TransportErrorKind.TLS:
            pem, details = (session.ssl_error_details() or (None, None)) if session else (None, None)
            return TLSError(f"Secure channel unavailable: {message}", pem, details)

        if error.kind in (TransportErrorKind.CONNECTION, TransportErrorKind.CONNECTION_REFUSED):
            return SyncConnectionError(message)

        if error.kind == TransportErrorKind.INVALID_RESPONSE:
            return ProtocolError(message)

        if error.status_code in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            if session is not None and session.has_credentials:
                return AuthenticationError(f"Authentication failed: {message}", AuthenticationKind.FAILED)
            return AuthenticationError(f"Authentication required: {message}", AuthenticationKind.REQUIRED)

        if error.status_code == HTTP_NOT_FOUND:
            return NotFoundError(message)

        if error.status_code == HTTP_PRECONDITION_FAILED:
            return PreconditionFailedError(message)

        return ProtocolError(message)

    @contextmanager
    def classified(self) -> Iterator[None]:
        """
        Context Manager fuer Top-Level-Operationen.

        CancelledError und bereits klassifizierte Fehler bleiben unveraendert.
        """
        try:
            yield
        except SyncError:
            raise
        except TransportError as e:
            classified = self.classify(e)
            logger.debug(f"Classified {e!r} as {type(classified).__name__}")
            raise classified from e
