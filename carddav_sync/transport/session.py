"""
WebDAV-Session auf Basis von requests.

Kapselt OPTIONS, PROPFIND, REPORT, GET, PUT und DELETE gegen eine
Adressbuch-Collection. Fehler werden als rohe TransportError geworfen,
die Klassifizierung passiert im Backend.
"""
import logging
import ssl
from typing import Optional, Dict, Any, Set, Tuple
from urllib.parse import urljoin, urlsplit

import requests

from ..cancellable import Cancellable, check_cancelled
from ..config import BackendConfig
from ..errors import TransportError, TransportErrorKind
from .multistatus import ItemVisitor, PropertyReader, walk_multistatus, maybe_dequote

logger = logging.getLogger(__name__)

DEPTH_THIS = "0"
DEPTH_THIS_AND_CHILDREN = "1"

CONTENT_TYPE_VCARD = "text/vcard; charset=utf-8"
CONTENT_TYPE_XML = "application/xml; charset=utf-8"

CAPABILITY_ADDRESSBOOK = "addressbook"

GETCTAG_BODY = '''<?xml version="1.0" encoding="UTF-8"?>
<d:propfind xmlns:d="DAV:" xmlns:cs="http://calendarserver.org/ns/">
  <d:prop>
    <cs:getctag/>
  </d:prop>
</d:propfind>'''


class _CtagVisitor(ItemVisitor):

    def __init__(self):
        self.ctag: Optional[str] = None

    def on_item(self, reference: str, status_code: int, props: PropertyReader) -> bool:
        if status_code == 200 and props.has("CS:getctag"):
            self.ctag = (props.text("CS:getctag") or "").strip() or None
            return False
        return True


def _mask(username: str) -> str:
    return f"{username[:3]}***" if username else "<anonymous>"


class WebDAVSession:
    """
    HTTP-Session fuer eine Adressbuch-Collection.

    Verwendung:
        session = WebDAVSession(config, {"username": "max", "password": "..."})
        capabilities, allows = session.options()
    """

    def __init__(self, config: BackendConfig, credentials: Optional[Dict[str, Any]] = None):
        self.config = config
        self.base_uri = config.collection_url
        self.credentials: Dict[str, Any] = dict(credentials or {})

        # Wird gesetzt sobald der Server eine Authentifizierung verlangt (401)
        self.requires_credentials = False

        self._last_ssl_error: Optional[Tuple[Optional[str], Optional[str]]] = None

        self.http = requests.Session()
        self.http.headers.update({
            "User-Agent": config.user_agent,
            "Accept": "*/*",
        })
        self.http.verify = config.verify_tls

        username = self.credentials.get("username")
        password = self.credentials.get("password")
        if username:
            self.http.auth = (username, password or "")

        logger.info(f"WebDAV session for {self.base_uri} as {_mask(username or '')}")

    @property
    def has_credentials(self) -> bool:
        return any(self.credentials.values())

    # === Transport ===

    def resolve_uri(self, uri: Optional[str]) -> str:
        """Absolute URI fuer eine Referenz; Pfade gelten relativ zur Collection."""
        if not uri:
            return self.base_uri
        return urljoin(self.base_uri, uri)

    def _request(
        self,
        method: str,
        uri: Optional[str],
        cancellable: Optional[Cancellable] = None,
        data: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        expected: Tuple[int, ...] = (200, 201, 204, 207)
    ) -> requests.Response:
        check_cancelled(cancellable)

        url = self.resolve_uri(uri)
        if self.config.debug:
            logger.debug(f"> {method} {url} {headers or {}}")
            if data:
                logger.debug(f"> {data}")

        try:
            response = self.http.request(
                method,
                url,
                data=data.encode("utf-8") if data is not None else None,
                headers=headers or {},
                timeout=self.config.timeout
            )
        except requests.exceptions.SSLError as e:
            self._remember_ssl_error(url, e)
            raise TransportError(f"TLS handshake with {url} failed: {e}", kind=TransportErrorKind.TLS) from e
        except requests.exceptions.ConnectionError as e:
            check_cancelled(cancellable)
            kind = TransportErrorKind.CONNECTION
            if isinstance(e.__context__, ConnectionRefusedError) or "refused" in str(e).lower():
                kind = TransportErrorKind.CONNECTION_REFUSED
            raise TransportError(f"Cannot connect to {url}: {e}", kind=kind) from e
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request to {url} timed out", kind=TransportErrorKind.CONNECTION) from e
        except requests.exceptions.RequestException as e:
            # z.B. ChunkedEncodingError oder TooManyRedirects
            raise TransportError(f"{method} {url} failed: {e}", kind=TransportErrorKind.INVALID_RESPONSE) from e

        if self.config.debug:
            logger.debug(f"< {response.status_code} {dict(response.headers)}")
            logger.debug(f"< {response.text[:2000]}")

        check_cancelled(cancellable)

        if response.status_code == 401:
            self.requires_credentials = True

        if response.status_code not in expected:
            raise TransportError(
                f"{method} {url} failed: {response.status_code} {response.reason}",
                status_code=response.status_code
            )

        return response

    def _remember_ssl_error(self, url: str, error: Exception) -> None:
        parts = urlsplit(url)
        pem = None
        try:
            pem = ssl.get_server_certificate((parts.hostname, parts.port or 443))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not retrieve certificate of {parts.hostname}: {e}")
        self._last_ssl_error = (pem, str(error))

    def ssl_error_details(self) -> Optional[Tuple[Optional[str], Optional[str]]]:
        """(certificate_pem, certificate_errors) des letzten TLS-Fehlers."""
        return self._last_ssl_error

    # === WebDAV-Methoden ===

    def options(
        self,
        uri: Optional[str] = None,
        cancellable: Optional[Cancellable] = None
    ) -> Tuple[Set[str], Set[str]]:
        """
        Fragt Server-Faehigkeiten ab.

        Returns:
            (capabilities aus DAV-Header, erlaubte Methoden aus Allow-Header)
        """
        response = self._request("OPTIONS", uri, cancellable, expected=(200, 204))

        capabilities = {
            item.strip().lower()
            for item in response.headers.get("DAV", "").split(",")
            if item.strip()
        }
        allows = {
            item.strip().upper()
            for item in response.headers.get("Allow", "").split(",")
            if item.strip()
        }
        return capabilities, allows

    def getctag(self, uri: Optional[str] = None, cancellable: Optional[Cancellable] = None) -> str:
        """
        Holt den aktuellen Change-Tag der Collection.

        Raises:
            TransportError: Wenn der Server getctag nicht liefert
        """
        visitor = _CtagVisitor()
        self.propfind(uri, DEPTH_THIS, GETCTAG_BODY, visitor, cancellable)
        if not visitor.ctag:
            raise TransportError(
                "Server does not support getctag",
                kind=TransportErrorKind.INVALID_RESPONSE
            )
        return visitor.ctag

    def propfind(
        self,
        uri: Optional[str],
        depth: str,
        body: str,
        visitor: ItemVisitor,
        cancellable: Optional[Cancellable] = None
    ) -> None:
        response = self._request(
            "PROPFIND",
            uri,
            cancellable,
            data=body,
            headers={"Content-Type": CONTENT_TYPE_XML, "Depth": depth},
            expected=(207,)
        )
        walk_multistatus(response.text, visitor, self.resolve_uri(uri))

    def report(
        self,
        uri: Optional[str],
        depth: Optional[str],
        body: str,
        visitor: ItemVisitor,
        cancellable: Optional[Cancellable] = None
    ) -> None:
        headers = {"Content-Type": CONTENT_TYPE_XML}
        if depth is not None:
            headers["Depth"] = depth
        response = self._request("REPORT", uri, cancellable, data=body, headers=headers, expected=(207,))
        walk_multistatus(response.text, visitor, self.resolve_uri(uri))

    def get_data(
        self,
        uri: str,
        cancellable: Optional[Cancellable] = None
    ) -> Tuple[str, Optional[str], str]:
        """
        Laedt eine einzelne Ressource.

        Returns:
            (href, etag, content)
        """
        response = self._request(
            "GET",
            uri,
            cancellable,
            headers={"Accept": "text/vcard, text/x-vcard;q=0.9"},
            expected=(200,)
        )
        return response.url or self.resolve_uri(uri), maybe_dequote(response.headers.get("ETag")), response.text

    def put_data(
        self,
        uri: str,
        etag: Optional[str],
        content_type: str,
        data: str,
        cancellable: Optional[Cancellable] = None
    ) -> Tuple[str, Optional[str]]:
        """
        Schreibt eine Ressource.

        Args:
            etag: None -> nur anlegen (If-None-Match: *),
                  "" -> bedingungslos schreiben,
                  sonst If-Match auf dieses ETag

        Returns:
            (href, neues etag oder None)
        """
        headers = {"Content-Type": content_type}
        if etag is None:
            headers["If-None-Match"] = "*"
        elif etag:
            headers["If-Match"] = etag if etag.startswith(("\"", "W/")) else f'"{etag}"'

        response = self._request("PUT", uri, cancellable, data=data, headers=headers, expected=(200, 201, 204))

        url = self.resolve_uri(uri)
        location = response.headers.get("Location")
        href = urljoin(url, location) if location else url
        return href, maybe_dequote(response.headers.get("ETag"))

    def delete(
        self,
        uri: str,
        etag: Optional[str] = None,
        cancellable: Optional[Cancellable] = None
    ) -> None:
        headers = {}
        if etag:
            headers["If-Match"] = etag if etag.startswith(("\"", "W/")) else f'"{etag}"'
        self._request("DELETE", uri, cancellable, headers=headers, expected=(200, 202, 204))

    def abort(self) -> None:
        """Bricht offene Verbindungen ab und schliesst den Pool."""
        self.http.close()

    def close(self) -> None:
        self.abort()
        logger.info(f"WebDAV session for {self.base_uri} closed")
