"""
Multistatus-Verarbeitung (207) fuer PROPFIND und REPORT.

Jede Antwort wird ueber ein ItemVisitor gereicht. Pro Verbraucher gibt es
eine konkrete Implementierung (Listing, multiget, addressbook-query).
"""
import re
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Dict, Optional
from urllib.parse import urljoin

from ..errors import TransportError, TransportErrorKind

NS_DAV = "DAV:"
NS_CARDDAV = "urn:ietf:params:xml:ns:carddav"
NS_CALENDARSERVER = "http://calendarserver.org/ns/"

_STATUS_RE = re.compile(r"HTTP/\d(?:\.\d)?\s+(\d{3})")


class PropertyReader:
    """
    Lesezugriff auf ein <d:prop> Element.

    Pfade nutzen registrierte Praefixe, z.B. "D:getetag" oder "C:address-data".
    """

    def __init__(self, prop: Optional[ET.Element], namespaces: Dict[str, str]):
        self._prop = prop
        self._namespaces = namespaces

    def find(self, path: str) -> Optional[ET.Element]:
        if self._prop is None:
            return None
        return self._prop.find(path, self._namespaces)

    def text(self, path: str) -> Optional[str]:
        """Textinhalt einer Property oder None."""
        element = self.find(path)
        if element is None:
            return None
        return element.text or ""

    def has(self, path: str) -> bool:
        return self.find(path) is not None


class ItemVisitor(ABC):
    """Callback-Interface fuer einzelne Eintraege einer Multistatus-Antwort."""

    def on_namespace_init(self, namespaces: Dict[str, str]) -> None:
        """Registriert zusaetzliche Praefixe bevor Eintraege gelesen werden."""

    @abstractmethod
    def on_item(self, reference: str, status_code: int, props: PropertyReader) -> bool:
        """
        Verarbeitet einen Eintrag.

        Returns:
            False um die Verarbeitung abzubrechen
        """


def maybe_dequote(value: Optional[str]) -> Optional[str]:
    """Entfernt umschliessende Anfuehrungszeichen eines ETags."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("W/"):
        return value
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


def parse_status(status_text: Optional[str], default: int = 200) -> int:
    if not status_text:
        return default
    match = _STATUS_RE.search(status_text)
    if not match:
        return default
    return int(match.group(1))


def walk_multistatus(xml_text: str, visitor: ItemVisitor, base_uri: Optional[str] = None) -> None:
    """
    Reicht jeden Eintrag einer Multistatus-Antwort an den Visitor.

    Server liefern hrefs meist als Pfad. Mit base_uri wird jedes href gegen die
    Request-URI aufgeloest, damit Referenzen immer absolut sind.

    Raises:
        TransportError: Bei nicht parsebarem XML
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise TransportError(
            f"Malformed multistatus response: {e}",
            kind=TransportErrorKind.INVALID_RESPONSE
        ) from e

    namespaces = {"D": NS_DAV, "CS": NS_CALENDARSERVER}
    visitor.on_namespace_init(namespaces)

    for response in root.findall("D:response", namespaces):
        href_element = response.find("D:href", namespaces)
        href = (href_element.text or "").strip() if href_element is not None else ""
        if href and base_uri:
            href = urljoin(base_uri, href)

        propstats = response.findall("D:propstat", namespaces)
        if not propstats:
            # z.B. 404 fuer ein angefragtes href im multiget
            status = parse_status(response.findtext("D:status", None, namespaces))
            if not visitor.on_item(href, status, PropertyReader(None, namespaces)):
                return
            continue

        for propstat in propstats:
            status = parse_status(propstat.findtext("D:status", None, namespaces))
            prop = propstat.find("D:prop", namespaces)
            if not visitor.on_item(href, status, PropertyReader(prop, namespaces)):
                return
