"""
Identity/URI Mapper.

Leitet kanonische Ressourcen-URIs aus UIDs ab, wenn noch keine Referenz
im Cache liegt.
"""
import posixpath
from typing import Optional
from urllib.parse import quote, urlsplit, urlunsplit

DEFAULT_EXTENSION = ".vcf"


def _strip_credentials(netloc: str) -> str:
    return netloc.rsplit("@", 1)[-1]


def uid_to_uri(base_uri: str, uid: str, extension: Optional[str] = DEFAULT_EXTENSION) -> str:
    """
    Baut die Ressourcen-URI fuer eine UID.

    Args:
        base_uri: URI der Adressbuch-Collection
        uid: UID des Kontakts
        extension: Dateiendung (z.B. ".vcf") oder None

    Returns:
        URI ohne eingebettete Zugangsdaten
    """
    if not uid:
        raise ValueError("uid must not be empty")

    filename = quote(uid + (extension or ""), safe="")

    parts = urlsplit(base_uri)
    path = parts.path
    if path.endswith("/"):
        path = path[:-1]

    return urlunsplit((
        parts.scheme,
        _strip_credentials(parts.netloc),
        f"{path}/{filename}",
        parts.query,
        ""
    ))


def href_path(reference: str) -> str:
    """Pfad (mit Query) einer Referenz, wie er in einem multiget-href steht."""
    parts = urlsplit(reference)
    if not parts.scheme or not parts.netloc:
        return reference
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


def parent_collection(uri: str) -> Optional[str]:
    """
    URI der uebergeordneten Collection, z.B. /a/b/ -> /a/.

    Returns:
        None wenn der Pfad keinen Eltern-Abschnitt hat
    """
    parts = urlsplit(uri)
    path = parts.path.rstrip("/")
    if not path:
        return None

    parent = posixpath.dirname(path)
    if not parent or not path.startswith(parent):
        return None
    if not parent.endswith("/"):
        parent += "/"

    return urlunsplit((parts.scheme, parts.netloc, parent, parts.query, ""))


def is_collection_href(href: str, request_path: Optional[str]) -> bool:
    """Erkennt die Collection selbst in Listing-Antworten (iCloud liefert sie mit)."""
    if href.endswith("/"):
        return True
    return bool(request_path) and href.endswith(request_path)


def host_of(uri: str) -> str:
    return (urlsplit(uri).hostname or "").lower()
