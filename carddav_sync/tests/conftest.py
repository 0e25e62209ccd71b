"""
Gemeinsame Fixtures: ein CardDAV-Server im Arbeitsspeicher.

FakeSession ersetzt WebDAVSession und wird ueber session_factory in das
Backend gereicht.
"""
import re
from collections import defaultdict
from urllib.parse import urlsplit
from xml.sax.saxutils import escape

import pytest

from carddav_sync.backend import WebDAVBookBackend
from carddav_sync.cache.base import MemoryBookCache
from carddav_sync.config import BackendConfig
from carddav_sync.errors import TransportError
from carddav_sync.transport.multistatus import walk_multistatus

BOOK_URL = "https://dav.example.de/book/"
BOOK_PATH = "/book/"

_HREF_RE = re.compile(r"<D:href>(.*?)</D:href>")


def vcard(uid, last_name="Mustermann", first_name="Max"):
    return (
        "BEGIN:VCARD\r\nVERSION:3.0\r\n"
        f"UID:{uid}\r\nFN:{first_name} {last_name}\r\nN:{last_name};{first_name};;;\r\n"
        "END:VCARD\r\n"
    )


class FakeSession:
    """Verhaelt sich wie WebDAVSession gegen ein Adressbuch im Speicher."""

    def __init__(self, config=None, credentials=None):
        self.config = config
        self.credentials = dict(credentials or {})
        self.requires_credentials = False
        self.closed = False

        # Pfad -> (etag, vcard)
        self.resources = {}
        self.ctag = "ctag-1"
        self.capabilities = {"1", "3", "addressbook"}
        self.allows = {"OPTIONS", "GET", "PUT", "DELETE", "PROPFIND", "REPORT"}
        self.ssl_details = None

        self.calls = []
        self._failures = defaultdict(list)
        self._etag_counter = 0

    # === Test-Helfer ===

    def add(self, path, uid, etag=None, content=None):
        if etag is None:
            etag = self._next_etag()
        self.resources[path] = (etag, content or vcard(uid))
        return etag

    def fail(self, method, error, times=1):
        """Laesst die naechsten `times` Aufrufe von method mit error scheitern."""
        self._failures[method].extend([error] * times)

    def calls_of(self, method):
        return [call for call in self.calls if call[0] == method]

    def _next_etag(self):
        self._etag_counter += 1
        return f"etag-{self._etag_counter}"

    def _check(self, method, uri):
        self.calls.append((method, uri))
        if self._failures[method]:
            error = self._failures[method].pop(0)
            if isinstance(error, TransportError) and error.matches(401):
                self.requires_credentials = True
            raise error

    def _touch(self):
        self.ctag = f"ctag-{self._next_etag()}"

    def _path(self, uri):
        """Pfad einer Request-URI; wie requests nur fuer absolute URIs."""
        parts = urlsplit(uri)
        if not parts.scheme or not parts.netloc:
            raise ValueError(f"Invalid URL {uri!r}: No scheme supplied")
        return parts.path

    # === WebDAVSession-Schnittstelle ===

    @property
    def has_credentials(self):
        return any(self.credentials.values())

    def options(self, uri=None, cancellable=None):
        self._check("OPTIONS", uri)
        return set(self.capabilities), set(self.allows)

    def getctag(self, uri=None, cancellable=None):
        self._check("GETCTAG", uri)
        return self.ctag

    def propfind(self, uri, depth, body, visitor, cancellable=None):
        self._check("PROPFIND", uri)
        responses = [self._response(BOOK_PATH, None, None)]
        responses += [self._response(path, etag, None) for path, (etag, _) in sorted(self.resources.items())]
        walk_multistatus(self._multistatus(responses), visitor, uri or BOOK_URL)

    def report(self, uri, depth, body, visitor, cancellable=None):
        self.calls.append(("REPORT", body))
        if self._failures["REPORT"]:
            raise self._failures["REPORT"].pop(0)

        if "addressbook-multiget" in body:
            responses = []
            for href in _HREF_RE.findall(body):
                if href in self.resources:
                    etag, content = self.resources[href]
                    responses.append(self._response(href, etag, content))
                else:
                    responses.append(
                        f"<d:response><d:href>{href}</d:href>"
                        "<d:status>HTTP/1.1 404 Not Found</d:status></d:response>"
                    )
        else:
            responses = [
                self._response(path, etag, content)
                for path, (etag, content) in sorted(self.resources.items())
            ]
        walk_multistatus(self._multistatus(responses), visitor, uri or BOOK_URL)

    def get_data(self, uri, cancellable=None):
        self._check("GET", uri)
        path = self._path(uri)
        if path not in self.resources:
            raise TransportError(f"GET {uri} failed: 404", status_code=404)
        etag, content = self.resources[path]
        return uri, etag, content

    def put_data(self, uri, etag, content_type, data, cancellable=None):
        self.calls.append(("PUT", uri, etag))
        if self._failures["PUT"]:
            raise self._failures["PUT"].pop(0)

        path = self._path(uri)
        exists = path in self.resources
        if etag is None and exists:
            raise TransportError(f"PUT {uri} failed: 412", status_code=412)
        if etag and (not exists or self.resources[path][0] != etag):
            raise TransportError(f"PUT {uri} failed: 412", status_code=412)

        new_etag = self._next_etag()
        self.resources[path] = (new_etag, data)
        self._touch()
        return uri, new_etag

    def delete(self, uri, etag=None, cancellable=None):
        self.calls.append(("DELETE", uri, etag))
        path = self._path(uri)
        if path not in self.resources:
            raise TransportError(f"DELETE {uri} failed: 404", status_code=404)
        if etag and self.resources[path][0] != etag:
            raise TransportError(f"DELETE {uri} failed: 412", status_code=412)
        del self.resources[path]
        self._touch()

    def ssl_error_details(self):
        return self.ssl_details

    def close(self):
        self.closed = True

    # === XML ===

    def _response(self, href, etag, content):
        props = ""
        if etag is not None:
            props += f'<d:getetag>"{etag}"</d:getetag>'
        if content is not None:
            props += f"<card:address-data>{escape(content)}</card:address-data>"
        return (
            f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>{props}</d:prop>"
            "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )

    def _multistatus(self, responses):
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<d:multistatus xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">'
            + "".join(responses)
            + "</d:multistatus>"
        )


@pytest.fixture
def server():
    return FakeSession()


@pytest.fixture
def cache():
    return MemoryBookCache()


@pytest.fixture
def backend(server, cache):
    def factory(config, credentials):
        server.config = config
        server.credentials = dict(credentials)
        return server

    return WebDAVBookBackend(BackendConfig(collection_url=BOOK_URL), cache, session_factory=factory)


@pytest.fixture
def connected(backend):
    result = backend.connect({"username": "max", "password": "geheim"})
    assert result.accepted
    return backend
