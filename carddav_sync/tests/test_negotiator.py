"""
Tests fuer den Verbindungsaufbau.

Nutzt FakeSession aus conftest.py.
"""
import pytest
from carddav_sync.backend import WebDAVBookBackend
from carddav_sync.cache.base import MemoryBookCache
from carddav_sync.config import BackendConfig
from carddav_sync.errors import (
    TransportError,
    TransportErrorKind,
    AuthenticationError,
    ProtocolError,
    SyncConnectionError,
    TLSError,
    CancelledError,
)
from carddav_sync.models import AuthOutcome, ProviderQuirk
from carddav_sync.negotiator import detect_provider_quirk

from conftest import FakeSession


def make_backend(url, server):
    return WebDAVBookBackend(
        BackendConfig(collection_url=url),
        MemoryBookCache(),
        session_factory=lambda config, credentials: server
    )


class TestConnect:
    """Tests fuer connect()."""

    def test_connect_accepted(self, backend, server):
        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.ACCEPTED
        assert backend.is_connected
        assert backend.is_writable
        assert backend.state.supports_fast_change_token

    def test_connect_twice_is_noop(self, connected, server):
        calls = len(server.calls)

        result = connected.connect({"username": "max", "password": "geheim"})

        assert result.accepted
        assert len(server.calls) == calls

    def test_read_only_collection(self, backend, server):
        server.allows = {"OPTIONS", "GET", "PROPFIND"}

        backend.connect({"username": "max", "password": "geheim"})

        assert not backend.is_writable

    def test_post_counts_as_writable(self, backend, server):
        server.allows = {"OPTIONS", "GET", "POST"}

        backend.connect({"username": "max", "password": "geheim"})

        assert backend.is_writable

    def test_not_an_addressbook(self, backend, server):
        server.capabilities = {"1", "2", "calendar-access"}

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.ERROR
        assert isinstance(result.error, ProtocolError)
        assert "doesn’t reference WebDAV address book" in str(result.error)
        assert backend.session is None
        assert not backend.is_connected
        assert server.closed

    def test_wrong_password(self, backend, server):
        server.fail("OPTIONS", TransportError("401", status_code=401))

        result = backend.connect({"username": "max", "password": "falsch"})

        assert result.outcome == AuthOutcome.REJECTED
        assert isinstance(result.error, AuthenticationError)
        assert backend.session is None

    def test_credentials_required(self, backend, server):
        server.fail("OPTIONS", TransportError("401", status_code=401))

        result = backend.connect({})

        assert result.outcome == AuthOutcome.REQUIRED

    def test_forbidden_without_credentials(self, backend, server):
        server.requires_credentials = True
        server.fail("OPTIONS", TransportError("403", status_code=403))

        result = backend.connect({})

        assert result.outcome == AuthOutcome.REQUIRED

    def test_not_found_is_rejected(self, backend, server):
        server.fail("OPTIONS", TransportError("404", status_code=404))

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.REJECTED

    def test_connection_refused_is_rejected(self, backend, server):
        server.fail("OPTIONS", TransportError("refused", kind=TransportErrorKind.CONNECTION_REFUSED))

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.REJECTED
        assert isinstance(result.error, SyncConnectionError)

    def test_tls_error(self, backend, server):
        server.ssl_details = ("-----BEGIN CERTIFICATE-----", "self signed certificate")
        server.fail("OPTIONS", TransportError("tls", kind=TransportErrorKind.TLS))

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.ERROR_TLS
        assert isinstance(result.error, TLSError)
        assert result.certificate_pem == "-----BEGIN CERTIFICATE-----"
        assert result.certificate_errors == "self signed certificate"

    def test_cancelled(self, backend, server):
        server.fail("OPTIONS", CancelledError("abgebrochen"))

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.outcome == AuthOutcome.ERROR
        assert isinstance(result.error, CancelledError)
        assert backend.session is None


class TestChangeTagCheck:
    """Tests fuer den getctag-Versuch beim Verbinden."""

    def test_failed_check_keeps_change_tag_enabled(self, backend, server):
        server.fail("GETCTAG", TransportError("405", status_code=405))

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.accepted
        assert backend.state.supports_fast_change_token

    def test_check_401_aborts(self, backend, server):
        server.fail("GETCTAG", TransportError("401", status_code=401))

        result = backend.connect({"username": "max", "password": "falsch"})

        assert result.outcome == AuthOutcome.REJECTED
        assert backend.session is None


class TestProviderFallbacks:
    """Tests fuer iCloud und Google."""

    def test_icloud_retries_parent(self):
        server = FakeSession()
        server.fail("OPTIONS", TransportError("404", status_code=404))
        backend = make_backend("https://p01-contacts.icloud.com/a/b/", server)

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.accepted
        assert server.calls_of("OPTIONS") == [
            ("OPTIONS", None),
            ("OPTIONS", "https://p01-contacts.icloud.com/a/"),
        ]
        assert backend.state.provider_quirk == ProviderQuirk.ICLOUD

    def test_googleusercontent_uses_fixed_capabilities(self):
        server = FakeSession()
        server.fail("OPTIONS", TransportError("404", status_code=404))
        backend = make_backend("https://apidata.googleusercontent.com/carddav/v1/principals/x/lists/default/", server)

        result = backend.connect({"username": "max", "password": "geheim"})

        assert result.accepted
        assert backend.is_writable
        assert backend.state.provider_quirk == ProviderQuirk.GOOGLE
        assert len(server.calls_of("OPTIONS")) == 1

    def test_other_host_404_fails(self):
        server = FakeSession()
        server.fail("OPTIONS", TransportError("404", status_code=404))
        backend = make_backend("https://dav.example.de/a/b/", server)

        result = backend.connect({"username": "max", "password": "geheim"})

        assert not result.accepted
        assert len(server.calls_of("OPTIONS")) == 1

    def test_detect_provider_quirk(self):
        assert detect_provider_quirk("https://www.google.com/carddav/") == ProviderQuirk.GOOGLE
        assert detect_provider_quirk("https://p12-contacts.icloud.com/1/") == ProviderQuirk.ICLOUD
        assert detect_provider_quirk("https://cloud.example.de/") == ProviderQuirk.NONE


class TestDisconnect:
    """Tests fuer disconnect()."""

    def test_disconnect_resets_state(self, connected, server):
        connected.state.supports_fast_change_token = False

        connected.disconnect()

        assert server.closed
        assert connected.session is None
        assert not connected.is_connected
        assert connected.state.supports_fast_change_token

    def test_operation_after_disconnect(self, connected):
        connected.disconnect()

        with pytest.raises(RuntimeError, match="Not connected"):
            connected.get_changes(None)

    def test_capabilities_property(self, backend):
        assert backend.get_backend_property("capabilities") == (
            "net,do-initial-query,contact-lists,refresh-supported,bulk-adds,bulk-modifies,bulk-removes"
        )
        assert backend.get_backend_property("unbekannt") is None
