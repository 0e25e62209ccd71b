"""
Tests fuer den Sync-Service.

Nutzt FakeSession aus conftest.py.
"""
import pytest
from carddav_sync.errors import TransportError, PreconditionFailedError, ProtocolError
from carddav_sync.models import Contact, ConflictResolution, OfflineState
from carddav_sync.service import SyncService
from carddav_sync.vcard_parser import VCardParser, contact_revision

from conftest import BOOK_URL, BOOK_PATH, vcard


class TestSync:
    """Tests fuer sync()."""

    def test_initial_sync_fills_cache(self, connected, server, cache):
        server.add(BOOK_PATH + "a.vcf", "a", etag="e-a")
        server.add(BOOK_PATH + "b.vcf", "b", etag="e-b")

        stats = SyncService(connected).sync()

        assert stats == {'created': 2, 'modified': 0, 'removed': 0, 'pending': 0}
        entry = cache.get("a")
        assert entry.revision == "e-a"
        assert entry.reference == BOOK_URL + "a.vcf"
        assert entry.offline_state == OfflineState.SYNCED
        assert cache.get_sync_tag() == server.ctag

    def test_second_sync_is_noop(self, connected, server, cache):
        server.add(BOOK_PATH + "a.vcf", "a")
        service = SyncService(connected)
        service.sync()
        reports = len(server.calls_of("REPORT"))

        stats = service.sync()

        assert stats == {'created': 0, 'modified': 0, 'removed': 0, 'pending': 0}
        assert len(server.calls_of("REPORT")) == reports

    def test_modified_and_removed(self, connected, server, cache):
        server.add(BOOK_PATH + "a.vcf", "a")
        server.add(BOOK_PATH + "b.vcf", "b")
        service = SyncService(connected)
        service.sync()

        server.add(BOOK_PATH + "a.vcf", "a", content=vcard("a", last_name="Neu"))
        del server.resources[BOOK_PATH + "b.vcf"]
        server.ctag = "ctag-neu"

        stats = service.sync()

        assert stats['modified'] == 1
        assert stats['removed'] == 1
        assert cache.get("b") is None
        assert VCardParser().parse(cache.get("a").serialized_object).last_name == "Neu"

    def test_pending_keeps_old_sync_tag(self, connected, server, cache):
        server.add(BOOK_PATH + "a.vcf", "a")
        cache.set_sync_tag("ctag-alt")
        server.fail("REPORT", TransportError("503", status_code=503))

        with pytest.raises(ProtocolError):
            SyncService(connected).sync()

        assert cache.get_sync_tag() == "ctag-alt"


class TestSave:
    """Tests fuer save() mit Konfliktaufloesung."""

    def _stale_setup(self, connected, server, cache):
        """Kontakt ist gecached, wurde aber auf dem Server geaendert."""
        server.add(BOOK_PATH + "abc.vcf", "abc")
        service = SyncService(connected)
        service.sync()
        server.add(
            BOOK_PATH + "abc.vcf", "abc",
            content=vcard("abc", last_name="Server").replace("END:VCARD", "REV:20260102T000000Z\r\nEND:VCARD")
        )
        return service

    def test_save_new_contact(self, connected, server, cache):
        result = SyncService(connected).save(Contact(uid="neu", last_name="Neu"))

        assert result.reference == BOOK_URL + "neu.vcf"
        entry = cache.get("neu")
        assert entry.revision == result.revision
        assert contact_revision(VCardParser().parse(entry.serialized_object)) == result.revision

    def test_save_cached_contact_uses_cached_etag(self, connected, server, cache):
        server.add(BOOK_PATH + "abc.vcf", "abc", etag="e1")
        service = SyncService(connected)
        service.sync()

        service.save(Contact(uid="abc", last_name="Lokal"))

        assert server.calls_of("PUT")[-1] == ("PUT", BOOK_URL + "abc.vcf", "e1")

    def test_conflict_fail(self, connected, server, cache):
        service = self._stale_setup(connected, server, cache)

        with pytest.raises(PreconditionFailedError):
            service.save(Contact(uid="abc", last_name="Lokal"))

    def test_conflict_keep_server(self, connected, server, cache):
        service = self._stale_setup(connected, server, cache)

        service.save(Contact(uid="abc", last_name="Lokal"), ConflictResolution.KEEP_SERVER)

        assert VCardParser().parse(cache.get("abc").serialized_object).last_name == "Server"
        assert "Lokal" not in server.resources[BOOK_PATH + "abc.vcf"][1]

    def test_conflict_use_newer_local_wins(self, connected, server, cache):
        service = self._stale_setup(connected, server, cache)
        local = Contact(uid="abc", last_name="Lokal", revision="20260105T000000Z")

        service.save(local, ConflictResolution.USE_NEWER)

        assert "N:Lokal" in server.resources[BOOK_PATH + "abc.vcf"][1]

    def test_conflict_use_newer_remote_wins(self, connected, server, cache):
        service = self._stale_setup(connected, server, cache)
        local = Contact(uid="abc", last_name="Lokal", revision="20260101T000000Z")

        service.save(local, ConflictResolution.USE_NEWER)

        assert "N:Server" in server.resources[BOOK_PATH + "abc.vcf"][1]
        assert VCardParser().parse(cache.get("abc").serialized_object).last_name == "Server"

    def test_conflict_write_copy(self, connected, server, cache):
        service = self._stale_setup(connected, server, cache)

        result = service.save(Contact(uid="abc", last_name="Lokal"), ConflictResolution.WRITE_COPY)

        assert result.uid != "abc"
        assert len(server.resources) == 2
        assert cache.get(result.uid) is not None


class TestRemove:
    """Tests fuer remove()."""

    def test_remove(self, connected, server, cache):
        server.add(BOOK_PATH + "abc.vcf", "abc")
        service = SyncService(connected)
        service.sync()

        assert service.remove("abc") is True
        assert cache.get("abc") is None
        assert server.resources == {}

    def test_remove_already_gone(self, connected, server, cache):
        server.add(BOOK_PATH + "abc.vcf", "abc")
        service = SyncService(connected)
        service.sync()
        server.resources.clear()

        assert service.remove("abc") is False
        assert cache.get("abc") is None


class TestRoundTrip:
    """Tests fuer save() gefolgt von sync()."""

    def test_save_then_sync_is_stable(self, connected, server, cache):
        service = SyncService(connected)
        service.sync()

        service.save(Contact(uid="neu", last_name="Neu"))
        server.ctag = "ctag-anders"

        assert service.sync() == {'created': 0, 'modified': 0, 'removed': 0, 'pending': 0}
        assert service.sync() == {'created': 0, 'modified': 0, 'removed': 0, 'pending': 0}
        assert cache.get("neu") is not None
        assert cache.get("neu").reference == BOOK_URL + "neu.vcf"

    def test_save_does_not_modify_callers_contact(self, connected, server, cache):
        server.add(BOOK_PATH + "abc.vcf", "abc", etag="e1")
        service = SyncService(connected)
        service.sync()
        contact = Contact(uid="abc", last_name="Lokal")

        service.save(contact)

        assert contact_revision(contact) is None

    def test_fetched_contact_is_saved_unchanged(self, connected, server, cache):
        content = "\r\n".join([
            "BEGIN:VCARD",
            "VERSION:3.0",
            "UID:doe",
            "FN:John Doe",
            "N:Doe;John;;Dr.;Jr.",
            "TEL;TYPE=WORK:123",
            "ADR;TYPE=WORK:;Suite 5;Main St 1;Town;CA;12345;US",
            "END:VCARD",
        ]) + "\r\n"
        server.add(BOOK_PATH + "doe.vcf", "doe", content=content)
        service = SyncService(connected)
        service.sync()

        contact = VCardParser().parse(cache.get("doe").serialized_object)
        service.save(contact)

        _, uploaded = server.resources[BOOK_PATH + "doe.vcf"]
        assert "N:Doe;John;;Dr.;Jr.\r\n" in uploaded
        assert "TEL;TYPE=WORK:123\r\n" in uploaded
        assert "ADR;TYPE=WORK:;Suite 5;Main St 1;Town;CA;12345;US\r\n" in uploaded
