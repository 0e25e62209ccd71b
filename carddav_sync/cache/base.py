"""
Lokaler Kontakt-Cache - Interface und In-Memory-Implementierung.

Die Sync-Engine liest nur Snapshots und schlaegt Aenderungen vor; der Cache
serialisiert seine Zugriffe selbst.
"""
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from ..cancellable import Cancellable, check_cancelled
from ..models import LocalCacheEntry

SearchCallback = Callable[[LocalCacheEntry], bool]


class BookCache(ABC):
    """Abstrakte Basisklasse fuer den lokalen Cache."""

    @abstractmethod
    def entries(self) -> List[LocalCacheEntry]:
        """Alle Eintraege als Snapshot."""

    @abstractmethod
    def get(self, uid: str) -> Optional[LocalCacheEntry]:
        """Eintrag anhand der UID oder None."""

    @abstractmethod
    def put(self, entry: LocalCacheEntry) -> None:
        """Legt einen Eintrag an oder ersetzt ihn."""

    @abstractmethod
    def remove(self, uid: str) -> bool:
        """Entfernt einen Eintrag. True wenn er existierte."""

    @abstractmethod
    def get_sync_tag(self) -> Optional[str]:
        """Change-Tag des letzten vollstaendigen Syncs."""

    @abstractmethod
    def set_sync_tag(self, sync_tag: Optional[str]) -> None:
        """Speichert den Change-Tag."""

    def search(self, callback: SearchCallback, cancellable: Optional[Cancellable] = None) -> None:
        """
        Ruft callback fuer jeden Eintrag auf.

        Die Iteration endet, sobald callback False zurueckgibt.
        """
        for entry in self.entries():
            check_cancelled(cancellable)
            if not callback(entry):
                break


class MemoryBookCache(BookCache):
    """Cache im Arbeitsspeicher, z.B. fuer Tests und kurzlebige Prozesse."""

    def __init__(self, entries: Optional[List[LocalCacheEntry]] = None, sync_tag: Optional[str] = None):
        self._lock = threading.Lock()
        self._entries: Dict[str, LocalCacheEntry] = {}
        self._sync_tag = sync_tag
        for entry in entries or []:
            self._entries[entry.uid] = entry

    def entries(self) -> List[LocalCacheEntry]:
        with self._lock:
            return list(self._entries.values())

    def get(self, uid: str) -> Optional[LocalCacheEntry]:
        with self._lock:
            return self._entries.get(uid)

    def put(self, entry: LocalCacheEntry) -> None:
        with self._lock:
            self._entries[entry.uid] = entry

    def remove(self, uid: str) -> bool:
        with self._lock:
            return self._entries.pop(uid, None) is not None

    def get_sync_tag(self) -> Optional[str]:
        return self._sync_tag

    def set_sync_tag(self, sync_tag: Optional[str]) -> None:
        self._sync_tag = sync_tag

    def __len__(self) -> int:
        return len(self._entries)
