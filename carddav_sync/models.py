"""
Datenstrukturen fuer die CardDAV-Synchronisation.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict


@dataclass
class Contact:
    """Kontakt-Datenstruktur (vCard 3.0)."""

    # Identifikation
    uid: Optional[str] = None

    # Name
    formatted_name: Optional[str] = None
    first_name: str = ""
    middle_name: Optional[str] = None
    last_name: str = ""
    name_prefix: str = ""
    name_suffix: str = ""

    # Kontaktdaten
    phone: Optional[str] = None
    email: Optional[str] = None

    # Adresse
    po_box: str = ""
    extended_address: str = ""
    street: Optional[str] = None
    house_nr: Optional[str] = None
    zip: Optional[str] = None
    city: Optional[str] = None
    region: str = ""
    country: Optional[str] = None

    # Zusatzinfos
    important_dates: List[Dict[str, str]] = field(default_factory=list)
    revision: Optional[str] = None  # REV

    # Kontaktlisten
    kind: str = "individual"
    members: List[str] = field(default_factory=list)

    # X-Attribute und unbekannte Zeilen bleiben beim Round-Trip erhalten
    x_attributes: Dict[str, str] = field(default_factory=dict)
    extra_lines: List[str] = field(default_factory=list)
    # Originaler Kopf (Gruppe und Parameter) von N, TEL, EMAIL und ADR
    property_heads: Dict[str, str] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        """Gibt den vollen Namen zurueck."""
        if self.formatted_name:
            return self.formatted_name
        parts = [self.first_name]
        if self.middle_name:
            parts.append(self.middle_name)
        parts.append(self.last_name)
        return " ".join(filter(None, parts))

    @property
    def is_list(self) -> bool:
        return self.kind == "group"

    def get_x_attribute(self, name: str) -> Optional[str]:
        return self.x_attributes.get(name.upper())

    def set_x_attribute(self, name: str, value: Optional[str]) -> None:
        """Setzt oder entfernt (value=None) ein X-Attribut."""
        key = name.upper()
        if value is None:
            self.x_attributes.pop(key, None)
        else:
            self.x_attributes[key] = value


class OfflineState(Enum):
    UNKNOWN = "unknown"
    SYNCED = "synced"
    LOCALLY_CREATED = "locally_created"
    LOCALLY_MODIFIED = "locally_modified"
    LOCALLY_DELETED = "locally_deleted"


@dataclass
class RemoteItemRef:
    """
    Eine Remote-Ressource.

    reference ist der einzige gueltige Handle zum erneuten Abruf oder Loeschen.
    uid ist leer bis der Inhalt geladen wurde.
    """
    reference: str
    revision: str = ""
    uid: str = ""
    serialized_object: Optional[str] = None

    @property
    def etag(self) -> str:
        return self.revision

    @property
    def is_fetched(self) -> bool:
        return self.serialized_object is not None


@dataclass
class LocalCacheEntry:
    """Eintrag im lokalen Cache. revision spiegelt das Remote-ETag."""
    uid: str
    revision: str = ""
    serialized_object: str = ""
    reference: str = ""
    offline_state: OfflineState = OfflineState.SYNCED


@dataclass
class ChangeSet:
    """Aenderungen eines Sync-Durchlaufs."""

    created: List[RemoteItemRef] = field(default_factory=list)
    modified: List[RemoteItemRef] = field(default_factory=list)
    removed: List[LocalCacheEntry] = field(default_factory=list)
    new_token: Optional[str] = None
    repeat: bool = False

    @property
    def has_changes(self) -> bool:
        """Prueft ob Aenderungen vorhanden sind."""
        return bool(self.created or self.modified or self.removed)

    @property
    def pending(self) -> List[RemoteItemRef]:
        """Created/Modified Eintraege ohne geladenen Inhalt."""
        return [ref for ref in self.created + self.modified if not ref.is_fetched]


class ProviderQuirk(Enum):
    NONE = "none"
    ICLOUD = "icloud"
    GOOGLE = "google"


@dataclass
class SessionState:
    """Zustand einer Verbindung. Wird beim Disconnect zurueckgesetzt."""
    connected: bool = False
    supports_fast_change_token: bool = True
    provider_quirk: ProviderQuirk = ProviderQuirk.NONE
    writable: bool = False

    def reset(self) -> None:
        self.connected = False
        self.supports_fast_change_token = True
        self.provider_quirk = ProviderQuirk.NONE
        self.writable = False


class AuthOutcome(Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REQUIRED = "required"
    ERROR = "error"
    ERROR_TLS = "error_tls"


@dataclass
class ConnectResult:
    """Ergebnis eines Verbindungsversuchs."""
    outcome: AuthOutcome
    error: Optional[Exception] = None
    certificate_pem: Optional[str] = None
    certificate_errors: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.outcome == AuthOutcome.ACCEPTED


class ConflictResolution(Enum):
    FAIL = "fail"
    USE_NEWER = "use_newer"
    KEEP_SERVER = "keep_server"
    KEEP_LOCAL = "keep_local"
    WRITE_COPY = "write_copy"


@dataclass
class SaveResult:
    """Ergebnis eines Speichervorgangs."""
    uid: str
    reference: str
    revision: Optional[str] = None
