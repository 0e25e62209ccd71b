"""
Konfiguration des CardDAV-Backends.

Werte kommen entweder aus einem Dict (z.B. gespeicherte Source-Einstellungen)
oder aus Umgebungsvariablen.
"""
import os
from dataclasses import dataclass
from typing import Optional, Dict, Any

DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "carddav-sync/1.0"

_TRUE_VALUES = ("1", "true", "yes", "on")


def _as_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class BackendConfig:
    """Einstellungen fuer eine Adressbuch-Collection."""

    collection_url: str
    timeout: int = DEFAULT_TIMEOUT
    verify_tls: bool = True
    user_agent: str = DEFAULT_USER_AGENT
    debug: bool = False
    database_url: Optional[str] = None

    @classmethod
    def from_dict(cls, settings: Dict[str, Any]) -> "BackendConfig":
        """
        Erstellt Config aus einem Dict.

        Args:
            settings: Dict mit collection_url und optional timeout,
                verify_tls, user_agent, debug, database_url

        Raises:
            ValueError: Wenn Pflichtfelder fehlen
        """
        required = ['collection_url']
        missing = [k for k in required if k not in settings or not settings[k]]
        if missing:
            raise ValueError(f"Missing required settings: {missing}")

        return cls(
            collection_url=settings['collection_url'].strip(),
            timeout=int(settings.get('timeout') or DEFAULT_TIMEOUT),
            verify_tls=_as_bool(settings.get('verify_tls'), True),
            user_agent=settings.get('user_agent') or DEFAULT_USER_AGENT,
            debug=_as_bool(settings.get('debug'), False),
            database_url=settings.get('database_url'),
        )

    @classmethod
    def from_env(cls) -> "BackendConfig":
        """
        Liest CARDDAV_URL, CARDDAV_TIMEOUT, CARDDAV_VERIFY_TLS,
        WEBDAV_DEBUG und DATABASE_URL aus der Umgebung.
        """
        return cls.from_dict({
            'collection_url': os.getenv("CARDDAV_URL"),
            'timeout': os.getenv("CARDDAV_TIMEOUT"),
            'verify_tls': os.getenv("CARDDAV_VERIFY_TLS"),
            'user_agent': os.getenv("CARDDAV_USER_AGENT"),
            'debug': os.getenv("WEBDAV_DEBUG"),
            'database_url': os.getenv("DATABASE_URL"),
        })


def credentials_from_env() -> Dict[str, str]:
    """Zugangsdaten aus CARDDAV_USERNAME/CARDDAV_PASSWORD (leer wenn nicht gesetzt)."""
    username = os.getenv("CARDDAV_USERNAME")
    if not username:
        return {}
    return {"username": username, "password": os.getenv("CARDDAV_PASSWORD", "")}
