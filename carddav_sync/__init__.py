"""
CardDAV-Synchronisation fuer eine einzelne Adressbuch-Collection.

Backend: WebDAVBookBackend (Verbindung, Change Detection, multiget, CRUD)
Cache: MemoryBookCache, PostgresBookCache
"""

from .models import (
    Contact,
    ChangeSet,
    RemoteItemRef,
    LocalCacheEntry,
    OfflineState,
    ConflictResolution,
    AuthOutcome,
    ConnectResult,
    SaveResult,
)
from .errors import (
    SyncError,
    SyncConnectionError,
    AuthenticationError,
    TLSError,
    NotFoundError,
    PreconditionFailedError,
    ProtocolError,
    ValidationError,
    CancelledError,
)
from .cancellable import Cancellable
from .config import BackendConfig, credentials_from_env
from .vcard_parser import VCardParser
from .backend import WebDAVBookBackend
from .cache import BookCache, MemoryBookCache, PostgresBookCache
from .conflict_resolver import ConflictResolver, ConflictResult
from .service import SyncService

__all__ = [
    # Models
    'Contact',
    'ChangeSet',
    'RemoteItemRef',
    'LocalCacheEntry',
    'OfflineState',
    'ConflictResolution',
    'AuthOutcome',
    'ConnectResult',
    'SaveResult',
    # Errors
    'SyncError',
    'SyncConnectionError',
    'AuthenticationError',
    'TLSError',
    'NotFoundError',
    'PreconditionFailedError',
    'ProtocolError',
    'ValidationError',
    'CancelledError',
    # Config
    'BackendConfig',
    'credentials_from_env',
    'Cancellable',
    # Parser
    'VCardParser',
    # Backend
    'WebDAVBookBackend',
    # Cache
    'BookCache',
    'MemoryBookCache',
    'PostgresBookCache',
    # Conflict
    'ConflictResolver',
    'ConflictResult',
    # Service
    'SyncService',
]
