"""
HTTP/XML-Transport fuer WebDAV/CardDAV.
"""

from .multistatus import (
    ItemVisitor,
    PropertyReader,
    walk_multistatus,
    maybe_dequote,
    NS_DAV,
    NS_CARDDAV,
)
from .session import (
    WebDAVSession,
    DEPTH_THIS,
    DEPTH_THIS_AND_CHILDREN,
    CONTENT_TYPE_VCARD,
    CAPABILITY_ADDRESSBOOK,
)

__all__ = [
    'ItemVisitor',
    'PropertyReader',
    'walk_multistatus',
    'maybe_dequote',
    'NS_DAV',
    'NS_CARDDAV',
    'WebDAVSession',
    'DEPTH_THIS',
    'DEPTH_THIS_AND_CHILDREN',
    'CONTENT_TYPE_VCARD',
    'CAPABILITY_ADDRESSBOOK',
]
