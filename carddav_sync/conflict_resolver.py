"""
Conflict Resolver fuer Schreibkonflikte.

Wird nach einem 412 (veraltete Revision) angewendet. Strategie je nach
ConflictResolution; USE_NEWER ist Last-Write-Wins anhand von REV.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from .models import ConflictResolution, Contact

_REV_FORMATS = (
    "%Y%m%dT%H%M%SZ",
    "%Y%m%dT%H%M%S",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%Y%m%d",
)

# Felder, die fuer "unveraendert" zaehlen (REV und X-Attribute nicht)
COMPARED_FIELDS = (
    'uid', 'first_name', 'middle_name', 'last_name', 'name_prefix', 'name_suffix',
    'phone', 'email',
    'po_box', 'extended_address', 'street', 'house_nr', 'zip', 'city', 'region', 'country',
    'important_dates', 'kind', 'members',
)

# Strategien ohne Zeitvergleich: (winner, action, lokaler Kontakt?, reason)
_FIXED_POLICIES = {
    ConflictResolution.FAIL: ("remote", "fail", False, "Conflict resolution is FAIL"),
    ConflictResolution.KEEP_LOCAL: ("local", "push", True, "Keep local"),
    ConflictResolution.KEEP_SERVER: ("remote", "pull", False, "Keep server"),
    ConflictResolution.WRITE_COPY: ("both", "copy", True, "Local changes are written as a copy"),
}


@dataclass
class ConflictResult:
    """Ergebnis einer Konfliktaufloesung."""
    winner: Literal["local", "remote", "both", "none"]
    action: Literal["push", "pull", "copy", "fail", "none"]
    contact: Contact
    reason: str = ""


def parse_rev(value: Optional[str]) -> datetime:
    """Parsed einen REV-Zeitstempel; unbekannte Formate zaehlen als sehr alt."""
    if value:
        for fmt in _REV_FORMATS:
            try:
                return datetime.strptime(value.strip(), fmt)
            except ValueError:
                continue
    return datetime.min


def same_content(local: Contact, remote: Contact) -> bool:
    return all(getattr(local, name) == getattr(remote, name) for name in COMPARED_FIELDS)


class ConflictResolver:
    """
    Loest Schreibkonflikte zwischen lokalem und Server-Kontakt.

    Bei gleichem Zeitstempel gewinnt lokal.
    """

    def resolve(
        self,
        policy: ConflictResolution,
        local: Contact,
        remote: Contact
    ) -> ConflictResult:
        """
        Entscheidet, wie ein Konflikt aufgeloest wird.

        Args:
            policy: Gewaehlte ConflictResolution
            local: Lokaler Kontakt
            remote: Aktueller Kontakt vom Server

        Returns:
            ConflictResult mit Gewinner und Aktion
        """
        if same_content(local, remote):
            return ConflictResult("none", "none", remote, "Contacts are identical")

        if policy in _FIXED_POLICIES:
            winner, action, use_local, reason = _FIXED_POLICIES[policy]
            return ConflictResult(winner, action, local if use_local else remote, reason)

        local_rev = parse_rev(local.revision)
        remote_rev = parse_rev(remote.revision)

        if remote_rev > local_rev:
            return ConflictResult("remote", "pull", remote, f"Server REV {remote.revision} is newer")
        return ConflictResult("local", "push", local, f"Local REV {local.revision} is not older")
