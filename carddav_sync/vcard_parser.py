"""
vCard Parser fuer die CardDAV-Synchronisation.

Konvertiert zwischen vCard 3.0 Format und Contact Dataclass.
Unbekannte Zeilen und X-Attribute bleiben erhalten, damit ein Datensatz
unveraendert durch den Cache wandern kann.
"""
import re
from typing import Optional, List, Tuple

from .models import Contact

# Traegt das Remote-ETag im gespeicherten Datensatz mit
ETAG_ATTRIBUTE = "X-CARDDAV-SYNC-ETAG"

GROUP_KIND_PROPERTIES = ("KIND", "X-ADDRESSBOOKSERVER-KIND")
MEMBER_PROPERTIES = ("MEMBER", "X-ADDRESSBOOKSERVER-MEMBER")

MAX_LINE_LENGTH = 75


class VCardParser:
    """Parser fuer vCard 3.0 Format."""

    def parse(self, vcard_string: str) -> Contact:
        """
        Parsed vCard String zu Contact Objekt.

        Args:
            vcard_string: vCard im String-Format

        Returns:
            Contact Objekt mit extrahierten Daten

        Raises:
            ValueError: Bei ungueltigem vCard Format
        """
        if not vcard_string or "BEGIN:VCARD" not in vcard_string.upper():
            raise ValueError("Invalid vCard format")

        contact = Contact()
        address_seen = False

        for line in self._unfold(vcard_string):
            group, name, params, value = self._split_line(line)
            if not name:
                continue

            if name in ("BEGIN", "END", "VERSION"):
                continue

            if name in ("N", "TEL", "EMAIL", "ADR") and name not in contact.property_heads:
                contact.property_heads[name] = line.split(":", 1)[0]

            # N: Nachname;Vorname;2.Vorname;Prefix;Suffix
            if name == "N":
                self._parse_name(value, contact)

            elif name == "FN":
                contact.formatted_name = self._unescape(value)

            elif name == "UID":
                contact.uid = value.strip()

            elif name == "REV":
                contact.revision = value.strip()

            # TEL/EMAIL: nur der erste Eintrag wird als Feld gefuehrt
            elif name == "TEL" and not contact.phone:
                contact.phone = value.strip()

            elif name == "EMAIL" and not contact.email:
                contact.email = value.strip()

            # ADR: Postfach;Zusatz;Strasse;Stadt;Region;PLZ;Land
            elif name == "ADR" and not address_seen:
                self._parse_address(value, contact)
                address_seen = True

            elif name == "BDAY" and value:
                contact.important_dates.append({"type": "birthday", "date": value.strip()})

            elif name == "ANNIVERSARY" and value:
                contact.important_dates.append({"type": "anniversary", "date": value.strip()})

            elif name in GROUP_KIND_PROPERTIES:
                contact.kind = value.strip().lower() or "individual"

            elif name in MEMBER_PROPERTIES:
                contact.members.append(value.strip())

            # Wiederholte oder gruppierte X-Attribute bleiben als Zeile erhalten
            elif name.startswith("X-") and not params and not group and name not in contact.x_attributes:
                contact.x_attributes[name] = self._unescape(value)

            else:
                contact.extra_lines.append(line)

        return contact

    def parse_or_none(self, vcard_string: Optional[str]) -> Optional[Contact]:
        """Wie parse(), gibt aber None statt ValueError zurueck."""
        try:
            return self.parse(vcard_string or "")
        except ValueError:
            return None

    def _unfold(self, vcard_string: str) -> List[str]:
        """Entfaltet Fortsetzungszeilen (RFC 2425)."""
        lines: List[str] = []
        for raw in re.split(r"\r\n|\n|\r", vcard_string):
            if raw[:1] in (" ", "\t") and lines:
                lines[-1] += raw[1:]
            elif raw.strip():
                lines.append(raw.strip())
        return lines

    def _split_line(self, line: str) -> Tuple[str, str, str, str]:
        """Zerlegt eine Zeile in Gruppe, Name, Parameter und Wert."""
        if ":" not in line:
            return "", "", "", ""
        head, value = line.split(":", 1)
        # item1.TEL -> Gruppe item1, TEL
        group = ""
        if "." in head.split(";", 1)[0]:
            group, head = head.split(".", 1)
        if ";" in head:
            name, params = head.split(";", 1)
        else:
            name, params = head, ""
        return group, name.upper(), params, value

    def _parse_name(self, value: str, contact: Contact) -> None:
        """Parsed N: Wert in Name-Komponenten."""
        parts = value.split(";")

        if len(parts) >= 2:
            contact.last_name = self._unescape(parts[0])
            contact.first_name = self._unescape(parts[1])
        elif parts:
            contact.last_name = self._unescape(parts[0])
        if len(parts) >= 3 and parts[2]:
            contact.middle_name = self._unescape(parts[2])
        if len(parts) >= 4:
            contact.name_prefix = self._unescape(parts[3])
        if len(parts) >= 5:
            contact.name_suffix = self._unescape(parts[4])

    def _parse_address(self, value: str, contact: Contact) -> None:
        """Parsed ADR: Wert in Adress-Komponenten."""
        parts = value.split(";")

        # ADR Format: PO Box;Extended;Street;City;Region;PostalCode;Country
        if parts[0]:
            contact.po_box = self._unescape(parts[0])
        if len(parts) >= 2 and parts[1]:
            contact.extended_address = self._unescape(parts[1])
        if len(parts) >= 3 and parts[2]:
            street = self._unescape(parts[2])
            match = re.match(r"(.+?)\s+(\d+\w*)$", street)
            if match:
                contact.street = match.group(1)
                contact.house_nr = match.group(2)
            else:
                contact.street = street

        if len(parts) >= 4 and parts[3]:
            contact.city = self._unescape(parts[3])
        if len(parts) >= 5 and parts[4]:
            contact.region = self._unescape(parts[4])
        if len(parts) >= 6 and parts[5]:
            contact.zip = parts[5]
        if len(parts) >= 7 and parts[6]:
            contact.country = self._unescape(parts[6])

    def _unescape(self, value: str) -> str:
        return (
            value.replace("\\n", "\n").replace("\\N", "\n")
            .replace("\\,", ",").replace("\\;", ";").replace("\\\\", "\\")
        )

    def _escape(self, value: str) -> str:
        return (
            value.replace("\\", "\\\\").replace(";", "\\;")
            .replace(",", "\\,").replace("\n", "\\n")
        )

    def _fold(self, line: str) -> str:
        """Faltet Zeilen laenger als 75 Zeichen."""
        if len(line) <= MAX_LINE_LENGTH:
            return line
        chunks = [line[:MAX_LINE_LENGTH]]
        rest = line[MAX_LINE_LENGTH:]
        while rest:
            chunks.append(" " + rest[:MAX_LINE_LENGTH - 1])
            rest = rest[MAX_LINE_LENGTH - 1:]
        return "\r\n".join(chunks)

    def serialize(self, contact: Contact) -> str:
        """
        Serialisiert Contact zu vCard 3.0 String.

        Args:
            contact: Contact Objekt

        Returns:
            vCard String (CRLF-getrennt)
        """
        lines = [
            "BEGIN:VCARD",
            "VERSION:3.0",
        ]

        if contact.uid:
            lines.append(f"UID:{contact.uid}")

        heads = contact.property_heads

        lines.append(f"FN:{self._escape(contact.full_name)}")
        lines.append(
            f"{heads.get('N', 'N')}:{self._escape(contact.last_name)};{self._escape(contact.first_name)};"
            f"{self._escape(contact.middle_name or '')};{self._escape(contact.name_prefix)};"
            f"{self._escape(contact.name_suffix)}"
        )

        # Telefon
        if contact.phone:
            lines.append(f"{heads.get('TEL', 'TEL;TYPE=CELL')}:{contact.phone}")

        # Email
        if contact.email:
            lines.append(f"{heads.get('EMAIL', 'EMAIL;TYPE=HOME')}:{contact.email}")

        # Adresse
        address = [contact.po_box, contact.extended_address, contact.street, contact.city,
                   contact.region, contact.zip, contact.country]
        if any(address):
            street_full = f"{contact.street or ''} {contact.house_nr or ''}".strip()
            lines.append(
                f"{heads.get('ADR', 'ADR;TYPE=HOME')}:{self._escape(contact.po_box)};"
                f"{self._escape(contact.extended_address)};{self._escape(street_full)};"
                f"{self._escape(contact.city or '')};{self._escape(contact.region)};"
                f"{contact.zip or ''};{self._escape(contact.country or '')}"
            )

        # Wichtige Daten
        for date_entry in contact.important_dates:
            if date_entry.get("type") == "birthday":
                lines.append(f"BDAY:{date_entry.get('date', '')}")
            elif date_entry.get("type") == "anniversary":
                lines.append(f"ANNIVERSARY:{date_entry.get('date', '')}")

        if contact.revision:
            lines.append(f"REV:{contact.revision}")

        # Kontaktliste im Apple-Format, vCard 3.0 kennt kein KIND
        if contact.is_list:
            lines.append("X-ADDRESSBOOKSERVER-KIND:group")
            for member in contact.members:
                lines.append(f"X-ADDRESSBOOKSERVER-MEMBER:{member}")

        lines.extend(contact.extra_lines)

        for name, value in contact.x_attributes.items():
            lines.append(f"{name}:{self._escape(value)}")

        lines.append("END:VCARD")

        return "\r\n".join(self._fold(line) for line in lines) + "\r\n"


def contact_revision(contact: Contact) -> Optional[str]:
    """Gibt das im Datensatz gespeicherte Remote-ETag zurueck."""
    return contact.get_x_attribute(ETAG_ATTRIBUTE)
