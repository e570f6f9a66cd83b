"""
Contact data model for one-way contact mirroring.

Provides the remote and local sides of a reconciliation:
- RemoteContact: an immutable, already-decrypted snapshot of one remote contact
- LocalRecord: one container row in the local store, keyed by external id
- AccountIdentity: the (name, type) pair that scopes every local query
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ContactParseError(ValueError):
    """Raised when an exported contact record cannot be parsed."""

    pass


class EmailType(str, Enum):
    """Email type as carried by the remote contact."""

    EMAIL = "email"  # Plain/unset
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class TelephoneType(str, Enum):
    """Telephone type as carried by the remote contact."""

    TELEPHONE = "telephone"  # Plain/unset
    HOME = "home"
    WORK = "work"
    OTHER = "other"
    MOBILE = "mobile"
    MAIN = "main"
    FAX = "fax"
    PAGER = "pager"


class AddressType(str, Enum):
    """Postal address type as carried by the remote contact."""

    ADDRESS = "address"  # Plain/unset
    HOME = "home"
    WORK = "work"
    OTHER = "other"


def _parse_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Any:
    """Parse a type string into an enum member, falling back to the plain type."""
    if value is None or value == "":
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        logger.debug(f"Unknown {enum_cls.__name__} '{value}', using {default.value}")
        return default


@dataclass(frozen=True)
class StructuredName:
    """Given/family name parts."""

    given: Optional[str] = None
    family: Optional[str] = None


@dataclass(frozen=True)
class Email:
    value: str
    type: EmailType = EmailType.EMAIL


@dataclass(frozen=True)
class Telephone:
    text: str
    type: TelephoneType = TelephoneType.TELEPHONE


@dataclass(frozen=True)
class Address:
    """A postal address; parts are carried verbatim."""

    street_address: str = ""
    locality: str = ""
    region: str = ""
    postal_code: str = ""
    country: str = ""
    type: AddressType = AddressType.ADDRESS

    def is_blank(self) -> bool:
        """Check whether every address part is empty or whitespace."""
        return not any(
            part and part.strip()
            for part in (
                self.street_address,
                self.locality,
                self.region,
                self.postal_code,
                self.country,
            )
        )


@dataclass(frozen=True)
class RemoteContact:
    """
    Decrypted snapshot of one contact from the authoritative remote side.

    Attributes:
        contact_id: Stable external id (None if the remote could not provide one)
        formatted_name: Pre-formatted display name
        structured_name: Given/family name parts
        emails: Typed email addresses
        telephones: Typed telephone numbers
        addresses: Typed postal addresses
        birthday: Birthday date, if any
        anniversary: Anniversary date, if any
        notes: Free-text notes (each one is kept separately)
        organizations: Organization names
        titles: Job titles
        urls: Web addresses
        photos: Binary photo payloads, in remote order

    Usage:
        contact = RemoteContact.from_dict(exported_record)
        if contact.has_id():
            ...
    """

    contact_id: Optional[str]
    formatted_name: Optional[str] = None
    structured_name: Optional[StructuredName] = None
    emails: tuple[Email, ...] = ()
    telephones: tuple[Telephone, ...] = ()
    addresses: tuple[Address, ...] = ()
    birthday: Optional[date] = None
    anniversary: Optional[date] = None
    notes: tuple[str, ...] = ()
    organizations: tuple[str, ...] = ()
    titles: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    photos: tuple[bytes, ...] = field(default=(), repr=False)

    def has_id(self) -> bool:
        """Check if the contact carries a usable external id."""
        return bool(self.contact_id and self.contact_id.strip())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteContact":
        """
        Create a RemoteContact from an exported (already decrypted) record.

        Args:
            data: Dictionary in the export format

        Returns:
            RemoteContact populated from the record

        Raises:
            ContactParseError: If a nested entry, date or photo payload is malformed

        Example record::

            {
                'id': 'u1',
                'formatted_name': 'Jane Doe',
                'structured_name': {'given': 'Jane', 'family': 'Doe'},
                'emails': [{'value': 'jane@example.com', 'type': 'home'}],
                'telephones': [{'text': '+41790000000', 'type': 'mobile'}],
                'addresses': [{'street_address': 'Main 1', 'locality': 'Geneva',
                               'type': 'work'}],
                'birthday': '1990-04-01',
                'notes': ['Met at conference'],
                'organizations': ['Acme'],
                'titles': ['Engineer'],
                'urls': ['https://example.com'],
                'photos': ['<base64>']
            }
        """
        if not isinstance(data, dict):
            raise ContactParseError(
                f"Contact record must be a dictionary, got {type(data).__name__}"
            )

        contact_id = data.get("id")
        if contact_id is not None:
            contact_id = str(contact_id)

        structured = data.get("structured_name")
        structured_name = None
        if isinstance(structured, dict):
            structured_name = StructuredName(
                given=structured.get("given"),
                family=structured.get("family"),
            )

        emails = tuple(
            Email(
                value=str(e.get("value", "")),
                type=_parse_enum(EmailType, e.get("type"), EmailType.EMAIL),
            )
            for e in _nested_records(data, "emails")
        )

        telephones = tuple(
            Telephone(
                text=str(t.get("text", "")),
                type=_parse_enum(
                    TelephoneType, t.get("type"), TelephoneType.TELEPHONE
                ),
            )
            for t in _nested_records(data, "telephones")
        )

        addresses = tuple(
            Address(
                street_address=a.get("street_address") or "",
                locality=a.get("locality") or "",
                region=a.get("region") or "",
                postal_code=a.get("postal_code") or "",
                country=a.get("country") or "",
                type=_parse_enum(AddressType, a.get("type"), AddressType.ADDRESS),
            )
            for a in _nested_records(data, "addresses")
        )

        return cls(
            contact_id=contact_id,
            formatted_name=data.get("formatted_name"),
            structured_name=structured_name,
            emails=emails,
            telephones=telephones,
            addresses=addresses,
            birthday=_parse_date(data.get("birthday"), "birthday"),
            anniversary=_parse_date(data.get("anniversary"), "anniversary"),
            notes=tuple(str(n) for n in (data.get("notes") or [])),
            organizations=tuple(str(o) for o in (data.get("organizations") or [])),
            titles=tuple(str(t) for t in (data.get("titles") or [])),
            urls=tuple(str(u) for u in (data.get("urls") or [])),
            photos=tuple(_decode_photo(p) for p in (data.get("photos") or [])),
        )


def _nested_records(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """Return the list of dictionaries stored under key."""
    items = data.get(key) or []
    if not isinstance(items, list):
        raise ContactParseError(f"Invalid {key}: expected a list")
    for item in items:
        if not isinstance(item, dict):
            raise ContactParseError(
                f"Invalid {key} entry: expected a dictionary, "
                f"got {type(item).__name__}"
            )
    return items


def _parse_date(value: Any, label: str) -> Optional[date]:
    """Parse an ISO date string (YYYY-MM-DD)."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ContactParseError(f"Invalid {label} date: {value!r}") from e


def _decode_photo(value: Any) -> bytes:
    """Decode a base64 photo payload."""
    if isinstance(value, bytes):
        return value
    try:
        return base64.b64decode(str(value), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ContactParseError("Invalid base64 photo payload") from e


@dataclass(frozen=True)
class AccountIdentity:
    """
    Host-level account identity scoping the local store.

    Contacts belonging to a different (name, type) pair are never touched.
    """

    name: str
    type: str

    def __str__(self) -> str:
        return f"{self.name} ({self.type})"


@dataclass(frozen=True)
class LocalRecord:
    """A container in the local store that may mirror one remote contact."""

    local_id: int
    external_id: Optional[str]
