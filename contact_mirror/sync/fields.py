"""
Field mapping from remote contacts to local field entries.

Maps one RemoteContact onto the ordered list of typed field rows the local
store keeps for a contact container. The local store uses smaller type
enumerations than the remote side, so several mappings narrow information;
the mapping tables below are total over the remote enumerations so every
narrowing is explicit.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from contact_mirror.sync.contact import (
    AddressType,
    EmailType,
    RemoteContact,
    TelephoneType,
)
from contact_mirror.sync.photo import PhotoError

logger = logging.getLogger(__name__)


class FieldKind(str, Enum):
    """Kind of a local field row."""

    NAME = "name"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    EVENT = "event"
    NOTE = "note"
    ORGANIZATION = "organization"
    WEBSITE = "website"
    PHOTO = "photo"


class EmailKind(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class PhoneKind(str, Enum):
    MAIN = "main"
    HOME = "home"
    WORK = "work"
    OTHER = "other"
    MOBILE = "mobile"
    OTHER_FAX = "other_fax"
    PAGER = "pager"


class AddressKind(str, Enum):
    HOME = "home"
    WORK = "work"
    OTHER = "other"


class EventKind(str, Enum):
    BIRTHDAY = "birthday"
    ANNIVERSARY = "anniversary"


class OrganizationKind(str, Enum):
    OTHER = "other"


class WebsiteKind(str, Enum):
    HOMEPAGE = "homepage"


EMAIL_TYPE_MAP: dict[EmailType, EmailKind] = {
    EmailType.EMAIL: EmailKind.OTHER,
    EmailType.HOME: EmailKind.HOME,
    EmailType.WORK: EmailKind.WORK,
    EmailType.OTHER: EmailKind.OTHER,
}

# Plain "telephone" and "main" collapse onto the same local type.
PHONE_TYPE_MAP: dict[TelephoneType, PhoneKind] = {
    TelephoneType.TELEPHONE: PhoneKind.MAIN,
    TelephoneType.HOME: PhoneKind.HOME,
    TelephoneType.WORK: PhoneKind.WORK,
    TelephoneType.OTHER: PhoneKind.OTHER,
    TelephoneType.MOBILE: PhoneKind.MOBILE,
    TelephoneType.MAIN: PhoneKind.MAIN,
    TelephoneType.FAX: PhoneKind.OTHER_FAX,
    TelephoneType.PAGER: PhoneKind.PAGER,
}

ADDRESS_TYPE_MAP: dict[AddressType, AddressKind] = {
    AddressType.ADDRESS: AddressKind.OTHER,
    AddressType.HOME: AddressKind.HOME,
    AddressType.WORK: AddressKind.WORK,
    AddressType.OTHER: AddressKind.OTHER,
}

FieldValue = Union[str, dict[str, str], bytes]

PhotoProcessor = Callable[[bytes], bytes]


@dataclass(frozen=True)
class FieldEntry:
    """
    One typed field row destined for a local contact container.

    Attributes:
        kind: Field kind
        type: Type tag from the kind's local enumeration, or None for kinds
              that carry no type (name, note, photo)
        value: Text, a dict of named parts, or photo bytes
    """

    kind: FieldKind
    type: Optional[str]
    value: FieldValue

    def __repr__(self) -> str:
        value: Any = self.value
        if isinstance(value, bytes):
            value = f"<{len(value)} bytes>"
        return (
            f"FieldEntry(kind={self.kind.value!r}, type={self.type!r}, "
            f"value={value!r})"
        )


def _clean(value: Optional[str]) -> str:
    """Return the trimmed value, or an empty string for None."""
    return value.strip() if value else ""


def _present(value: Optional[str]) -> bool:
    """Check that a free-text value is neither empty nor whitespace."""
    return bool(value and value.strip())


def map_name(contact: RemoteContact) -> list[FieldEntry]:
    """Map the formatted and structured name onto at most one name field."""
    parts: dict[str, str] = {}

    display_name = _clean(contact.formatted_name)
    if display_name:
        parts["display_name"] = display_name

    if contact.structured_name is not None:
        given = _clean(contact.structured_name.given)
        family = _clean(contact.structured_name.family)
        if given:
            parts["given_name"] = given
        if family:
            parts["family_name"] = family

    if not parts:
        return []
    return [FieldEntry(FieldKind.NAME, None, parts)]


def map_emails(contact: RemoteContact) -> list[FieldEntry]:
    entries = []
    for email in contact.emails:
        address = _clean(email.value)
        if not address:
            continue
        entries.append(
            FieldEntry(FieldKind.EMAIL, EMAIL_TYPE_MAP[email.type].value, address)
        )
    return entries


def map_phones(contact: RemoteContact) -> list[FieldEntry]:
    entries = []
    for phone in contact.telephones:
        number = _clean(phone.text)
        if not number:
            continue
        entries.append(
            FieldEntry(FieldKind.PHONE, PHONE_TYPE_MAP[phone.type].value, number)
        )
    return entries


def map_addresses(contact: RemoteContact) -> list[FieldEntry]:
    """Map postal addresses; parts are carried verbatim without normalization."""
    entries = []
    for address in contact.addresses:
        if address.is_blank():
            continue
        value = {
            "street": address.street_address,
            "city": address.locality,
            "region": address.region,
            "postcode": address.postal_code,
            "country": address.country,
        }
        entries.append(
            FieldEntry(FieldKind.ADDRESS, ADDRESS_TYPE_MAP[address.type].value, value)
        )
    return entries


def map_events(contact: RemoteContact) -> list[FieldEntry]:
    """Map birthday and anniversary onto date-only event fields."""
    entries = []
    if contact.birthday is not None:
        entries.append(
            FieldEntry(
                FieldKind.EVENT,
                EventKind.BIRTHDAY.value,
                contact.birthday.isoformat(),
            )
        )
    if contact.anniversary is not None:
        entries.append(
            FieldEntry(
                FieldKind.EVENT,
                EventKind.ANNIVERSARY.value,
                contact.anniversary.isoformat(),
            )
        )
    return entries


def map_notes(contact: RemoteContact) -> list[FieldEntry]:
    # Each note stays a separate field
    return [
        FieldEntry(FieldKind.NOTE, None, note)
        for note in contact.notes
        if _present(note)
    ]


def map_organizations(contact: RemoteContact) -> list[FieldEntry]:
    """Map organization names and titles onto independent organization fields."""
    entries = [
        FieldEntry(
            FieldKind.ORGANIZATION, OrganizationKind.OTHER.value, {"company": o}
        )
        for o in contact.organizations
        if _present(o)
    ]
    entries.extend(
        FieldEntry(
            FieldKind.ORGANIZATION, OrganizationKind.OTHER.value, {"title": t}
        )
        for t in contact.titles
        if _present(t)
    )
    return entries


def map_urls(contact: RemoteContact) -> list[FieldEntry]:
    return [
        FieldEntry(FieldKind.WEBSITE, WebsiteKind.HOMEPAGE.value, url)
        for url in contact.urls
        if _present(url)
    ]


def map_photo(
    contact: RemoteContact, photo_processor: Optional[PhotoProcessor] = None
) -> list[FieldEntry]:
    """
    Map the first photo onto a photo field; remaining photos are dropped.

    Args:
        contact: Contact to map
        photo_processor: Optional callable normalizing the photo bytes. If it
                         raises PhotoError the raw bytes are kept.

    Returns:
        A list with at most one photo entry
    """
    if not contact.photos:
        return []

    data = contact.photos[0]
    if not data:
        return []

    if len(contact.photos) > 1:
        logger.debug(
            f"Contact {contact.contact_id}: keeping first of "
            f"{len(contact.photos)} photos"
        )

    if photo_processor is not None:
        try:
            data = photo_processor(data)
        except PhotoError as e:
            logger.warning(
                f"Photo processing failed for contact {contact.contact_id}, "
                f"storing original bytes: {e}"
            )

    return [FieldEntry(FieldKind.PHOTO, None, data)]


def map_contact_fields(
    contact: RemoteContact, photo_processor: Optional[PhotoProcessor] = None
) -> list[FieldEntry]:
    """
    Map a remote contact onto its ordered list of local field entries.

    Absent properties and blank strings produce no entries.

    Args:
        contact: Contact to map
        photo_processor: Optional photo normalizer (see map_photo)

    Returns:
        Field entries in name, email, phone, address, event, note,
        organization, website, photo order
    """
    entries: list[FieldEntry] = []
    entries.extend(map_name(contact))
    entries.extend(map_emails(contact))
    entries.extend(map_phones(contact))
    entries.extend(map_addresses(contact))
    entries.extend(map_events(contact))
    entries.extend(map_notes(contact))
    entries.extend(map_organizations(contact))
    entries.extend(map_urls(contact))
    entries.extend(map_photo(contact, photo_processor))
    return entries
