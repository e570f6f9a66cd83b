"""Shared fixtures for contact_mirror tests."""

import io
import logging

import pytest
from PIL import Image

from contact_mirror.storage.db import ContactStore
from contact_mirror.sync.contact import AccountIdentity, Email, EmailType, RemoteContact


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() side effects so caplog sees package records."""
    yield
    logger = logging.getLogger("contact_mirror")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def account():
    return AccountIdentity("me@example.com", "contact-mirror")


@pytest.fixture
def store():
    db = ContactStore(":memory:")
    db.initialize()
    return db


@pytest.fixture
def jpeg_bytes():
    """A small valid JPEG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (64, 48), color="red").save(buffer, format="JPEG")
    return buffer.getvalue()


def make_contact(contact_id="u1", **kwargs):
    """Build a RemoteContact with a display name and optional extra fields."""
    kwargs.setdefault("formatted_name", f"Contact {contact_id}")
    return RemoteContact(contact_id=contact_id, **kwargs)


def make_contact_with_email(contact_id, address, type=EmailType.HOME):
    return make_contact(contact_id, emails=(Email(address, type),))
