"""
Remote contact sources.

A remote source returns the authoritative, already-decrypted contact
collection of one account. Two implementations are provided:
- JsonExportSource reads a per-account JSON export from disk
- HttpRemoteSource fetches the same JSON document over HTTP, with retries
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Protocol

import requests
from requests.exceptions import RequestException

from contact_mirror import __version__
from contact_mirror.sync.contact import ContactParseError, RemoteContact
from contact_mirror.utils.paths import EXPORT_DIR_NAME, resolve_data_path

# Retry configuration
MAX_RETRIES = 5
INITIAL_RETRY_DELAY = 1.0  # seconds
MAX_RETRY_DELAY = 60.0  # seconds

# HTTP timeout configuration
REQUEST_TIMEOUT = 30.0  # seconds

USER_AGENT = f"contact-mirror/{__version__}"

logger = logging.getLogger(__name__)


class RemoteSourceError(Exception):
    """Raised when the remote collection cannot be retrieved or parsed."""

    pass


class RemoteSource(Protocol):
    def list_contacts(self, account_id: str) -> list[RemoteContact]: ...


def parse_contacts_document(document: Any, origin: str) -> list[RemoteContact]:
    """
    Parse an exported contacts document.

    Accepts either a list of contact records or ``{"contacts": [...]}``.

    Args:
        document: Decoded JSON document
        origin: Description of where the document came from (for errors)

    Returns:
        List of RemoteContact, in document order

    Raises:
        RemoteSourceError: If the document shape or a record is invalid
    """
    if isinstance(document, dict):
        document = document.get("contacts")
    if not isinstance(document, list):
        raise RemoteSourceError(
            f"{origin}: expected a list of contacts or an object with 'contacts'"
        )

    contacts = []
    for index, record in enumerate(document):
        try:
            contacts.append(RemoteContact.from_dict(record))
        except ContactParseError as e:
            raise RemoteSourceError(f"{origin}: contact #{index}: {e}") from e
    return contacts


class JsonExportSource:
    """
    Remote source reading ``<export_dir>/<account_id>.json``.

    Usage:
        source = JsonExportSource(Path("~/.contact-mirror/export"))
        contacts = source.list_contacts("acc-123")
    """

    def __init__(self, export_dir: Path | str):
        self.export_dir = Path(export_dir).expanduser()

    def _export_path(self, account_id: str) -> Path:
        return self.export_dir / f"{account_id}.json"

    def list_contacts(self, account_id: str) -> list[RemoteContact]:
        """
        Load every exported contact of an account.

        Raises:
            RemoteSourceError: If the export is missing or invalid
        """
        path = self._export_path(account_id)
        if not path.exists():
            raise RemoteSourceError(f"Contact export not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except json.JSONDecodeError as e:
            raise RemoteSourceError(f"Invalid JSON in {path}: {e}") from e
        except OSError as e:
            raise RemoteSourceError(f"Failed to read {path}: {e}") from e

        contacts = parse_contacts_document(document, str(path))
        logger.debug(f"Loaded {len(contacts)} contacts from {path}")
        return contacts


class HttpRemoteSource:
    """
    Remote source fetching ``{base_url}/accounts/{account_id}/contacts``.

    Timeouts, connection errors and server errors are retried with
    exponential backoff; client errors fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = REQUEST_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        session: requests.Session | None = None,
    ):
        """
        Initialize the HTTP source.

        Args:
            base_url: Service base URL (http or https)
            timeout: Request timeout in seconds (default: 30)
            max_retries: Maximum number of attempts (default: 5)
            session: Optional requests session (for connection reuse or tests)

        Raises:
            RemoteSourceError: If the URL scheme is invalid
        """
        if not base_url.startswith(("http://", "https://")):
            raise RemoteSourceError(f"Invalid remote URL scheme: {base_url}")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = session or requests.Session()

    def _contacts_url(self, account_id: str) -> str:
        return f"{self.base_url}/accounts/{account_id}/contacts"

    def list_contacts(self, account_id: str) -> list[RemoteContact]:
        """
        Fetch every contact of an account.

        Raises:
            RemoteSourceError: If the fetch fails after retries or the body is invalid
        """
        url = self._contacts_url(account_id)
        delay = INITIAL_RETRY_DELAY

        for attempt in range(self.max_retries):
            try:
                logger.debug(
                    f"Fetching contacts from {url} "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                response = self.session.get(
                    url,
                    timeout=self.timeout,
                    headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
                )
                response.raise_for_status()

                try:
                    document = response.json()
                except ValueError as e:
                    raise RemoteSourceError(f"Invalid JSON from {url}: {e}") from e

                contacts = parse_contacts_document(document, url)
                logger.debug(f"Fetched {len(contacts)} contacts from {url}")
                return contacts

            except requests.HTTPError as e:
                response = e.response
                status_code = response.status_code if response is not None else None
                retryable = attempt < self.max_retries - 1

                # Retry on server errors
                if status_code and status_code >= 500 and retryable:
                    logger.warning(
                        f"Server error ({status_code}) fetching contacts, "
                        f"retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, MAX_RETRY_DELAY)
                    continue

                logger.error(f"HTTP error fetching contacts from {url}: {e}")
                raise RemoteSourceError(f"Failed to fetch contacts: {e}") from e

            except RequestException as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Network error fetching contacts, "
                        f"retrying in {delay:.1f}s: {e}"
                    )
                    time.sleep(delay)
                    delay = min(delay * 2, MAX_RETRY_DELAY)
                    continue
                logger.error(f"Network error fetching contacts from {url}: {e}")
                raise RemoteSourceError(
                    f"Network error after {self.max_retries} retries: {e}"
                ) from e

        raise RemoteSourceError(
            f"Failed to fetch contacts after {self.max_retries} retries"
        )


def create_source(config: dict[str, Any], config_dir: Path) -> RemoteSource:
    """
    Build the remote source described by the configuration.

    Args:
        config: Loaded configuration dictionary
        config_dir: Configuration directory (base for the default export dir)

    Returns:
        A RemoteSource instance

    Raises:
        RemoteSourceError: If the source configuration is incomplete
    """
    source_type = config.get("source_type", "file")
    if source_type == "http":
        url = config.get("source_url")
        if not url:
            raise RemoteSourceError("source_url is required when source_type is http")
        return HttpRemoteSource(
            url,
            timeout=config.get("source_timeout", REQUEST_TIMEOUT),
            max_retries=config.get("source_max_retries", MAX_RETRIES),
        )
    if source_type == "file":
        return JsonExportSource(
            resolve_data_path(config.get("source_path"), config_dir, EXPORT_DIR_NAME)
        )
    raise RemoteSourceError(f"Unknown source_type '{source_type}'")
