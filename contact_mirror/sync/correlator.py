"""
Correlation of remote contacts with local records.

Splits the remote collection and the local index, keyed by external id, into
the three sets a one-way mirror needs: stale local records to delete, remote
contacts to insert and remote contacts to rebuild.
"""

import logging
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field

from contact_mirror.sync.contact import LocalRecord, RemoteContact

logger = logging.getLogger(__name__)


class DuplicateExternalIdError(ValueError):
    """Raised when the remote collection carries the same external id twice."""

    def __init__(self, duplicate_ids: list[str]):
        self.duplicate_ids = duplicate_ids
        super().__init__(
            f"Remote collection contains duplicate external ids: "
            f"{', '.join(duplicate_ids)}"
        )


@dataclass
class ReconciliationResult:
    """
    Outcome of correlating one remote collection with one local index.

    Attributes:
        stale_local_ids: Local ids whose external id is absent remotely
        new_remote: Remote contacts with no local counterpart
        updated_remote: Remote contacts with a local counterpart
    """

    stale_local_ids: list[int] = field(default_factory=list)
    new_remote: list[RemoteContact] = field(default_factory=list)
    updated_remote: list[RemoteContact] = field(default_factory=list)

    def has_changes(self) -> bool:
        """Check if there is anything to apply."""
        return bool(self.stale_local_ids or self.new_remote or self.updated_remote)

    def summary(self) -> str:
        return (
            f"{len(self.new_remote)} new, {len(self.updated_remote)} to update, "
            f"{len(self.stale_local_ids)} stale"
        )


def find_duplicate_ids(remote: Iterable[RemoteContact]) -> list[str]:
    """Return the external ids occurring more than once, sorted."""
    counts = Counter(contact.contact_id for contact in remote)
    return sorted(cid for cid, count in counts.items() if cid and count > 1)


def correlate(
    remote: Iterable[RemoteContact], local: Iterable[LocalRecord]
) -> ReconciliationResult:
    """
    Correlate remote contacts with local records by external id.

    Remote contacts must already carry non-empty ids. Local records without
    an external id are not managed by the mirror and are ignored entirely,
    so they never become deletion candidates.

    Args:
        remote: Remote contacts (ids unique and non-empty)
        local: Local records for the same account

    Returns:
        ReconciliationResult; new_remote and updated_remote partition remote

    Raises:
        DuplicateExternalIdError: If the same id occurs twice in remote
    """
    remote = list(remote)
    duplicates = find_duplicate_ids(remote)
    if duplicates:
        raise DuplicateExternalIdError(duplicates)

    managed = [record for record in local if record.external_id is not None]
    local_by_external_id = {record.external_id: record for record in managed}
    remote_ids = {contact.contact_id for contact in remote}

    result = ReconciliationResult()
    result.stale_local_ids = [
        record.local_id for record in managed if record.external_id not in remote_ids
    ]
    for contact in remote:
        if contact.contact_id in local_by_external_id:
            result.updated_remote.append(contact)
        else:
            result.new_remote.append(contact)

    logger.debug(
        f"Correlated {len(remote)} remote / {len(managed)} local: "
        f"{result.summary()}"
    )
    return result
