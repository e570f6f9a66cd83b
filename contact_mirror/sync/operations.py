"""
Store operations and batch building for one-way contact mirroring.

A batch is the unit the local store applies atomically. An "update" is not a
native store primitive: it is a delete of the whole previous container
(cascading to its fields) followed, in a separate later batch, by the insert
of a fresh container and freshly mapped fields. Field inserts refer to their
container through a BackReference to the container's position in the same
batch, since the container id only exists once the store runs the batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from contact_mirror.sync.contact import AccountIdentity, RemoteContact
from contact_mirror.sync.correlator import ReconciliationResult
from contact_mirror.sync.fields import FieldEntry, PhotoProcessor, map_contact_fields

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackReference:
    """Position of an InsertContainer earlier in the same batch."""

    index: int


@dataclass(frozen=True)
class DeleteByLocalId:
    """Delete one container (and its fields) by store-assigned id."""

    local_id: int


@dataclass(frozen=True)
class DeleteByExternalId:
    """Delete every container of the account carrying this external id."""

    account: AccountIdentity
    external_id: str


@dataclass(frozen=True)
class InsertContainer:
    """Create a container for a remote contact."""

    account: AccountIdentity
    external_id: str


@dataclass(frozen=True)
class InsertField:
    """Create one field row under a container created earlier in the batch."""

    parent: BackReference
    entry: FieldEntry


Operation = Union[DeleteByLocalId, DeleteByExternalId, InsertContainer, InsertField]


@dataclass
class Batch:
    """
    Ordered operations applied all-or-nothing by the local store.

    Attributes:
        operations: Operations in execution order
        label: Short description used in log messages
    """

    operations: list[Operation] = field(default_factory=list)
    label: str = ""

    def append(self, operation: Operation) -> int:
        """Append an operation and return its position in the batch."""
        self.operations.append(operation)
        return len(self.operations) - 1

    def __len__(self) -> int:
        return len(self.operations)

    def __iter__(self):
        return iter(self.operations)


@dataclass
class ReplaceStep:
    """Delete-then-insert pair for one updated contact; always two batches."""

    contact: RemoteContact
    delete_batch: Batch
    insert_batch: Batch


@dataclass
class InsertStep:
    contact: RemoteContact
    insert_batch: Batch


@dataclass
class SyncPlan:
    """
    All batches for one pass, in application order.

    Attributes:
        stale_batch: Deletions of stale local containers (None if nothing is stale)
        stale_count: Number of containers in stale_batch
        replacements: Delete-then-insert steps for updated contacts
        insertions: Insert steps for new contacts
    """

    stale_batch: Batch | None = None
    stale_count: int = 0
    replacements: list[ReplaceStep] = field(default_factory=list)
    insertions: list[InsertStep] = field(default_factory=list)

    @property
    def batch_count(self) -> int:
        """Total number of batches in the plan."""
        return (
            (1 if self.stale_batch else 0)
            + 2 * len(self.replacements)
            + len(self.insertions)
        )

    def is_empty(self) -> bool:
        return self.batch_count == 0


class BatchBuilder:
    """
    Builds store batches for one account.

    Usage:
        builder = BatchBuilder(account)
        plan = builder.plan(correlate(remote, local))
    """

    def __init__(
        self,
        account: AccountIdentity,
        photo_processor: PhotoProcessor | None = None,
    ):
        """
        Initialize the builder.

        Args:
            account: Account every container belongs to
            photo_processor: Optional photo normalizer passed to the field mapper
        """
        self.account = account
        self.photo_processor = photo_processor

    def stale_batch(self, local_ids: list[int]) -> Batch | None:
        """Build one batch deleting every stale container, or None if empty."""
        if not local_ids:
            return None
        batch = Batch(label=f"delete {len(local_ids)} stale")
        for local_id in local_ids:
            batch.append(DeleteByLocalId(local_id))
        return batch

    def insert_batch(self, contact: RemoteContact) -> Batch:
        """
        Build the insert batch for one contact.

        The container is inserted first; every mapped field refers back to it.
        """
        if not contact.has_id():
            raise ValueError("Cannot build an insert batch for a contact without id")

        batch = Batch(label=f"insert {contact.contact_id}")
        container = BackReference(
            batch.append(InsertContainer(self.account, contact.contact_id))
        )
        for entry in map_contact_fields(contact, self.photo_processor):
            batch.append(InsertField(container, entry))
        return batch

    def replace_batches(self, contact: RemoteContact) -> tuple[Batch, Batch]:
        """
        Build the delete batch and the insert batch replacing one contact.

        The delete batch must be committed before the insert batch runs.
        """
        delete_batch = Batch(label=f"delete {contact.contact_id}")
        delete_batch.append(DeleteByExternalId(self.account, contact.contact_id))
        insert_batch = self.insert_batch(contact)
        insert_batch.label = f"reinsert {contact.contact_id}"
        return delete_batch, insert_batch

    def plan(self, result: ReconciliationResult) -> SyncPlan:
        """
        Build every batch for a reconciliation result.

        Args:
            result: Output of correlate()

        Returns:
            SyncPlan with batches in application order
        """
        plan = SyncPlan(
            stale_batch=self.stale_batch(result.stale_local_ids),
            stale_count=len(result.stale_local_ids),
        )

        for contact in result.updated_remote:
            delete_batch, insert_batch = self.replace_batches(contact)
            plan.replacements.append(ReplaceStep(contact, delete_batch, insert_batch))

        for contact in result.new_remote:
            plan.insertions.append(InsertStep(contact, self.insert_batch(contact)))

        logger.debug(f"Built {plan.batch_count} batches for {self.account}")
        return plan
