"""
Unit tests for the batch builder.

Tests the operations and batches produced for stale, new and updated contacts.
"""

import pytest
from conftest import make_contact, make_contact_with_email

from contact_mirror.sync.contact import LocalRecord
from contact_mirror.sync.correlator import correlate
from contact_mirror.sync.fields import FieldEntry, FieldKind
from contact_mirror.sync.operations import (
    BackReference,
    Batch,
    BatchBuilder,
    DeleteByExternalId,
    DeleteByLocalId,
    InsertContainer,
    InsertField,
)


class TestBatch:
    """Tests for the Batch container."""

    def test_append_returns_position(self):
        """Test that append returns the operation index."""
        batch = Batch()
        assert batch.append(DeleteByLocalId(1)) == 0
        assert batch.append(DeleteByLocalId(2)) == 1
        assert len(batch) == 2

    def test_iteration_order(self):
        """Test that iteration follows insertion order."""
        batch = Batch()
        batch.append(DeleteByLocalId(3))
        batch.append(DeleteByLocalId(1))
        assert [op.local_id for op in batch] == [3, 1]


class TestBatchBuilder:
    """Tests for BatchBuilder."""

    def test_new_contact_insert_batch(self, account):
        """Test a new contact with a home email inserts container and email."""
        plan = BatchBuilder(account).plan(
            correlate([make_contact_with_email("u1", "a@x.com")], [])
        )

        assert plan.stale_batch is None
        assert plan.replacements == []
        (step,) = plan.insertions
        operations = step.insert_batch.operations
        assert operations[0] == InsertContainer(account, "u1")
        emails = [
            op for op in operations[1:] if op.entry.kind == FieldKind.EMAIL
        ]
        entry = FieldEntry(FieldKind.EMAIL, "home", "a@x.com")
        assert emails == [InsertField(BackReference(0), entry)]

    def test_every_field_refers_to_container(self, account):
        """Test that every field insert back-references position 0."""
        batch = BatchBuilder(account).insert_batch(
            make_contact("u1", notes=("a", "b"), urls=("https://x.example",))
        )

        assert isinstance(batch.operations[0], InsertContainer)
        for operation in batch.operations[1:]:
            assert operation.parent == BackReference(0)

    def test_stale_records_one_delete_batch(self, account):
        """Test that stale local records become one delete batch."""
        plan = BatchBuilder(account).plan(
            correlate([], [LocalRecord(local_id=5, external_id="u1")])
        )

        assert plan.stale_batch.operations == [DeleteByLocalId(5)]
        assert plan.stale_count == 1
        assert plan.insertions == []
        assert plan.replacements == []

    def test_updated_contact_two_batches(self, account):
        """Test an update is a delete-by-external-id batch then an insert batch."""
        plan = BatchBuilder(account).plan(
            correlate(
                [make_contact("u1", formatted_name="Renamed")],
                [LocalRecord(local_id=5, external_id="u1")],
            )
        )

        (step,) = plan.replacements
        assert step.delete_batch.operations == [DeleteByExternalId(account, "u1")]
        assert step.insert_batch.operations[0] == InsertContainer(account, "u1")
        assert step.insert_batch is not step.delete_batch
        name = step.insert_batch.operations[1].entry
        assert name.value == {"display_name": "Renamed"}

    def test_plan_batch_count(self, account):
        """Test the batch count across stale, updated and new contacts."""
        plan = BatchBuilder(account).plan(
            correlate(
                [make_contact("a"), make_contact("b"), make_contact("c")],
                [LocalRecord(1, "a"), LocalRecord(2, "x"), LocalRecord(3, "y")],
            )
        )

        # one stale batch, two for the update, one per new contact
        assert plan.batch_count == 1 + 2 + 2
        assert plan.stale_count == 2
        assert not plan.is_empty()

    def test_empty_plan(self, account):
        """Test that nothing to do yields an empty plan."""
        plan = BatchBuilder(account).plan(correlate([], []))
        assert plan.is_empty()

    def test_insert_batch_requires_id(self, account):
        """Test that a contact without id cannot be inserted."""
        with pytest.raises(ValueError):
            BatchBuilder(account).insert_batch(make_contact(None))

    def test_photo_processor_is_used(self, account):
        """Test that the builder passes photos through its processor."""
        builder = BatchBuilder(account, photo_processor=lambda data: data.upper())

        batch = builder.insert_batch(make_contact("u1", photos=(b"raw",)))

        photo = batch.operations[-1].entry
        assert photo.kind == FieldKind.PHOTO
        assert photo.value == b"RAW"

    def test_batch_labels(self, account):
        """Test that batch labels name the contact."""
        delete_batch, insert_batch = BatchBuilder(account).replace_batches(
            make_contact("u1")
        )
        assert delete_batch.label == "delete u1"
        assert insert_batch.label == "reinsert u1"
