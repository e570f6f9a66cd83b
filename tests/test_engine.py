"""
Unit tests for the sync engine.

Runs whole passes against an in-memory ContactStore with a mocked remote
source, covering the terminal states and the landed-only statistics.
"""

import io
import logging
import threading
from unittest.mock import Mock

import pytest
from conftest import make_contact, make_contact_with_email
from PIL import Image

from contact_mirror.remote.source import JsonExportSource, RemoteSourceError
from contact_mirror.storage.db import BatchApplyError, StoreAccessDenied, StoreError
from contact_mirror.sync.accounts import ConfigAccountResolver, RemoteAccount
from contact_mirror.sync.contact import (
    AccountIdentity,
    Telephone,
    TelephoneType,
)
from contact_mirror.sync.engine import (
    AccountLocks,
    CancellationToken,
    SyncCancelled,
    SyncEngine,
    SyncSecurityError,
    SyncState,
    SyncStats,
)
from contact_mirror.sync.operations import BatchBuilder
from contact_mirror.sync.photo import make_photo_processor

ACCOUNT_ID = "acc-1"


class FlakyStore:
    """Store wrapper failing batches whose label matches."""

    def __init__(self, store, fail_labels=(), error=BatchApplyError):
        self.store = store
        self.fail_labels = set(fail_labels)
        self.error = error
        self.applied = []

    def query_managed_records(self, account):
        return self.store.query_managed_records(account)

    def apply_batch(self, batch):
        if batch.label in self.fail_labels:
            raise self.error(f"refused {batch.label}")
        self.applied.append(batch.label)
        return self.store.apply_batch(batch)

    def ensure_ungrouped_visible(self, account):
        self.store.ensure_ungrouped_visible(account)


def make_engine(store, contacts=(), **kwargs):
    source = Mock()
    source.list_contacts.return_value = list(contacts)
    resolver = ConfigAccountResolver([RemoteAccount(ACCOUNT_ID, "me@example.com")])
    return SyncEngine(source=source, store=store, resolver=resolver, **kwargs)


def idle_store():
    store = Mock()
    store.query_managed_records.return_value = []
    return store


def seed(store, account, *contact_ids):
    builder = BatchBuilder(account)
    for contact_id in contact_ids:
        store.apply_batch(builder.insert_batch(make_contact(contact_id)))


def managed_ids(store, account):
    return sorted(r.external_id for r in store.query_managed_records(account))


class TestSyncPass:
    """End-to-end passes against an in-memory store."""

    def test_new_contact_is_inserted(self, store, account):
        """Test that a new remote contact lands with its home email."""
        engine = make_engine(store, [make_contact_with_email("u1", "a@x.com")])

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.inserted == 1
        assert stats.succeeded
        (record,) = store.query_managed_records(account)
        assert record.external_id == "u1"
        fields = store.get_contact_fields(record.local_id)
        emails = [(f["type"], f["value"]) for f in fields if f["kind"] == "email"]
        assert emails == [("home", "a@x.com")]

    def test_stale_contact_is_deleted(self, store, account):
        """Test that a local record absent remotely is deleted."""
        seed(store, account, "u1")
        engine = make_engine(store, [])

        stats = engine.run_sync(account)

        assert stats.deleted == 1
        assert store.query_managed_records(account) == []

    def test_updated_contact_is_rebuilt(self, store, account):
        """Test that a matching contact is replaced with remote data."""
        seed(store, account, "u1")
        (old,) = store.query_managed_records(account)
        engine = make_engine(store, [make_contact("u1", formatted_name="Renamed")])

        stats = engine.run_sync(account)

        assert stats.updated == 1
        (new,) = store.query_managed_records(account)
        assert new.local_id != old.local_id
        name = store.get_contact_fields(new.local_id)[0]
        assert name["value"] == {"display_name": "Renamed"}

    def test_phone_types_are_narrowed(self, store, account):
        """Test that plain and main telephones land as main, fax as other_fax."""
        contact = make_contact(
            "u1",
            telephones=(
                Telephone("1", TelephoneType.TELEPHONE),
                Telephone("2", TelephoneType.MAIN),
                Telephone("3", TelephoneType.FAX),
            ),
        )
        make_engine(store, [contact]).run_sync(account)

        (record,) = store.query_managed_records(account)
        phones = [
            f["type"] for f in store.get_contact_fields(record.local_id)
            if f["kind"] == "phone"
        ]
        assert phones == ["main", "main", "other_fax"]

    def test_two_notes_land_separately(self, store, account):
        """Test that two notes become two note rows."""
        make_engine(store, [make_contact("u1", notes=("a", "b"))]).run_sync(account)

        (record,) = store.query_managed_records(account)
        notes = [
            f["value"] for f in store.get_contact_fields(record.local_id)
            if f["kind"] == "note"
        ]
        assert notes == ["a", "b"]

    def test_unmanaged_contacts_are_untouched(self, store, account):
        """Test that containers without external id survive a pass."""
        with store.connection() as conn:
            conn.execute(
                "INSERT INTO raw_contacts (account_name, account_type) VALUES (?, ?)",
                (account.name, account.type),
            )

        make_engine(store, []).run_sync(account)

        assert store.get_contact_count(account) == 1

    def test_rerun_is_idempotent(self, store, account):
        """Test that a second pass leaves the same set of managed ids."""
        contacts = [make_contact("u1"), make_contact("u2")]
        engine = make_engine(store, contacts)

        engine.run_sync(account)
        stats = engine.run_sync(account)

        assert managed_ids(store, account) == ["u1", "u2"]
        assert stats.inserted == 0
        assert stats.deleted == 0
        assert stats.updated == 2

    def test_contacts_without_id_are_skipped(self, store, account):
        """Test that remote contacts without id are counted and skipped."""
        engine = make_engine(store, [make_contact("u1"), make_contact(None)])

        stats = engine.run_sync(account)

        assert stats.skipped_without_id == 1
        assert stats.remote_contacts == 1
        assert managed_ids(store, account) == ["u1"]

    def test_ungrouped_made_visible(self, store, account):
        """Test that the pass marks ungrouped contacts visible."""
        make_engine(store, []).run_sync(account)
        assert store.is_ungrouped_visible(account)

    def test_fetches_resolved_account(self, store, account):
        """Test that the source is asked for the resolved remote account id."""
        engine = make_engine(store, [])
        engine.run_sync(account)
        engine.source.list_contacts.assert_called_once_with(ACCOUNT_ID)

    def test_photo_processor_is_applied(self, store, account):
        """Test that the engine passes its photo processor to the mapper."""
        engine = make_engine(
            store,
            [make_contact("u1", photos=(b"raw",))],
            photo_processor=lambda data: b"small",
        )

        engine.run_sync(account)

        (record,) = store.query_managed_records(account)
        photo = store.get_contact_fields(record.local_id)[-1]
        assert photo["blob"] == b"small"

    def test_oversized_photo_keeps_raw_bytes(self, store, account, monkeypatch):
        """Test that a photo over Pillow's pixel limit does not abort the pass."""
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        buffer = io.BytesIO()
        Image.new("RGB", (100, 100)).save(buffer, format="PNG")
        raw = buffer.getvalue()
        engine = make_engine(
            store,
            [make_contact("u1", photos=(raw,)), make_contact("u2")],
            photo_processor=make_photo_processor(),
        )

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.inserted == 2
        record = next(
            r for r in store.query_managed_records(account) if r.external_id == "u1"
        )
        photo = store.get_contact_fields(record.local_id)[-1]
        assert photo["blob"] == raw

    def test_expedited_flag_recorded(self, store, account):
        """Test that the expedited flag is carried into the stats."""
        stats = make_engine(store, []).run_sync(account, expedited=True)
        assert stats.expedited
        assert stats.finished_at is not None


class TestEarlyExits:
    """Tests for passes ending before any batch is applied."""

    def test_unknown_account_is_done_without_changes(self, store):
        """Test that an identity without remote account ends DONE."""
        engine = make_engine(store, [make_contact("u1")])

        stats = engine.run_sync(AccountIdentity("nobody@example.com", "contact-mirror"))

        assert stats.state == SyncState.DONE
        assert stats.total_changes == 0
        engine.source.list_contacts.assert_not_called()

    def test_fetch_failure_counts_error(self, store, account):
        """Test that a remote failure ends DONE with one error and no changes."""
        seed(store, account, "u1")
        engine = make_engine(store)
        engine.source.list_contacts.side_effect = RemoteSourceError("offline")

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.errors == 1
        assert not stats.succeeded
        assert managed_ids(store, account) == ["u1"]

    def test_malformed_export_counts_error(self, store, account, tmp_path):
        """Test that a malformed export record ends DONE with one error."""
        (tmp_path / f"{ACCOUNT_ID}.json").write_text(
            '[{"id": "u1", "emails": ["a@x.com"]}]'
        )
        engine = make_engine(store)
        engine.source = JsonExportSource(tmp_path)

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.errors == 1
        assert store.query_managed_records(account) == []

    def test_duplicate_ids_reject_pass(self, store, account):
        """Test that duplicate remote ids reject the pass before applying."""
        seed(store, account, "stale")
        engine = make_engine(store, [make_contact("u1"), make_contact("u1")])

        stats = engine.run_sync(account)

        assert stats.state == SyncState.REJECTED
        assert stats.errors == 1
        assert managed_ids(store, account) == ["stale"]

    def test_unexpected_error_logs_aborted_state(self, store, account, caplog):
        """Test that an unexpected error propagates and names the stuck state."""
        engine = make_engine(store)
        engine.source.list_contacts.side_effect = RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="contact_mirror.sync.engine"):
            with pytest.raises(RuntimeError):
                engine.run_sync(account)

        assert "aborted in state fetching_remote" in caplog.text
        assert not engine.is_running(account)

    def test_local_query_failure_counts_error(self, account):
        """Test that a local query failure ends DONE with one error."""
        store = Mock()
        store.query_managed_records.side_effect = StoreError("corrupt")
        engine = make_engine(store, [make_contact("u1")])

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.errors == 1
        store.apply_batch.assert_not_called()


class TestBatchFailures:
    """Tests for failure isolation between batches."""

    def test_failed_insert_not_counted(self, store, account):
        """Test that stats only count batches that landed."""
        flaky = FlakyStore(store, fail_labels={"insert u2"})
        engine = make_engine(flaky, [make_contact("u1"), make_contact("u2")])

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE
        assert stats.planned_inserts == 2
        assert stats.inserted == 1
        assert stats.failed_batches == 1
        assert not stats.succeeded
        assert managed_ids(store, account) == ["u1"]

    def test_failed_stale_delete_not_counted(self, store, account):
        """Test that a failed stale batch leaves deleted at zero."""
        seed(store, account, "old")
        flaky = FlakyStore(store, fail_labels={"delete 1 stale"})

        stats = make_engine(flaky, [make_contact("u1")]).run_sync(account)

        assert stats.planned_deletes == 1
        assert stats.deleted == 0
        assert stats.inserted == 1

    def test_failed_update_delete_skips_reinsert(self, store, account):
        """Test that the re-insert is skipped when its delete failed."""
        seed(store, account, "u1")
        flaky = FlakyStore(store, fail_labels={"delete u1"})

        stats = make_engine(flaky, [make_contact("u1")]).run_sync(account)

        assert stats.updated == 0
        assert stats.failed_batches == 2
        assert "reinsert u1" not in flaky.applied
        assert store.get_contact_count(account) == 1

    def test_access_denied_raises_security_error(self, store, account):
        """Test that a store denial surfaces with the partial stats."""
        flaky = FlakyStore(store, fail_labels={"insert u1"}, error=StoreAccessDenied)
        engine = make_engine(flaky, [make_contact("u1")])

        with pytest.raises(SyncSecurityError) as exc_info:
            engine.run_sync(account)

        assert exc_info.value.stats.state == SyncState.SECURITY_DENIED
        assert not engine.is_running(account)


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_stops_before_next_batch(self, store, account):
        """Test that cancelling mid-pass stops further batches."""
        engine = None

        class CancellingStore(FlakyStore):
            def apply_batch(self, batch):
                result = super().apply_batch(batch)
                engine.cancel(account)
                return result

        wrapper = CancellingStore(store)
        engine = make_engine(wrapper, [make_contact("u1"), make_contact("u2")])

        stats = engine.run_sync(account)

        assert stats.state == SyncState.CANCELLED
        assert stats.inserted == 1
        assert wrapper.applied == ["insert u1"]

    def test_cancel_during_fetch(self, store, account):
        """Test that a cancel while fetching ends the pass before querying."""
        engine = make_engine(store)
        engine.source.list_contacts.side_effect = lambda _: engine.cancel() or [
            make_contact("u1")
        ]

        stats = engine.run_sync(account)

        assert stats.state == SyncState.CANCELLED
        assert store.query_managed_records(account) == []

    def test_cancel_without_running_pass(self, store, account):
        """Test that cancel is harmless when nothing runs."""
        engine = make_engine(store, [make_contact("u1")])
        engine.cancel()

        stats = engine.run_sync(account)

        assert stats.state == SyncState.DONE

    def test_token(self):
        """Test the cancellation token."""
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled
        with pytest.raises(SyncCancelled):
            token.raise_if_cancelled()


class TestAccountLocks:
    """Tests for the per-account lock."""

    def test_lock_held_during_pass(self, store, account):
        """Test that the account is marked running while its pass runs."""
        engine = make_engine(store)
        seen = []
        engine.source.list_contacts.side_effect = lambda _: seen.append(
            engine.is_running(account)
        ) or []

        engine.run_sync(account)

        assert seen == [True]
        assert not engine.is_running(account)

    def test_accounts_are_independent(self, account):
        """Test that holding one account does not hold another."""
        locks = AccountLocks()
        other = AccountIdentity("other@example.com", account.type)
        with locks.hold(account):
            assert locks.is_held(account)
            assert not locks.is_held(other)
        assert not locks.is_held(account)

    def test_shared_locks_between_engines(self, store, account):
        """Test that engines sharing a registry see each other's passes."""
        locks = AccountLocks()
        first = make_engine(store, locks=locks)
        second = make_engine(store, locks=locks)
        seen = []
        first.source.list_contacts.side_effect = lambda _: seen.append(
            second.is_running(account)
        ) or []

        first.run_sync(account)

        assert seen == [True]

    def test_same_account_passes_serialize(self, account):
        """Test that a second pass for one account waits for the first."""
        locks = AccountLocks()
        first = make_engine(idle_store(), locks=locks)
        second = make_engine(idle_store(), locks=locks)
        events = []
        first_fetching = threading.Event()
        second_fetching = threading.Event()
        release = threading.Event()

        def slow_fetch(_):
            events.append("first fetch")
            first_fetching.set()
            release.wait(5)
            return []

        def fast_fetch(_):
            events.append("second fetch")
            second_fetching.set()
            return []

        first.source.list_contacts.side_effect = slow_fetch
        first.store.ensure_ungrouped_visible.side_effect = lambda _: events.append(
            "first finish"
        )
        second.source.list_contacts.side_effect = fast_fetch
        results = {}
        first_thread = threading.Thread(
            target=lambda: results.setdefault("first", first.run_sync(account))
        )
        second_thread = threading.Thread(
            target=lambda: results.setdefault("second", second.run_sync(account))
        )

        first_thread.start()
        assert first_fetching.wait(5)
        second_thread.start()
        blocked = not second_fetching.wait(0.2)
        release.set()
        first_thread.join(5)
        second_thread.join(5)

        assert blocked
        assert events == ["first fetch", "first finish", "second fetch"]
        assert results["first"].state == SyncState.DONE
        assert results["second"].state == SyncState.DONE

    def test_other_account_does_not_wait(self, account):
        """Test that a pass for another account runs while one is in progress."""
        other = AccountIdentity("other@example.com", account.type)
        resolver = ConfigAccountResolver(
            [
                RemoteAccount(ACCOUNT_ID, account.name),
                RemoteAccount("acc-2", other.name),
            ]
        )
        source = Mock()
        engine = SyncEngine(source=source, store=idle_store(), resolver=resolver)
        first_fetching = threading.Event()
        release = threading.Event()

        def fetch(account_id):
            if account_id == ACCOUNT_ID:
                first_fetching.set()
                release.wait(5)
            return []

        source.list_contacts.side_effect = fetch
        first_thread = threading.Thread(target=engine.run_sync, args=(account,))

        first_thread.start()
        assert first_fetching.wait(5)
        try:
            stats = engine.run_sync(other)
            assert engine.is_running(account)
        finally:
            release.set()
            first_thread.join(5)

        assert stats.state == SyncState.DONE
        assert not engine.is_running(account)


class TestSyncStats:
    """Tests for SyncStats."""

    def test_summary_shows_landed_of_planned(self):
        """Test that the summary reports applied against planned counts."""
        stats = SyncStats(
            account="me@example.com (contact-mirror)",
            state=SyncState.DONE,
            planned_inserts=3,
            inserted=2,
            failed_batches=1,
        )

        summary = stats.summary()

        assert "Inserted: 2/3" in summary
        assert "Failed batches: 1" in summary

    def test_total_changes(self):
        """Test total_changes sums applied counters."""
        assert SyncStats(inserted=1, updated=2, deleted=3).total_changes == 6

    def test_not_succeeded_unless_done(self):
        """Test that a cancelled pass is not a success."""
        assert not SyncStats(state=SyncState.CANCELLED).succeeded

    def test_local_record_count(self, store, account):
        """Test that local_contacts reflects managed records."""
        seed(store, account, "a", "b")
        stats = make_engine(store, []).run_sync(account)
        assert stats.local_contacts == 2
