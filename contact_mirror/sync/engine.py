"""
Sync engine for one-way contact mirroring.

Runs one reconciliation pass for one account: resolves the remote account,
fetches the authoritative contacts, queries the local index, correlates the
two and applies the resulting batches to the local store in order.
"""

import logging
import threading
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from contact_mirror.remote.source import RemoteSource, RemoteSourceError
from contact_mirror.storage.db import StoreAccessDenied, StoreError
from contact_mirror.sync.accounts import AccountResolver, resolve_account
from contact_mirror.sync.contact import AccountIdentity, LocalRecord
from contact_mirror.sync.correlator import DuplicateExternalIdError, correlate
from contact_mirror.sync.fields import PhotoProcessor
from contact_mirror.sync.operations import Batch, BatchBuilder, SyncPlan

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """States of one sync pass."""

    IDLE = "idle"
    RESOLVING_ACCOUNT = "resolving_account"
    FETCHING_REMOTE = "fetching_remote"
    QUERYING_LOCAL = "querying_local"
    RECONCILING = "reconciling"
    APPLYING = "applying"
    DONE = "done"
    CANCELLED = "cancelled"
    SECURITY_DENIED = "security_denied"
    REJECTED = "rejected"  # Remote collection failed validation


TERMINAL_STATES = frozenset(
    {
        SyncState.DONE,
        SyncState.CANCELLED,
        SyncState.SECURITY_DENIED,
        SyncState.REJECTED,
    }
)


class SyncError(Exception):
    """Base exception for sync errors."""

    pass


class AccountNotFound(SyncError):
    """Raised when no remote account matches the host identity."""

    pass


class SyncCancelled(SyncError):
    """Raised at a checkpoint once the pass has been cancelled."""

    pass


class SyncSecurityError(SyncError):
    """Raised to the caller when the local store denies access."""

    def __init__(self, message: str, stats: "SyncStats"):
        super().__init__(message)
        self.stats = stats


class LocalStore(Protocol):
    def query_managed_records(self, account: AccountIdentity) -> list[LocalRecord]: ...

    def apply_batch(self, batch: Batch) -> list[Optional[int]]: ...

    def ensure_ungrouped_visible(self, account: AccountIdentity) -> None: ...


@dataclass
class SyncStats:
    """
    Statistics from one sync pass.

    The inserted/updated/deleted counters only count batches the store
    actually applied; the planned_* counters keep the size of the plan.
    """

    account: str = ""
    state: SyncState = SyncState.IDLE
    expedited: bool = False

    remote_contacts: int = 0
    local_contacts: int = 0
    skipped_without_id: int = 0

    planned_inserts: int = 0
    planned_updates: int = 0
    planned_deletes: int = 0

    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    failed_batches: int = 0
    errors: int = 0

    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def total_changes(self) -> int:
        """Total contacts inserted, updated and deleted."""
        return self.inserted + self.updated + self.deleted

    @property
    def succeeded(self) -> bool:
        """True if the pass finished with every batch applied."""
        return (
            self.state == SyncState.DONE
            and self.failed_batches == 0
            and self.errors == 0
        )

    def summary(self) -> str:
        """Generate a human-readable summary of the pass."""
        lines = [
            f"Sync Summary ({self.account}):",
            f"  State: {self.state.value}",
            f"  Remote contacts: {self.remote_contacts}"
            + (
                f" ({self.skipped_without_id} without id skipped)"
                if self.skipped_without_id
                else ""
            ),
            f"  Local contacts: {self.local_contacts}",
            f"  Inserted: {self.inserted}/{self.planned_inserts}",
            f"  Updated: {self.updated}/{self.planned_updates}",
            f"  Deleted: {self.deleted}/{self.planned_deletes}",
        ]
        if self.failed_batches:
            lines.append(f"  Failed batches: {self.failed_batches}")
        if self.errors:
            lines.append(f"  Errors: {self.errors}")
        return "\n".join(lines)


class CancellationToken:
    """Cooperative cancellation flag for one pass."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SyncCancelled("Sync cancelled")


class AccountLocks:
    """
    Per-account re-entrancy guard.

    Passes for the same (name, type) account are serialized; passes for
    different accounts run independently.
    """

    def __init__(self) -> None:
        self._master = threading.Lock()
        self._locks: dict[AccountIdentity, threading.Lock] = {}

    @contextmanager
    def hold(self, account: AccountIdentity) -> Generator[None, None, None]:
        with self._master:
            lock = self._locks.setdefault(account, threading.Lock())
        if lock.locked():
            logger.info(f"Sync already running for {account}, waiting")
        with lock:
            yield

    def is_held(self, account: AccountIdentity) -> bool:
        with self._master:
            lock = self._locks.get(account)
        return bool(lock and lock.locked())


class SyncEngine:
    """
    One-way sync engine mirroring remote contacts into a local store.

    The remote side is authoritative: local contacts missing remotely are
    deleted, and every contact present on both sides is deleted and
    re-inserted from remote data. Contacts in the local store without an
    external id are never touched.

    Usage:
        engine = SyncEngine(
            source=JsonExportSource(export_dir),
            store=ContactStore('/path/to/contacts.db'),
            resolver=ConfigAccountResolver.from_config(config),
        )
        stats = engine.run_sync(AccountIdentity('me@example.com', 'contact-mirror'))
        print(stats.summary())
    """

    def __init__(
        self,
        source: RemoteSource,
        store: LocalStore,
        resolver: AccountResolver,
        photo_processor: Optional[PhotoProcessor] = None,
        locks: Optional[AccountLocks] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            source: Remote source of decrypted contacts
            store: Local contact store
            resolver: Resolver mapping host identities to remote accounts
            photo_processor: Optional photo normalizer used by the field mapper
            locks: Per-account lock registry (shared between engines if given)
        """
        self.source = source
        self.store = store
        self.resolver = resolver
        self.photo_processor = photo_processor
        self._locks = locks or AccountLocks()
        self._active: dict[AccountIdentity, CancellationToken] = {}
        self._active_lock = threading.Lock()

    def cancel(self, account: Optional[AccountIdentity] = None) -> None:
        """
        Request cancellation of running passes.

        The pass stops before issuing its next batch; batches already
        applied are not undone.

        Args:
            account: Account whose pass to cancel, or None for every pass
        """
        with self._active_lock:
            tokens = [
                token
                for identity, token in self._active.items()
                if account is None or identity == account
            ]
        for token in tokens:
            token.cancel()
        logger.warning(f"Sync cancel requested ({len(tokens)} running pass(es))")

    def is_running(self, account: AccountIdentity) -> bool:
        """Check whether a pass is running for the account."""
        return self._locks.is_held(account)

    def run_sync(self, identity: AccountIdentity, expedited: bool = False) -> SyncStats:
        """
        Run one reconciliation pass for an account.

        Failures are logged and reflected in the returned statistics, except
        a store access denial which is raised.

        Args:
            identity: Host account identity (name and type)
            expedited: Whether this pass was requested ahead of schedule

        Returns:
            SyncStats for the pass

        Raises:
            SyncSecurityError: If the local store denies access
        """
        stats = SyncStats(account=str(identity), expedited=expedited)
        token = CancellationToken()

        with self._locks.hold(identity):
            with self._active_lock:
                self._active[identity] = token
            try:
                logger.info(
                    f"Starting sync for {identity}"
                    + (" (expedited)" if expedited else "")
                )
                self._run_pass(identity, stats, token)
            except SyncCancelled:
                stats.state = SyncState.CANCELLED
                logger.warning(
                    f"Sync cancelled for {identity}: inserted {stats.inserted}, "
                    f"updated {stats.updated}, deleted {stats.deleted} before stop"
                )
            except StoreAccessDenied as e:
                stats.state = SyncState.SECURITY_DENIED
                logger.error(f"Local store denied access for {identity}: {e}")
                raise SyncSecurityError(str(e), stats) from e
            finally:
                stats.finished_at = datetime.now()
                if stats.state not in TERMINAL_STATES:
                    logger.error(
                        f"Sync for {identity} aborted in state {stats.state.value}"
                    )
                with self._active_lock:
                    self._active.pop(identity, None)

        return stats

    def _enter(
        self, stats: SyncStats, state: SyncState, token: CancellationToken
    ) -> None:
        """Move to the next state, honouring cancellation."""
        token.raise_if_cancelled()
        logger.debug(f"{stats.account}: {stats.state.value} -> {state.value}")
        stats.state = state

    def _run_pass(
        self,
        identity: AccountIdentity,
        stats: SyncStats,
        token: CancellationToken,
    ) -> None:
        self._enter(stats, SyncState.RESOLVING_ACCOUNT, token)
        try:
            account = resolve_account(self.resolver, identity)
            if account is None:
                raise AccountNotFound(f"No remote account for {identity}")
        except AccountNotFound as e:
            logger.warning(f"{e}, nothing to sync")
            stats.state = SyncState.DONE
            return

        self._enter(stats, SyncState.FETCHING_REMOTE, token)
        try:
            fetched = self.source.list_contacts(account.external_account_id)
        except RemoteSourceError as e:
            logger.error(f"Failed to fetch remote contacts for {identity}: {e}")
            stats.errors += 1
            stats.state = SyncState.DONE
            return

        remote = [contact for contact in fetched if contact.has_id()]
        stats.skipped_without_id = len(fetched) - len(remote)
        stats.remote_contacts = len(remote)
        if stats.skipped_without_id:
            logger.warning(
                f"Skipped {stats.skipped_without_id} remote contacts without id"
            )
        logger.info(f"Found {len(remote)} contacts on remote")

        self._enter(stats, SyncState.QUERYING_LOCAL, token)
        try:
            local = self.store.query_managed_records(identity)
        except StoreAccessDenied:
            raise
        except StoreError as e:
            logger.error(f"Failed to query local contacts for {identity}: {e}")
            stats.errors += 1
            stats.state = SyncState.DONE
            return
        stats.local_contacts = len(local)
        logger.info(f"Found {len(local)} contacts on device")

        self._enter(stats, SyncState.RECONCILING, token)
        try:
            result = correlate(remote, local)
        except DuplicateExternalIdError as e:
            logger.error(f"Rejecting remote collection for {identity}: {e}")
            stats.errors += 1
            stats.state = SyncState.REJECTED
            return

        plan = BatchBuilder(identity, self.photo_processor).plan(result)
        stats.planned_inserts = len(plan.insertions)
        stats.planned_updates = len(plan.replacements)
        stats.planned_deletes = plan.stale_count
        logger.info(f"Reconciled {identity}: {result.summary()}")

        self._enter(stats, SyncState.APPLYING, token)
        self._apply_plan(plan, stats, token)

        try:
            self.store.ensure_ungrouped_visible(identity)
        except StoreAccessDenied:
            raise
        except StoreError as e:
            logger.warning(f"Could not update display settings for {identity}: {e}")

        stats.state = SyncState.DONE
        logger.info(
            f"Sync complete for {identity}: added {stats.inserted}, "
            f"updated {stats.updated}, deleted {stats.deleted}"
            + (
                f", {stats.failed_batches} batch(es) failed"
                if stats.failed_batches
                else ""
            )
        )

    def _apply_plan(
        self, plan: SyncPlan, stats: SyncStats, token: CancellationToken
    ) -> None:
        """
        Apply the plan's batches in order.

        Stale deletions first, then each update as delete followed by
        re-insert, then inserts of new contacts. A failed batch is logged
        and skipped; when an update's delete fails, its re-insert is skipped
        too so the old container is never duplicated.
        """
        if plan.stale_batch is not None:
            if self._submit(plan.stale_batch, stats, token):
                stats.deleted += plan.stale_count
                logger.info(f"Deleted stale contacts: {plan.stale_count}")

        for step in plan.replacements:
            if not self._submit(step.delete_batch, stats, token):
                stats.failed_batches += 1
                logger.warning(
                    f"Skipping re-insert of {step.contact.contact_id} "
                    f"after failed delete"
                )
                continue
            if self._submit(step.insert_batch, stats, token):
                stats.updated += 1

        for insertion in plan.insertions:
            if self._submit(insertion.insert_batch, stats, token):
                stats.inserted += 1

    def _submit(self, batch: Batch, stats: SyncStats, token: CancellationToken) -> bool:
        """
        Submit one batch to the store.

        Returns:
            True if the batch was applied, False if it failed

        Raises:
            SyncCancelled: If the pass was cancelled before this batch
            StoreAccessDenied: If the store denies access
        """
        token.raise_if_cancelled()
        try:
            self.store.apply_batch(batch)
        except StoreAccessDenied:
            raise
        except StoreError as e:
            stats.failed_batches += 1
            logger.error(f"Batch '{batch.label}' failed ({len(batch)} operations): {e}")
            return False
        logger.debug(f"Applied batch '{batch.label}' ({len(batch)} operations)")
        return True

    def __repr__(self) -> str:
        return (
            f"SyncEngine(source={type(self.source).__name__}, "
            f"store={type(self.store).__name__})"
        )
