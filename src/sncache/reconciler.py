"""
Reconciler — one synchronization cycle between the replica and the remote.

    read pending -> read token -> exchange (once) -> clear acknowledged
        -> apply pulled -> store new token

The cycle keeps no state of its own. Pending flags and the token live
in the store, so a crashed or failed cycle is resumed by calling
``reconcile`` again.

Usage:
    store = bootstrap(session, path, remote)
    result = Reconciler(remote).reconcile(session, store)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from .bootstrap import populate
from .errors import ConfigurationError, SessionInvalid
from .models import ContinuationToken, ExchangeResult, Record, ReconcileResult
from .remote import RemoteClient, Session, guarded_exchange
from .store import RecordStore

logger = logging.getLogger("sncache.reconciler")


class Reconciler:
    """Runs reconciliation cycles against one remote client.

    At most one cycle may be in flight per store handle. The store's
    exclusive open keeps other handles off the same location; callers
    sharing one handle must serialize their calls.
    """

    def __init__(self, remote: RemoteClient) -> None:
        self.remote = remote

    def reconcile(self, session: Session, store: RecordStore) -> ReconcileResult:
        """Run one cycle.

        A failed exchange leaves the store exactly as it was. A store
        failure while applying the response may leave it partly
        applied; every apply step is idempotent, so re-running the
        cycle converges.

        Raises:
            SessionInvalid: Session failed validation. Nothing touched.
            ConfigurationError: No open store handle. Nothing touched.
            RemoteError: The exchange failed. Nothing applied.
            StoreError: Reading or applying failed.
        """
        if not session.is_valid():
            raise SessionInvalid("invalid session")
        if store is None or store.closed:
            raise ConfigurationError("an open store handle is required")

        pending = store.get_pending()
        token = store.get_token()
        if token is None:
            logger.info("No sync token in %s, pulling from scratch", store.path)

        batch = [record.to_wire() for record in pending]
        logger.info("Pushing %d pending record(s) to %s", len(batch), self.remote.name)

        result = guarded_exchange(
            self.remote, session, token.value if token else None, batch
        )
        self._apply(store, pending, result)

        if result.unacknowledged:
            logger.warning(
                "%d record(s) not acknowledged, will retry next cycle: %s",
                len(result.unacknowledged),
                ", ".join(r.id for r in result.unacknowledged),
            )

        return ReconcileResult(
            pulled=result.pulled,
            acknowledged=result.acknowledged,
            unacknowledged=result.unacknowledged,
            sync_token=result.sync_token,
            store=store,
        )

    @staticmethod
    def _apply(
        store: RecordStore, pending: list[Record], result: ExchangeResult
    ) -> None:
        pushed = {record.id: record for record in pending}

        # acknowledgments first so an acked-and-pulled record ends clean
        for wire in result.acknowledged:
            sent = pushed.get(wire.id)
            store.clear_pending(wire.id, sent.pending_since if sent else None)

        # remote content wins; a surviving pending flag re-pushes later
        for wire in result.pulled:
            store.upsert(Record.from_wire(wire), keep_pending=True)

        store.set_token(ContinuationToken(value=result.sync_token))
        logger.info(
            "Cycle applied: pulled=%d acknowledged=%d unacknowledged=%d",
            len(result.pulled),
            len(result.acknowledged),
            len(result.unacknowledged),
        )


def reconcile(
    session: Session, store: RecordStore, remote: RemoteClient
) -> ReconcileResult:
    """Shortcut for ``Reconciler(remote).reconcile(session, store)``."""
    return Reconciler(remote).reconcile(session, store)


def synchronize(
    session: Session,
    remote: RemoteClient,
    *,
    store: Optional[RecordStore] = None,
    location: Optional[Union[str, Path]] = None,
    lock_timeout: float = 0.0,
) -> ReconcileResult:
    """Single entry point taking either a handle or a location.

    With ``store`` a cycle runs on it. With ``location`` an existing
    replica is opened and reconciled, or a new one is bootstrapped. The
    returned result's ``store`` is the handle to keep using.

    Raises:
        SessionInvalid: Checked first.
        ConfigurationError: Both or neither of store and location given.
    """
    if not session.is_valid():
        raise SessionInvalid("invalid session")
    location = location or None
    if store is not None and location is not None:
        raise ConfigurationError("pass a store handle or a store location, not both")
    if store is None and location is None:
        raise ConfigurationError("a store handle or a store location is required")

    reconciler = Reconciler(remote)
    if store is not None:
        return reconciler.reconcile(session, store)

    existed = RecordStore.exists(location)
    opened = RecordStore.open(location, lock_timeout=lock_timeout)
    try:
        if existed:
            return reconciler.reconcile(session, opened)
        logger.info("No replica at %s, bootstrapping", location)
        pulled = populate(opened, session, remote)
    except BaseException:
        opened.close()
        raise

    return ReconcileResult(
        pulled=pulled.pulled,
        sync_token=pulled.sync_token,
        store=opened,
    )
