"""
Bootstrapper — first population of an empty replica.

Creates the store, pulls everything from an empty cursor and records
the returned continuation token. Running it again on a populated
location upserts by id, so nothing is duplicated.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

from .errors import SessionInvalid
from .models import ContinuationToken, ExchangeResult, Record
from .remote import RemoteClient, Session, guarded_exchange
from .store import RecordStore

logger = logging.getLogger("sncache.bootstrap")


def populate(
    store: RecordStore, session: Session, remote: RemoteClient
) -> ExchangeResult:
    """Full pull into ``store``.

    Pulled records arrive clean. Existing rows keep their pending flag
    so a re-run never discards an unpushed local edit.

    Returns:
        The exchange result of the full pull.
    """
    result = guarded_exchange(remote, session, None, [])
    for wire in result.pulled:
        store.upsert(Record.from_wire(wire), keep_pending=True)
    store.set_token(ContinuationToken(value=result.sync_token))
    logger.info(
        "Populated %s with %d record(s) from %s",
        store.path,
        len(result.pulled),
        remote.name,
    )
    return result


def bootstrap(
    session: Session,
    location: Union[str, Path],
    remote: RemoteClient,
    lock_timeout: float = 0.0,
) -> RecordStore:
    """Create and populate a replica at ``location``.

    Args:
        session: Must validate before anything is touched.
        location: Path of the replica file.
        remote: Exchange client for the full pull.
        lock_timeout: Seconds to wait if the location is held.

    Returns:
        The open store handle. The caller owns it and must close it.

    Raises:
        SessionInvalid: Session failed validation.
        RemoteError: The pull failed. The file exists but may be empty.
        StoreError: Persistence failed.
    """
    if not session.is_valid():
        raise SessionInvalid("invalid session")

    store = RecordStore.open(location, lock_timeout=lock_timeout)
    try:
        populate(store, session, remote)
    except BaseException:
        store.close()
        raise
    return store
