"""
Remote exchange clients — where the records travel.

A client takes a session, the stored continuation token and a batch of
records to push, and returns what the remote pulled, saved and refused
plus a new token. One call is one logical round trip. Retries, if any,
belong to the client, never to the reconciler.

HTTP:   the items/sync endpoint of a Standard Notes style server.
Memory: an in-process authority for tests and offline use.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol, runtime_checkable

import requests
from pydantic import BaseModel, ValidationError

from .errors import ConfigurationError, RemoteError
from .models import ExchangeResult, WireRecord

if TYPE_CHECKING:
    from .config import CacheConfig

logger = logging.getLogger("sncache.remote")


@runtime_checkable
class Session(Protocol):
    """Anything that can say whether its credentials are still usable."""

    def is_valid(self) -> bool: ...


class TokenSession(BaseModel):
    """Bearer-token session against a sync server."""

    server: str = ""
    token: str = ""

    def is_valid(self) -> bool:
        return bool(self.server and self.token)


class RemoteClient(ABC):
    """Abstract remote exchange client."""

    @abstractmethod
    def exchange(
        self,
        session: Session,
        sync_token: Optional[str],
        push_batch: list[WireRecord],
    ) -> ExchangeResult:
        """Push a batch and pull everything after ``sync_token``.

        Args:
            session: Authenticated session.
            sync_token: Continuation token, or None for a full pull.
            push_batch: Records to send.

        Returns:
            The pulled, acknowledged and unacknowledged records and the
            token to store for next time.

        Raises:
            RemoteError: Network, auth, server or protocol failure.
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable client name."""


def _parse_items(raw: Any, field: str) -> list[WireRecord]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RemoteError(f"malformed sync response: {field} is not a list")
    items = []
    for entry in raw:
        # unsaved entries come wrapped as {"item": ..., "error": ...}
        if isinstance(entry, dict) and isinstance(entry.get("item"), dict):
            entry = entry["item"]
        try:
            items.append(WireRecord.model_validate(entry))
        except ValidationError as exc:
            raise RemoteError(f"malformed item in {field}: {exc}") from exc
    return items


def _parse_conflicts(raw: Any) -> list[WireRecord]:
    """Conflicted pushes, reported so they stay pending and get retried."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise RemoteError("malformed sync response: conflicts is not a list")
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise RemoteError("malformed conflict entry in sync response")
        item = entry.get("unsaved_item") or entry.get("server_item")
        try:
            record = WireRecord.model_validate(item)
        except ValidationError as exc:
            raise RemoteError(f"malformed item in conflicts: {exc}") from exc
        logger.warning("Server reported %s for %s", entry.get("type", "conflict"), record.id)
        items.append(record)
    return items


class HttpRemoteClient(RemoteClient):
    """Sync over HTTP against ``<server>/items/sync``.

    Follows ``cursor_token`` paging inside one exchange: the push batch
    rides on the first page only, pulled items accumulate across pages
    and the last page's ``sync_token`` is the one returned.

    Args:
        timeout: Per-request timeout in seconds.
        page_limit: Items requested per page.
        max_pages: Safety stop for runaway cursors.
    """

    SYNC_PATH = "/items/sync"

    def __init__(
        self,
        timeout: float = 30.0,
        page_limit: int = 150,
        max_pages: int = 1000,
    ) -> None:
        self.timeout = timeout
        self.page_limit = page_limit
        self.max_pages = max_pages

    @property
    def name(self) -> str:
        return "http"

    def _post(self, session: TokenSession, body: dict[str, Any]) -> dict[str, Any]:
        url = session.server.rstrip("/") + self.SYNC_PATH
        headers = {
            "Authorization": f"Bearer {session.token}",
            "Content-Type": "application/json",
        }
        try:
            resp = requests.post(url, json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise RemoteError(f"sync request to {url} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise RemoteError(
                f"sync request to {url}: {resp.status_code} {resp.text}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteError(f"sync response from {url} is not JSON") from exc
        if not isinstance(data, dict):
            raise RemoteError(f"sync response from {url} is not an object")
        return data

    def exchange(
        self,
        session: TokenSession,
        sync_token: Optional[str],
        push_batch: list[WireRecord],
    ) -> ExchangeResult:
        result = ExchangeResult(sync_token="")
        items = [r.to_payload() for r in push_batch]
        token = sync_token
        cursor: Optional[str] = None

        for page in range(self.max_pages):
            data = self._post(
                session,
                {
                    "items": items,
                    "sync_token": token,
                    "cursor_token": cursor,
                    "limit": self.page_limit,
                },
            )
            result.pulled.extend(_parse_items(data.get("retrieved_items"), "retrieved_items"))
            result.acknowledged.extend(_parse_items(data.get("saved_items"), "saved_items"))
            result.unacknowledged.extend(_parse_items(data.get("unsaved"), "unsaved"))
            result.unacknowledged.extend(_parse_conflicts(data.get("conflicts")))

            token = data.get("sync_token")
            if not token:
                raise RemoteError("sync response carried no sync_token")
            cursor = data.get("cursor_token") or None
            items = []
            if cursor is None:
                break
            logger.debug("Following cursor, page %d", page + 2)
        else:
            raise RemoteError(f"sync did not finish within {self.max_pages} pages")

        result.sync_token = token
        logger.info(
            "Exchanged with %s: pulled=%d saved=%d unsaved=%d",
            session.server,
            len(result.pulled),
            len(result.acknowledged),
            len(result.unacknowledged),
        )
        return result


class MemoryRemote(RemoteClient):
    """In-process authority.

    Every accepted write bumps a revision counter; the sync token is the
    revision as a string. A pull returns records changed after the given
    token, minus the ids this call saved, which come back acknowledged.

    Args:
        records: Initial remote contents.
        reject: Ids whose pushes are refused (reported unacknowledged).
    """

    def __init__(
        self,
        records: Optional[Iterable[WireRecord]] = None,
        reject: Optional[Iterable[str]] = None,
    ) -> None:
        self._records: dict[str, tuple[int, WireRecord]] = {}
        self._revision = 0
        self.reject: set[str] = set(reject or ())
        self.fail_next = False
        self.calls: list[dict[str, Any]] = []
        for record in records or ():
            self.put(record)

    @property
    def name(self) -> str:
        return "memory"

    @property
    def revision(self) -> int:
        return self._revision

    def put(self, record: WireRecord) -> None:
        """Write a record as if another client had pushed it."""
        self._revision += 1
        self._records[record.id] = (self._revision, record.model_copy())

    def get(self, record_id: str) -> Optional[WireRecord]:
        entry = self._records.get(record_id)
        return entry[1] if entry else None

    def exchange(
        self,
        session: Session,
        sync_token: Optional[str],
        push_batch: list[WireRecord],
    ) -> ExchangeResult:
        self.calls.append(
            {"sync_token": sync_token, "push": [r.model_copy() for r in push_batch]}
        )
        if self.fail_next:
            self.fail_next = False
            raise RemoteError("simulated network failure")

        try:
            since = int(sync_token) if sync_token else 0
        except ValueError as exc:
            raise RemoteError(f"unknown sync token: {sync_token!r}") from exc

        changed = [
            rec.model_copy()
            for rev, rec in sorted(self._records.values(), key=lambda e: e[0])
            if rev > since
        ]

        acknowledged, unacknowledged = [], []
        for record in push_batch:
            if record.id in self.reject:
                unacknowledged.append(record.model_copy())
                continue
            self.put(record)
            acknowledged.append(record.model_copy())

        # saved ids are reported in acknowledged only, never pulled back
        saved = {r.id for r in acknowledged}
        pulled = [rec for rec in changed if rec.id not in saved]

        return ExchangeResult(
            pulled=pulled,
            acknowledged=acknowledged,
            unacknowledged=unacknowledged,
            sync_token=str(self._revision),
        )


def create_remote(config: "CacheConfig") -> RemoteClient:
    """Factory function to create the configured remote client.

    Raises:
        ConfigurationError: If the remote type is not supported.
    """
    factories = {
        "http": lambda: HttpRemoteClient(
            timeout=config.timeout_seconds, page_limit=config.page_limit
        ),
        "memory": MemoryRemote,
    }
    factory = factories.get(config.remote)
    if not factory:
        raise ConfigurationError(f"Unsupported remote: {config.remote}")
    return factory()


def guarded_exchange(
    remote: RemoteClient,
    session: Session,
    sync_token: Optional[str],
    push_batch: list[WireRecord],
) -> ExchangeResult:
    """Run one exchange, reporting any client failure as RemoteError.

    Timeouts and cancellations raised by a client in its own exception
    types land here too, so callers see a single failure kind and know
    nothing was applied.
    """
    try:
        return remote.exchange(session, sync_token, push_batch)
    except RemoteError:
        raise
    except Exception as exc:
        raise RemoteError(f"{remote.name} exchange failed: {exc}") from exc
