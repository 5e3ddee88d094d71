"""
Cache data models — records, tokens and cycle results.

Payload fields (content, content_type, enc_item_key) are opaque
encrypted blobs. Nothing in this package inspects or transforms them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WireRecord(BaseModel):
    """A record as the remote service sees it.

    The remote calls the identifier ``uuid``; both spellings are
    accepted on input. Unknown keys from the server are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(alias="uuid")
    content: str = ""
    content_type: str = ""
    enc_item_key: str = ""
    deleted: bool = False
    created_at: str = ""
    updated_at: str = ""

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the remote API (``uuid`` key)."""
        return self.model_dump(by_alias=True)


class Record(BaseModel):
    """A locally stored record.

    ``pending_write`` marks local edits the remote has not acknowledged
    yet. ``pending_since`` is only meaningful while the flag is set and
    is forced back to ``None`` whenever it is not.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="uuid")
    content: str = ""
    content_type: str = ""
    enc_item_key: str = ""
    deleted: bool = False
    created_at: str = ""
    updated_at: str = ""
    pending_write: bool = False
    pending_since: Optional[datetime] = None

    @model_validator(mode="after")
    def _pending_since_follows_flag(self) -> "Record":
        if not self.pending_write:
            self.pending_since = None
        elif self.pending_since is None:
            self.pending_since = _utcnow()
        return self

    def to_wire(self) -> WireRecord:
        """Strip local-only fields for the push batch."""
        return WireRecord.model_validate(
            self.model_dump(exclude={"pending_write", "pending_since"})
        )

    @classmethod
    def from_wire(cls, wire: WireRecord) -> "Record":
        """Materialize a remote record as clean local state."""
        return cls(**wire.model_dump(), pending_write=False)


class ContinuationToken(BaseModel):
    """The remote cursor for everything already pulled. One per store."""

    value: str


class ExchangeResult(BaseModel):
    """Outcome of one round trip with the remote service."""

    pulled: list[WireRecord] = Field(default_factory=list)
    acknowledged: list[WireRecord] = Field(default_factory=list)
    unacknowledged: list[WireRecord] = Field(default_factory=list)
    sync_token: str
    cursor_token: Optional[str] = None


class ReconcileResult(BaseModel):
    """What a reconciliation cycle did, plus the store it did it to."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    pulled: list[WireRecord] = Field(default_factory=list)
    acknowledged: list[WireRecord] = Field(default_factory=list)
    unacknowledged: list[WireRecord] = Field(default_factory=list)
    sync_token: Optional[str] = None
    store: Any = Field(default=None, exclude=True)

    @property
    def acknowledged_ids(self) -> list[str]:
        return [r.id for r in self.acknowledged]

    @property
    def unacknowledged_ids(self) -> list[str]:
        return [r.id for r in self.unacknowledged]


class StoreStats(BaseModel):
    """Counts reported by ``sncache status``."""

    records: int = 0
    pending: int = 0
    deleted: int = 0
    has_token: bool = False
