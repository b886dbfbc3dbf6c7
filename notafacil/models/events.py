"""
Change Event Models

A change event is a server-pushed notification that a row of the
invoices table was inserted, updated or deleted. It carries the row
after the change ("new") and before it ("old").

DESIGN DECISION: The side that identifies the affected row depends on
the kind. A delete has an empty "new" side, so the record to act on
is always chosen through ChangeEvent.record and never read directly.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChangeKind(str, Enum):
    """Kinds of row change delivered by the backing store."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> "ChangeKind":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class ChangeEvent(BaseModel):
    """One row change, as received from the subscription channel."""
    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    new: dict[str, Any] = Field(
        default_factory=dict,
        description="Row after the change; empty for deletes"
    )
    old: dict[str, Any] = Field(
        default_factory=dict,
        description="Row before the change; may only carry the key columns"
    )
    table: Optional[str] = None
    commit_timestamp: Optional[datetime] = None

    @property
    def record(self) -> dict[str, Any]:
        """The payload side that identifies the affected row."""
        if self.kind is ChangeKind.DELETE:
            return self.old
        return self.new

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from a raw realtime payload.

        Two shapes are understood:
        - the Python realtime client: {"data": {"type", "record", "old_record", ...}}
        - the JS-style shape: {"eventType", "new", "old", ...}
        """
        data = payload.get("data", payload)
        kind = data.get("type") or data.get("eventType")
        new = data.get("record", data.get("new"))
        old = data.get("old_record", data.get("old"))
        return cls(
            kind=ChangeKind.parse(kind),
            new=new or {},
            old=old or {},
            table=data.get("table"),
            commit_timestamp=data.get("commit_timestamp"),
        )
