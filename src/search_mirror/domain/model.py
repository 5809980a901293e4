"""Domain model - index documents, search hits and run outcomes.

Value objects are immutable Pydantic models; run outcomes are plain frozen
dataclasses because they are only ever built by the services.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


ALL_FIELDS = "_all"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_timestamp(moment: datetime | None = None) -> str:
    """Format a moment (default: now) the way index documents store it."""
    moment = moment or datetime.now(timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class IndexDocument(BaseModel):
    """The backend-stored representation of one primary-store record.

    ``id`` is assigned by the backend and stays ``None`` until the first write.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    entity_type: str = Field(min_length=1)
    association_key: str = Field(min_length=1)
    text: str
    created_at: str
    modified_at: str

    def to_source(self) -> dict[str, str]:
        """Return the document body sent to the backend (everything except ``id``)."""
        return self.model_dump(exclude={"id"})

    @classmethod
    def from_hit(cls, hit: dict[str, Any]) -> "IndexDocument":
        """Build a document from a flattened backend hit."""
        now = utc_timestamp()
        return cls(
            id=hit.get("_id"),
            entity_type=str(_first(hit.get("entity_type")) or ""),
            association_key=str(_first(hit.get("association_key"))),
            text=str(_first(hit.get("text")) or ""),
            created_at=str(_first(hit.get("created_at")) or now),
            modified_at=str(_first(hit.get("modified_at")) or now),
        )


class SearchHit(BaseModel):
    """A single search hit, translated back to a primary-store key."""

    model_config = ConfigDict(frozen=True)

    association_key: str
    score: float | None = None
    id: str | None = None
    fields: dict[str, Any] = Field(default_factory=dict)


class SearchOptions(BaseModel):
    """Caller options for a search request.

    ``limit`` is accepted as an alias of ``size``. ``page`` is 1-based.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    field: str = ALL_FIELDS
    size: int | None = Field(default=None, ge=0, alias="limit")
    page: int = Field(default=1, ge=1)
    min_score: float | None = None
    full_documents: bool = False

    def offset(self, default_size: int) -> int:
        return (self.page - 1) * (self.size if self.size is not None else default_size)


class SyncAction(str, Enum):
    """What a synchronization call did to the index."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SKIPPED = "skipped"
    QUEUED = "queued"


class TaskKind(str, Enum):
    UPSERT = "upsert"
    DELETE = "delete"


@dataclass(frozen=True)
class IndexTask:
    """A deferred index write; ``text`` is computed before the task is queued."""

    kind: TaskKind
    entity_type: str
    association_key: str
    text: str = ""


@dataclass(frozen=True)
class ReindexResult:
    """Outcome of a batch re-index run."""

    indexed: int
    failed: int
    pages: int

    def summary(self) -> str:
        return f"re-indexed {self.indexed} records ({self.failed} failed)"


@dataclass(frozen=True)
class FlushResult:
    """Outcome of draining the deferred write queue."""

    executed: int
    failed: int


def _first(value: Any) -> Any:
    # Stored fields may come back as single-element lists.
    if isinstance(value, list):
        return value[0] if value else None
    return value
