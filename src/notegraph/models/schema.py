"""Data models for the notegraph engine.

Notes are owned by the note store collaborator; the graph engine only
reads them. LinkEdge is the core entity: a directed, owner-scoped reference
from one note to another with denormalized anchor metadata.
"""

import datetime
import itertools
import uuid
from datetime import timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from notegraph.exceptions import ErrorCode, ValidationError
from notegraph.utils import excerpt

# Local placeholder ids carry this prefix until the durable store assigns one
TEMP_ID_PREFIX = "temp-"

_temp_counter = itertools.count(1)


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops tzinfo on round-trip, so values read back from the
    database are naive and assumed to be UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a durable identifier for notes and edges."""
    return str(uuid.uuid4())


def make_temporary_id(kind: str = "link") -> str:
    """Generate a placeholder id for an optimistic local record.

    Ids are unique within the process (monotonic counter plus random
    suffix) so concurrent in-flight mutations never share one.
    """
    return f"{TEMP_ID_PREFIX}{kind}-{next(_temp_counter)}-{uuid.uuid4().hex[:8]}"


def is_temporary_id(value: str) -> bool:
    """Whether an id is an optimistic placeholder rather than a durable id."""
    return value.startswith(TEMP_ID_PREFIX)


def validate_edge_endpoints(source_note_id: str, target_note_id: str) -> None:
    """Reject edges with a missing endpoint or pointing at their own source.

    Raises:
        ValidationError: If either id is empty or both are equal.
    """
    if not source_note_id or not source_note_id.strip():
        raise ValidationError(
            "Source note is required", field="source_note_id",
            code=ErrorCode.LINK_INVALID,
        )
    if not target_note_id or not target_note_id.strip():
        raise ValidationError(
            "Target note is required", field="target_note_id",
            code=ErrorCode.LINK_INVALID,
        )
    if source_note_id == target_note_id:
        raise ValidationError(
            "A note cannot link to itself",
            field="target_note_id",
            value=target_note_id,
            code=ErrorCode.LINK_SELF_REFERENCE,
        )


class Note(BaseModel):
    """A note as owned by the note store."""

    id: str = Field(default_factory=generate_id, description="Stable identifier")
    owner_id: str = Field(..., description="Owning user")
    title: str = Field(..., description="Title of the note")
    slug: str = Field(..., description="URL-safe slug, unique per owner")
    content: str = Field(default="", description="Content of the note")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v


class NoteSummary(BaseModel):
    """Lightweight view of a note for candidate lists and backlink panels."""

    id: str
    title: str
    slug: str
    excerpt: str = ""
    created_at: datetime.datetime
    updated_at: datetime.datetime

    model_config = {"frozen": True}

    @classmethod
    def from_note(cls, note: Note) -> "NoteSummary":
        return cls(
            id=note.id,
            title=note.title,
            slug=note.slug,
            excerpt=excerpt(note.content),
            created_at=note.created_at,
            updated_at=note.updated_at,
        )


class EdgeSpec(BaseModel):
    """Everything needed to create an edge, minus its identity."""

    source_note_id: str
    target_note_id: str
    anchor_text: Optional[str] = None
    canonical_title: str
    canonical_slug: str

    model_config = {"frozen": True, "extra": "forbid"}

    def validate_endpoints(self) -> None:
        validate_edge_endpoints(self.source_note_id, self.target_note_id)


class LinkEdge(BaseModel):
    """A directed reference from a source note to a target note.

    Multiple edges may join the same ordered pair (one per anchor
    occurrence); only ``id`` is unique. Instances are immutable so that
    snapshots held by undo entries can never be changed behind their back.
    """

    id: str = Field(..., description="Durable id, or a temp- placeholder while optimistic")
    owner_id: str
    source_note_id: str
    target_note_id: str
    anchor_text: Optional[str] = Field(
        default=None, description="Literal text typed inside the brackets"
    )
    canonical_title: str = Field(..., description="Target title at creation time")
    canonical_slug: str = Field(..., description="Target slug at creation time")
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)
    is_optimistic: bool = Field(
        default=False, description="True while the durable write is pending"
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @classmethod
    def optimistic(cls, owner_id: str, spec: EdgeSpec, kind: str = "link") -> "LinkEdge":
        """Build a local placeholder for a pending create."""
        now = utc_now()
        return cls(
            id=make_temporary_id(kind),
            owner_id=owner_id,
            source_note_id=spec.source_note_id,
            target_note_id=spec.target_note_id,
            anchor_text=spec.anchor_text,
            canonical_title=spec.canonical_title,
            canonical_slug=spec.canonical_slug,
            created_at=now,
            updated_at=now,
            is_optimistic=True,
        )

    def to_spec(self) -> EdgeSpec:
        """Value copy of the creation data, used to recreate after undo."""
        return EdgeSpec(
            source_note_id=self.source_note_id,
            target_note_id=self.target_note_id,
            anchor_text=self.anchor_text,
            canonical_title=self.canonical_title,
            canonical_slug=self.canonical_slug,
        )


class Span(BaseModel):
    """An active, unterminated reference span around the cursor.

    ``start`` is the offset of the opening marker, ``end`` the offset where
    the span currently ends; ``query`` is the text typed after the marker.
    """

    start: int
    end: int
    query: str
    kind: Literal["bracket", "hashtag"] = "bracket"

    model_config = {"frozen": True}


class BracketLink(BaseModel):
    """A complete [[...]] reference found in note content."""

    text: str
    slug: str
    start: int
    end: int

    model_config = {"frozen": True}


class Candidates(BaseModel):
    """Resolution result for a bracket query."""

    query: str = ""
    existing: List[NoteSummary] = Field(default_factory=list)
    offer_create: bool = False
    # Set when the search failed and only the create option is on offer
    degraded: bool = False


class Selection(BaseModel):
    """The user's choice from a candidate list."""

    note_id: Optional[str] = None
    create_title: Optional[str] = None
    anchor_text: Optional[str] = None

    @classmethod
    def existing(cls, note_id: str, anchor_text: Optional[str] = None) -> "Selection":
        return cls(note_id=note_id, anchor_text=anchor_text)

    @classmethod
    def create(cls, query: str) -> "Selection":
        return cls(create_title=query, anchor_text=query)

    @property
    def is_create(self) -> bool:
        return self.note_id is None


class MutationState(str, Enum):
    """Lifecycle of one optimistic mutation."""

    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class DegreeCount(BaseModel):
    """Incoming and outgoing edge counts for one note."""

    incoming: int = 0
    outgoing: int = 0

    @property
    def total(self) -> int:
        return self.incoming + self.outgoing


class NoteWithDegree(BaseModel):
    """A note paired with its degree, the input unit of ranking and layout."""

    id: str
    title: str
    slug: Optional[str] = None
    updated_at: Optional[datetime.datetime] = None
    incoming: int = 0
    outgoing: int = 0

    @property
    def total(self) -> int:
        return self.incoming + self.outgoing


class PositionedNode(BaseModel):
    """A node with 2-D coordinates and a visual radius."""

    id: str
    title: str
    degree: int
    x: float
    y: float
    size: float

    model_config = {"frozen": True}


class GraphEdge(BaseModel):
    """An edge as drawn in a network view."""

    source: str
    target: str
    anchor_text: Optional[str] = None


class Subgraph(BaseModel):
    """A bounded selection of notes and the edges among them."""

    nodes: List[NoteWithDegree] = Field(default_factory=list)
    edges: List[LinkEdge] = Field(default_factory=list)


class VisualSubgraph(BaseModel):
    """A bounded subgraph laid out for rendering."""

    nodes: List[PositionedNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)


class GraphSummary(BaseModel):
    """Degree table plus the two rankings shown on the analytics page."""

    owner_id: str
    degree_counts: Dict[str, DegreeCount] = Field(default_factory=dict)
    most_connected: List[NoteWithDegree] = Field(default_factory=list)
    orphans: List[NoteSummary] = Field(default_factory=list)


class LinkStats(BaseModel):
    """Aggregate link statistics for one owner."""

    total_notes: int = 0
    total_connections: int = 0
    average_connections_per_note: float = 0.0
    orphaned_notes: int = 0
    most_connected: Optional[NoteWithDegree] = None


class GrowthPoint(BaseModel):
    """Number of edges created on one UTC day."""

    date: datetime.date
    connections: int


class RecentLink(BaseModel):
    """A recently created edge with resolved endpoint titles."""

    id: str
    source_title: str
    target_title: str
    anchor_text: Optional[str] = None
    created_at: datetime.datetime


class TimeWindow(str, Enum):
    """Time filters offered by the analytics views."""

    LAST_7_DAYS = "7days"
    LAST_30_DAYS = "30days"
    ALL = "all"


class Backlink(BaseModel):
    """An incoming edge enriched with a summary of its source note."""

    edge: LinkEdge
    source: Optional[NoteSummary] = None


class OutgoingLink(BaseModel):
    """An outgoing edge and whether its target still exists."""

    edge: LinkEdge
    target_exists: bool = True


class BatchItemResult(BaseModel):
    """Outcome for one item of a batch create."""

    index: int
    spec: EdgeSpec
    edge: Optional[LinkEdge] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.edge is not None


class BatchResult(BaseModel):
    """Per-item outcomes of a batch create, in request order."""

    items: List[BatchItemResult] = Field(default_factory=list)

    @property
    def committed(self) -> List[LinkEdge]:
        return [item.edge for item in self.items if item.edge is not None]

    @property
    def failures(self) -> List[BatchItemResult]:
        return [item for item in self.items if not item.ok]

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class Notification(BaseModel):
    """A transient, user-visible message; delete successes carry an undo token."""

    level: Literal["success", "error", "info"]
    message: str
    action_label: Optional[str] = None
    undo_token: Optional[str] = None


class UndoEntry(BaseModel):
    """A value snapshot of a deleted edge, enough to recreate it."""

    token: str = Field(default_factory=lambda: uuid.uuid4().hex)
    action: Literal["delete"] = "delete"
    edge: LinkEdge
    deleted_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}
