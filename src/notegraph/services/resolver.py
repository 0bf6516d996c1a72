"""Resolution of bracket queries to existing notes or a new note.

ReferenceResolver answers one query. ResolutionSession wraps it for an
editor: it tracks the active span, debounces keystrokes and guards every
search with a monotonically increasing sequence number so that a late
answer to a superseded query is discarded instead of applied.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional

import anyio

from notegraph.config import config
from notegraph.exceptions import ErrorCode, NoteNotFoundError, ValidationError
from notegraph.models.schema import (
    Candidates,
    EdgeSpec,
    Note,
    NoteSummary,
    Selection,
    Span,
)
from notegraph.observability import timed_operation
from notegraph.services.detector import detect_bracket
from notegraph.storage.gateway import AsyncNoteStore

logger = logging.getLogger(__name__)

# Rank tiers, lower is better
TITLE_PREFIX = 0
TITLE_ANYWHERE = 1
CONTENT_ONLY = 2

# How many raw matches to pull per search before ranking and capping
_POOL_FACTOR = 3


def match_tier(note: Note, needle: str) -> Optional[int]:
    """Classify how a note matches a casefolded needle, or None for no match."""
    title = note.title.casefold()
    if title.startswith(needle):
        return TITLE_PREFIX
    if needle in title:
        return TITLE_ANYWHERE
    if needle in (note.content or "").casefold():
        return CONTENT_ONLY
    return None


def rank_candidates(
    notes: List[Note],
    query: str,
    limit: int,
    exclude_note_id: Optional[str] = None,
) -> List[Note]:
    """Rank notes for a query: title prefix, then title anywhere, then content.

    The sort is stable, so notes within one tier keep their input order
    (the store returns most recently updated first). Duplicates are dropped.
    """
    needle = query.strip().casefold()
    seen = set()
    tiered = []
    for note in notes:
        if note.id in seen or note.id == exclude_note_id:
            continue
        seen.add(note.id)
        tier = match_tier(note, needle)
        if tier is not None:
            tiered.append((tier, note))
    tiered.sort(key=lambda pair: pair[0])
    return [note for _, note in tiered[:limit]]


def build_edge_spec(
    source_note_id: str, target: Note, anchor_text: Optional[str] = None
) -> EdgeSpec:
    """Snapshot the target's title and slug into a new edge spec."""
    return EdgeSpec(
        source_note_id=source_note_id,
        target_note_id=target.id,
        anchor_text=anchor_text if anchor_text is not None else target.title,
        canonical_title=target.title,
        canonical_slug=target.slug,
    )


class ReferenceResolver:
    """Search existing notes for a bracket query and materialize selections."""

    def __init__(
        self,
        note_store: AsyncNoteStore,
        result_limit: Optional[int] = None,
        recent_limit: Optional[int] = None,
    ):
        self.note_store = note_store
        self.result_limit = result_limit or config.resolver_result_limit
        self.recent_limit = recent_limit or config.recent_notes_limit

    async def resolve(
        self,
        query: str,
        owner_id: str,
        exclude_note_id: Optional[str] = None,
    ) -> Candidates:
        """Produce ranked candidates for a query.

        An empty query lists the owner's most recently created notes and
        offers no create option. A non-empty query always offers creation.
        Search failures degrade to the create option alone.
        """
        stripped = query.strip()
        with timed_operation("resolve_reference", query=stripped[:30]) as op:
            try:
                if not stripped:
                    recent = await self.note_store.recent_notes(
                        owner_id, self.recent_limit, exclude_note_id
                    )
                    op["result_count"] = len(recent)
                    return Candidates(
                        query=query,
                        existing=[NoteSummary.from_note(n) for n in recent],
                        offer_create=False,
                    )

                pool_size = self.result_limit * _POOL_FACTOR
                by_title = await self.note_store.search_notes_by_title(
                    owner_id, stripped, pool_size, exclude_note_id
                )
                by_content = await self.note_store.search_notes_by_content(
                    owner_id, stripped, pool_size, exclude_note_id
                )
            except Exception as e:
                logger.warning(f"Reference search failed for '{stripped[:30]}': {e}")
                op["degraded"] = True
                return Candidates(
                    query=query, existing=[], offer_create=bool(stripped), degraded=True
                )

            ranked = rank_candidates(
                by_title + by_content, stripped, self.result_limit, exclude_note_id
            )
            op["result_count"] = len(ranked)
            return Candidates(
                query=query,
                existing=[NoteSummary.from_note(n) for n in ranked],
                offer_create=True,
            )

    async def materialize(
        self, selection: Selection, owner_id: str, source_note_id: str
    ) -> Note:
        """Turn a selection into the target note, creating it if requested.

        Raises:
            ValidationError: If the selection is empty or points at the source.
            NoteNotFoundError: If an existing-note selection does not resolve.
        """
        if selection.is_create:
            title = (selection.create_title or "").strip()
            if not title:
                raise ValidationError(
                    "Cannot create a note from an empty reference",
                    field="create_title",
                    code=ErrorCode.NOTE_TITLE_REQUIRED,
                )
            slug = await self.note_store.unique_slug(owner_id, title)
            note = await self.note_store.create_note(owner_id, title, slug, "")
            logger.info(f"Created note '{title}' ({note.id}) from bracket reference")
            return note

        if selection.note_id == source_note_id:
            raise ValidationError(
                "A note cannot link to itself",
                field="note_id",
                value=selection.note_id,
                code=ErrorCode.LINK_SELF_REFERENCE,
            )
        note = await self.note_store.get_note(owner_id, selection.note_id)
        if note is None:
            raise NoteNotFoundError(selection.note_id)
        return note


@dataclass
class ResolutionState:
    """What the suggestion popup currently shows."""

    span: Optional[Span] = None
    candidates: Optional[Candidates] = None
    selected_index: int = 0
    is_searching: bool = False
    # Sequence number of the newest request issued / of the one applied
    issued: int = 0
    applied: int = 0


class ResolutionSession:
    """Debounced, sequence-guarded resolution for one note being edited."""

    def __init__(
        self,
        resolver: ReferenceResolver,
        owner_id: str,
        note_id: Optional[str] = None,
        debounce_ms: Optional[int] = None,
    ):
        self.resolver = resolver
        self.owner_id = owner_id
        self.note_id = note_id
        self.debounce_ms = config.resolver_debounce_ms if debounce_ms is None else debounce_ms
        self.state = ResolutionState()

    def _next_sequence(self) -> int:
        self.state.issued += 1
        return self.state.issued

    def is_current(self, sequence: int) -> bool:
        return sequence == self.state.issued

    async def update(self, text: str, cursor: int) -> Optional[Candidates]:
        """Handle a keystroke: detect the span, debounce, resolve, apply.

        Run one call per keystroke (typically spawned into a task group).
        Returns the applied candidates, or None when there is no open span
        or this request was superseded before its answer could be applied.
        """
        span = detect_bracket(text, cursor)
        sequence = self._next_sequence()
        if span is None:
            self._clear()
            return None

        self.state.span = span
        self.state.is_searching = True
        await anyio.sleep(self.debounce_ms / 1000)
        if not self.is_current(sequence):
            return None

        candidates = await self.resolver.resolve(span.query, self.owner_id, self.note_id)
        if not self.is_current(sequence):
            logger.debug(f"Discarding stale resolution #{sequence} for '{span.query}'")
            return None

        self.state.candidates = candidates
        self.state.selected_index = 0
        self.state.is_searching = False
        self.state.applied = sequence
        return candidates

    def option_count(self) -> int:
        candidates = self.state.candidates
        if candidates is None:
            return 0
        return len(candidates.existing) + (1 if candidates.offer_create else 0)

    def move_selection(self, delta: int) -> int:
        """Move the highlighted option, wrapping around the list."""
        count = self.option_count()
        if count:
            self.state.selected_index = (self.state.selected_index + delta) % count
        return self.state.selected_index

    def current_selection(self) -> Optional[Selection]:
        """The highlighted option; the create option sits after existing notes."""
        candidates = self.state.candidates
        if candidates is None or self.state.span is None:
            return None
        index = self.state.selected_index
        if index < len(candidates.existing):
            return Selection.existing(
                candidates.existing[index].id, anchor_text=self.state.span.query.strip()
            )
        if candidates.offer_create:
            return Selection.create(self.state.span.query.strip())
        return None

    def cancel(self) -> None:
        """Close the popup; any in-flight resolution becomes stale."""
        self._next_sequence()
        self._clear()

    async def choose(self, selection: Selection) -> Note:
        """Materialize a selection and close the popup."""
        if self.note_id is None:
            raise ValidationError("No source note is being edited", field="note_id")
        note = await self.resolver.materialize(selection, self.owner_id, self.note_id)
        self.cancel()
        return note

    def _clear(self) -> None:
        self.state.span = None
        self.state.candidates = None
        self.state.selected_index = 0
        self.state.is_searching = False
