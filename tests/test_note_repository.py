"""Tests for the note repository and slug helpers."""
import pytest
from sqlalchemy import text

from notegraph.exceptions import NoteNotFoundError, SearchError, ValidationError
from notegraph.utils import escape_like_pattern, slugify, unique_slug
from tests.conftest import OTHER_OWNER, OWNER


class TestSlugs:
    @pytest.mark.parametrize(
        "title, slug",
        [("John Smith", "john-smith"), ("R&D Co., Inc.", "r-d-co-inc"), ("  --  ", "")],
    )
    def test_slugify(self, title, slug):
        assert slugify(title) == slug

    def test_unique_slug_suffixes(self):
        taken = {"idea", "idea-2"}
        assert unique_slug("Idea", taken.__contains__) == "idea-3"

    def test_unique_slug_fallback(self):
        assert unique_slug("!!!", lambda slug: False) == "note"

    def test_escape_like_pattern(self):
        assert escape_like_pattern("100%_done") == "100\\%\\_done"


class TestNoteRepository:
    def test_create_derives_unique_slug(self, note_repository):
        first = note_repository.create_note(OWNER, "Idea")
        second = note_repository.create_note(OWNER, "Idea")
        other = note_repository.create_note(OTHER_OWNER, "Idea")
        assert (first.slug, second.slug, other.slug) == ("idea", "idea-2", "idea")

    def test_taken_slug_rejected(self, note_repository):
        note_repository.create_note(OWNER, "Idea")
        with pytest.raises(ValidationError):
            note_repository.create_note(OWNER, "Other", slug="idea")

    def test_blank_title_rejected(self, note_repository):
        with pytest.raises(ValidationError):
            note_repository.create_note(OWNER, "  ")

    def test_get_is_owner_scoped(self, note_repository, make_note):
        note = make_note("Mine")
        assert note_repository.get_note(OWNER, note.id).title == "Mine"
        assert note_repository.get_note(OTHER_OWNER, note.id) is None

    def test_search_title_and_content(self, note_repository, make_note):
        make_note("Apple Pie")
        make_note("Recipes", content="Use one apple")
        make_note("Banana")
        titles = note_repository.search_notes_by_title(OWNER, "APP", 10)
        assert [n.title for n in titles] == ["Apple Pie"]
        content = note_repository.search_notes_by_content(OWNER, "apple", 10)
        assert {n.title for n in content} == {"Apple Pie", "Recipes"}

    def test_search_folds_non_ascii_case(self, note_repository, make_note):
        make_note("Élan Vital")
        make_note("Notes", content="Straße und ÜBER")
        assert [n.title for n in note_repository.search_notes_by_title(OWNER, "élan", 10)] == [
            "Élan Vital"
        ]
        content = note_repository.search_notes_by_content(OWNER, "strasse und über", 10)
        assert [n.title for n in content] == ["Notes"]

    def test_search_treats_wildcards_literally(self, note_repository, make_note):
        make_note("50% off")
        make_note("500 items")
        assert [n.title for n in note_repository.search_notes_by_title(OWNER, "50%", 10)] == [
            "50% off"
        ]

    def test_search_failure_raises_search_error(self, engine, note_repository):
        with engine.begin() as conn:
            conn.execute(text("DROP TABLE note_links"))
            conn.execute(text("DROP TABLE notes"))
        with pytest.raises(SearchError) as exc_info:
            note_repository.search_notes_by_title(OWNER, "idea", 10)
        assert exc_info.value.query == "idea"

    def test_recent_notes_excludes_source(self, note_repository, make_note):
        a, b, c = make_note("A"), make_note("B"), make_note("C")
        recent = note_repository.recent_notes(OWNER, 10, exclude_id=c.id)
        assert [n.id for n in recent] == [b.id, a.id]

    def test_rename(self, note_repository, make_note):
        note = make_note("Old Name")
        renamed = note_repository.rename_note(OWNER, note.id, "New Name")
        assert (renamed.title, renamed.slug) == ("New Name", "new-name")

    def test_delete_notifies_subscribers(self, note_repository, make_note):
        seen = []
        note_repository.on_note_deleted(lambda owner, note_id: seen.append((owner, note_id)))
        note = make_note("Doomed")
        note_repository.delete_note(OWNER, note.id)
        assert seen == [(OWNER, note.id)]
        with pytest.raises(NoteNotFoundError):
            note_repository.delete_note(OWNER, note.id)
