"""Tests for reference span detection and extraction."""
import pytest

from notegraph.models.schema import Span
from notegraph.services.detector import (
    detect,
    detect_bracket,
    detect_hashtag,
    extract_bracket_links,
    extract_hashtags,
    replace_span,
)


class TestDetectBracket:
    def test_open_span_at_end_of_text(self):
        text = "See [[Projec"
        span = detect_bracket(text, len(text))
        assert span == Span(start=4, end=12, query="Projec")

    def test_closed_span_behind_cursor(self):
        assert detect_bracket("See [[Done]] note", 16) is None

    def test_innermost_opener_wins(self):
        span = detect_bracket("[[A[[B", 6)
        assert span.start == 3
        assert span.query == "B"

    def test_empty_query_is_valid(self):
        span = detect_bracket("Link [[", 7)
        assert span.query == ""
        assert span.start == 5

    def test_no_opener(self):
        assert detect_bracket("plain text", 5) is None

    def test_cursor_inside_completed_reference(self):
        # Caret between "Do" and "ne]]": the reference is already closed ahead
        assert detect_bracket("See [[Done]] note", 8) is None

    def test_close_ahead_after_new_opener_does_not_cancel(self):
        text = "[[Alpha and [[Beta]]"
        span = detect_bracket(text, 9)
        assert span.query == "Alpha a"

    def test_line_break_ends_span(self):
        assert detect_bracket("[[Idea\nmore", 11) is None

    def test_close_on_later_line_does_not_count(self):
        text = "[[Idea\nlater]]"
        span = detect_bracket(text, 6)
        assert span.query == "Idea"

    @pytest.mark.parametrize("cursor", [-5, 0, 1])
    def test_cursor_before_any_opener(self, cursor):
        assert detect_bracket("[[x", cursor) is None

    def test_cursor_beyond_text_is_clamped(self):
        span = detect_bracket("[[Note", 99)
        assert span.end == 6
        assert span.query == "Note"


class TestDetectHashtag:
    def test_open_tag(self):
        span = detect_hashtag("tagged #proj", 12)
        assert span == Span(start=7, end=12, query="proj", kind="hashtag")

    def test_tag_span_extends_to_next_whitespace(self):
        span = detect_hashtag("a #project b", 5)
        assert span.query == "pr"
        assert span.end == 10

    def test_whitespace_closes_tag(self):
        assert detect_hashtag("#done now", 9) is None

    def test_hash_inside_word_is_not_a_tag(self):
        assert detect_hashtag("issue#12", 8) is None


def test_detect_prefers_bracket_over_hashtag():
    span = detect("[[#1 issue", 10)
    assert span.kind == "bracket"
    assert span.query == "#1 issue"


def test_detect_falls_back_to_hashtag():
    span = detect("note #ide", 9)
    assert span.kind == "hashtag"


def test_detect_is_idempotent():
    text = "See [[Projec"
    assert detect(text, 12) == detect(text, 12)


class TestExtraction:
    def test_extract_bracket_links(self):
        links = extract_bracket_links("See [[Alpha Note]] and [[ Beta ]] and [[]]")
        assert [link.text for link in links] == ["Alpha Note", "Beta"]
        assert links[0].slug == "alpha-note"
        assert links[0].start == 4

    def test_extract_from_empty_text(self):
        assert extract_bracket_links("") == []

    def test_extract_hashtags_dedupes_case_insensitively(self):
        assert extract_hashtags("#Ideas and #ideas, #todo but not a#b") == ["Ideas", "todo"]


def test_replace_span_completes_reference():
    text = "See [[Proj rest"
    span = detect_bracket(text, 10)
    assert replace_span(text, span, "Project X") == "See [[Project X]] rest"
