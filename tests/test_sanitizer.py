import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from sanitizer import sanitize_body, sanitize_document, sanitize_title  # noqa: E402


def _doc(*sections):
    return {"title": "Book", "description": "Desc", "sections": list(sections)}


def test_strips_trailing_page_numbers_from_titles():
    assert sanitize_title("Budget Basics 12", 1) == "Budget Basics"
    assert sanitize_title("Chapter Layout 3 14", 1) == "Chapter Layout"
    assert sanitize_title("Top 10 Tips", 1) == "Top 10 Tips"


def test_blank_title_gets_fallback():
    assert sanitize_title("   ", 3) == "Untitled Section 3"
    assert sanitize_title(None, 2) == "Untitled Section 2"
    assert sanitize_title("Untitled Section 2", 2) == "Untitled Section 2"


def test_body_removes_toc_lines_bullets_and_bold():
    body = (
        "Section 1: Getting Started 3\n"
        "Section 2: Going Further ..... 17\n"
        "Intro with **bold** words.\n"
        "* first point\n"
        "- second point\n"
        "• third point\n\n\n\n"
        "Closing paragraph."
    )
    cleaned = sanitize_body(body, 1)
    assert "Section 1:" not in cleaned
    assert "Section 2:" not in cleaned
    assert "**" not in cleaned
    assert "Intro with bold words." in cleaned
    assert "first point\nsecond point\nthird point" in cleaned
    assert "\n\n\n" not in cleaned
    assert cleaned.endswith("Closing paragraph.")


def test_body_that_cleans_to_nothing_gets_placeholder():
    assert sanitize_body("Section 4: Wrap Up 88", 4) == "Content for section 4 is being generated."
    assert sanitize_body(None, 2) == "Content for section 2 is being generated."


def test_non_string_fields_are_normalized():
    result = sanitize_document(
        _doc({"title": 7, "content": ["not", "text"], "subheadings": "x", "examples": ["ok", 3], "keyTakeaways": None})
    )
    section = result["sections"][0]
    assert isinstance(section["title"], str)
    assert isinstance(section["content"], str)
    assert section["subheadings"] == []
    assert section["examples"] == ["ok"]
    assert section["keyTakeaways"] == []


@pytest.mark.parametrize(
    "document",
    [
        _doc({"title": "Saving 101 2", "content": "**Rule** one\n- - nested bullet\n\n\n\nEnd"}),
        _doc({"title": "5", "content": "Section 1: Intro 2\n**Section 3: Deep Dive 9**"}),
        _doc({"title": None, "content": None}, {"title": "Ok", "content": "* * **x**"}),
        _doc("not a section", {"title": "Real 1 2 3", "content": "  \n\n  "}),
        {"title": "No sections"},
        {"sections": {"title": "Lonely 4", "content": "Only one"}},
    ],
)
def test_sanitize_is_idempotent(document):
    once = sanitize_document(document)
    assert sanitize_document(once) == once


def test_sanitize_document_does_not_mutate_input():
    original = _doc({"title": "Title 9", "content": "**x**"})
    sanitize_document(original)
    assert original["sections"][0]["title"] == "Title 9"
    assert original["sections"][0]["content"] == "**x**"


def test_sanitize_document_edge_shapes():
    assert sanitize_document(None) is None
    assert sanitize_document({"title": "T"}) == {"title": "T"}
    wrapped = sanitize_document({"sections": {"title": "Solo 3", "content": "Body"}})
    assert isinstance(wrapped["sections"], list)
    assert wrapped["sections"][0]["title"] == "Solo"
    untouched = sanitize_document({"sections": "garbage"})
    assert untouched["sections"] == "garbage"
    mixed = sanitize_document(_doc("skip me", {"title": "B 2", "content": "c"}))
    assert mixed["sections"][0] == "skip me"
    assert mixed["sections"][1]["title"] == "B"
