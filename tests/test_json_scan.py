import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from services.json_scan import (  # noqa: E402
    JsonScanner,
    find_matching_close,
    iter_balanced_objects,
    iter_leaf_objects,
)


def test_scanner_ignores_brackets_inside_strings():
    scanner = JsonScanner()
    structural = [char for char in '{"a": "}{\\"]"}' if scanner.feed(char)]
    assert structural.count("{") == 1
    assert structural.count("}") == 1
    assert "]" not in structural


def test_find_matching_close_handles_nesting_and_escapes():
    text = '[{"title": "a ] b"}, {"x": [1, 2]}] trailing'
    close = find_matching_close(text, 0)
    assert close == text.index("] trailing")


def test_find_matching_close_reports_unclosed():
    assert find_matching_close('[{"title": "A"}, {"title": "B"', 0) is None
    assert find_matching_close("no bracket here", 0) is None


def test_iter_balanced_objects_stops_at_array_end():
    text = '[{"a": 1}, {"b": {"c": 2}}] {"ignored": true}'
    spans = list(iter_balanced_objects(text, 1))
    assert [text[span.start : span.end] for span in spans] == ['{"a": 1}', '{"b": {"c": 2}}']


def test_iter_balanced_objects_skips_unclosed_tail():
    text = '[{"a": 1}, {"b": "unterminated'
    spans = list(iter_balanced_objects(text, 1))
    assert len(spans) == 1


def test_iter_leaf_objects_reports_truncated_innermost():
    text = '{"sections": [{"title": "A", "content": "x"}, {"title": "B", "content": "cut'
    leaves = iter_leaf_objects(text)
    assert len(leaves) == 2
    assert leaves[0].truncated is False
    assert leaves[1].truncated is True
    assert leaves[1].end == len(text)
    assert text[leaves[1].start :].startswith('{"title": "B"')
