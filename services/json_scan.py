"""Escape-aware bracket scanning over near-JSON text."""
from __future__ import annotations

from typing import Iterator, List, NamedTuple, Optional

_PAIRS = {"{": "}", "[": "]"}


class ObjectSpan(NamedTuple):
    start: int
    end: int
    truncated: bool = False


class JsonScanner:
    """Character-level state machine separating string contents from structure.

    A double quote toggles the string state unless it is preceded by an
    unescaped backslash. ``feed`` returns ``True`` only for characters that
    sit outside of any string literal, which are the only ones allowed to
    open or close brackets.
    """

    __slots__ = ("in_string", "escape_next")

    def __init__(self) -> None:
        self.in_string = False
        self.escape_next = False

    def feed(self, char: str) -> bool:
        if self.escape_next:
            self.escape_next = False
            return False
        if char == "\\":
            self.escape_next = True
            return False
        if char == '"':
            self.in_string = not self.in_string
            return False
        return not self.in_string


def find_matching_close(text: str, start: int) -> Optional[int]:
    """Return the index closing the bracket opened at ``start``.

    ``None`` means the text ends before the bracket is closed.
    """

    if start < 0 or start >= len(text) or text[start] not in _PAIRS:
        return None
    opener = text[start]
    closer = _PAIRS[opener]
    scanner = JsonScanner()
    depth = 0
    for index in range(start, len(text)):
        char = text[index]
        if not scanner.feed(char):
            continue
        if char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return index
    return None


def iter_balanced_objects(text: str, start: int = 0, end: Optional[int] = None) -> Iterator[ObjectSpan]:
    """Yield balanced top-level ``{...}`` spans found from ``start``.

    Scanning stops at a structural ``]`` outside any object (the end of the
    enclosing array) or at the first object the text never closes.
    """

    limit = len(text) if end is None else min(end, len(text))
    scanner = JsonScanner()
    depth = 0
    object_start = -1
    for index in range(max(0, start), limit):
        char = text[index]
        if not scanner.feed(char):
            continue
        if char == "{":
            if depth == 0:
                object_start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                yield ObjectSpan(object_start, index + 1)
                object_start = -1
        elif char == "]" and depth == 0:
            return


def iter_leaf_objects(text: str) -> List[ObjectSpan]:
    """Return spans of objects that contain no nested object.

    When truncation leaves the innermost object open, it is reported with
    ``end == len(text)`` and ``truncated=True``.
    """

    scanner = JsonScanner()
    stack: List[List[int]] = []
    leaves: List[ObjectSpan] = []
    for index, char in enumerate(text):
        if not scanner.feed(char):
            continue
        if char == "{":
            if stack:
                stack[-1][1] = 1
            stack.append([index, 0])
        elif char == "}" and stack:
            begin, has_child = stack.pop()
            if not has_child:
                leaves.append(ObjectSpan(begin, index + 1))
    if stack and not stack[-1][1]:
        leaves.append(ObjectSpan(stack[-1][0], len(text), truncated=True))
    return leaves


__all__ = [
    "JsonScanner",
    "ObjectSpan",
    "find_matching_close",
    "iter_balanced_objects",
    "iter_leaf_objects",
]
