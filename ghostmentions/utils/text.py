"""
Low-level helpers for plain-text buffers: boundaries and span surgery.
"""

from typing import Iterable, NamedTuple, Tuple


class Span(NamedTuple):
    start: int
    end: int


def is_whitespace(char: str) -> bool:
    return char.isspace()


def is_word_boundary(text: str, index: int) -> bool:
    """True when index is at buffer start or immediately preceded by whitespace."""
    return index == 0 or is_whitespace(text[index - 1])


def replace_span(text: str, start: int, end: int, replacement: str) -> str:
    return text[:start] + replacement + text[end:]


def excise_spans(text: str, spans: Iterable[Tuple[int, int]]) -> str:
    """
    Removes every (start, end) span from text. Spans must not overlap.
    """
    out = []
    idx = 0
    for start, end in sorted(spans):
        out.append(text[idx:start])
        idx = end
    out.append(text[idx:])
    return "".join(out)


def union_span(start: int, end: int, spans: Iterable[Tuple[int, int]]) -> Span:
    """Smallest span covering (start, end) and every given span."""
    for span_start, span_end in spans:
        start = min(start, span_start)
        end = max(end, span_end)
    return Span(start, end)
