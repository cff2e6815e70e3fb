from typing import Iterator, List, Optional, Sequence

from ghostmentions.diff import adjust_token_ranges
from ghostmentions.models import EditRegion, MentionToken
from ghostmentions.utils.text import Span, union_span


class TokenSet:
    """
    Ordered, non-overlapping collection of mention tokens.

    Tokens are values: callers get copies and every mutation replaces the
    affected entries. The set is re-checked after each mutation.
    """

    def __init__(self, tokens: Optional[Sequence[MentionToken]] = None):
        self._tokens: List[MentionToken] = sorted(tokens or [], key=lambda t: t.start)
        self._check_invariants()

    def __iter__(self) -> Iterator[MentionToken]:
        return iter(self._tokens)

    def __len__(self) -> int:
        return len(self._tokens)

    def __bool__(self) -> bool:
        return bool(self._tokens)

    def snapshot(self) -> List[MentionToken]:
        return [t.model_copy() for t in self._tokens]

    def _check_invariants(self):
        for token in self._tokens:
            assert token.start < token.end, f"inverted token range {token.start}..{token.end}"
        for prev, nxt in zip(self._tokens, self._tokens[1:]):
            assert prev.end <= nxt.start, f"overlapping tokens at {prev.start}..{prev.end} and {nxt.start}..{nxt.end}"

    # --- Queries ---

    def containing(self, pos: int) -> Optional[MentionToken]:
        """Token with pos strictly inside its range (not on either edge)."""
        for token in self._tokens:
            if token.start < pos < token.end:
                return token
        return None

    def covering(self, index: int) -> Optional[MentionToken]:
        """Token whose text includes the character at index."""
        for token in self._tokens:
            if token.start <= index < token.end:
                return token
        return None

    def backspace_target(self, pos: int) -> Optional[MentionToken]:
        for token in self._tokens:
            if pos == token.end or token.start < pos <= token.end:
                return token
        return None

    def delete_target(self, pos: int) -> Optional[MentionToken]:
        for token in self._tokens:
            if pos == token.start or token.start <= pos < token.end:
                return token
        return None

    def touched_by(self, start: int, end: int) -> List[MentionToken]:
        return [t for t in self._tokens if max(start, t.start) < min(end, t.end)]

    def expand_selection(self, start: int, end: int) -> Optional[Span]:
        """
        Union of the selection and every token it touches, or None when no token is touched.
        """
        touched = self.touched_by(start, end)
        if not touched:
            return None
        return union_span(start, end, [(t.start, t.end) for t in touched])

    # --- Mutations ---

    def replace(self, tokens: Sequence[MentionToken]):
        self._tokens = sorted(tokens, key=lambda t: t.start)
        self._check_invariants()

    def clear(self):
        self._tokens = []

    def apply_edit(self, region: EditRegion):
        self._tokens = adjust_token_ranges(self._tokens, region)
        self._check_invariants()

    def remove_range(self, start: int, end: int) -> List[MentionToken]:
        """
        Drops every token intersecting [start, end) and shifts later tokens left
        by the removed length. Returns the dropped tokens.
        """
        removed_len = end - start
        kept = []
        dropped = []
        for token in self._tokens:
            if token.end <= start:
                kept.append(token)
            elif token.start >= end:
                kept.append(token.shifted(-removed_len))
            else:
                dropped.append(token)
        self._tokens = kept
        self._check_invariants()
        return dropped

    def insert(self, token: MentionToken, shift_from: int, delta: int):
        """
        Shifts every token starting at or after shift_from by delta, then adds token.
        """
        shifted = [t.shifted(delta) if t.start >= shift_from else t for t in self._tokens]
        shifted.append(token)
        self._tokens = sorted(shifted, key=lambda t: t.start)
        self._check_invariants()
