# FILE: ghostmentions/markup.py
"""
Pure text transformation utilities for converting between a plain buffer
with mention tokens and the encoded form TRIGGER[LABEL](TYPE:ID).
"""

import re
from functools import lru_cache
from typing import Dict, List, Pattern, Sequence, Tuple

import structlog

from ghostmentions.models import MentionToken
from ghostmentions.utils.text import excise_spans, replace_span

logger = structlog.get_logger(__name__)

DEFAULT_TRIGGERS = "@#/"

# Characters that terminate a field in the encoded form.
RESERVED_CHARACTERS: Dict[str, str] = {
    "label": "]",
    "type": ":",
    "id": ")",
}


class ReservedCharacterError(ValueError):
    """A token field contains a character that would break the encoded form."""


@lru_cache(maxsize=32)
def _mention_pattern(triggers: str) -> Pattern[str]:
    """
    Group 1: trigger, Group 2: label, Group 3: type, Group 4: id.
    The type group also stops at ')' so a malformed span cannot swallow the next mention.
    """
    trigger_class = "".join(re.escape(t) for t in triggers)
    return re.compile(r"([" + trigger_class + r"])\[([^\]]+)\]\(([^:)]+):([^)]+)\)")


def encode_token(token: MentionToken) -> str:
    return f"{token.trigger}[{token.label}]({token.type}:{token.id})"


def find_reserved_characters(token: MentionToken) -> List[Tuple[str, str]]:
    """
    Returns (field, character) pairs for every field that would not survive a round trip.
    An empty field is reported with an empty character.
    A ')' in the type also ends the match early, so it is reported too.
    """
    problems = []
    for field, char in RESERVED_CHARACTERS.items():
        value = getattr(token, field)
        if not value:
            problems.append((field, ""))
        elif char in value:
            problems.append((field, char))
    if ")" in token.type:
        problems.append(("type", ")"))
    return problems


def serialize_markdown(text: str, tokens: Sequence[MentionToken], strict: bool = False) -> str:
    """
    Replaces every token span in text with its encoded form.

    Args:
        text: The plain buffer.
        tokens: Tokens anchored to text. Order does not matter.
        strict: If True, raise ReservedCharacterError instead of warning when a
                token field contains a reserved character.

    Returns:
        The encoded string. Text outside token spans is passed through unescaped.
    """
    if not tokens:
        return text

    for token in tokens:
        problems = find_reserved_characters(token)
        if not problems:
            continue
        if strict:
            raise ReservedCharacterError(f"Mention '{token.label}' cannot be encoded losslessly: {problems}")
        logger.warning("Mention contains reserved characters; round trip not guaranteed", id=token.id, fields=problems)

    # Apply from end to start so earlier offsets stay valid
    result = text
    for token in sorted(tokens, key=lambda t: t.start, reverse=True):
        result = replace_span(result, token.start, token.end, encode_token(token))

    return result


def parse_markdown(markdown: str, triggers: str = DEFAULT_TRIGGERS) -> Tuple[str, List[MentionToken]]:
    """
    Parses encoded mentions back into a plain buffer and positioned tokens.

    Spans that do not fully match the grammar stay as literal text.

    Returns:
        (text, tokens) with tokens sorted by start.
    """
    pattern = _mention_pattern(triggers or DEFAULT_TRIGGERS)
    tokens: List[MentionToken] = []
    text = markdown
    # Each replacement shrinks the string; offset maps encoded positions to plain positions.
    offset = 0

    for match in pattern.finditer(markdown):
        trigger, label, type_, id_ = match.groups()
        text_start = match.start() - offset
        replacement = f"{trigger}{label}"
        text = replace_span(text, text_start, text_start + len(match.group(0)), replacement)

        tokens.append(
            MentionToken(
                id=id_,
                label=label,
                type=type_,
                trigger=trigger,
                start=text_start,
                end=text_start + len(replacement),
            )
        )
        offset += len(match.group(0)) - len(replacement)

    return text, tokens


def strip_mentions(text: str, tokens: Sequence[MentionToken]) -> str:
    """Removes every token span from text and trims the result."""
    if not tokens:
        return text.strip()
    return excise_spans(text, [(t.start, t.end) for t in tokens]).strip()
