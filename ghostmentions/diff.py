from typing import List, Sequence, Tuple

import structlog
from diff_match_patch import diff_match_patch

from ghostmentions.models import DiffOp, DiffOperation, EditRegion, MentionToken

logger = structlog.get_logger(__name__)

_dmp = diff_match_patch()


def _common_affixes(old_text: str, new_text: str) -> Tuple[int, int]:
    """
    Returns (prefix_len, suffix_len) shared by both strings.
    The suffix is measured on what remains after the prefix, so the two never overlap.
    """
    prefix_len = _dmp.diff_commonPrefix(old_text, new_text)
    suffix_len = _dmp.diff_commonSuffix(old_text[prefix_len:], new_text[prefix_len:])
    return prefix_len, suffix_len


def compute_edit_region(old_text: str, new_text: str) -> EditRegion:
    """
    Reduces a text change to a single contiguous region of the old text.

    This is a common-prefix / common-suffix reduction, not a minimal diff:
    one contiguous replace, insert or delete is found exactly, while two
    separate edits collapse into one region spanning both.
    """
    prefix_len, suffix_len = _common_affixes(old_text, new_text)
    return EditRegion(
        start=prefix_len,
        end=len(old_text) - suffix_len,
        delta=len(new_text) - len(old_text),
    )


def compute_diff(old_text: str, new_text: str) -> List[DiffOperation]:
    """
    Describes the change as ordered operations: equal prefix, deleted middle,
    inserted middle, equal suffix. Positions are offsets into old_text.
    """
    prefix_len, suffix_len = _common_affixes(old_text, new_text)
    old_middle = old_text[prefix_len : len(old_text) - suffix_len]
    new_middle = new_text[prefix_len : len(new_text) - suffix_len]

    operations = []
    if prefix_len > 0:
        operations.append(DiffOperation(type=DiffOp.EQUAL, text=old_text[:prefix_len], position=0))
    if old_middle:
        operations.append(DiffOperation(type=DiffOp.DELETE, text=old_middle, position=prefix_len))
    if new_middle:
        operations.append(DiffOperation(type=DiffOp.INSERT, text=new_middle, position=prefix_len))
    if suffix_len > 0:
        suffix_start = len(old_text) - suffix_len
        operations.append(DiffOperation(type=DiffOp.EQUAL, text=old_text[suffix_start:], position=suffix_start))

    return operations


def adjust_token_ranges(tokens: Sequence[MentionToken], region: EditRegion) -> List[MentionToken]:
    """
    Applies an edit region to tokens, preserving their order.

    - Token entirely before the region: unchanged.
    - Token entirely after the region: shifted by region.delta.
    - Token overlapping the region: dropped. A partially edited token is never repaired.
    """
    if region.is_empty:
        return list(tokens)

    adjusted = []
    for token in tokens:
        if token.end <= region.start:
            adjusted.append(token)
        elif token.start >= region.end:
            adjusted.append(token.shifted(region.delta))
        else:
            logger.debug(
                "Dropping token touched by edit",
                token_label=token.label,
                token_start=token.start,
                edit_start=region.start,
                edit_end=region.end,
            )
    return adjusted


def reconcile_tokens(tokens: Sequence[MentionToken], old_text: str, new_text: str) -> List[MentionToken]:
    """Re-derives token ranges after old_text was externally replaced with new_text."""
    if old_text == new_text:
        return list(tokens)
    return adjust_token_ranges(tokens, compute_edit_region(old_text, new_text))
