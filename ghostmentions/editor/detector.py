from dataclasses import dataclass
from typing import Container, Optional

from ghostmentions.editor.tokens import TokenSet
from ghostmentions.utils.text import is_whitespace, is_word_boundary


@dataclass
class TriggerMatch:
    trigger: str
    start: int
    query: str


class TriggerDetector:
    """
    Decides whether the caret sits in a completable trigger context.

    Detection is suppressed while an IME composition is in progress; the
    session re-runs it once the composition ends.
    """

    def __init__(self, triggers: Container[str]):
        self.triggers = triggers
        self.composing = False

    def begin_composition(self):
        self.composing = True

    def end_composition(self):
        self.composing = False

    def detect(self, text: str, caret: int, tokens: TokenSet) -> Optional[TriggerMatch]:
        """
        Scans backward from the caret for a trigger at a word boundary.

        Returns None when the caret is inside a token, when whitespace or an
        existing token is reached first, or when the buffer start is reached
        without a trigger.
        """
        # Typing inside an accepted mention never opens a menu
        if tokens.containing(caret) is not None:
            return None

        for i in range(min(caret, len(text)) - 1, -1, -1):
            char = text[i]
            if is_whitespace(char):
                break
            if tokens.covering(i) is not None:
                # Reached an accepted mention; its trigger is not completable text
                break
            if char in self.triggers and is_word_boundary(text, i):
                return TriggerMatch(trigger=char, start=i, query=text[i + 1 : caret])

        return None
