import asyncio
import inspect
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import structlog

from ghostmentions.config import MentionConfig
from ghostmentions.diff import compute_edit_region
from ghostmentions.editor.detector import TriggerDetector, TriggerMatch
from ghostmentions.editor.tokens import TokenSet
from ghostmentions.markup import parse_markdown, serialize_markdown, strip_mentions
from ghostmentions.models import (
    EditRegion,
    HighlightRange,
    MentionEntity,
    MentionToken,
    MenuState,
    PersistMode,
    SendPayload,
    TriggerConfig,
)
from ghostmentions.utils.text import replace_span

logger = structlog.get_logger(__name__)

AnchorProvider = Callable[[str, int], Any]
EntityLike = Union[MentionEntity, Mapping[str, Any]]


class Key:
    """Key names understood by MentionSession.handle_key."""

    ARROW_DOWN = "ArrowDown"
    ARROW_UP = "ArrowUp"
    ENTER = "Enter"
    ESCAPE = "Escape"
    BACKSPACE = "Backspace"
    DELETE = "Delete"


def _coerce_entity(item: EntityLike) -> MentionEntity:
    if isinstance(item, MentionEntity):
        return item
    return MentionEntity.model_validate(item)


def _shift_position(pos: int, region: EditRegion, length: int) -> int:
    """Maps an offset in the old text to the new text; offsets inside the edit land at its start."""
    if pos >= region.end:
        pos += region.delta
    elif pos > region.start:
        pos = region.start
    return max(0, min(pos, length))


class MentionSession:
    """
    Owns one buffer, its mention tokens and the candidate menu.

    The host forwards text, caret, key and composition events; the session
    keeps tokens consistent with the buffer and reports buffer changes it
    makes itself through on_value_change. Every mutation is applied
    synchronously; only candidate fetches run on the event loop.
    """

    def __init__(
        self,
        triggers: Mapping[str, TriggerConfig],
        value: str = "",
        on_value_change: Optional[Callable[[str], None]] = None,
        on_send: Optional[Callable[[SendPayload], None]] = None,
        persist_on_send: Optional[PersistMode] = None,
        config: Optional[MentionConfig] = None,
        anchor_provider: Optional[AnchorProvider] = None,
        on_menu_change: Optional[Callable[[MenuState], None]] = None,
        on_diagnostic: Optional[Callable[[Exception], None]] = None,
    ):
        for trigger in triggers:
            if len(trigger) != 1:
                raise ValueError(f"Trigger keys must be single characters, got {trigger!r}")

        self.triggers = dict(triggers)
        self.config = config or MentionConfig()
        self.persist_on_send = PersistMode(persist_on_send) if persist_on_send else self.config.persist_on_send
        self.on_value_change = on_value_change
        self.on_send = on_send
        self.anchor_provider = anchor_provider
        self.on_menu_change = on_menu_change
        self.on_diagnostic = on_diagnostic

        self.detector = TriggerDetector(self.triggers)

        # The buffer as last seen by the session; external changes are diffed against it.
        self._last_known_text = value
        self._caret = len(value)
        self._selection_end = self._caret
        self._tokens = TokenSet()
        self._menu = MenuState()
        self._trigger_start: Optional[int] = None

        # Only a fetch scheduled under the current generation may touch the menu.
        self._fetch_generation = 0
        self._pending_fetch: Optional[asyncio.Task] = None

    # --- State exposed to the host ---

    @property
    def value(self) -> str:
        return self._last_known_text

    @property
    def caret(self) -> int:
        return self._caret

    @property
    def selection(self) -> Tuple[int, int]:
        return min(self._caret, self._selection_end), max(self._caret, self._selection_end)

    @property
    def tokens(self) -> List[MentionToken]:
        return self._tokens.snapshot()

    @property
    def menu(self) -> MenuState:
        return self._menu.model_copy(update={"items": list(self._menu.items)})

    @property
    def highlights(self) -> List[HighlightRange]:
        return [HighlightRange(start=t.start, end=t.end, label=t.label, type=t.type) for t in self._tokens]

    @property
    def pending_fetch(self) -> Optional[asyncio.Task]:
        return self._pending_fetch

    def strip(self) -> str:
        return strip_mentions(self._last_known_text, list(self._tokens))

    def markdown(self) -> str:
        return serialize_markdown(self._last_known_text, list(self._tokens))

    # --- Buffer events ---

    def set_value(self, value: str):
        """
        Synchronises tokens with an externally replaced buffer. Tokens touched by
        the change are dropped and the caret follows the edit.

        A closed menu stays closed. An open menu is re-derived from the moved
        caret, so it either tracks its shifted trigger or closes.
        """
        if not self._reconcile(value):
            return
        if self._menu.open:
            self._detect()

    def handle_change(self, value: str, caret: Optional[int] = None):
        """The user edited the buffer; caret defaults to the end of the new value."""
        self._reconcile(value)
        self._set_caret(len(value) if caret is None else caret)
        self._detect()

    def handle_select(self, start: int, end: Optional[int] = None):
        """The caret moved or the selection changed."""
        self._set_caret(start, end)
        self._detect()

    def composition_start(self):
        self.detector.begin_composition()

    def composition_end(self):
        self.detector.end_composition()
        self._detect()

    def load_markdown(self, markdown: str):
        """Replaces buffer and tokens with a parsed encoded string."""
        text, tokens = parse_markdown(markdown, "".join(self.triggers))
        self.close_menu()
        self._tokens.replace(tokens)
        self._commit(text, len(text))

    # --- Keys ---

    def handle_key(self, key: str, shift: bool = False) -> bool:
        """
        Handles a key press before the host applies it.
        Returns True when the session consumed the key and the host must not
        apply its default behaviour.
        """
        if self.detector.composing:
            return False

        if self._menu.open:
            handled = self._handle_menu_key(key)
            if handled:
                return True

        sel_start, sel_end = self.selection

        if key == Key.ENTER and not shift:
            if self.on_send is not None and self.config.send_on_enter:
                self.send()
                return True
            return False

        if key in (Key.BACKSPACE, Key.DELETE) and sel_start != sel_end:
            span = self._tokens.expand_selection(sel_start, sel_end)
            if span is None:
                # Plain text selection; the host edit arrives through handle_change
                return False
            self._delete_range(span.start, span.end)
            return True

        if key == Key.BACKSPACE:
            token = self._tokens.backspace_target(sel_start)
        elif key == Key.DELETE:
            token = self._tokens.delete_target(sel_start)
        else:
            return False

        if token is None:
            return False
        self._delete_range(token.start, token.end)
        return True

    def _handle_menu_key(self, key: str) -> bool:
        items = self._menu.items
        if key == Key.ARROW_DOWN:
            self._update_menu(selected_index=max(0, min(self._menu.selected_index + 1, len(items) - 1)))
            return True
        if key == Key.ARROW_UP:
            self._update_menu(selected_index=max(self._menu.selected_index - 1, 0))
            return True
        if key == Key.ENTER:
            if 0 <= self._menu.selected_index < len(items):
                self.insert_mention(items[self._menu.selected_index])
            return True
        if key == Key.ESCAPE:
            self.close_menu()
            return True
        return False

    # --- Mentions ---

    def insert_mention(self, entity: EntityLike) -> bool:
        """
        Replaces the active trigger and query with trigger + label and a trailing space.
        Returns False (and changes nothing) when no menu is active.
        """
        trigger = self._menu.trigger
        if not self._menu.open or self._trigger_start is None or trigger not in self.triggers:
            logger.debug("Ignoring mention insertion without an active trigger", trigger=trigger)
            return False

        trigger_start = self._trigger_start
        caret_pos = self._caret
        if caret_pos < trigger_start:
            logger.warning("Caret moved before trigger; closing menu", caret=caret_pos, trigger_start=trigger_start)
            self.close_menu()
            return False

        entity = _coerce_entity(entity)
        label = self.triggers[trigger].label_for(entity)
        token_text = f"{trigger}{label}"
        replacement = f"{token_text} "

        delta = len(replacement) - (caret_pos - trigger_start)
        new_text = replace_span(self._last_known_text, trigger_start, caret_pos, replacement)

        # The token carries the label actually written, so buffer[start:end] == trigger + label
        token = MentionToken(
            id=entity.id,
            label=label,
            type=entity.type,
            trigger=trigger,
            start=trigger_start,
            end=trigger_start + len(token_text),
        )
        self._tokens.insert(token, shift_from=caret_pos, delta=delta)

        self._cancel_pending_fetch()
        self._trigger_start = None
        self._update_menu(open=False, items=[], query="", loading=False, selected_index=0)

        logger.debug("Inserted mention", id=token.id, trigger=trigger, start=token.start, end=token.end)
        self._commit(new_text, trigger_start + len(replacement))
        return True

    def close_menu(self):
        self._cancel_pending_fetch()
        self._trigger_start = None
        if self._menu.open or self._menu.loading:
            self._update_menu(open=False, loading=False)

    def send(self) -> SendPayload:
        """
        Emits the send payload, then applies the persist mode.
        In prefix mode any free text is dropped and only the mentions remain.
        """
        payload = SendPayload(
            text=self.strip(),
            mentions=self._tokens.snapshot(),
            markdown=self.markdown(),
        )
        if self.on_send is not None:
            self.on_send(payload)

        if self.persist_on_send == PersistMode.CLEAR:
            self.close_menu()
            self._tokens.clear()
            self._commit("", 0)
        elif self.persist_on_send == PersistMode.PREFIX:
            self.close_menu()
            text = self._last_known_text
            pieces = []
            anchored = []
            offset = 0
            for token in self._tokens:
                piece = text[token.start : token.end]
                anchored.append(token.model_copy(update={"start": offset, "end": offset + len(piece)}))
                pieces.append(piece)
                offset += len(piece) + 1
            self._tokens.replace(anchored)
            new_text = " ".join(pieces)
            self._commit(new_text, len(new_text))

        return payload

    async def wait_for_candidates(self):
        """Waits until the pending debounced fetch, if any, has finished or been cancelled."""
        task = self._pending_fetch
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    # --- Internals ---

    def _reconcile(self, value: str) -> bool:
        if value == self._last_known_text:
            return False
        region = compute_edit_region(self._last_known_text, value)
        self._tokens.apply_edit(region)
        self._last_known_text = value
        self._caret = _shift_position(self._caret, region, len(value))
        self._selection_end = _shift_position(self._selection_end, region, len(value))
        if self._trigger_start is not None:
            self._trigger_start = _shift_position(self._trigger_start, region, len(value))
        return True

    def _set_caret(self, start: int, end: Optional[int] = None):
        length = len(self._last_known_text)
        self._caret = max(0, min(start, length))
        self._selection_end = self._caret if end is None else max(0, min(end, length))

    def _commit(self, text: str, caret: int):
        self._last_known_text = text
        self._caret = caret
        self._selection_end = caret
        if self.on_value_change is not None:
            self.on_value_change(text)

    def _delete_range(self, start: int, end: int):
        removed = self._tokens.remove_range(start, end)
        logger.debug("Atomic mention deletion", start=start, end=end, removed=[t.label for t in removed])
        self._commit(replace_span(self._last_known_text, start, end, ""), start)

    def _detect(self):
        if self.detector.composing:
            return

        if self._selection_end != self._caret:
            match = None
        else:
            match = self.detector.detect(self._last_known_text, self._caret, self._tokens)

        if match is None:
            if self._menu.open:
                self.close_menu()
            return

        self._open_menu(match)

    def _open_menu(self, match: TriggerMatch):
        self._trigger_start = match.start
        anchor = None
        if self.anchor_provider is not None:
            anchor = self.anchor_provider(self._last_known_text, self._caret)

        self._update_menu(
            open=True,
            trigger=match.trigger,
            query=match.query,
            anchor=anchor,
            loading=True,
            selected_index=0,
        )
        self._schedule_fetch(self.triggers[match.trigger], match.query)

    def _update_menu(self, **changes):
        self._menu = self._menu.model_copy(update=changes)
        if self._menu.open:
            assert self._trigger_start is not None, "open menu without a trigger start"
            assert 0 <= self._menu.selected_index < max(1, len(self._menu.items)), "selected index out of range"
        if self.on_menu_change is not None:
            self.on_menu_change(self.menu)

    def _cancel_pending_fetch(self):
        self._fetch_generation += 1
        if self._pending_fetch is not None and not self._pending_fetch.done():
            self._pending_fetch.cancel()
        self._pending_fetch = None

    def _schedule_fetch(self, cfg: TriggerConfig, query: str):
        self._cancel_pending_fetch()
        generation = self._fetch_generation

        if len(query) < cfg.min_chars:
            logger.debug("Query below min_chars; skipping fetch", type=cfg.type, query=query, min_chars=cfg.min_chars)
            self._update_menu(items=[], loading=False, selected_index=0)
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; candidate fetch skipped", type=cfg.type, query=query)
            self._update_menu(items=[], loading=False, selected_index=0)
            return

        self._pending_fetch = loop.create_task(self._debounced_fetch(generation, cfg, query))

    async def _debounced_fetch(self, generation: int, cfg: TriggerConfig, query: str):
        await asyncio.sleep(self.config.debounce_seconds)
        if generation != self._fetch_generation:
            return

        try:
            result = cfg.fetch(query)
            if inspect.isawaitable(result):
                result = await result
            items = [_coerce_entity(item) for item in result or []]
        except Exception as e:
            if generation != self._fetch_generation:
                logger.debug("Discarding stale fetch failure", type=cfg.type, query=query, error=str(e))
                return
            logger.warning("Mention fetch failed", type=cfg.type, query=query, error=str(e), exc_info=True)
            if self._menu.open:
                self._update_menu(items=[], loading=False, selected_index=0)
            if self.on_diagnostic is not None:
                self.on_diagnostic(e)
            return

        if generation != self._fetch_generation or not self._menu.open:
            logger.debug("Discarding stale fetch result", type=cfg.type, query=query)
            return

        selected = min(self._menu.selected_index, max(0, len(items) - 1))
        self._update_menu(items=items, loading=False, selected_index=selected)
