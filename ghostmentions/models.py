from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel, Field, model_validator


class PersistMode(str, Enum):
    """What happens to the buffer and tokens right after a send."""

    KEEP = "keep"
    CLEAR = "clear"
    PREFIX = "prefix"


class PickerMode(str, Enum):
    POPUP = "popup"
    DIALOG = "dialog"


class DiffOp(str, Enum):
    EQUAL = "equal"
    DELETE = "delete"
    INSERT = "insert"


class MentionEntity(BaseModel):
    """
    A candidate returned by a trigger's fetch function.
    """

    id: str = Field(..., description="Opaque identifier of the source entity.")
    label: str = Field(..., description="Display text shown after the trigger character.")
    type: str = Field(..., description="Entity category, e.g. 'agent' or 'tag'.")


class MentionToken(MentionEntity):
    """
    An accepted mention anchored to the buffer.
    While the token is alive, buffer[start:end] == trigger + label.
    Offsets are half-open character positions.
    """

    trigger: str = Field(..., description="The single character that introduced the mention.")
    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_range(self) -> "MentionToken":
        if len(self.trigger) != 1:
            raise ValueError(f"trigger must be a single character, got {self.trigger!r}")
        if self.end <= self.start:
            raise ValueError(f"token end ({self.end}) must be greater than start ({self.start})")
        return self

    @property
    def text(self) -> str:
        return f"{self.trigger}{self.label}"

    def shifted(self, delta: int) -> "MentionToken":
        return self.model_copy(update={"start": self.start + delta, "end": self.end + delta})

    def entity(self) -> MentionEntity:
        return MentionEntity(id=self.id, label=self.label, type=self.type)


FetchResult = Union[List[Any], Awaitable[List[Any]]]


@dataclass
class TriggerConfig:
    """
    Per-trigger-character configuration.

    fetch may be a coroutine function or a plain function; it receives the
    query typed after the trigger and returns entities in display order.
    Below min_chars the fetch is skipped and the candidate list is empty.
    """

    type: str
    fetch: Callable[[str], FetchResult]
    min_chars: int = 0
    display: Optional[Callable[[MentionEntity], Optional[str]]] = None

    def label_for(self, entity: MentionEntity) -> str:
        if self.display is not None:
            label = self.display(entity)
            if label is not None:
                return label
        return entity.label


class MenuState(BaseModel):
    """Transient candidate-selection state exposed to the host UI."""

    open: bool = False
    trigger: str = ""
    query: str = ""
    items: List[MentionEntity] = Field(default_factory=list)
    selected_index: int = 0
    loading: bool = False
    # Opaque geometry from the host's anchor provider; never inspected here.
    anchor: Any = None


class HighlightRange(BaseModel):
    start: int
    end: int
    label: str
    type: str


class SendPayload(BaseModel):
    text: str = Field(..., description="Buffer with every mention span removed, trimmed.")
    mentions: List[MentionToken] = Field(default_factory=list)
    markdown: str = Field(..., description="Buffer with every mention re-encoded as TRIGGER[LABEL](TYPE:ID).")


class EditRegion(BaseModel):
    """
    The contiguous span of the old text touched by a change.
    start/end are offsets into the old text; delta = len(new) - len(old).
    """

    start: int
    end: int
    delta: int

    @property
    def is_empty(self) -> bool:
        return self.start == self.end and self.delta == 0


class DiffOperation(BaseModel):
    type: DiffOp
    text: str
    position: int
