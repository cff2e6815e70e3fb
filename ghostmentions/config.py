import json
import os
from pathlib import Path
from typing import Mapping, Optional, Union

import structlog
from pydantic import BaseModel, Field, field_validator

from ghostmentions.markup import DEFAULT_TRIGGERS
from ghostmentions.models import PersistMode, PickerMode

logger = structlog.get_logger(__name__)

ENV_PREFIX = "GHOST_MENTIONS_"


class MentionConfig(BaseModel):
    """
    Session and codec settings.
    Explicit arguments given to MentionSession take precedence over these values.
    """

    debounce_ms: int = Field(120, ge=0, description="Delay between a detection and its candidate fetch.")
    persist_on_send: PersistMode = Field(PersistMode.KEEP, description="Buffer policy applied after a send.")
    send_on_enter: bool = Field(True, description="Treat Enter without Shift as a send when a send callback exists.")
    picker_mode: PickerMode = Field(PickerMode.POPUP, description="Passed through to the host picker UI.")
    triggers: str = Field(DEFAULT_TRIGGERS, description="Trigger characters recognised by the codec.")

    @field_validator("triggers")
    @classmethod
    def _no_reserved_triggers(cls, value: str) -> str:
        if not value:
            raise ValueError("at least one trigger character is required")
        bad = [c for c in value if c.isspace() or c in "[]():"]
        if bad:
            raise ValueError(f"invalid trigger characters: {bad}")
        return value

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MentionConfig":
        environ = os.environ if environ is None else environ
        data = {}
        if f"{ENV_PREFIX}DEBOUNCE_MS" in environ:
            data["debounce_ms"] = environ[f"{ENV_PREFIX}DEBOUNCE_MS"]
        if f"{ENV_PREFIX}PERSIST" in environ:
            data["persist_on_send"] = environ[f"{ENV_PREFIX}PERSIST"].lower()
        if f"{ENV_PREFIX}TRIGGERS" in environ:
            data["triggers"] = environ[f"{ENV_PREFIX}TRIGGERS"]
        return cls.model_validate(data)


def load_config(path: Union[str, Path, None] = None) -> MentionConfig:
    """
    Loads settings from a JSON file, falling back to environment variables.
    """
    if path is None:
        return MentionConfig.from_env()

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")

    with open(p, "r", encoding="utf-8") as f:
        content = f.read().strip()

    data = json.loads(content) if content else {}
    config = MentionConfig.model_validate(data)
    logger.debug("Loaded mention config", path=str(p), triggers=config.triggers)
    return config
