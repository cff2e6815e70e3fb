from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from ghostmentions.config import MentionConfig, load_config
from ghostmentions.diff import compute_diff, compute_edit_region, reconcile_tokens
from ghostmentions.editor.session import Key, MentionSession
from ghostmentions.markup import parse_markdown, serialize_markdown, strip_mentions
from ghostmentions.models import MentionEntity, MentionToken, MenuState, PersistMode, SendPayload, TriggerConfig

try:
    __version__ = version("ghost-mentions")
except PackageNotFoundError:
    # Package is loaded straight from a source checkout.
    # Read the pinned version from the VERSION file bundled alongside this package.
    _version_file = Path(__file__).parent / "VERSION"
    if _version_file.is_file():
        __version__ = _version_file.read_text().strip()
    else:
        __version__ = "0.0.0-dev"

__all__ = [
    "MentionSession",
    "MentionConfig",
    "MentionEntity",
    "MentionToken",
    "MenuState",
    "PersistMode",
    "SendPayload",
    "TriggerConfig",
    "Key",
    "compute_diff",
    "compute_edit_region",
    "reconcile_tokens",
    "parse_markdown",
    "serialize_markdown",
    "strip_mentions",
    "load_config",
    "__version__",
]
