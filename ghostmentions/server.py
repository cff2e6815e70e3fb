import json
import logging
import sys
from typing import List

import structlog
from mcp.server.fastmcp import FastMCP

from ghostmentions.diff import reconcile_tokens
from ghostmentions.markup import DEFAULT_TRIGGERS, parse_markdown, serialize_markdown, strip_mentions
from ghostmentions.models import MentionToken

mcp = FastMCP("Ghost Mentions Service")


def configure_logging():
    # MCP communicates over stdio.
    # CRITICAL: All logs must go to stderr. Any print to stdout will break the JSON-RPC protocol.
    logging.basicConfig(stream=sys.stderr, level=logging.INFO, force=True)

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _dump_tokens(tokens: List[MentionToken]) -> list:
    return [t.model_dump() for t in tokens]


@mcp.tool()
def parse_mentions(markdown: str, triggers: str = DEFAULT_TRIGGERS) -> str:
    """
    Decodes text containing encoded mentions.

    Args:
        markdown: Text where each mention is written as TRIGGER[LABEL](TYPE:ID), e.g. '@[Alice](agent:1)'.
        triggers: Characters accepted as TRIGGER (default '@#/').

    Returns:
        JSON object {"text": ..., "tokens": [...]} where each token has id, label, type,
        trigger and the half-open [start, end) offsets of TRIGGER+LABEL in text.
    """
    try:
        text, tokens = parse_markdown(markdown, triggers)
        return json.dumps({"text": text, "tokens": _dump_tokens(tokens)}, ensure_ascii=False)
    except Exception as e:
        return f"Error parsing mentions: {str(e)}"


@mcp.tool()
def serialize_mentions(text: str, tokens: List[MentionToken], strict: bool = False) -> str:
    """
    Encodes mention tokens into text.

    Args:
        text: The plain text. Each token's [start, end) span must equal trigger + label.
        tokens: Tokens anchored to text.
        strict: If True, refuse tokens whose label contains ']', type contains ':' or ')',
                or id contains ')'. Otherwise such tokens are encoded but may not round-trip.
    """
    try:
        return serialize_markdown(text, tokens, strict=strict)
    except Exception as e:
        return f"Error serializing mentions: {str(e)}"


@mcp.tool()
def strip_mention_text(markdown: str, triggers: str = DEFAULT_TRIGGERS) -> str:
    """
    Returns the text of an encoded string with every mention removed and surrounding whitespace trimmed.
    """
    try:
        text, tokens = parse_markdown(markdown, triggers)
        return strip_mentions(text, tokens)
    except Exception as e:
        return f"Error stripping mentions: {str(e)}"


@mcp.tool()
def reconcile_mentions(old_text: str, new_text: str, tokens: List[MentionToken]) -> str:
    """
    Re-derives mention offsets after old_text was edited into new_text.

    Tokens before the edited region are unchanged, tokens after it are shifted by the
    length difference, and tokens touched by the edit are dropped.

    Returns:
        JSON list of the surviving tokens.
    """
    try:
        return json.dumps(_dump_tokens(reconcile_tokens(tokens, old_text, new_text)), ensure_ascii=False)
    except Exception as e:
        return f"Error reconciling mentions: {str(e)}"


def main():
    configure_logging()
    mcp.run()


if __name__ == "__main__":
    main()
