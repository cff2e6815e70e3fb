import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from ghostmentions import __version__
from ghostmentions.config import MentionConfig, load_config
from ghostmentions.diff import reconcile_tokens
from ghostmentions.markup import ReservedCharacterError, parse_markdown, serialize_markdown, strip_mentions
from ghostmentions.models import MentionToken


def _read_text(path: Path) -> str:
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        sys.exit(1)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def _load_tokens_from_json(path: Path) -> List[MentionToken]:
    """
    Accepts either a list of tokens or an object with a 'tokens' list
    (the shape written by the 'parse' subcommand).
    """
    try:
        data = json.loads(_read_text(path))
        if isinstance(data, dict):
            data = data.get("tokens", [])
        return [MentionToken.model_validate(item) for item in data]
    except (json.JSONDecodeError, ValidationError) as e:
        print(f"Error parsing JSON tokens: {e}", file=sys.stderr)
        sys.exit(1)


def _load_config(path: Optional[Path]) -> MentionConfig:
    try:
        return load_config(path)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def _write_output(content: str, output: Optional[Path]):
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(content)
        print(f"✅ Saved to {output}", file=sys.stderr)
    else:
        print(content)


def handle_serialize(args):
    text = _read_text(args.text)
    tokens = _load_tokens_from_json(args.tokens)
    try:
        result = serialize_markdown(text, tokens, strict=args.strict)
    except ReservedCharacterError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    _write_output(result, args.output)


def handle_parse(args):
    config = _load_config(args.config)
    text, tokens = parse_markdown(_read_text(args.input), config.triggers)
    print(f"Found {len(tokens)} mentions.", file=sys.stderr)
    output = {"text": text, "tokens": [t.model_dump() for t in tokens]}
    _write_output(json.dumps(output, indent=2, ensure_ascii=False), args.output)


def handle_strip(args):
    config = _load_config(args.config)
    text, tokens = parse_markdown(_read_text(args.input), config.triggers)
    _write_output(strip_mentions(text, tokens), args.output)


def handle_reconcile(args):
    old_text = _read_text(args.old)
    new_text = _read_text(args.new)
    tokens = _load_tokens_from_json(args.tokens)

    adjusted = reconcile_tokens(tokens, old_text, new_text)
    dropped = len(tokens) - len(adjusted)
    print(f"Stats: {len(adjusted)} kept, {dropped} dropped.", file=sys.stderr)
    _write_output(json.dumps([t.model_dump() for t in adjusted], indent=2, ensure_ascii=False), args.output)


def main(argv: Optional[List[str]] = None):
    # Data goes to stdout; keep log lines out of it.
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(file=sys.stderr))

    parser = argparse.ArgumentParser(prog="ghost-mentions", description="Ghost Mentions: mention token codec and tracker")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True, help="Subcommands")

    p_serialize = subparsers.add_parser("serialize", help="Encode a text file and its tokens as TRIGGER[LABEL](TYPE:ID)")
    p_serialize.add_argument("text", type=Path, help="Plain text file")
    p_serialize.add_argument("tokens", type=Path, help="JSON file with tokens anchored to the text")
    p_serialize.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_serialize.add_argument(
        "--strict",
        action="store_true",
        help="Fail when a label, type or id contains a reserved character",
    )
    p_serialize.set_defaults(func=handle_serialize)

    p_parse = subparsers.add_parser("parse", help="Decode an encoded file into text and tokens (JSON)")
    p_parse.add_argument("input", type=Path, help="Encoded input file")
    p_parse.add_argument("-o", "--output", type=Path, help="Output JSON path (default: stdout)")
    p_parse.add_argument("-c", "--config", type=Path, help="JSON config file (trigger characters)")
    p_parse.set_defaults(func=handle_parse)

    p_strip = subparsers.add_parser("strip", help="Decode an encoded file and remove every mention")
    p_strip.add_argument("input", type=Path, help="Encoded input file")
    p_strip.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")
    p_strip.add_argument("-c", "--config", type=Path, help="JSON config file (trigger characters)")
    p_strip.set_defaults(func=handle_strip)

    p_reconcile = subparsers.add_parser("reconcile", help="Re-derive token ranges after a text edit")
    p_reconcile.add_argument("old", type=Path, help="Text before the edit")
    p_reconcile.add_argument("new", type=Path, help="Text after the edit")
    p_reconcile.add_argument("tokens", type=Path, help="JSON tokens anchored to the old text")
    p_reconcile.add_argument("-o", "--output", type=Path, help="Output JSON path (default: stdout)")
    p_reconcile.set_defaults(func=handle_reconcile)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
