"""Command line entry point.

Usage:
    wilkinson parse "y ~ x + (1 | g)" [--config wilkinson.yaml] [--compact] [-v]
    wilkinson lex "y ~ x"
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import lex_formula, parse_formula
from .builder import BuildError
from .config import ParserConfig
from .parser import ParseError


def format_parse_error(err: ParseError) -> str:
    """Plain-text diagnostic: the formula, how far parsing got, and what was expected."""
    shown = " ".join([*err.consumed, err.found.lexeme or "<end>"])
    lines = [
        f"error: {err.message}",
        f"  Formula:  {err.text}",
        f"  Show:     {shown}",
        f"            {' ' * (len(shown) - len(err.found.lexeme or '<end>'))}^",
        f"  Expected: {', '.join(err.expected_names())}",
    ]
    return "\n".join(lines)


def _parse(args) -> int:
    config = ParserConfig.from_yaml(args.config) if args.config else None
    try:
        meta = parse_formula(args.formula, config)
    except ParseError as e:
        print(format_parse_error(e), file=sys.stderr)
        return 1
    except BuildError as e:
        print(f"error: {e}\n  Formula:  {args.formula}", file=sys.stderr)
        return 1
    print(meta.model_dump_json(indent=None if args.compact else 2))
    return 0


def _lex(args) -> int:
    print(json.dumps(lex_formula(args.formula), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="wilkinson", description="Parse Wilkinson/brms model formulas"
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("parse", parents=[common], help="Print formula metadata as JSON")
    p.add_argument("formula")
    p.add_argument("--config", type=Path, default=None, help="YAML parser config")
    p.add_argument("--compact", action="store_true", help="Single-line JSON")
    p.set_defaults(handler=_parse)

    p = sub.add_parser("lex", parents=[common], help="Print the raw token stream as JSON")
    p.add_argument("formula")
    p.set_defaults(handler=_lex)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(name)s %(levelname)s: %(message)s",
    )
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
