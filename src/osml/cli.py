"""Command-line interface for OSML."""

from __future__ import annotations

import argparse
import logging
import sys
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

from osml.errors import OsmlError
from osml.handlers import DEFAULT_MAX_INCLUDE_DEPTH
from osml.whitespace import WhitespaceMode

CONFIG_NAME = "osml.toml"


@dataclass(frozen=True, slots=True)
class CliOptions:
    """Parsed CLI options."""

    input_file: Path
    whitespace: WhitespaceMode
    include_paths: list[Path]
    max_include_depth: int
    json: bool
    debug: bool


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser (separate function for testability)."""
    p = argparse.ArgumentParser(
        prog="osml",
        description="Parse an OSML document and print its event stream",
    )
    p.add_argument("input", help="Input .osml file")
    p.add_argument(
        "--config",
        metavar="FILE",
        help=f"Config file (default: auto-discover {CONFIG_NAME})",
    )
    p.add_argument(
        "--whitespace",
        choices=[m.name.lower() for m in WhitespaceMode],
        default=None,
        help="Whitespace handling for data (default: collapse)",
    )
    p.add_argument(
        "-I",
        "--include-path",
        action="append",
        default=[],
        metavar="DIR",
        help="Extra include search directory (repeatable)",
    )
    p.add_argument(
        "--max-include-depth",
        type=int,
        default=None,
        metavar="N",
        help=f"Maximum include nesting (default: {DEFAULT_MAX_INCLUDE_DEPTH})",
    )
    p.add_argument("--json", action="store_true", help="Print events as JSON lines")
    p.add_argument("--debug", action="store_true", help="Trace the parser to stderr")
    return p


def load_config(config_path: Path | None, input_dir: Path) -> dict[str, Any]:
    """Load a TOML config file, returning an empty dict on missing/absent file."""
    path = config_path if config_path is not None else input_dir / CONFIG_NAME

    if not path.is_file():
        return {}

    with open(path, "rb") as f:
        return tomllib.load(f)


def resolve_options(args: argparse.Namespace) -> CliOptions:
    """Merge config file and CLI args into CliOptions.

    Precedence: config file < CLI flags.
    """
    input_file = Path(args.input)
    input_dir = input_file.parent
    if not input_dir.parts:
        input_dir = Path(".")

    config_path = Path(args.config) if args.config else None
    config = load_config(config_path, input_dir)

    # Whitespace mode: config < CLI
    whitespace = WhitespaceMode.COLLAPSE
    cfg_parser = config.get("parser")
    if isinstance(cfg_parser, dict):
        cfg_ws = cfg_parser.get("whitespace")
        if isinstance(cfg_ws, str):
            try:
                whitespace = WhitespaceMode.from_name(cfg_ws)
            except ValueError as exc:
                raise argparse.ArgumentTypeError(str(exc)) from None
    if args.whitespace is not None:
        whitespace = WhitespaceMode.from_name(args.whitespace)

    # Include paths: config < CLI, config paths are relative to the input
    include_paths: list[Path] = []
    max_depth = DEFAULT_MAX_INCLUDE_DEPTH
    cfg_include = config.get("include")
    if isinstance(cfg_include, dict):
        cfg_paths = cfg_include.get("paths")
        if isinstance(cfg_paths, list):
            include_paths.extend(input_dir / str(p) for p in cfg_paths)
        cfg_depth = cfg_include.get("max_depth")
        if isinstance(cfg_depth, int) and not isinstance(cfg_depth, bool):
            max_depth = cfg_depth
    include_paths.extend(Path(p) for p in args.include_path)
    if args.max_include_depth is not None:
        max_depth = args.max_include_depth
    if max_depth < 0:
        raise argparse.ArgumentTypeError(f"invalid include depth: {max_depth}")

    return CliOptions(
        input_file=input_file,
        whitespace=whitespace,
        include_paths=include_paths,
        max_include_depth=max_depth,
        json=args.json,
        debug=args.debug,
    )


def run_file(options: CliOptions, out: TextIO | None = None, err: TextIO | None = None) -> int:
    """Parse the input file and print its events. Returns the exit code."""
    from osml.debug import dump_events, event_to_json
    from osml.location import SourceRegistry
    from osml.logger import TerminalLogger
    from osml.parser import parse_events
    from osml.resolver import FileSourceResolver

    out = out if out is not None else sys.stdout
    err = err if err is not None else sys.stderr

    try:
        data = options.input_file.read_bytes()
    except OSError as exc:
        print(f"error: cannot read {options.input_file}: {exc.strerror}", file=err)
        return 2

    registry = SourceRegistry()
    logger = TerminalLogger(registry, err)
    resolver = FileSourceResolver(registry, options.include_paths)

    try:
        events = parse_events(
            data,
            name=str(options.input_file),
            logger=logger,
            registry=registry,
            whitespace_mode=options.whitespace,
            resolver=resolver,
            max_include_depth=options.max_include_depth,
        )
    except OsmlError:
        # Already reported through the logger
        return 2

    if options.json:
        for ev in events:
            out.write(event_to_json(ev) + "\n")
    else:
        dump_events(events, file=out)

    return 1 if logger.has_errors else 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns exit code (0/1/2). Does not call sys.exit()."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = resolve_options(args)
    except (argparse.ArgumentTypeError, tomllib.TOMLDecodeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    if options.debug:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(name)s: %(message)s",
        )

    return run_file(options)
