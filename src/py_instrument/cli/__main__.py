"""
Main Entry Point for py-instrument CLI.

This module handles argument parsing and dispatches to specific command
handlers defined in `py_instrument.cli.commands`.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from py_instrument import __version__
from py_instrument.cli import commands
from py_instrument.config import parse_cli_key_values
from py_instrument.errors import ConfigError
from py_instrument.utils.console import console, log_error


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
  """Registers the flags shared by every command that resolves a TraceConfig."""
  parser.add_argument("paths", type=Path, nargs="*", help="Input source files or directories")
  parser.add_argument("-n", "--app", default=None, help="Application label attached to events (default: app)")
  parser.add_argument(
    "-j",
    "--parallel",
    type=int,
    default=None,
    dest="workers",
    help="Number of files processed in parallel (default: 1)",
  )
  parser.add_argument(
    "-w",
    "--overwrite",
    action="store_true",
    default=None,
    help="Rewrite files in place instead of a dry-run",
  )
  parser.add_argument(
    "--default-select",
    action=argparse.BooleanOptionalAction,
    default=None,
    help="Instrument functions without an explicit directive (default: yes)",
  )
  parser.add_argument(
    "-k",
    "--skip-generated",
    action="store_true",
    default=None,
    help="Leave '# Code generated ... DO NOT EDIT.' files untouched",
  )
  parser.add_argument("--config", type=Path, default=None, dest="config_file", help="TOML configuration file")
  parser.add_argument(
    "--pattern",
    nargs="*",
    help="Signature pattern overrides in key=value format (e.g. context_name=context error_type=Error)",
  )
  parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")


def main(argv: Optional[List[str]] = None) -> int:
  """
  Main CLI entry point.

  Parses arguments via argparse and calls the appropriate handler function.

  Args:
      argv: Optional list of command line arguments (defaults to sys.argv).

  Returns:
      int: Exit code (0 for success, non-zero for failure).
  """
  parser = argparse.ArgumentParser(description="py-instrument: request-context instrumentation rewriter")
  parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

  subparsers = parser.add_subparsers(dest="command", required=True)

  # --- Command: INSTRUMENT ---
  cmd_inst = subparsers.add_parser("instrument", help="Insert the prologue into matching functions")
  _add_config_arguments(cmd_inst)
  cmd_inst.add_argument(
    "--print",
    action="store_true",
    dest="print_output",
    help="In dry-run mode, print the rewritten sources to stdout",
  )
  cmd_inst.add_argument(
    "--json-trace", type=Path, default=None, help="Dump the per-file execution traces to a JSON file."
  )

  # --- Command: SHOW-CONFIG ---
  cmd_show = subparsers.add_parser("show-config", help="Print the resolved configuration")
  _add_config_arguments(cmd_show)

  args = parser.parse_args(argv)

  if args.verbose:
    console.set_level(logging.DEBUG)

  try:
    pattern_overrides = parse_cli_key_values(args.pattern)
  except ConfigError as e:
    log_error(escape(str(e)))
    return 1

  config_args = dict(
    app=args.app,
    overwrite=args.overwrite,
    default_select=args.default_select,
    skip_generated=args.skip_generated,
    workers=args.workers,
    config_file=args.config_file,
    pattern_overrides=pattern_overrides,
  )

  if args.command == "instrument":
    if not args.paths:
      parser.error("instrument: at least one path is required")
    return commands.handle_instrument(
      args.paths, print_output=args.print_output, json_trace_path=args.json_trace, **config_args
    )

  elif args.command == "show-config":
    return commands.handle_show_config(args.paths, **config_args)

  return 0


if __name__ == "__main__":
  sys.exit(main())
