"""
Instrument Command Handler.

This module implements the logic for the `py-instrument instrument` command.
It orchestrates:
1. Configuration loading (pyproject, config file, environment, CLI flags).
2. File discovery.
3. Batch rewriting via the serial or parallel driver.
4. Output (in place or printed) and trace logging.
5. A summary table of the run.
"""

import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

from rich.markup import escape
from rich.table import Table

from py_instrument.config import TraceConfig
from py_instrument.core.driver import new_processor
from py_instrument.core.result import FileResult
from py_instrument.core.rewriter import reset_default_output, set_default_output
from py_instrument.discovery import list_file_names
from py_instrument.enums import Outcome
from py_instrument.errors import ConfigError, InstrumentError
from py_instrument.utils.console import console, log_error, log_info, log_success, log_warning

_OUTCOME_LABELS = {
  Outcome.PATCHED: "[green]patched[/green]",
  Outcome.UNPATCHED: "unchanged",
  Outcome.SKIPPED_GENERATED: "[yellow]skipped (generated)[/yellow]",
  Outcome.SKIPPED_BUILD: "[yellow]skipped (build)[/yellow]",
}


def resolve_config(
  paths: List[Path],
  app: Optional[str] = None,
  overwrite: Optional[bool] = None,
  default_select: Optional[bool] = None,
  skip_generated: Optional[bool] = None,
  workers: Optional[int] = None,
  config_file: Optional[Path] = None,
  pattern_overrides: Optional[Dict[str, str]] = None,
) -> TraceConfig:
  """
  Loads the configuration, searching for pyproject.toml from the first input.

  Raises:
      ConfigError: On invalid values.
  """
  search_path = None
  if paths:
    first = paths[0]
    search_path = first if first.is_dir() else first.parent
  return TraceConfig.load(
    app=app,
    overwrite=overwrite,
    default_select=default_select,
    skip_generated=skip_generated,
    workers=workers,
    pattern_overrides=pattern_overrides,
    config_file=config_file,
    search_path=search_path,
  )


def handle_instrument(
  paths: List[Path],
  app: Optional[str] = None,
  overwrite: Optional[bool] = None,
  default_select: Optional[bool] = None,
  skip_generated: Optional[bool] = None,
  workers: Optional[int] = None,
  config_file: Optional[Path] = None,
  pattern_overrides: Optional[Dict[str, str]] = None,
  print_output: bool = False,
  json_trace_path: Optional[Path] = None,
) -> int:
  """
  Handles the 'instrument' command execution.

  Args:
      paths: Files and directories to rewrite.
      app: Override for the application label.
      overwrite: If True, rewrite the files in place.
      default_select: Override for the selection policy.
      skip_generated: Override for generated-file handling.
      workers: Override for the number of parallel workers.
      config_file: Explicit TOML configuration file.
      pattern_overrides: Carrier/status pattern overrides.
      print_output: In dry-run mode, print the rewritten sources to stdout.
      json_trace_path: Optional path to dump execution traces as JSON.

  Returns:
      int: Exit code (0 for success, 1 for failure).
  """
  try:
    config = resolve_config(
      paths, app, overwrite, default_select, skip_generated, workers, config_file, pattern_overrides
    )
  except ConfigError as e:
    log_error(escape(str(e)))
    return 1

  try:
    file_names = list_file_names(paths)
  except InstrumentError as e:
    log_error(f"Input not found: {escape(str(e))}")
    return 1

  if not file_names:
    log_warning("No .py files found.")
    return 0

  mode = "in place" if config.overwrite else "dry-run"
  log_info(f"Processing {len(file_names)} files ({mode}, {config.workers} workers)...")

  if print_output and not config.overwrite:
    set_default_output(sys.stdout)
  processor = new_processor(config.workers, config.pattern)
  try:
    results = processor.process(file_names, config)
  except InstrumentError as e:
    log_error(f"Failed: {escape(str(e))}")
    return 1
  finally:
    reset_default_output()

  if json_trace_path:
    _write_traces(results, json_trace_path)

  _print_batch_summary(results)
  return 0


def _write_traces(results: List[FileResult], json_trace_path: Path) -> None:
  """
  Dumps the per-file trace events, keyed by path.

  Args:
      results: The batch results.
      json_trace_path: Destination JSON file.
  """
  try:
    json_trace_path.parent.mkdir(parents=True, exist_ok=True)
    with open(json_trace_path, "wt", encoding="utf-8") as f:
      json.dump({r.path: r.trace_events for r in results}, f, indent=2)
    log_info(f"Trace saved to [path]{escape(str(json_trace_path))}[/path]")
  except OSError as e:
    log_error(f"Failed to write trace: {escape(str(e))}")


def _print_batch_summary(results: List[FileResult]) -> None:
  """
  Renders a summary table of the batch to the console.

  Unchanged files are counted but not listed.

  Args:
      results: The batch results.
  """
  total = len(results)
  patched = [r for r in results if r.outcome is Outcome.PATCHED]
  skipped = [r for r in results if r.is_skipped]

  if patched or skipped:
    table = Table(title="Instrumentation Report")
    table.add_column("File", style="cyan")
    table.add_column("Outcome", justify="center")
    table.add_column("Functions")

    for res in results:
      if res.outcome is Outcome.UNPATCHED:
        continue
      table.add_row(escape(res.path), _OUTCOME_LABELS[res.outcome], escape(", ".join(res.patched_functions)))

    console.print(table)

  functions = sum(len(r.patched_functions) for r in patched)
  log_success(
    f"Batch Complete: {len(patched)}/{total} files patched ({functions} functions), {len(skipped)} skipped."
  )
