"""CLI handlers for config module."""

from pathlib import Path
from typing import Dict, List, Optional

from rich.markup import escape

from py_instrument.cli.handlers.instrument import resolve_config
from py_instrument.errors import ConfigError
from py_instrument.utils.console import log_error


def handle_show_config(
  paths: List[Path],
  app: Optional[str] = None,
  overwrite: Optional[bool] = None,
  default_select: Optional[bool] = None,
  skip_generated: Optional[bool] = None,
  workers: Optional[int] = None,
  config_file: Optional[Path] = None,
  pattern_overrides: Optional[Dict[str, str]] = None,
) -> int:
  """Handles 'show-config' command: prints the resolved configuration as JSON."""
  try:
    config = resolve_config(
      paths, app, overwrite, default_select, skip_generated, workers, config_file, pattern_overrides
    )
  except ConfigError as e:
    log_error(escape(str(e)))
    return 1

  print(config.model_dump_json(indent=2))
  return 0
