"""
CLI Command Handlers Facade.

This module re-exports handlers from `py_instrument.cli.handlers` so the
dispatcher and tests have a single patch target.
"""

from py_instrument.cli.handlers.config import handle_show_config
from py_instrument.cli.handlers.instrument import (
  _print_batch_summary,
  handle_instrument,
)

__all__ = [
  "_print_batch_summary",
  "handle_instrument",
  "handle_show_config",
]
