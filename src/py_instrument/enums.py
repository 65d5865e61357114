"""
Enumerations for py-instrument.

This module defines the standard enumerations used across the codebase for
per-file outcomes and directive keywords.
"""

from enum import Enum


class Outcome(str, Enum):
  """
  Terminal state reached by a single file in the rewriting pipeline.

  Skipped outcomes are not errors: they produce no output and do not affect
  the result of a batch.
  """

  PATCHED = "patched"
  UNPATCHED = "unpatched"
  SKIPPED_GENERATED = "skipped_generated"
  SKIPPED_BUILD = "skipped_build"

  @property
  def is_skip(self) -> bool:
    return self in (Outcome.SKIPPED_GENERATED, Outcome.SKIPPED_BUILD)


class CommandKind(str, Enum):
  """
  Per-function directive keywords (``# instrument:<kind>``).
  """

  SELECT = "select"  # force-include
  SKIP = "skip"  # force-exclude
