"""
Error Taxonomy.

Every fatal, per-file failure raised by the rewriting engine derives from
:class:`InstrumentError` and carries the path of the file being processed, so
the driver and CLI can report *which* file failed and why.

Skip outcomes (generated files, unsatisfiable build constraints) are not errors
and never appear here; they are reported through ``FileResult.outcome``.
"""

from typing import Optional


class InstrumentError(Exception):
  """
  Base class for fatal per-file processing failures.

  Attributes:
      path: The file being processed when the error occurred (may be None
          for in-memory sources).
  """

  def __init__(self, message: str, path: Optional[str] = None) -> None:
    super().__init__(message)
    self.message = message
    self.path = path

  def __str__(self) -> str:
    if self.path:
      return f"{self.path}: {self.message}"
    return self.message


class SourceReadError(InstrumentError):
  """The input path is missing or unreadable."""


class SourceSyntaxError(InstrumentError):
  """The file does not parse as valid Python."""


class DirectiveError(InstrumentError):
  """An ``# instrument:`` directive comment is malformed."""


class MalformedTreeError(InstrumentError):
  """A patch references a node that is not reachable in the tree."""


class PatchConflictError(MalformedTreeError):
  """Two patches target the same function body."""


class SourceWriteError(InstrumentError):
  """The rewritten source could not replace the original file."""


class ConfigError(ValueError):
  """Invalid configuration values (CLI, environment or TOML)."""
