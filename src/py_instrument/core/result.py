"""
Data structures representing the output of the rewriting pipeline.

This module defines the `FileResult` Pydantic model, which encapsulates
the terminal state of one file, the serialised code and the execution trace.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from py_instrument.enums import Outcome


class FileResult(BaseModel):
  """
  Container for the result of processing a single file.
  """

  path: str = Field(description="The processed file.")
  outcome: Outcome = Field(description="Terminal state reached by the file.")
  code: str = Field(default="", description="The serialised source. Empty for skipped files.")
  patched_functions: List[str] = Field(
    default_factory=list,
    description="Span names of the functions that received a prologue, in traversal order.",
  )
  trace_events: List[Dict[str, Any]] = Field(default_factory=list, description="Execution trace log data.")

  @property
  def is_skipped(self) -> bool:
    """
    Check if the file was left untouched by a directive.

    Returns:
        True for generated files and unsatisfied build constraints.
    """
    return self.outcome.is_skip
