"""
Processing Trace Logger.

This module records the step-by-step handling of one file. It captures:
1. Lifecycle Phases (Parse, Directives, Patch, Imports, Serialise).
2. Skip decisions (generated file, unsatisfied build constraint).
3. Per-function decisions (patched, not selected, no carrier parameter).

One logger is owned by each ``FileProcessor.process`` call, so parallel
workers never share one. The output is a list of dictionaries suitable for
JSON serialization.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TraceEventType(str, Enum):
  PHASE_START = "phase_start"
  PHASE_END = "phase_end"
  FILE_SKIPPED = "file_skipped"
  PATCH_APPLIED = "patch_applied"
  IMPORT_ACTION = "import_action"
  INSPECTION = "inspection"


@dataclass
class TraceEvent:
  id: str
  type: TraceEventType
  timestamp: float
  description: str
  parent_id: Optional[str] = None
  metadata: Dict[str, Any] = field(default_factory=dict)


class TraceLogger:
  """
  Records processing events of a single file.
  """

  def __init__(self) -> None:
    self._events: List[TraceEvent] = []
    self._active_phases: List[str] = []  # Stack of phase IDs

  def start_phase(self, name: str, description: str = "") -> str:
    """Starts a nested phase (e.g., 'Parse'). Returns Phase ID."""
    phase_id = str(uuid.uuid4())
    parent = self._active_phases[-1] if self._active_phases else None

    self._events.append(
      TraceEvent(
        id=phase_id,
        type=TraceEventType.PHASE_START,
        timestamp=time.time(),
        description=name,
        parent_id=parent,
        metadata={"detail": description},
      )
    )
    self._active_phases.append(phase_id)
    return phase_id

  def end_phase(self) -> None:
    """Ends the current active phase."""
    if not self._active_phases:
      return

    phase_id = self._active_phases.pop()
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()),
        type=TraceEventType.PHASE_END,
        timestamp=time.time(),
        description="End Phase",
        parent_id=phase_id,
      )
    )

  def log_skip(self, outcome: str, reason: str) -> None:
    """Logs the decision to leave a whole file untouched."""
    self._log_simple(TraceEventType.FILE_SKIPPED, f"Skipped: {reason}", {"outcome": outcome})

  def log_patch(self, span_name: str, before: str, after: str) -> None:
    """Logs a prologue insertion."""
    self._log_simple(TraceEventType.PATCH_APPLIED, f"Instrumented {span_name}", {"before": before, "after": after})

  def log_import(self, statement: str) -> None:
    self._log_simple(TraceEventType.IMPORT_ACTION, f"Added '{statement}'", {"statement": statement})

  def log_inspection(self, node_str: str, outcome: str, detail: str = "") -> None:
    """Logs a decision point where no change occurred."""
    self._log_simple(TraceEventType.INSPECTION, f"Inspecting '{node_str}'", {"outcome": outcome, "detail": detail})

  def _log_simple(self, evt_type: TraceEventType, desc: str, meta: Dict[str, Any]) -> None:
    parent = self._active_phases[-1] if self._active_phases else None
    self._events.append(
      TraceEvent(
        id=str(uuid.uuid4()), type=evt_type, timestamp=time.time(), description=desc, parent_id=parent, metadata=meta
      )
    )

  def export(self) -> List[Dict[str, Any]]:
    """Returns list of dicts for JSON serialization."""
    return [asdict(e) for e in self._events]
