"""
Instrumenter Interface.

An :class:`Instrumenter` is the pluggable producer of the prologue inserted at
the top of a matched function, and of the imports that prologue depends on.
Implementations are stateless after construction, so one instance can be
shared by every worker.

The default :class:`OpenTelemetryInstrumenter` records an event on the span
carried by the request context::

    span = trace.get_current_span(ctx)
    span.add_event("Service.fetch", {"instrument.app": "app"})
"""

import json
from abc import ABC, abstractmethod
from typing import List

import libcst as cst

from py_instrument.config import DEFAULT_TRACE_PATTERN
from py_instrument.core.imports import ImportSpec

APP_ATTRIBUTE = "instrument.app"
STATUS_ATTRIBUTE = "instrument.status"
SPAN_VARIABLE = "span"


class Instrumenter(ABC):
  """
  Abstract contract for prologue providers.
  """

  @abstractmethod
  def imports(self) -> List[ImportSpec]:
    """
    Lists the imports the prologue statements reference.

    Returns:
        The required imports. Added once per file, only when a patch was applied.
    """
    pass

  @abstractmethod
  def prefix_statements(self, span_name: str, has_error: bool) -> List[cst.BaseStatement]:
    """
    Builds the statements inserted at the top of a matched function.

    Args:
        span_name: ``Class.method`` or ``function`` of the target.
        has_error: True if the function returns a status.

    Returns:
        The prologue statements. An empty list means no patch.
    """
    pass


class OpenTelemetryInstrumenter(Instrumenter):
  """
  Emits span events through the OpenTelemetry tracing API.

  Attributes:
      tracer_name: Application label attached to every event.
      context_name: Name of the carrier parameter the span is read from.
      error_name: Name the status result is reported under.
  """

  def __init__(
    self,
    tracer_name: str = "app",
    context_name: str = DEFAULT_TRACE_PATTERN.context_name,
    error_name: str = DEFAULT_TRACE_PATTERN.error_name,
  ) -> None:
    self.tracer_name = tracer_name
    self.context_name = context_name
    self.error_name = error_name

  def imports(self) -> List[ImportSpec]:
    return [ImportSpec(name="trace", path="opentelemetry.trace")]

  def prefix_statements(self, span_name: str, has_error: bool) -> List[cst.BaseStatement]:
    attributes = {APP_ATTRIBUTE: self.tracer_name}
    if has_error and self.error_name:
      attributes[STATUS_ATTRIBUTE] = self.error_name

    # json.dumps yields double-quoted literals that are also valid Python
    rendered = ", ".join(f"{json.dumps(k)}: {json.dumps(v)}" for k, v in attributes.items())
    return [
      cst.parse_statement(f"{SPAN_VARIABLE} = trace.get_current_span({self.context_name})\n"),
      cst.parse_statement(f"{SPAN_VARIABLE}.add_event({json.dumps(span_name)}, {{{rendered}}})\n"),
    ]
