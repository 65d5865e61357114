"""
py-instrument Package.

A source rewriter that inserts an OpenTelemetry prologue at the top of every
function whose signature carries a request context (``ctx: context.Context``),
adds the imports the prologue needs and re-emits canonically formatted code.

Usage
-----

Simple String Instrumentation
^^^^^^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    import py_instrument as pi
    code = "def fetch(ctx: context.Context, key):\\n    return key\\n"
    print(pi.instrument_code(code, app="billing"))
    # from opentelemetry import trace
    # def fetch(ctx: context.Context, key):
    #     span = trace.get_current_span(ctx)
    #     span.add_event("fetch", {"instrument.app": "billing"})
    #     return key

Batch Processing (Driver)
^^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    from py_instrument import TraceConfig, new_processor, list_file_names

    config = TraceConfig(app="billing", overwrite=True, workers=4)
    processor = new_processor(config.workers)
    results = processor.process(list_file_names(["src/"]), config)
"""

from typing import Optional

from py_instrument.config import DEFAULT_TRACE_CONFIG, TraceConfig, TracePattern
from py_instrument.core.driver import new_processor
from py_instrument.core.result import FileResult
from py_instrument.core.rewriter import FileProcessor, parse_code
from py_instrument.discovery import list_file_names

__version__ = "0.1.0"


def instrument_code(
  code: str,
  app: str = "app",
  default_select: bool = True,
  pattern: Optional[TracePattern] = None,
) -> str:
  """
  Instruments a string of Python code.

  This is a high-level convenience wrapper around the `FileProcessor`. For
  file-based or batch processing, use `py_instrument.cli` or `new_processor`.
  Build and generated-file directives are honoured: a skipped module is
  returned unchanged.

  Args:
      code (str): The source code to rewrite.
      app (str): Application label attached to every event.
      default_select (bool): Instrument functions without an explicit directive.
      pattern (TracePattern, optional): Carrier/status pattern override.

  Returns:
      str: The rewritten, canonically formatted code.

  Raises:
      InstrumentError: If the code does not parse or a directive is malformed.
  """
  config = DEFAULT_TRACE_CONFIG.model_copy(update={"app": app, "default_select": default_select})
  if pattern is not None:
    config = config.model_copy(update={"pattern": pattern})

  source = parse_code(code)
  outcome, module, _ = FileProcessor().rewrite(source, config)
  if outcome.is_skip:
    return code
  return module.code


__all__ = [
  "FileProcessor",
  "FileResult",
  "TraceConfig",
  "TracePattern",
  "instrument_code",
  "list_file_names",
  "new_processor",
  "__version__",
]
