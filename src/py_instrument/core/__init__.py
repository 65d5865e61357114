"""
Core rewriting engine.

Modules, leaves first:

- ``matcher``: carrier parameter / status result predicates.
- ``directives``: ``# instrument:`` comments and the generated-file marker.
- ``selector``: per-function selection policy.
- ``instrumenter``: prologue providers.
- ``patcher``: single-pass prologue insertion.
- ``rewriter``: the per-file pipeline.
- ``driver``: serial and parallel batch processing.
"""

from py_instrument.core.driver import ParallelProcessor, Processor, SerialProcessor, new_processor
from py_instrument.core.instrumenter import Instrumenter, OpenTelemetryInstrumenter
from py_instrument.core.result import FileResult
from py_instrument.core.rewriter import FileProcessor

__all__ = [
  "FileProcessor",
  "FileResult",
  "Instrumenter",
  "OpenTelemetryInstrumenter",
  "ParallelProcessor",
  "Processor",
  "SerialProcessor",
  "new_processor",
]
