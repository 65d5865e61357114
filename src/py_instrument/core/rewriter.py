"""
File Rewriter.

Turns one path into one :class:`FileResult`. Each file moves through::

    Unparsed -> Parsed -> (SkippedGenerated | SkippedBuild | Patched | Unpatched) -> Serialized

1.  **Parse**: read bytes, parse with LibCST, canonicalise the layout and
    re-parse the canonical text so tree and text agree.
2.  **Directives**: generated-file marker and build constraints may stop the
    file here (no output, no error). Per-function commands build the selector.
3.  **Patch**: every selected function carrying the request-context parameter
    receives the instrumenter's prologue (collected on the original tree,
    applied in one pass).
4.  **Imports**: the prologue's imports are added once, only if a patch was applied.
5.  **Serialise**: overwrite the file atomically, or write the result to the
    process-wide output sink (dry-run).
"""

import logging
import os
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

import libcst as cst

from py_instrument.config import TraceConfig, TracePattern
from py_instrument.core.directives import build_directives, commands, is_generated
from py_instrument.core.formatting import canonicalize
from py_instrument.core.imports import ImportInjector, capture_node_source
from py_instrument.core.instrumenter import Instrumenter, OpenTelemetryInstrumenter
from py_instrument.core.matcher import function_has_context, function_has_error
from py_instrument.core.patcher import Patch, PatchApplier, body_starts_with
from py_instrument.core.result import FileResult
from py_instrument.core.selector import FunctionSelector, MapFunctionSelector
from py_instrument.core.tracer import TraceLogger
from py_instrument.core.units import collect_function_units
from py_instrument.enums import Outcome
from py_instrument.errors import InstrumentError, SourceReadError, SourceSyntaxError, SourceWriteError

logger = logging.getLogger(__name__)

InstrumenterFactory = Callable[[TraceConfig, TracePattern], Instrumenter]


class _DiscardOutput:
  """Sink that drops everything written to it."""

  def write(self, data: str) -> int:
    return len(data)


_DISCARD = _DiscardOutput()
_default_output: Any = _DISCARD
_output_lock = threading.Lock()


def set_default_output(out: Any) -> None:
  """
  Redirects dry-run output (e.g. to ``sys.stdout`` or a ``StringIO``).

  Args:
      out: Any object with a ``write(str)`` method.
  """
  global _default_output
  _default_output = out


def reset_default_output() -> None:
  """Restores the discarding sink."""
  set_default_output(_DISCARD)


def get_default_output() -> Any:
  return _default_output


def _emit(code: str) -> None:
  # One write per file, so parallel workers never interleave a file's text
  with _output_lock:
    _default_output.write(code)


def default_instrumenter(config: TraceConfig, pattern: TracePattern) -> Instrumenter:
  """Builds the OpenTelemetry instrumenter for a run."""
  return OpenTelemetryInstrumenter(
    tracer_name=config.app,
    context_name=pattern.context_name,
    error_name=pattern.error_name,
  )


@dataclass
class SourceFile:
  """
  A parsed file.

  Attributes:
      path: Where the source was read from.
      text: The canonical source text.
      tree: The module parsed from exactly ``text``.
  """

  path: str
  text: str
  tree: cst.Module


def parse_code(code: Union[str, bytes], path: str = "<string>") -> SourceFile:
  """
  Parses source text, returning its canonical form.

  Args:
      code: Python source. Bytes honour the PEP 263 encoding cookie.
      path: Label used for the SourceFile and in errors.

  Returns:
      SourceFile: The canonical text and its tree.

  Raises:
      SourceSyntaxError: If the code is not valid Python.
  """
  try:
    canonical = canonicalize(cst.parse_module(code))
    # The canonical tree is rebuilt from its own bytes so node identities match the text
    tree = cst.parse_module(canonical.bytes)
  except cst.ParserSyntaxError as e:
    raise SourceSyntaxError(f"invalid syntax: {e.message} (line {e.raw_line}, column {e.raw_column})", path) from e
  except (SyntaxError, UnicodeDecodeError, LookupError) as e:
    # Undecodable bytes or an unknown PEP 263 coding cookie
    raise SourceSyntaxError(f"cannot decode source: {e}", path) from e
  return SourceFile(path=path, text=tree.code, tree=tree)


def parse_source(path: str, tracer: Optional[TraceLogger] = None) -> SourceFile:
  """
  Reads and parses a file, returning its canonical form.

  Args:
      path: File to read.
      tracer: Optional trace sink.

  Returns:
      SourceFile: The canonical text and its tree.

  Raises:
      SourceReadError: If the file cannot be read.
      SourceSyntaxError: If the file is not valid Python.
  """
  if tracer:
    tracer.start_phase("Parse", path)
  try:
    raw = Path(path).read_bytes()
  except OSError as e:
    raise SourceReadError(f"cannot read file: {e.strerror or e}", path) from e

  source = parse_code(raw, path)
  if tracer:
    tracer.end_phase()
  return source


def write_atomic(path: str, data: bytes) -> None:
  """
  Replaces a file's content through a temporary file next to it.

  Mode bits of the original file are preserved. The temporary file is
  removed if anything fails.

  Args:
      path: The file to replace.
      data: The new content.

  Raises:
      SourceWriteError: If the file cannot be replaced.
  """
  # Write through symlinks: the link stays, its target is replaced
  target = Path(path).resolve()
  tmp_path: Optional[Path] = None
  try:
    with tempfile.NamedTemporaryFile(mode="wb", dir=str(target.parent), prefix=f".{target.name}.", delete=False) as f:
      tmp_path = Path(f.name)
      f.write(data)
      f.flush()
    if target.exists():
      os.chmod(tmp_path, target.stat().st_mode & 0o7777)
    os.replace(tmp_path, target)
  except OSError as e:
    if tmp_path is not None:
      tmp_path.unlink(missing_ok=True)
    raise SourceWriteError(f"cannot write file: {e.strerror or e}", path) from e


class FileProcessor:
  """
  Rewrites single files.

  Holds no per-file state between calls, but is not meant to be shared
  between threads: the parallel driver gives each worker its own instance.

  Attributes:
      pattern: Signature pattern. None means "use ``config.pattern``".
      instrumenter_factory: Builds the instrumenter for a run's config.
  """

  def __init__(
    self,
    pattern: Optional[TracePattern] = None,
    instrumenter_factory: Optional[InstrumenterFactory] = None,
  ) -> None:
    self.pattern = pattern
    self.instrumenter_factory = instrumenter_factory or default_instrumenter

  def process(self, file_name: str, config: TraceConfig) -> FileResult:
    """
    Runs the full pipeline on one file.

    Args:
        file_name: The file to rewrite.
        config: Per-invocation settings.

    Returns:
        FileResult: The outcome, the serialised code and the trace.

    Raises:
        InstrumentError: Any fatal per-file failure, tagged with ``file_name``.
    """
    tracer = TraceLogger()
    try:
      return self._process(file_name, config, tracer)
    except InstrumentError as e:
      if e.path is None:
        e.path = file_name
      raise

  def _process(self, file_name: str, config: TraceConfig, tracer: TraceLogger) -> FileResult:
    source = parse_source(file_name, tracer)
    outcome, module, patched = self.rewrite(source, config, tracer)

    if outcome.is_skip:
      logger.debug(f"{file_name}: {outcome.value}")
      return FileResult(path=file_name, outcome=outcome, trace_events=tracer.export())

    tracer.start_phase("Serialise", "overwrite" if config.overwrite else "dry-run")
    if config.overwrite:
      write_atomic(file_name, module.bytes)
    else:
      _emit(module.code)
    tracer.end_phase()

    logger.debug(f"{file_name}: {outcome.value} ({len(patched)} functions)")
    return FileResult(
      path=file_name,
      outcome=outcome,
      code=module.code,
      patched_functions=patched,
      trace_events=tracer.export(),
    )

  def rewrite(
    self, source: SourceFile, config: TraceConfig, tracer: Optional[TraceLogger] = None
  ) -> Tuple[Outcome, cst.Module, List[str]]:
    """
    Runs the directive, patch and import stages on a parsed file.

    Nothing is written: serialisation is left to the caller.

    Args:
        source: The parsed, canonical file.
        config: Per-invocation settings.
        tracer: Optional trace sink.

    Returns:
        Tuple[Outcome, cst.Module, List[str]]: The outcome, the resulting
        module (the unchanged tree for skips) and the patched span names.

    Raises:
        DirectiveError: On malformed directives.
        MalformedTreeError: If the patches do not fit the tree.
    """
    tracer = tracer or TraceLogger()
    pattern = self.pattern or config.pattern

    tracer.start_phase("Directives")
    skipped = self._skip_outcome(source, config, tracer)
    if skipped is not None:
      tracer.end_phase()
      return skipped, source.tree, []
    selector = MapFunctionSelector.from_commands(config.default_select, commands(source.tree))
    tracer.end_phase()

    instrumenter = self.instrumenter_factory(config, pattern)

    tracer.start_phase("Patch")
    patches = self.collect_patches(source, selector, pattern, instrumenter, tracer)
    module = source.tree
    patched: List[str] = []
    if patches:
      applier = PatchApplier(patches, tracer)
      module = module.visit(applier)
      applier.check_consumed()
      patched = applier.applied
    tracer.end_phase()

    if patched:
      tracer.start_phase("Imports")
      injector = ImportInjector(instrumenter.imports())
      module = module.visit(injector)
      for spec in injector.added:
        tracer.log_import(capture_node_source(spec.to_statement()).strip())
      tracer.end_phase()

    return (Outcome.PATCHED if patched else Outcome.UNPATCHED), module, patched

  def _skip_outcome(self, source: SourceFile, config: TraceConfig, tracer: TraceLogger) -> Optional[Outcome]:
    if config.skip_generated and is_generated(source.tree):
      tracer.log_skip(Outcome.SKIPPED_GENERATED.value, "generated file")
      return Outcome.SKIPPED_GENERATED

    for directive in build_directives(source.tree):
      if directive.skip_file():
        tracer.log_skip(Outcome.SKIPPED_BUILD.value, f"build constraint '{directive.value}'")
        return Outcome.SKIPPED_BUILD
    return None

  def collect_patches(
    self,
    source: SourceFile,
    selector: FunctionSelector,
    pattern: TracePattern,
    instrumenter: Instrumenter,
    tracer: Optional[TraceLogger] = None,
  ) -> List[Patch]:
    """
    Computes the patches of a file against its original tree.

    Args:
        source: The parsed file.
        selector: Selection policy with per-function overrides.
        pattern: Carrier and status pattern.
        instrumenter: Prologue provider.
        tracer: Optional trace sink.

    Returns:
        List[Patch]: At most one patch per function, in traversal order.
    """
    patches = []
    for unit in collect_function_units(source.tree):
      if unit.body is None:
        continue
      if not selector.accept_function(unit.name):
        if tracer:
          tracer.log_inspection(unit.span_name, "not selected")
        continue
      if not function_has_context(unit, pattern):
        if tracer:
          tracer.log_inspection(unit.span_name, "no carrier parameter")
        continue

      statements = instrumenter.prefix_statements(unit.span_name, function_has_error(unit, pattern))
      if not statements:
        continue
      if body_starts_with(unit.body, statements):
        if tracer:
          tracer.log_inspection(unit.span_name, "already instrumented")
        continue

      patches.append(Patch(body=unit.body, statements=statements, span_name=unit.span_name))
    return patches
