"""
Patch Applier.

Patches are computed against the original tree and applied in a single
transformer pass. A :class:`Patch` is keyed by the identity of the original
function body node, which libcst hands back as ``original_node.body`` in
``leave_FunctionDef`` however many nodes around it have been rebuilt.

Insertion rules:
1.  The prologue goes first, after the docstring if the function has one.
2.  One-line bodies (``def f(ctx): return 1``) become indented blocks.
3.  Existing statements follow unchanged.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

import libcst as cst

from py_instrument.core.imports import capture_node_source, get_signature
from py_instrument.core.tracer import TraceLogger
from py_instrument.core.units import is_docstring
from py_instrument.errors import MalformedTreeError, PatchConflictError


@dataclass(frozen=True)
class Patch:
  """
  A pending prologue insertion.

  Attributes:
      body: The original body suite of the target function.
      statements: The prologue, in order.
      span_name: Display name of the target (for logs and traces).
  """

  body: cst.BaseSuite
  statements: Sequence[cst.BaseStatement]
  span_name: str


def convert_to_indented_block(body: cst.BaseSuite) -> cst.IndentedBlock:
  """
  Converts a one-line suite into an indented block.

  Necessary when injecting statements into ``def f(ctx): pass``. An inline
  comment after the suite moves up to the ``def`` line.

  Args:
      body: The function body.

  Returns:
      cst.IndentedBlock: The body as a block.
  """
  if isinstance(body, cst.IndentedBlock):
    return body

  lines = []
  for stmt in body.body:
    lines.append(cst.SimpleStatementLine(body=[stmt.with_changes(semicolon=cst.MaybeSentinel.DEFAULT)]))
  return cst.IndentedBlock(header=body.trailing_whitespace, body=lines)


def _statements_after_docstring(body: cst.BaseSuite) -> Sequence[cst.BaseStatement]:
  if not isinstance(body, cst.IndentedBlock):
    return ()
  stmts = body.body
  if stmts and is_docstring(stmts[0], 0):
    return stmts[1:]
  return stmts


def body_starts_with(body: cst.BaseSuite, statements: Sequence[cst.BaseStatement]) -> bool:
  """
  Checks whether a body already begins with the given statements.

  The docstring is ignored and the comparison is insensitive to layout, so a
  prologue inserted by a previous run is recognised.

  Args:
      body: The function body.
      statements: The expected leading statements.

  Returns:
      bool: True if every statement matches in order.
  """
  existing = _statements_after_docstring(body)
  if not statements or len(existing) < len(statements):
    return False
  return all(get_signature(a) == get_signature(b) for a, b in zip(existing, statements))


def insert_prologue(body: cst.BaseSuite, statements: Sequence[cst.BaseStatement]) -> cst.IndentedBlock:
  """
  Inserts statements at the top of a body, after its docstring.

  Args:
      body: The (possibly already transformed) body.
      statements: The prologue.

  Returns:
      cst.IndentedBlock: The new body.
  """
  block = convert_to_indented_block(body)
  stmts = list(block.body)
  insert_idx = 1 if stmts and is_docstring(stmts[0], 0) else 0
  stmts[insert_idx:insert_idx] = list(statements)
  return block.with_changes(body=stmts)


class PatchApplier(cst.CSTTransformer):
  """
  Applies a batch of patches in one pass.

  Attributes:
      applied (List[str]): Span names of consumed patches, in traversal order.
  """

  def __init__(self, patches: Iterable[Patch], tracer: Optional[TraceLogger] = None) -> None:
    self._patches: Dict[int, Patch] = {}
    for patch in patches:
      key = id(patch.body)
      if key in self._patches:
        raise PatchConflictError(f"two patches target the body of '{patch.span_name}'")
      self._patches[key] = patch
    self._pending = set(self._patches)
    self._tracer = tracer
    self.applied: List[str] = []

  def leave_FunctionDef(self, original_node: cst.FunctionDef, updated_node: cst.FunctionDef) -> cst.FunctionDef:
    patch = self._patches.get(id(original_node.body))
    if patch is None or patch.body is not original_node.body:
      return updated_node

    self._pending.discard(id(original_node.body))
    result = updated_node.with_changes(body=insert_prologue(updated_node.body, patch.statements))
    self.applied.append(patch.span_name)
    if self._tracer:
      self._tracer.log_patch(patch.span_name, capture_node_source(original_node), capture_node_source(result))
    return result

  def check_consumed(self) -> None:
    """
    Verifies that every patch found its target.

    Raises:
        MalformedTreeError: If a patch body was not reachable in the tree.
    """
    if self._pending:
      names = sorted(self._patches[key].span_name for key in self._pending)
      raise MalformedTreeError(f"patch target not found in tree: {', '.join(names)}")


def apply_patches(
  module: cst.Module, patches: Iterable[Patch], tracer: Optional[TraceLogger] = None
) -> cst.Module:
  """
  Applies every patch to the module in a single traversal.

  Args:
      module: The original module the patches were computed against.
      patches: Patches, at most one per function body.
      tracer: Optional trace sink for per-patch events.

  Returns:
      cst.Module: The patched module.

  Raises:
      PatchConflictError: If two patches target the same body.
      MalformedTreeError: If a patch targets a body that is not in ``module``.
  """
  applier = PatchApplier(patches, tracer)
  patched = module.visit(applier)
  applier.check_consumed()
  return patched
