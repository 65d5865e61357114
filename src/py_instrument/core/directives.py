"""
Directive Reader.

Reads the ``# instrument:`` comment directives of a parsed module:

- **Build directives** live in the file header: the comments before the
  first statement, or right after a leading module docstring::

      # instrument:build sys_platform == "linux"

  The constraint is a PEP 508 environment marker evaluated against the host
  interpreter. A bare word (``ignore``, ``integration``) is an unknown tag.
  Either an unknown tag or a marker that evaluates false skips the file.

- **Commands** sit in the comment block directly above a ``def`` (or between
  its decorators) and force-include or force-exclude that function::

      # instrument:skip
      def health(ctx: context.Context) -> None: ...

- **Generated-file marker**: a header line ``# Code generated <tool>. DO NOT EDIT.``

Any other ``# instrument:`` comment line is a misplaced directive and is
rejected. Directives are facts read once per file; reading them never touches
the tree.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Set

import libcst as cst
from packaging.markers import InvalidMarker, Marker, UndefinedEnvironmentName

from py_instrument.core.units import FunctionUnitCollector, is_docstring
from py_instrument.enums import CommandKind
from py_instrument.errors import DirectiveError

DIRECTIVE_RE = re.compile(r"^#\s*instrument:(?P<keyword>\S*)(?P<rest>.*)$")
GENERATED_RE = re.compile(r"^# Code generated .* DO NOT EDIT\.$")
BUILD_KEYWORD = "build"

_BARE_TAG_RE = re.compile(r"^[A-Za-z_][\w.-]*$")


@dataclass(frozen=True)
class BuildDirective:
  """
  A file-level build constraint.

  Attributes:
      value: The raw constraint text.
      marker: The parsed PEP 508 marker, or None for a bare tag.
  """

  value: str
  marker: Optional[Marker] = field(default=None, compare=False)

  @classmethod
  def parse(cls, value: str) -> "BuildDirective":
    """
    Parses the constraint text of a ``# instrument:build`` line.

    Raises:
        DirectiveError: If the constraint is empty or not a valid marker.
    """
    constraint = value.strip()
    if not constraint:
      raise DirectiveError("empty '# instrument:build' constraint")
    if _BARE_TAG_RE.match(constraint):
      return cls(value=constraint)
    try:
      return cls(value=constraint, marker=Marker(constraint))
    except InvalidMarker as e:
      raise DirectiveError(f"invalid build constraint '{constraint}': {e}") from e

  def skip_file(self) -> bool:
    """
    True when the host environment cannot satisfy the constraint.

    Unknown tags and markers referencing unknown environment names are
    treated conservatively as unsatisfiable.
    """
    if self.marker is None:
      return True
    try:
      return not self.marker.evaluate()
    except UndefinedEnvironmentName:
      return True


@dataclass(frozen=True)
class Command:
  """
  A per-function directive.

  Attributes:
      kind: SELECT (force-include) or SKIP (force-exclude).
      function_name: Selector key of the function the directive precedes.
  """

  kind: CommandKind
  function_name: str

  @property
  def selected(self) -> bool:
    return self.kind is CommandKind.SELECT


def _comment_lines(lines: Iterable[cst.EmptyLine]) -> List[str]:
  return [line.comment.value for line in lines if line.comment is not None]


def _trailing_comment_block(lines: Sequence[cst.EmptyLine]) -> List[cst.EmptyLine]:
  """
  Returns the contiguous comment lines directly above a statement.

  A blank line ends the block: comments separated from the ``def`` by an
  empty line do not belong to it.
  """
  block: List[cst.EmptyLine] = []
  for line in reversed(lines):
    if line.comment is None:
      break
    block.append(line)
  block.reverse()
  return block


def _match(comment: str) -> Optional[re.Match]:
  return DIRECTIVE_RE.match(comment.strip())


def is_generated(module: cst.Module) -> bool:
  """
  Checks the module header for the generated-file convention.

  Args:
      module: The parsed module.

  Returns:
      bool: True if a header comment reads ``# Code generated ... DO NOT EDIT.``
  """
  return any(GENERATED_RE.match(c.strip()) for c in _comment_lines(module.header))


def file_header_lines(module: cst.Module) -> List[cst.EmptyLine]:
  """
  Returns the lines where file-level directives may appear.

  That is the module header, plus the lines between a leading module
  docstring and the statement after it.
  """
  lines = list(module.header)
  if len(module.body) > 1 and is_docstring(module.body[0], 0):
    lines.extend(module.body[1].leading_lines)
  return lines


def build_directives(module: cst.Module) -> List[BuildDirective]:
  """
  Reads every ``# instrument:build`` line from the file header.

  Args:
      module: The parsed module.

  Returns:
      List[BuildDirective]: Directives in source order.

  Raises:
      DirectiveError: On a malformed constraint.
  """
  directives = []
  for comment in _comment_lines(file_header_lines(module)):
    m = _match(comment)
    if m and m.group("keyword") == BUILD_KEYWORD:
      directives.append(BuildDirective.parse(m.group("rest")))
  return directives


class CommandCollector(FunctionUnitCollector):
  """
  Collects per-function commands while walking the module.

  Shares the scope tracking of :class:`FunctionUnitCollector`, so the key a
  command is recorded under is exactly the name the selector will be asked
  about (closures map to ``anonymous``).

  Every ``# instrument:`` comment line met during the walk is remembered;
  :meth:`check_placement` rejects those that are neither a file-level build
  line nor attached to a ``def``.
  """

  def __init__(self, module: cst.Module) -> None:
    super().__init__()
    self.commands: List[Command] = []
    self._header = module.header
    self._first_statement = module.body[0] if module.body else None
    self._file_level = {id(line) for line in file_header_lines(module) if _is_build_line(line)}
    self._seen: List[cst.EmptyLine] = []
    self._read_ids: Set[int] = set()

  def visit_EmptyLine(self, node: cst.EmptyLine) -> Optional[bool]:
    if node.comment is not None and _match(node.comment.value):
      self._seen.append(node)
    return False

  def visit_FunctionDef(self, node: cst.FunctionDef) -> Optional[bool]:
    result = super().visit_FunctionDef(node)
    name = self.units[-1].name

    # libcst moves the comments above the first statement into Module.header
    if node is self._first_statement:
      self._read(_trailing_comment_block(self._header), name)

    self._read(_trailing_comment_block(node.leading_lines), name)
    for decorator in node.decorators:
      self._read([line for line in decorator.leading_lines if line.comment is not None], name)
    self._read([line for line in node.lines_after_decorators if line.comment is not None], name)
    return result

  def _read(self, lines: Sequence[cst.EmptyLine], name: str) -> None:
    for line in lines:
      comment = line.comment.value
      m = _match(comment)
      if not m:
        continue
      self._read_ids.add(id(line))
      if id(line) in self._file_level:
        continue
      keyword, rest = m.group("keyword"), m.group("rest").strip()

      if keyword == BUILD_KEYWORD:
        raise DirectiveError(f"'{comment}' above '{name}': build directives belong in the module header")

      try:
        kind = CommandKind(keyword)
      except ValueError:
        raise DirectiveError(f"unknown directive '{comment}' above '{name}'") from None
      if rest:
        raise DirectiveError(f"unexpected arguments in '{comment}' above '{name}'")

      self.commands.append(Command(kind=kind, function_name=name))

  def check_placement(self) -> None:
    """
    Rejects directive lines that are neither file-level nor attached to a ``def``.

    Raises:
        DirectiveError: For the first directive line in source order that
            nothing claimed.
    """
    for line in self._seen:
      if id(line) in self._file_level or id(line) in self._read_ids:
        continue
      comment = line.comment.value.strip()
      keyword = _match(comment).group("keyword")
      if keyword == BUILD_KEYWORD:
        raise DirectiveError(f"'{comment}': build directives belong in the module header")
      if keyword not in {kind.value for kind in CommandKind}:
        raise DirectiveError(f"unknown directive '{comment}'")
      raise DirectiveError(f"'{comment}' is not directly above a function definition")


def _is_build_line(line: cst.EmptyLine) -> bool:
  if line.comment is None:
    return False
  m = _match(line.comment.value)
  return bool(m) and m.group("keyword") == BUILD_KEYWORD


def commands(module: cst.Module) -> List[Command]:
  """
  Reads the per-function directives of a module in source order.

  Args:
      module: The parsed module.

  Returns:
      List[Command]: Commands in traversal order; later entries win for the same name.

  Raises:
      DirectiveError: On an unknown keyword, stray arguments, a misplaced
          build directive or a command not attached to a ``def``.
  """
  collector = CommandCollector(module)
  module.visit(collector)
  collector.check_placement()
  return collector.commands
