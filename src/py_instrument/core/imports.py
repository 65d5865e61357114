"""
Import Injection.

Adds the module-level imports an instrumenter's prologue depends on:

1.  **Detection**: existing top-level ``import``/``from ... import`` statements
    are indexed by the name they bind and the module path it refers to, so an
    import that is already present is never added twice.
2.  **Injection**: missing imports are inserted after the leading block of
    docstring, ``from __future__`` imports and other imports.
3.  **Deduplication**: each distinct :class:`ImportSpec` is added at most once,
    however many patched functions asked for it.
"""

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Set, Tuple, Union

import libcst as cst

from py_instrument.core.directives import BUILD_KEYWORD, DIRECTIVE_RE, GENERATED_RE
from py_instrument.core.units import is_docstring

# A dummy module used as a context to render detached nodes.
_RENDER_CTX = cst.parse_module("")


@dataclass(frozen=True)
class ImportSpec:
  """
  An external symbol required by injected code.

  Attributes:
      name: The identifier the injected code refers to (e.g. ``trace``).
      path: The dotted module path it is bound to (e.g. ``opentelemetry.trace``).
  """

  name: str
  path: str

  def to_statement(self) -> cst.SimpleStatementLine:
    """
    Renders the most idiomatic import binding ``name`` to ``path``.

    - ``name == path``: ``import path``
    - ``path`` ends with ``.name``: ``from parent import name``
    - otherwise: ``import path as name``

    Returns:
        cst.SimpleStatementLine: The import statement.
    """
    parent, _, leaf = self.path.rpartition(".")
    if self.name == self.path:
      node = cst.Import(names=[cst.ImportAlias(name=create_dotted_name(self.path))])
    elif parent and leaf == self.name:
      node = cst.ImportFrom(
        module=create_dotted_name(parent),
        names=[cst.ImportAlias(name=cst.Name(leaf))],
      )
    else:
      node = cst.Import(
        names=[
          cst.ImportAlias(
            name=create_dotted_name(self.path),
            asname=cst.AsName(name=cst.Name(self.name)),
          )
        ]
      )
    return cst.SimpleStatementLine(body=[node])


def create_dotted_name(name_str: str) -> Union[cst.Name, cst.Attribute]:
  """
  Creates a CST node structure for a dotted path string.

  Args:
      name_str (str): Dot-separated path (e.g. "opentelemetry.trace").

  Returns:
      Union[cst.Name, cst.Attribute]: The constructed AST node.
  """
  parts = name_str.split(".")
  node: Union[cst.Name, cst.Attribute] = cst.Name(parts[0])
  for part in parts[1:]:
    node = cst.Attribute(value=node, attr=cst.Name(part))
  return node


def get_full_name(node: cst.BaseExpression) -> str:
  """
  Resolves a Name or Attribute chain to a dot-separated string.

  Returns an empty string for anything else.
  """
  if isinstance(node, cst.Name):
    return node.value
  if isinstance(node, cst.Attribute):
    base = get_full_name(node.value)
    return f"{base}.{node.attr.value}" if base else ""
  return ""


def capture_node_source(node: cst.CSTNode) -> str:
  """
  Renders a detached LibCST node into source code.

  Args:
      node: The CST node to serialise.

  Returns:
      str: The Python code string.
  """
  return _RENDER_CTX.code_for_node(node)


def get_signature(node: cst.CSTNode) -> str:
  """
  Computes a whitespace-insensitive signature for a statement.

  Used to compare statements regardless of their position in a file.
  """
  return " ".join(capture_node_source(node).split())


def is_import_line(node: cst.CSTNode) -> bool:
  """True for a statement line made only of import statements."""
  if not isinstance(node, cst.SimpleStatementLine) or not node.body:
    return False
  return all(isinstance(small, (cst.Import, cst.ImportFrom)) for small in node.body)


def import_bindings(body: Sequence[cst.CSTNode]) -> Set[Tuple[str, str]]:
  """
  Indexes the (bound name, module path) pairs of top-level imports.

  ``import a.b`` binds ``("a", "a")``; ``import a.b as x`` binds ``("x", "a.b")``;
  ``from a import b`` binds ``("b", "a.b")``. Relative and star imports are ignored.

  Args:
      body: The module body.

  Returns:
      Set[Tuple[str, str]]: The bindings.
  """
  bindings: Set[Tuple[str, str]] = set()
  for stmt in body:
    if not is_import_line(stmt):
      continue
    for small in stmt.body:
      if isinstance(small, cst.Import):
        for alias in small.names:
          full = get_full_name(alias.name)
          if alias.asname and isinstance(alias.asname.name, cst.Name):
            bindings.add((alias.asname.name.value, full))
          else:
            root = full.split(".")[0]
            bindings.add((root, root))
      elif isinstance(small, cst.ImportFrom):
        if small.relative or small.module is None or isinstance(small.names, cst.ImportStar):
          continue
        module = get_full_name(small.module)
        for alias in small.names:
          leaf = get_full_name(alias.name)
          bound = leaf
          if alias.asname and isinstance(alias.asname.name, cst.Name):
            bound = alias.asname.name.value
          bindings.add((bound, f"{module}.{leaf}"))
  return bindings


def dedupe_specs(specs: Iterable[ImportSpec]) -> List[ImportSpec]:
  """Drops repeated specs, keeping first-seen order."""
  return list(dict.fromkeys(specs))


class ImportInjector(cst.CSTTransformer):
  """
  Transformer adding missing imports at the module level.

  Attributes:
      specs (List[ImportSpec]): Required imports, deduplicated.
      added (List[ImportSpec]): Imports actually inserted by the last run.
  """

  def __init__(self, specs: Iterable[ImportSpec]) -> None:
    self.specs = dedupe_specs(specs)
    self.added: List[ImportSpec] = []

  def leave_Module(self, original_node: cst.Module, updated_node: cst.Module) -> cst.Module:
    """
    Inserts the missing imports after the leading docstring/import block.

    Args:
        original_node: Original module.
        updated_node: Module after children processing.

    Returns:
        Module with the imports added.
    """
    body = list(updated_node.body)
    present = import_bindings(body)
    missing = [spec for spec in self.specs if (spec.name, spec.path) not in present]
    if not missing:
      return updated_node

    insert_idx = 0
    for i, stmt in enumerate(body):
      if is_docstring(stmt, i) or is_import_line(stmt):
        insert_idx = i + 1
        continue
      break

    injections = [spec.to_statement() for spec in missing]
    if insert_idx == 1 and is_docstring(body[0], 0):
      # File-level lines after the docstring stay directly below it, above the imports
      file_level, attached = _split_file_level(body[1].leading_lines) if len(body) > 1 else ([], [])
      injections[0] = injections[0].with_changes(leading_lines=file_level or [cst.EmptyLine()])
      if len(body) > 1:
        body[1] = body[1].with_changes(leading_lines=attached)

    header = updated_node.header
    if insert_idx == 0 and body:
      # Comments directly above the first statement are stored in the header;
      # they must stay attached to that statement, below the new imports
      header, attached = _split_header(header)
      body[0] = body[0].with_changes(leading_lines=[*attached, *body[0].leading_lines])

    self.added = missing
    return updated_node.with_changes(header=header, body=body[:insert_idx] + injections + body[insert_idx:])


def _split_header(header: Sequence[cst.EmptyLine]) -> Tuple[List[cst.EmptyLine], List[cst.EmptyLine]]:
  """
  Splits off the comment block that ends the module header.

  The block stops at a blank line or at a file-level marker (build
  constraint, generated-file notice), which stay in the header. A block that
  starts on the first line of the file is the file's own header comment
  (copyright, shebang): only its lines from the first ``# instrument:``
  command on follow the statement.
  """
  split = len(header)
  while split > 0:
    line = header[split - 1]
    if line.comment is None or _is_file_level_comment(line.comment.value):
      break
    split -= 1
  if split == 0:
    split = next((i for i, line in enumerate(header) if _is_command_line(line)), len(header))
  return list(header[:split]), list(header[split:])


def _split_file_level(lines: Sequence[cst.EmptyLine]) -> Tuple[List[cst.EmptyLine], List[cst.EmptyLine]]:
  """Splits leading lines after the last file-level marker."""
  split = 0
  for i, line in enumerate(lines):
    if line.comment is not None and _is_file_level_comment(line.comment.value):
      split = i + 1
  return list(lines[:split]), list(lines[split:])


def _is_command_line(line: cst.EmptyLine) -> bool:
  if line.comment is None:
    return False
  m = DIRECTIVE_RE.match(line.comment.value.strip())
  return bool(m) and m.group("keyword") != BUILD_KEYWORD


def _is_file_level_comment(comment: str) -> bool:
  text = comment.strip()
  if GENERATED_RE.match(text):
    return True
  m = DIRECTIVE_RE.match(text)
  return bool(m) and m.group("keyword") == BUILD_KEYWORD


def add_imports(module: cst.Module, specs: Iterable[ImportSpec]) -> cst.Module:
  """
  Adds each missing import in ``specs`` exactly once.

  Args:
      module: The module to update.
      specs: Required imports (duplicates allowed).

  Returns:
      cst.Module: The updated module.
  """
  return module.visit(ImportInjector(specs))
