"""
Canonical Formatting.

Normalises the whitespace of a parsed module so every rewritten file is
emitted in one canonical layout:

- 4-space block indentation,
- ``\\n`` line endings,
- no trailing whitespace, in code or comments (inline comments keep two
  leading spaces),
- blank lines carry no indentation.

Token content (strings, comment text, expression spacing) is never altered. The
transform is idempotent: formatting canonical code yields the same code.
"""

import libcst as cst

CANONICAL_INDENT = "    "
CANONICAL_NEWLINE = "\n"
INLINE_COMMENT_GAP = "  "


class CanonicalFormatter(cst.CSTTransformer):
  """
  Transformer resetting layout-only whitespace to the canonical form.
  """

  def leave_IndentedBlock(self, original_node: cst.IndentedBlock, updated_node: cst.IndentedBlock) -> cst.IndentedBlock:
    # None means "use Module.default_indent"
    return updated_node.with_changes(indent=None)

  def leave_Newline(self, original_node: cst.Newline, updated_node: cst.Newline) -> cst.Newline:
    return updated_node.with_changes(value=None)

  def leave_TrailingWhitespace(
    self, original_node: cst.TrailingWhitespace, updated_node: cst.TrailingWhitespace
  ) -> cst.TrailingWhitespace:
    gap = INLINE_COMMENT_GAP if updated_node.comment is not None else ""
    return updated_node.with_changes(whitespace=cst.SimpleWhitespace(gap))

  def leave_Comment(self, original_node: cst.Comment, updated_node: cst.Comment) -> cst.Comment:
    return updated_node.with_changes(value=updated_node.value.rstrip())

  def leave_EmptyLine(self, original_node: cst.EmptyLine, updated_node: cst.EmptyLine) -> cst.EmptyLine:
    if updated_node.comment is None:
      return updated_node.with_changes(indent=False, whitespace=cst.SimpleWhitespace(""))
    return updated_node.with_changes(whitespace=cst.SimpleWhitespace(""))

  def leave_Module(self, original_node: cst.Module, updated_node: cst.Module) -> cst.Module:
    return updated_node.with_changes(
      default_indent=CANONICAL_INDENT,
      default_newline=CANONICAL_NEWLINE,
      has_trailing_newline=True,
    )


def canonicalize(module: cst.Module) -> cst.Module:
  """
  Re-lays out a module in the canonical style.

  The returned tree renders the canonical text, but its nodes are the
  transformed ones. Callers needing node identities that match the text
  should re-parse ``canonicalize(module).code``.

  Args:
      module: The parsed module.

  Returns:
      cst.Module: The canonical module.
  """
  return module.visit(CanonicalFormatter())


def format_code(code: str) -> str:
  """
  Formats source text into its canonical form.

  Args:
      code: Python source.

  Returns:
      str: The canonical source.

  Raises:
      libcst.ParserSyntaxError: If the code does not parse.
  """
  return canonicalize(cst.parse_module(code)).code
