"""
Function Units.

A :class:`FunctionUnit` is a read-only view over one function-like node of the
original tree: a module-level function, a method (a ``def`` directly inside a
``class`` body), a closure (a ``def`` nested directly in another function
body) or a ``lambda``.

Closures and lambdas are the function literals of Python: they all share the
display name :data:`ANONYMOUS_FUNCTION`, so one directive toggles every one of
them in a file.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

import libcst as cst

ANONYMOUS_FUNCTION = "anonymous"

_CLASS = "class"
_FUNCTION = "function"


@dataclass(frozen=True)
class FunctionUnit:
  """
  View over a function declaration, method declaration or function literal.

  Attributes:
      receiver: Enclosing class name for methods, empty otherwise.
      name: Function name, or ``ANONYMOUS_FUNCTION`` for closures and lambdas.
      params: The declared parameter list.
      returns: The return annotation (the result list), if any.
      body: The original body suite. None for lambdas (expression body).
      node: The original node.
  """

  receiver: str
  name: str
  params: cst.Parameters
  returns: Optional[cst.Annotation]
  body: Optional[cst.BaseSuite]
  node: Union[cst.FunctionDef, cst.Lambda]

  @property
  def is_literal(self) -> bool:
    return self.name == ANONYMOUS_FUNCTION

  @property
  def span_name(self) -> str:
    return basic_span_name(self.receiver, self.name)


def basic_span_name(receiver: str, function: str) -> str:
  """
  Common notation of ``<class>.<method>`` or ``<func>``.

  Args:
      receiver: Class name (may be empty).
      function: Function name.

  Returns:
      str: The span name.
  """
  if not receiver:
    return function
  return f"{receiver}.{function}"


def is_docstring(node: cst.CSTNode, idx: int) -> bool:
  """
  Determines if a statement node represents a docstring.

  Args:
      node: The statement node from a body.
      idx: The index of this statement in the body list.

  Returns:
      bool: True if it is a docstring (string expression at index 0).
  """
  if idx != 0:
    return False
  if isinstance(node, cst.SimpleStatementLine):
    if len(node.body) == 1 and isinstance(node.body[0], cst.Expr):
      expr = node.body[0].value
      if isinstance(expr, (cst.SimpleString, cst.ConcatenatedString)):
        return True
  return False


class FunctionUnitCollector(cst.CSTVisitor):
  """
  Collects every FunctionUnit of a module in traversal order.

  Traversal is a full pre-order walk, so nested closures and methods of
  nested classes are visited right after their enclosing declaration.

  Attributes:
      units (List[FunctionUnit]): Units in declaration order.
      _scope_stack (List[Tuple[str, str]]): (kind, name) of enclosing scopes.
  """

  def __init__(self) -> None:
    self.units: List[FunctionUnit] = []
    self._scope_stack: List[Tuple[str, str]] = []

  def visit_ClassDef(self, node: cst.ClassDef) -> Optional[bool]:
    self._scope_stack.append((_CLASS, node.name.value))
    return True

  def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
    self._scope_stack.pop()

  def visit_FunctionDef(self, node: cst.FunctionDef) -> Optional[bool]:
    receiver = ""
    name = node.name.value

    if self._scope_stack:
      kind, scope_name = self._scope_stack[-1]
      if kind == _CLASS:
        receiver = scope_name
      else:
        name = ANONYMOUS_FUNCTION

    self.units.append(
      FunctionUnit(
        receiver=receiver,
        name=name,
        params=node.params,
        returns=node.returns,
        body=node.body,
        node=node,
      )
    )
    self._scope_stack.append((_FUNCTION, node.name.value))
    return True

  def leave_FunctionDef(self, original_node: cst.FunctionDef) -> None:
    self._scope_stack.pop()

  def visit_Lambda(self, node: cst.Lambda) -> Optional[bool]:
    self.units.append(
      FunctionUnit(
        receiver="",
        name=ANONYMOUS_FUNCTION,
        params=node.params,
        returns=None,
        body=None,
        node=node,
      )
    )
    return True


def collect_function_units(module: cst.Module) -> List[FunctionUnit]:
  """
  Lists the function units of a module in traversal order.

  Args:
      module: The parsed module.

  Returns:
      List[FunctionUnit]: All functions, methods, closures and lambdas.
  """
  collector = FunctionUnitCollector()
  module.visit(collector)
  return collector.units
