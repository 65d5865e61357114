"""
Signature Matcher.

Stateless predicates that decide, from syntax alone, whether a function
carries the request-context parameter and whether it returns a status.

Matching is name and shape based:

- carrier: a non-variadic parameter named ``pattern.context_name`` annotated
  with exactly ``<context_package>.<context_type>`` (e.g. ``ctx: context.Context``).
- status: a return annotation that is the bare identifier
  ``pattern.error_type`` (e.g. ``-> Exception``).

Aliases (``import opentelemetry.context as octx``), string annotations and
subscripted types are never resolved; they simply do not match.
"""

from typing import Iterator, Optional

import libcst as cst

from py_instrument.config import TracePattern
from py_instrument.core.units import FunctionUnit


def iter_params(params: cst.Parameters) -> Iterator[cst.Param]:
  """
  Yields every parameter of a signature, in declaration order.

  Includes positional-only, regular, ``*args``, keyword-only and ``**kwargs``.
  The bare ``*`` separator (``ParamStar``) is not a parameter and is skipped.
  """
  yield from params.posonly_params
  yield from params.params
  if isinstance(params.star_arg, cst.Param):
    yield params.star_arg
  yield from params.kwonly_params
  if params.star_kwarg is not None:
    yield params.star_kwarg


def is_context(param: cst.Param, pattern: TracePattern) -> bool:
  """
  Checks one parameter against the carrier pattern.

  Args:
      param: The parameter node.
      pattern: The configured pattern.

  Returns:
      bool: True for ``<context_name>: <context_package>.<context_type>``.
  """
  # *args / **kwargs bind many values under one name
  if isinstance(param.star, str) and param.star:
    return False
  if param.name.value != pattern.context_name:
    return False
  if param.annotation is None:
    return False

  annotation = param.annotation.annotation
  if not isinstance(annotation, cst.Attribute):
    return False
  if not isinstance(annotation.value, cst.Name):
    return False

  return annotation.value.value == pattern.context_package and annotation.attr.value == pattern.context_type


def is_error(returns: Optional[cst.Annotation], pattern: TracePattern) -> bool:
  """
  Checks a return annotation against the status pattern.

  Args:
      returns: The return annotation, if any.
      pattern: The configured pattern.

  Returns:
      bool: True when the annotation is the bare ``error_type`` identifier.
  """
  if returns is None or not pattern.error_name:
    return False
  annotation = returns.annotation
  if isinstance(annotation, cst.Name):
    return annotation.value == pattern.error_type
  return False


def has_carrier_parameter(params: cst.Parameters, pattern: TracePattern) -> bool:
  """True if any parameter matches the carrier pattern."""
  return any(is_context(p, pattern) for p in iter_params(params))


def has_status_result(returns: Optional[cst.Annotation], pattern: TracePattern) -> bool:
  """True if the result matches the status pattern."""
  return is_error(returns, pattern)


def function_has_context(unit: FunctionUnit, pattern: TracePattern) -> bool:
  return has_carrier_parameter(unit.params, pattern)


def function_has_error(unit: FunctionUnit, pattern: TracePattern) -> bool:
  return has_status_result(unit.returns, pattern)
