"""
Function Selector.

Combines the default policy (instrument everything, or nothing) with the
per-function directives of a file into a single membership test.
"""

from typing import Dict, Iterable, Optional, Protocol

from py_instrument.core.directives import Command


class FunctionSelector(Protocol):
  """Tells if a function has to be instrumented."""

  def accept_function(self, function_name: str) -> bool: ...


class MapFunctionSelector:
  """
  Lookup-table selector: explicit overrides first, then the default.

  Attributes:
      default_select: Answer for names without an override.
      overrides: Function name -> forced answer.
  """

  def __init__(self, default_select: bool, overrides: Optional[Dict[str, bool]] = None) -> None:
    self.default_select = default_select
    self.overrides: Dict[str, bool] = dict(overrides or {})

  @classmethod
  def from_commands(cls, default_select: bool, commands: Iterable[Command]) -> "MapFunctionSelector":
    """
    Builds the override table from directives.

    Commands are applied in order, so a later directive for the same
    function name replaces an earlier one.

    Args:
        default_select: The policy for functions without a directive.
        commands: Directives in source order.

    Returns:
        MapFunctionSelector: The selector.
    """
    overrides: Dict[str, bool] = {}
    for command in commands:
      overrides[command.function_name] = command.selected
    return cls(default_select, overrides)

  def accept_function(self, function_name: str) -> bool:
    return self.overrides.get(function_name, self.default_select)

  def __repr__(self) -> str:
    return f"MapFunctionSelector(default_select={self.default_select}, overrides={self.overrides})"
