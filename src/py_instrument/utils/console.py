"""
Central Logging and Console Utilities.

All user-facing output goes through the Python standard ``logging`` library,
rendered by ``rich``.

- ``log_info`` / ``log_success`` / ``log_warning`` / ``log_error`` route to the
  root logger, so core modules that use ``logging.getLogger(__name__)`` and
  CLI messages end up in the same place.
- ``console`` is a proxy around a ``rich.console.Console``. Its backend can be
  swapped with ``set_console`` (tests capture output into a buffer this way);
  the logging handler is re-bound to the new backend on every swap.

Attributes:
    console (_ConsoleProxy): A global, stable reference to the active Rich Console.
"""

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# Custom level between INFO and WARNING
SUCCESS_LEVEL_NUM = 25
logging.addLevelName(SUCCESS_LEVEL_NUM, "SUCCESS")

_THEME = Theme(
  {
    "logging.level.success": "green",
    "info": "dim cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "green",
    "path": "bold blue",
    "code": "bold magenta",
  }
)


class _ConsoleProxy:
  """
  A Proxy wrapper around `rich.console.Console`.

  Modules import the module-level ``console`` object once; the proxy forwards
  every call to the current backend, which may be replaced at runtime.

  Attributes:
      _backend (Console): The active Rich Console instance.
      _level (int): The root logger level applied on (re)configuration.
  """

  def __init__(self) -> None:
    self._backend: Console = Console(theme=_THEME, stderr=True)
    self._level = logging.INFO
    self._configure_logging()

  def set_backend(self, new_console: Console) -> None:
    """
    Injects a new Console backend and updates logging handlers.

    Args:
        new_console (Console): The new Rich Console instance to use.
    """
    self._backend = new_console
    self._configure_logging()

  def reset(self) -> None:
    """Resets the proxy to a fresh stderr console at INFO level."""
    self._backend = Console(theme=_THEME, stderr=True)
    self._level = logging.INFO
    self._configure_logging()

  def set_level(self, level: int) -> None:
    """
    Changes the root logger threshold (e.g. ``logging.DEBUG`` for --verbose).

    Args:
        level (int): A ``logging`` level number.
    """
    self._level = level
    logging.getLogger().setLevel(level)

  @property
  def backend(self) -> Console:
    """The currently active Console implementation."""
    return self._backend

  def _configure_logging(self) -> None:
    """
    Points the root logger at the current backend.

    Existing RichHandlers are removed first so messages are never duplicated
    or sent to a stale console.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
      if isinstance(handler, RichHandler):
        root_logger.removeHandler(handler)

    rich_handler = RichHandler(
      console=self._backend,
      show_time=False,
      omit_repeated_times=False,
      show_path=False,
      markup=True,
      rich_tracebacks=True,
    )

    root_logger.setLevel(self._level)
    root_logger.addHandler(rich_handler)

  def print(self, *args: Any, **kwargs: Any) -> None:
    """Forwards `print` calls to the active backend."""
    self._backend.print(*args, **kwargs)

  def export_text(self, **kwargs: Any) -> str:
    """
    Forwards `export_text` (useful for log capturing).

    Args:
        **kwargs: Options passed to console.export_text.

    Returns:
        str: The captured text output.
    """
    return self._backend.export_text(**kwargs)

  def __getattr__(self, name: str) -> Any:
    return getattr(self._backend, name)


console = _ConsoleProxy()


def set_console(new_console: Console) -> None:
  """
  Global helper to inject a specific console instance.

  Args:
      new_console (Console): The configured Rich console to use globally.
  """
  console.set_backend(new_console)


def reset_console() -> None:
  """Global helper to reset logging and console to standard error."""
  console.reset()


def get_console() -> Console:
  """
  Retrieves the currently active console backend.

  Returns:
      Console: The active Rich Console.
  """
  return console.backend


def log_info(msg: str) -> None:
  """
  Logs an informational message via standard logging.

  Args:
      msg (str): The message content. Can include rich markup like [bold].
  """
  logging.info(msg, extra={"markup": True})


def log_success(msg: str) -> None:
  """Logs a success message via standard logging."""
  logging.log(SUCCESS_LEVEL_NUM, msg, extra={"markup": True})


def log_warning(msg: str) -> None:
  """Logs a warning message via standard logging."""
  logging.warning(msg, extra={"markup": True})


def log_error(msg: str) -> None:
  """Logs an error message via standard logging."""
  logging.error(msg, extra={"markup": True})
