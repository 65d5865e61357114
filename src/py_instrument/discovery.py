"""
Source File Discovery.

Expands the paths given on the command line into the list of files to rewrite.
"""

import os
from pathlib import Path
from typing import Iterable, List, Union

from py_instrument.errors import SourceReadError

SKIPPED_DIRS = {"__pycache__"}


def _is_skipped_dir(name: str) -> bool:
  return name.startswith(".") or name in SKIPPED_DIRS


def list_file_names(paths: Iterable[Union[str, Path]], suffix: str = ".py") -> List[str]:
  """
  Lists the source files under the given paths.

  Directories are walked recursively in sorted order, skipping hidden
  directories and ``__pycache__``. Explicit file paths are passed through
  regardless of their suffix.

  Args:
      paths: Files and directories.
      suffix: Extension of the files collected from directories.

  Returns:
      List[str]: The files, in input order then sorted walk order.

  Raises:
      SourceReadError: If a path does not exist.
  """
  found: List[str] = []
  for raw in paths:
    path = Path(raw)
    if path.is_file():
      found.append(str(path))
      continue
    if not path.is_dir():
      raise SourceReadError("no such file or directory", str(path))

    for root, dirs, files in os.walk(path):
      dirs[:] = sorted(d for d in dirs if not _is_skipped_dir(d))
      for name in sorted(files):
        if name.endswith(suffix):
          found.append(os.path.join(root, name))
  return found
