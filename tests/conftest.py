"""
Pytest Configuration and Fixtures.

Includes:
- Syspath patching for local imports.
- A factory fixture writing sample modules into ``tmp_path``.
- Capture of the dry-run output sink.
- Isolation from ``INSTRA_*`` environment variables of the host.
"""

import io
import os
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

# Add src to path so we can import 'py_instrument' without installing it
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from py_instrument.config import ENV_PREFIX  # noqa: E402
from py_instrument.core.rewriter import reset_default_output, set_default_output  # noqa: E402


@pytest.fixture
def write_module(tmp_path: Path) -> Callable[..., str]:
  """
  Returns a helper writing dedented source into ``tmp_path``.

  Usage: ``path = write_module("svc.py", '''def f(): ...''')``
  """

  def _write(name: str, source: str) -> str:
    path = tmp_path / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return str(path)

  return _write


@pytest.fixture
def output_sink():
  """Captures dry-run output into a StringIO."""
  buffer = io.StringIO()
  set_default_output(buffer)
  yield buffer
  reset_default_output()


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
  """
  Ensures host ``INSTRA_*`` variables never leak into configuration tests,
  and that the output sink is reset between tests.
  """
  for key in list(os.environ):
    if key.startswith(ENV_PREFIX):
      monkeypatch.delenv(key, raising=False)
  yield
  reset_default_output()
