"""
Tests for Canonical Formatting.
"""

import pytest

from py_instrument.core.formatting import format_code


@pytest.mark.parametrize(
  "raw, expected",
  [
    ("def f():\n  return 1\n", "def f():\n    return 1\n"),
    ("def f():\n\treturn 1\n", "def f():\n    return 1\n"),
    ("x = 1\r\ny = 2\r\n", "x = 1\ny = 2\n"),
    ("x = 1   \n", "x = 1\n"),
    ("x = 1 # note\n", "x = 1  # note\n"),
    ("x = 1", "x = 1\n"),
    ("# header   \nx = 1\n", "# header\nx = 1\n"),
    ("def f():\n    a = 1\n    \n    return a\n", "def f():\n    a = 1\n\n    return a\n"),
  ],
)
def test_canonical_layout(raw, expected):
  assert format_code(raw) == expected


def test_nested_blocks_are_reindented():
  raw = "class A:\n  def f(self):\n    if True:\n      return 1\n"
  assert format_code(raw) == "class A:\n    def f(self):\n        if True:\n            return 1\n"


def test_string_contents_untouched():
  raw = 'def f():\n  return """\n  keep   \n  """\n'
  assert '\n  keep   \n' in format_code(raw)


def test_idempotent():
  raw = "import os  \r\nclass A:\n  # comment   \n  def f(self): return os.sep # tail\n"
  once = format_code(raw)
  assert format_code(once) == once
