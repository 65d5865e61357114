"""
Tests for the Patch Applier.

Verifies:
1. Prologue placement (first statement, after docstrings, one-line bodies).
2. Nested functions are patched in the same pass.
3. Conflicting and dangling patches are rejected.
4. Detection of an already present prologue.
"""

import libcst as cst
import pytest

from py_instrument.core.patcher import (
  Patch,
  apply_patches,
  body_starts_with,
  convert_to_indented_block,
)
from py_instrument.core.tracer import TraceEventType, TraceLogger
from py_instrument.core.units import collect_function_units
from py_instrument.errors import MalformedTreeError, PatchConflictError

PROLOGUE = [cst.parse_statement("mark()\n")]


def patches_for(module: cst.Module, *names: str):
  return [
    Patch(body=u.body, statements=PROLOGUE, span_name=u.span_name)
    for u in collect_function_units(module)
    if u.body is not None and u.span_name in names
  ]


def test_prologue_goes_first():
  module = cst.parse_module("def f():\n    a = 1\n    return a\n")
  result = apply_patches(module, patches_for(module, "f"))
  assert result.code == "def f():\n    mark()\n    a = 1\n    return a\n"


def test_prologue_after_docstring():
  module = cst.parse_module('def f():\n    """Doc."""\n    return 1\n')
  result = apply_patches(module, patches_for(module, "f"))
  assert result.code == 'def f():\n    """Doc."""\n    mark()\n    return 1\n'


def test_one_line_body_expanded():
  module = cst.parse_module("def f(): return 1\n")
  result = apply_patches(module, patches_for(module, "f"))
  assert result.code == "def f():\n    mark()\n    return 1\n"


def test_one_line_body_with_several_statements():
  module = cst.parse_module("def f(): a = 1; return a  # tail\n")
  result = apply_patches(module, patches_for(module, "f"))
  assert result.code == "def f():  # tail\n    mark()\n    a = 1\n    return a\n"


def test_nested_and_methods_in_one_pass():
  module = cst.parse_module(
    "class A:\n"
    "    def m(self):\n"
    "        def inner():\n"
    "            pass\n"
    "        return inner\n"
  )
  result = apply_patches(module, patches_for(module, "A.m", "anonymous"))
  assert result.code == (
    "class A:\n"
    "    def m(self):\n"
    "        mark()\n"
    "        def inner():\n"
    "            mark()\n"
    "            pass\n"
    "        return inner\n"
  )


def test_unpatched_functions_untouched():
  code = "def f():\n    pass\n\n\ndef g():\n    pass\n"
  module = cst.parse_module(code)
  result = apply_patches(module, patches_for(module, "g"))
  assert result.code == "def f():\n    pass\n\n\ndef g():\n    mark()\n    pass\n"


def test_conflicting_patches():
  module = cst.parse_module("def f():\n    pass\n")
  (patch,) = patches_for(module, "f")
  with pytest.raises(PatchConflictError):
    apply_patches(module, [patch, patch])


def test_dangling_patch():
  module = cst.parse_module("def f():\n    pass\n")
  other = cst.parse_module("def f():\n    pass\n")
  with pytest.raises(MalformedTreeError, match="not found"):
    apply_patches(module, patches_for(other, "f"))


def test_patches_are_traced():
  module = cst.parse_module("def f():\n    pass\n")
  tracer = TraceLogger()
  apply_patches(module, patches_for(module, "f"), tracer)
  (event,) = tracer.export()
  assert event["type"] == TraceEventType.PATCH_APPLIED
  assert "mark()" in event["metadata"]["after"]


def test_body_starts_with():
  module = cst.parse_module('def f():\n    """Doc."""\n    mark()\n    return 1\n\ndef g(): mark()\n')
  f_body = module.body[0].body
  g_body = module.body[1].body
  assert body_starts_with(f_body, PROLOGUE)
  assert not body_starts_with(f_body, PROLOGUE + PROLOGUE)
  assert not body_starts_with(g_body, PROLOGUE)
  assert not body_starts_with(f_body, [])


def test_convert_keeps_blocks():
  block = cst.parse_module("def f():\n    pass\n").body[0].body
  assert convert_to_indented_block(block) is block
