"""
Tests for FunctionUnit collection.

Verifies traversal order, receiver resolution and the shared display name
of closures and lambdas.
"""

import libcst as cst

from py_instrument.core.units import ANONYMOUS_FUNCTION, basic_span_name, collect_function_units

CODE = """
def top(ctx):
    def helper(ctx):
        pass
    return lambda x: x


class Service:
    def get(self, ctx):
        pass

    class Inner:
        def deep(self):
            pass
"""


def test_traversal_order_and_names():
  units = collect_function_units(cst.parse_module(CODE))
  assert [(u.receiver, u.name) for u in units] == [
    ("", "top"),
    ("", ANONYMOUS_FUNCTION),
    ("", ANONYMOUS_FUNCTION),
    ("Service", "get"),
    ("Inner", "deep"),
  ]


def test_lambda_has_no_body():
  units = collect_function_units(cst.parse_module(CODE))
  lam = units[2]
  assert isinstance(lam.node, cst.Lambda)
  assert lam.body is None
  assert lam.returns is None
  assert lam.is_literal


def test_span_names():
  units = collect_function_units(cst.parse_module(CODE))
  assert units[0].span_name == "top"
  assert units[3].span_name == "Service.get"
  assert basic_span_name("", "f") == "f"
  assert basic_span_name("T", "m") == "T.m"


def test_body_is_original_node():
  module = cst.parse_module(CODE)
  top = module.body[0]
  units = collect_function_units(module)
  assert units[0].body is top.body
  assert units[0].node is top
