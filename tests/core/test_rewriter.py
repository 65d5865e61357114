"""
Tests for the File Rewriter.

Verifies:
1. Matching functions receive the prologue and the import is added once.
2. Idempotence: a second run changes nothing.
3. Selection: default policy and per-function directives.
4. Signature gating: only carrier-bearing functions are patched.
5. Generated files and build constraints short-circuit without output.
6. Overwrite mode replaces files atomically; dry-run writes to the sink.
7. Errors carry the path of the failing file.
"""

import os
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from py_instrument.config import TraceConfig, TracePattern
from py_instrument.core.rewriter import FileProcessor, parse_code
from py_instrument.core.tracer import TraceEventType
from py_instrument.enums import Outcome
from py_instrument.errors import DirectiveError, SourceReadError, SourceSyntaxError, SourceWriteError

SERVICE = """\
import context


class Service:
    def fetch(self, ctx: context.Context, key):
        \"\"\"Loads a key.\"\"\"
        return key

    def load(self, ctx: context.Context) -> Exception:
        return None


def health():
    return True
"""

SERVICE_PATCHED = """\
import context
from opentelemetry import trace


class Service:
    def fetch(self, ctx: context.Context, key):
        \"\"\"Loads a key.\"\"\"
        span = trace.get_current_span(ctx)
        span.add_event("Service.fetch", {"instrument.app": "billing"})
        return key

    def load(self, ctx: context.Context) -> Exception:
        span = trace.get_current_span(ctx)
        span.add_event("Service.load", {"instrument.app": "billing", "instrument.status": "err"})
        return None


def health():
    return True
"""

CONFIG = TraceConfig(app="billing")


def test_patches_matching_functions(write_module, output_sink):
  path = write_module("service.py", SERVICE)
  result = FileProcessor().process(path, CONFIG)

  assert result.outcome is Outcome.PATCHED
  assert result.patched_functions == ["Service.fetch", "Service.load"]
  assert result.code == SERVICE_PATCHED
  assert output_sink.getvalue() == SERVICE_PATCHED
  # Dry-run leaves the file alone
  assert Path(path).read_text() == SERVICE


def test_second_run_is_noop(write_module):
  path = write_module("service.py", SERVICE_PATCHED)
  result = FileProcessor().process(path, CONFIG)

  assert result.outcome is Outcome.UNPATCHED
  assert result.patched_functions == []
  assert result.code == SERVICE_PATCHED


def test_overwrite_then_rerun(write_module):
  path = write_module("service.py", SERVICE)
  config = CONFIG.model_copy(update={"overwrite": True})

  FileProcessor().process(path, config)
  first = Path(path).read_text()
  FileProcessor().process(path, config)

  assert first == SERVICE_PATCHED
  assert Path(path).read_text() == first


def test_unpatched_file_is_still_serialised(write_module, output_sink):
  path = write_module("plain.py", "def f():\n  return 1\n")
  result = FileProcessor().process(path, CONFIG)

  assert result.outcome is Outcome.UNPATCHED
  assert result.code == "def f():\n    return 1\n"
  assert output_sink.getvalue() == result.code


def test_import_added_once(write_module):
  path = write_module(
    "many.py",
    """\
    def a(ctx: context.Context):
        pass


    def b(ctx: context.Context):
        pass


    class C:
        def c(self, ctx: context.Context):
            pass
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.patched_functions == ["a", "b", "C.c"]
  assert result.code.count("from opentelemetry import trace") == 1
  assert result.code.startswith("from opentelemetry import trace\n")


def test_existing_import_reused(write_module):
  path = write_module(
    "traced.py",
    """\
    from opentelemetry import trace


    def a(ctx: context.Context):
        pass
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.PATCHED
  assert result.code.count("from opentelemetry import trace") == 1


def test_no_import_without_patch(write_module):
  path = write_module("none.py", "def a(ctx):\n    pass\n")
  result = FileProcessor().process(path, CONFIG)
  assert "opentelemetry" not in result.code


def test_skip_directive(write_module):
  path = write_module(
    "skip.py",
    """\
    # instrument:skip
    def first(ctx: context.Context):
        return 1


    def second(ctx: context.Context):
        return 2
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.patched_functions == ["second"]
  assert result.code.startswith("from opentelemetry import trace\n# instrument:skip\ndef first(")

  # The directive must keep working on the rewritten file
  Path(path).write_text(result.code)
  again = FileProcessor().process(path, CONFIG)
  assert again.outcome is Outcome.UNPATCHED
  assert again.code == result.code


def test_select_directive_with_default_off(write_module):
  path = write_module(
    "select.py",
    """\
    import context


    def a(ctx: context.Context):
        pass


    # instrument:select
    def b(ctx: context.Context):
        pass
    """,
  )
  config = CONFIG.model_copy(update={"default_select": False})
  result = FileProcessor().process(path, config)
  assert result.patched_functions == ["b"]


def test_select_does_not_bypass_signature(write_module):
  path = write_module(
    "gate.py",
    """\
    # instrument:select
    def a(request):
        pass
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.UNPATCHED


def test_closures_share_one_key(write_module):
  path = write_module(
    "closures.py",
    """\
    def outer(ctx: context.Context):
        # instrument:skip
        def one(ctx: context.Context):
            pass

        def two(ctx: context.Context):
            pass
        return one, two
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.patched_functions == ["outer"]


def test_closures_patched_by_default(write_module):
  path = write_module(
    "closure.py",
    """\
    def outer(ctx: context.Context):
        def inner(ctx: context.Context):
            pass
        return inner
    """,
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.patched_functions == ["anonymous", "outer"]
  assert 'span.add_event("anonymous", {"instrument.app": "billing"})' in result.code


def test_custom_pattern(write_module):
  path = write_module("custom.py", "def handle(request: web.Request) -> Error:\n    pass\n")
  pattern = TracePattern(context_name="request", context_package="web", context_type="Request", error_type="Error")
  result = FileProcessor(pattern=pattern).process(path, CONFIG)
  assert "span = trace.get_current_span(request)" in result.code
  assert '"instrument.status": "err"' in result.code


def test_generated_file_skipped(write_module, output_sink):
  source = "# Code generated by protoc-gen-py. DO NOT EDIT.\n\ndef f(ctx: context.Context):\n    pass\n"
  path = write_module("gen_pb.py", source)
  config = CONFIG.model_copy(update={"skip_generated": True, "overwrite": True})

  result = FileProcessor().process(path, config)

  assert result.outcome is Outcome.SKIPPED_GENERATED
  assert result.is_skipped
  assert result.code == ""
  assert output_sink.getvalue() == ""
  assert Path(path).read_text() == source


def test_generated_file_processed_when_not_skipping(write_module):
  path = write_module("gen_pb.py", "# Code generated by tool. DO NOT EDIT.\n\ndef f(ctx: context.Context):\n    pass\n")
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.PATCHED


@pytest.mark.parametrize("constraint", ["ignore", 'sys_platform == "plan9-from-outer-space"'])
def test_build_constraint_skips(write_module, output_sink, constraint):
  path = write_module("build.py", f"# instrument:build {constraint}\n\ndef f(ctx: context.Context):\n    pass\n")
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.SKIPPED_BUILD
  assert output_sink.getvalue() == ""
  assert any(e["type"] == TraceEventType.FILE_SKIPPED for e in result.trace_events)


def test_build_constraint_satisfied(write_module):
  path = write_module("build.py", '# instrument:build python_version >= "3"\n\ndef f(ctx: context.Context):\n    pass\n')
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.PATCHED
  assert result.code.startswith('# instrument:build python_version >= "3"\n')


def test_overwrite_preserves_mode(write_module, tmp_path):
  path = write_module("mode.py", "def f(ctx: context.Context):\n    pass\n")
  os.chmod(path, 0o640)
  FileProcessor().process(path, CONFIG.model_copy(update={"overwrite": True}))

  assert stat.S_IMODE(os.stat(path).st_mode) == 0o640
  assert sorted(p.name for p in tmp_path.iterdir()) == ["mode.py"]


def test_write_failure_cleans_up(write_module, tmp_path):
  source = "def f(ctx: context.Context):\n    pass\n"
  path = write_module("fail.py", source)

  with patch("py_instrument.core.rewriter.os.replace", side_effect=OSError(13, "Permission denied")):
    with pytest.raises(SourceWriteError) as excinfo:
      FileProcessor().process(path, CONFIG.model_copy(update={"overwrite": True}))

  assert excinfo.value.path == path
  assert Path(path).read_text() == source
  assert sorted(p.name for p in tmp_path.iterdir()) == ["fail.py"]


def test_syntax_error(write_module):
  path = write_module("broken.py", "def f(:\n")
  with pytest.raises(SourceSyntaxError) as excinfo:
    FileProcessor().process(path, CONFIG)
  assert excinfo.value.path == path
  assert str(excinfo.value).startswith(f"{path}: invalid syntax")


def test_missing_file(tmp_path):
  with pytest.raises(SourceReadError):
    FileProcessor().process(str(tmp_path / "missing.py"), CONFIG)


def test_directive_error_carries_path(write_module):
  path = write_module("bad.py", "x = 1\n\n\n# instrument:frobnicate\ndef f(ctx: context.Context):\n    pass\n")
  with pytest.raises(DirectiveError) as excinfo:
    FileProcessor().process(path, CONFIG)
  assert excinfo.value.path == path


def test_trace_records_phases(write_module):
  path = write_module("traced.py", "def f(ctx: context.Context):\n    pass\n\n\ndef g(x):\n    pass\n")
  result = FileProcessor().process(path, CONFIG)

  phases = [e["description"] for e in result.trace_events if e["type"] == TraceEventType.PHASE_START]
  assert phases == ["Parse", "Directives", "Patch", "Imports", "Serialise"]
  inspections = [e for e in result.trace_events if e["type"] == TraceEventType.INSPECTION]
  assert inspections[0]["metadata"]["outcome"] == "no carrier parameter"


def test_custom_instrumenter(write_module):
  class Empty:
    def imports(self):
      return []

    def prefix_statements(self, span_name, has_error):
      return []

  path = write_module("empty.py", "def f(ctx: context.Context):\n    pass\n")
  result = FileProcessor(instrumenter_factory=lambda config, pattern: Empty()).process(path, CONFIG)
  assert result.outcome is Outcome.UNPATCHED


def test_parse_code_canonicalises():
  source = parse_code("def f():\n\treturn 1\r\n")
  assert source.text == "def f():\n    return 1\n"
  assert source.tree.code == source.text


@pytest.mark.parametrize(
  "raw",
  [
    b"x = '\xff\xfe'\n",
    b"# -*- coding: bogus -*-\nx = 1\n",
  ],
)
def test_undecodable_source(tmp_path, raw):
  path = tmp_path / "binary.py"
  path.write_bytes(raw)

  with pytest.raises(SourceSyntaxError) as excinfo:
    FileProcessor().process(str(path), CONFIG)

  assert excinfo.value.path == str(path)
  assert "cannot decode source" in str(excinfo.value)


def test_overwrite_through_symlink(write_module, tmp_path):
  real = write_module("real.py", "def f(ctx: context.Context):\n    pass\n")
  link = tmp_path / "link.py"
  link.symlink_to(real)

  FileProcessor().process(str(link), CONFIG.model_copy(update={"overwrite": True}))

  assert link.is_symlink()
  assert "span = trace.get_current_span(ctx)" in Path(real).read_text()
  assert sorted(p.name for p in tmp_path.iterdir()) == ["link.py", "real.py"]


def test_build_constraint_after_docstring(write_module, output_sink):
  path = write_module(
    "documented.py",
    '''\
    """Module."""
    # instrument:build ignore
    import context


    def f(ctx: context.Context):
        pass
    ''',
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.outcome is Outcome.SKIPPED_BUILD
  assert output_sink.getvalue() == ""


def test_satisfied_constraint_after_docstring_is_stable(write_module):
  path = write_module(
    "documented.py",
    '''\
    """Module."""
    # instrument:build python_version >= "3"
    # instrument:skip
    def f(ctx: context.Context):
        pass


    def g(ctx: context.Context):
        pass
    ''',
  )
  result = FileProcessor().process(path, CONFIG)
  assert result.patched_functions == ["g"]
  assert result.code.startswith(
    '"""Module."""\n# instrument:build python_version >= "3"\nfrom opentelemetry import trace\n# instrument:skip\ndef f('
  )

  Path(path).write_text(result.code)
  again = FileProcessor().process(path, CONFIG)
  assert again.outcome is Outcome.UNPATCHED
  assert again.code == result.code


@pytest.mark.parametrize(
  "source",
  [
    "# instrument:buidl ignore\n\ndef f(ctx: context.Context):\n    pass\n",
    "# instrument:frobnicate\nX = 1\n\n\ndef f(ctx: context.Context):\n    pass\n",
    "def f(ctx: context.Context):\n    pass\n\n\n# instrument:skip\n\nX = 1\n",
  ],
)
def test_misplaced_directive_is_fatal(write_module, source):
  path = write_module("misplaced.py", source)
  with pytest.raises(DirectiveError) as excinfo:
    FileProcessor().process(path, CONFIG.model_copy(update={"overwrite": True}))
  assert excinfo.value.path == path
  assert Path(path).read_text() == source
