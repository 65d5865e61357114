"""
Runtime Configuration Store.

Defines the two configuration objects consumed by the rewriting engine:

- :class:`TracePattern`: which parameter marks a function as carrying a
  request context (``ctx: context.Context``) and which return annotation marks
  it as returning a status (``-> Exception``).
- :class:`TraceConfig`: per-invocation settings (application label, overwrite
  vs dry-run, default selection policy, generated-file handling, worker count).

``TraceConfig.load`` layers the sources, highest priority first:
CLI arguments, ``INSTRA_*`` environment variables, an explicit TOML config
file, the nearest ``pyproject.toml`` (``[tool.py_instrument]``), defaults.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from py_instrument.errors import ConfigError
from py_instrument.utils.console import log_warning

if sys.version_info >= (3, 11):
  import tomllib
else:
  import tomli as tomllib

TOOL_SECTION = "py_instrument"
ENV_PREFIX = "INSTRA_"

# Environment variable suffix -> TraceConfig field
_ENV_FIELDS = {
  "APP": "app",
  "OVERWRITE": "overwrite",
  "DEFAULT_SELECT": "default_select",
  "SKIP_GENERATED": "skip_generated",
  "PARALLEL": "workers",
}

_KEY_ALIASES = {"parallel": "workers"}

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


class TracePattern(BaseModel):
  """
  Shape of the carrier parameter and the status result.

  The match is purely syntactic: ``context_package`` must appear literally as
  the left-hand side of the parameter annotation (``context.Context``);
  aliased imports are not resolved.
  """

  model_config = ConfigDict(frozen=True, extra="forbid")

  context_name: str = Field("ctx", description="Name of the carrier parameter.")
  context_package: str = Field("context", description="Module qualifier of the carrier annotation.")
  context_type: str = Field("Context", description="Type name of the carrier annotation.")
  error_name: str = Field("err", description="Name the prologue reports the status result under.")
  error_type: str = Field("Exception", description="Bare return annotation marking a status result.")

  @field_validator("context_name", "context_package", "context_type", "error_type")
  @classmethod
  def validate_identifier(cls, v: str) -> str:
    """
    Ensures the pattern components are plain Python identifiers.

    Args:
        v (str): The raw value.

    Returns:
        str: The stripped identifier.

    Raises:
        ValueError: If the value is not a valid identifier.
    """
    v_clean = v.strip()
    if not v_clean.isidentifier():
      raise ValueError(f"'{v}' is not a valid Python identifier")
    return v_clean


DEFAULT_TRACE_PATTERN = TracePattern()


class TraceConfig(BaseModel):
  """
  Per-invocation configuration for the rewriting engine.
  """

  model_config = ConfigDict(extra="forbid")

  app: str = Field("app", description="Application label passed to the instrumenter.")
  overwrite: bool = Field(False, description="If True, rewrite files in place. If False, dry-run.")
  default_select: bool = Field(True, description="Instrument functions without a directive.")
  skip_generated: bool = Field(False, description="Leave '# Code generated ... DO NOT EDIT.' files untouched.")
  workers: int = Field(1, ge=1, description="Number of parallel file workers.")
  pattern: TracePattern = Field(default_factory=lambda: DEFAULT_TRACE_PATTERN)

  @classmethod
  def load(
    cls,
    app: Optional[str] = None,
    overwrite: Optional[bool] = None,
    default_select: Optional[bool] = None,
    skip_generated: Optional[bool] = None,
    workers: Optional[int] = None,
    pattern_overrides: Optional[Dict[str, str]] = None,
    config_file: Optional[Path] = None,
    search_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
  ) -> "TraceConfig":
    """
    Resolves the configuration from TOML, environment and CLI overrides.

    Args:
        app (Optional[str]): CLI override for the application label.
        overwrite (Optional[bool]): CLI override for in-place rewriting.
        default_select (Optional[bool]): CLI override for the selection policy.
        skip_generated (Optional[bool]): CLI override for generated-file handling.
        workers (Optional[int]): CLI override for the worker count.
        pattern_overrides (Optional[Dict[str, str]]): CLI overrides for TracePattern fields.
        config_file (Optional[Path]): Explicit TOML file to read.
        search_path (Optional[Path]): Directory to start the pyproject.toml search from.
        environ (Optional[Mapping[str, str]]): Environment mapping (defaults to os.environ).

    Returns:
        TraceConfig: The fully resolved configuration.

    Raises:
        ConfigError: If any layer provides an invalid value.
    """
    settings: Dict[str, Any] = {}
    pattern: Dict[str, Any] = {}

    # 1. pyproject.toml discovery
    toml_config, _ = _load_toml_settings(search_path or Path.cwd())
    _merge_layer(settings, pattern, toml_config)

    # 2. Explicit config file
    if config_file is not None:
      _merge_layer(settings, pattern, _read_config_file(config_file))

    # 3. Environment
    settings.update(_env_settings(os.environ if environ is None else environ))

    # 4. CLI
    cli = {
      "app": app,
      "overwrite": overwrite,
      "default_select": default_select,
      "skip_generated": skip_generated,
      "workers": workers,
    }
    settings.update({k: v for k, v in cli.items() if v is not None})
    pattern.update(pattern_overrides or {})

    try:
      final_pattern = TracePattern.model_validate({**DEFAULT_TRACE_PATTERN.model_dump(), **pattern})
      return cls.model_validate({**settings, "pattern": final_pattern})
    except ValidationError as e:
      raise ConfigError(f"Invalid configuration: {e}") from e


DEFAULT_TRACE_CONFIG = TraceConfig()


def _merge_layer(settings: Dict[str, Any], pattern: Dict[str, Any], layer: Dict[str, Any]) -> None:
  """
  Folds one TOML layer into the accumulated settings.

  Keys are normalized (``default-select`` -> ``default_select``) and the
  nested ``pattern`` table is merged field by field.
  """
  for raw_key, value in layer.items():
    key = raw_key.replace("-", "_")
    key = _KEY_ALIASES.get(key, key)
    if key == "pattern":
      if not isinstance(value, dict):
        raise ConfigError("'pattern' must be a table")
      pattern.update({k.replace("-", "_"): v for k, v in value.items()})
    else:
      settings[key] = value


def _load_toml_settings(start_path: Path) -> Tuple[Dict[str, Any], Optional[Path]]:
  """
  Recursively searches parents for 'pyproject.toml' and extracts config.

  Args:
      start_path (Path): Directory to start search from.

  Returns:
      Tuple[Dict, Optional[Path]]: The config dict and the directory definition was found in.
  """
  current = start_path.resolve()
  if current.is_file():
    current = current.parent

  for parent in [current, *current.parents]:
    toml_path = parent / "pyproject.toml"
    if toml_path.exists() and toml_path.is_file():
      try:
        with open(toml_path, "rb") as f:
          data = tomllib.load(f)
      except (OSError, tomllib.TOMLDecodeError) as e:
        log_warning(f"Ignoring unreadable {toml_path}: {e}")
        return {}, None

      tool_section = data.get("tool", {})
      return tool_section.get(TOOL_SECTION, {}), parent

  return {}, None


def _read_config_file(path: Path) -> Dict[str, Any]:
  """
  Reads an explicit TOML config file.

  Both a dedicated file (top-level keys) and a pyproject-style file
  (``[tool.py_instrument]``) are accepted.

  Raises:
      ConfigError: If the file is missing or not valid TOML.
  """
  try:
    with open(path, "rb") as f:
      data = tomllib.load(f)
  except (OSError, tomllib.TOMLDecodeError) as e:
    raise ConfigError(f"Cannot read config file {path}: {e}") from e

  if "tool" in data and TOOL_SECTION in data["tool"]:
    return data["tool"][TOOL_SECTION]
  return data


def _env_settings(environ: Mapping[str, str]) -> Dict[str, Any]:
  """
  Extracts ``INSTRA_*`` variables into TraceConfig fields.
  """
  found: Dict[str, Any] = {}
  for suffix, field_name in _ENV_FIELDS.items():
    raw = environ.get(ENV_PREFIX + suffix)
    if raw is None:
      continue
    if field_name in ("overwrite", "default_select", "skip_generated"):
      found[field_name] = parse_bool(raw, ENV_PREFIX + suffix)
    elif field_name == "workers":
      try:
        found[field_name] = int(raw)
      except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX + suffix} must be an integer, got '{raw}'") from e
    else:
      found[field_name] = raw
  return found


def parse_bool(value: str, label: str = "value") -> bool:
  """
  Parses a human boolean (``1/0``, ``true/false``, ``yes/no``, ``on/off``).

  Args:
      value (str): The raw string.
      label (str): Name used in the error message.

  Returns:
      bool: The parsed flag.

  Raises:
      ConfigError: If the string is not a recognised boolean.
  """
  lowered = value.strip().lower()
  if lowered in _TRUE_STRINGS:
    return True
  if lowered in _FALSE_STRINGS:
    return False
  raise ConfigError(f"{label} must be a boolean, got '{value}'")


def parse_cli_key_values(items: Optional[List[str]]) -> Dict[str, str]:
  """
  Parses a list of 'key=value' strings into a dictionary.

  Values are kept as strings; the pydantic models perform validation.

  Args:
      items (Optional[List[str]]): List of raw CLI strings directly from argparse.

  Returns:
      Dict[str, str]: Parsed dictionary.

  Raises:
      ConfigError: If an item has no '='.
  """
  if not items:
    return {}

  config = {}
  for item in items:
    if "=" not in item:
      raise ConfigError(f"Invalid option format: '{item}'. Expected 'key=value'.")

    key, val_str = item.split("=", 1)
    config[key.strip().replace("-", "_")] = val_str.strip()

  return config
