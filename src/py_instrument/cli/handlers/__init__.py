from .instrument import handle_instrument, resolve_config, _print_batch_summary, _write_traces
from .config import handle_show_config

__all__ = [
  "_print_batch_summary",
  "_write_traces",
  "handle_instrument",
  "handle_show_config",
  "resolve_config",
]
