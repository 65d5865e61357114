"""
Entry point for module execution (``python -m py_instrument``).

This module delegates execution to the CLI handler in ``py_instrument.cli.__main__``.
"""

import sys

from py_instrument.cli.__main__ import main

if __name__ == "__main__":
  sys.exit(main())
