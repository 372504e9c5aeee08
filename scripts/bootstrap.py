#!/usr/bin/env python
"""
Bootstrap the local demo cluster from a source checkout.

Usage:
    uv run python scripts/bootstrap.py [run|status|preflight] [options]

Equivalent to the installed `localnet-bootstrap` command.
"""

from __future__ import annotations

import sys
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from localnet.cli import main


if __name__ == "__main__":
    sys.exit(main())
