#!/usr/bin/env python3
"""Entry point for the orphan queue crash-test workload.

The crash-injection driver records this process; stdout is the transcript.
"""

from __future__ import annotations

import os
import sys

# Allow invocation as `python3 scripts/orphan_workload.py` without requiring
# callers to install the package or set PYTHONPATH.
REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from orphan_harness.workload import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
