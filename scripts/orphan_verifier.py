#!/usr/bin/env python3
"""Entry point for the orphan queue durability verifier.

Called by the crash-injection driver as
`orphan_verifier.py <crashed state dir> <reconstructed stdout file>`.
Exit 0 (silent) on pass, 1 on a durability violation, 2 on harness errors,
3 on transcript protocol violations.
"""

from __future__ import annotations

import os
import sys

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

from orphan_harness.verifier import main  # noqa: E402

if __name__ == "__main__":
    raise SystemExit(main())
