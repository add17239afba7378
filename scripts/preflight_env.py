#!/usr/bin/env python3
"""Quick preflight: print provider credential lengths without exposing values.

Loads the repo-root .env the same way run.py does, so the output reflects
what a scan would see.
"""
from __future__ import annotations

import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from run import load_env  # noqa: E402

CREDENTIAL_VARS = ("DATAFORSEO_LOGIN", "DATAFORSEO_PASSWORD")


def _len(name: str) -> int:
    return len((os.getenv(name) or "").strip())


if __name__ == "__main__":
    load_env(root_dir=REPO_ROOT)
    for name in CREDENTIAL_VARS:
        print(name, _len(name))
    raise SystemExit(0 if all(_len(n) for n in CREDENTIAL_VARS) else 1)
