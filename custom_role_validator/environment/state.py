"""
Environment state file — lets `cleanup` tear down an environment kept by an
earlier run. The client secret is never written.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from .context import SuiteContext

STATE_VERSION = 1


def save_state(context: SuiteContext, path: Path) -> Path:
    """Atomically write the context to `path`."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"version": STATE_VERSION, "context": context.to_dict(include_secret=False)}
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, default=str)
        f.write("\n")
    os.replace(tmp_path, path)
    return path


def load_state(path: Path) -> SuiteContext:
    """Read a state file written by save_state()."""
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    version = payload.get("version")
    if version != STATE_VERSION:
        raise ValueError(f"Unsupported state file version {version!r} in {path}")
    return SuiteContext.from_dict(payload["context"])
