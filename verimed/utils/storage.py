"""
Small JSON persistence helpers shared by the store and the registry.
"""

import json
import os
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON through a temporary file so readers never see a partial file."""
    path = Path(path)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(payload, f, indent=2)
    os.replace(tmp_path, path)


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON file, returning ``default`` when it does not exist."""
    path = Path(path)
    if not path.exists():
        return default
    with open(path, "r") as f:
        return json.load(f)
