import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

def from_json(s: str) -> Any:
    """Deserializes an object from a JSON string."""
    return json.loads(s)

def atomic_write_text(path: Path, text: str) -> None:
    """Writes text to a file atomically using a temporary file."""
    path = Path(path)
    safe_mkdir(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f"{path.name}.tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise

def atomic_copy(src: Path, dst: Path) -> None:
    """Copies a file byte for byte; readers of dst never see a partial copy."""
    dst = Path(dst)
    safe_mkdir(dst.parent)

    fd, temp_path = tempfile.mkstemp(dir=dst.parent, prefix=f"{dst.name}.tmp")
    os.close(fd)
    try:
        shutil.copyfile(src, temp_path)
        os.replace(temp_path, dst)
    except Exception:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise

def safe_mkdir(path: Path) -> None:
    """Ensures a directory exists."""
    Path(path).mkdir(parents=True, exist_ok=True)

def read_text(path: Path) -> str:
    """Reads text from a file with explicit UTF-8 handling."""
    with open(path, "r", encoding="utf-8") as f:
        return f.read()

def read_json_file(path: Path) -> Any:
    """Reads and parses a JSON file."""
    return from_json(read_text(path))
