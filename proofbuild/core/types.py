import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Iterable, Union
from pydantic import AfterValidator, Field

# C identifiers as accepted by goto-cc --function and goto-instrument
_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Unwindset keys may name a loop as well: "fn.0", "fn.1", ...
_LOOP_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[0-9]+)?$")

def check_identifier(v: str) -> str:
    if not _IDENT_RE.match(v):
        raise ValueError(f"'{v}' is not a valid C identifier")
    return v

def check_loop_id(v: str) -> str:
    if not _LOOP_ID_RE.match(v):
        raise ValueError(f"'{v}' is not a function name or loop id")
    return v

FunctionName = Annotated[str, AfterValidator(check_identifier)]
LoopId = Annotated[str, AfterValidator(check_loop_id)]
UnwindBound = Annotated[int, Field(ge=1)]

def sha256_file(path: Union[str, Path], chunk_size: int = 1 << 16) -> str:
    """Returns the SHA256 hash of a file's content."""
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()

def digest_parts(parts: Iterable[str]) -> str:
    """Hashes an ordered sequence of strings; the separator keeps ("ab", "c") != ("a", "bc")."""
    h = hashlib.sha256()
    for p in parts:
        h.update(p.encode("utf-8"))
        h.update(b"\0")
    return h.hexdigest()

def utc_now_iso() -> str:
    """Returns the current UTC time in ISO8601 format with 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
