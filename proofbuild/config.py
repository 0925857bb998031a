"""Proof configuration.

A proof is configured once, before anything runs, by merging JSON layers:

  1. field defaults of ProofConfig
  2. every ``proofbuild.json`` found walking up from the proof directory
     (outermost first, so a project-wide file is overridden by a closer one)
  3. ``proof.json`` in the proof directory
  4. files passed with ``--config`` on the command line
  5. ``PROOFBUILD_<TOOL>`` environment variables (tool paths only)
  6. ``--set KEY=VALUE`` overrides

A key replaces the value of earlier layers. A key written with a leading
``+`` (``"+defines": [...]``) appends to a list or updates a map instead.

Example proof.json:
    {
      "entry": "buffer_push_harness",
      "dependencies": ["../../src/buffer.c"],
      "remove_function_body": ["buffer_grow"],
      "abstractions": ["../../stubs/buffer_grow.c"],
      "unwindset": {"buffer_copy.0": 9},
      "object_bits": 8
    }

The result is a frozen model: stages get a reference to it and can't change it.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from proofbuild.core.errors import ConfigurationError
from proofbuild.core.logging import get_logger
from proofbuild.core.serialization import read_json_file, from_json
from proofbuild.core.types import FunctionName, LoopId, UnwindBound, digest_parts

logger = get_logger(__name__)

PROJECT_FILE = "proofbuild.json"
PROOF_FILE = "proof.json"

# Defines the flag composer owns; users must go through object_bits / deep_checks
RESERVED_DEFINES = ("CBMC_OBJECT_BITS", "DEEP_CHECKS")

_DEFINE_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(=.*)?$")

# Keys whose values are paths, resolved against the directory of the file declaring them
_PATH_LIST_KEYS = ("dependencies", "include_dirs", "abstractions")
_PATH_KEYS = ("harness_file",)


class ToolPaths(BaseModel):
    """Executables for the external collaborators."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    goto_cc: str = "goto-cc"
    goto_instrument: str = "goto-instrument"
    goto_analyzer: str = "goto-analyzer"
    cbmc: str = "cbmc"
    cbmc_viewer: str = "cbmc-viewer"


class ProofConfig(BaseModel):
    """Everything one proof build reads. Immutable once built."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    entry: FunctionName
    proof_root: Path = Field(default_factory=Path.cwd)
    harness_file: Optional[Path] = None

    # Sources and preprocessing
    dependencies: Tuple[Path, ...] = ()
    include_dirs: Tuple[Path, ...] = ()
    defines: Tuple[str, ...] = ()

    # Body removal and abstraction
    remove_function_body: Tuple[FunctionName, ...] = ()
    extra_remove_function_body: Tuple[FunctionName, ...] = ()
    abstractions: Tuple[Path, ...] = ()

    # Analysis knobs
    unwind: UnwindBound = 1
    unwinding_assertions: bool = True
    # Written as a JSON map, kept as sorted (loop id, bound) pairs so it can't be mutated
    unwindset: Tuple[Tuple[LoopId, UnwindBound], ...] = ()
    object_bits: int = Field(default=6, ge=1, le=63)
    deep_checks: bool = False
    verbosity: int = Field(default=4, ge=0, le=10)
    extra_cbmc_flags: Tuple[str, ...] = ()

    # Optional stages, off until they are considered stable
    unwind_goto: bool = False
    generate_function_bodies: bool = False
    simplify: bool = False

    tools: ToolPaths = Field(default_factory=ToolPaths)

    build_dir: str = "gotos"
    log_dir: str = "logs"
    report_dir: str = "html"

    @field_validator("defines")
    @classmethod
    def check_defines(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for d in v:
            m = _DEFINE_RE.match(d)
            if not m:
                raise ValueError(f"Malformed define '{d}', expected NAME or NAME=VALUE")
            if m.group(1) in RESERVED_DEFINES:
                raise ValueError(
                    f"Define {m.group(1)} is derived from the configuration; "
                    f"set object_bits / deep_checks instead"
                )
        return v

    @field_validator("unwindset", mode="before")
    @classmethod
    def sort_unwindset(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return tuple(sorted(v.items(), key=lambda item: str(item[0])))
        return v

    @field_validator("extra_cbmc_flags")
    @classmethod
    def check_extra_flags(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for tok in v:
            if tok == "--object-bits" or tok.startswith("--object-bits="):
                raise ValueError("--object-bits must be set through object_bits so compile and analysis agree")
        return v

    @field_validator("build_dir", "log_dir", "report_dir")
    @classmethod
    def check_relative(cls, v: str) -> str:
        p = Path(v)
        if p.is_absolute() or ".." in p.parts or not v:
            raise ValueError(f"'{v}' must be a plain directory name below the proof directory")
        return v

    @property
    def harness_path(self) -> Path:
        """The C file holding the entry function."""
        if self.harness_file is not None:
            return self.resolve(self.harness_file)
        return self.proof_root / f"{self.entry}.c"

    @property
    def effective_removals(self) -> List[str]:
        """remove_function_body + extra_remove_function_body, duplicates dropped."""
        seen: List[str] = []
        for fn in self.remove_function_body + self.extra_remove_function_body:
            if fn not in seen:
                seen.append(fn)
        return seen

    def resolve(self, path: Path) -> Path:
        return path if path.is_absolute() else self.proof_root / path

    def fingerprint(self) -> str:
        """Stable digest of the whole configuration."""
        return digest_parts([self.model_dump_json()])


def find_project_configs(start_dir: Path) -> List[Path]:
    """All proofbuild.json files from the filesystem root down to start_dir."""
    found = []
    current = Path(start_dir).resolve()
    while True:
        candidate = current / PROJECT_FILE
        if candidate.is_file():
            found.append(candidate)
        if current.parent == current:
            break
        current = current.parent
    found.reverse()
    return found


def _absolutize(layer: Dict[str, Any], base: Path) -> Dict[str, Any]:
    out = {}
    for key, value in layer.items():
        bare = key.lstrip("+")
        if bare in _PATH_LIST_KEYS and isinstance(value, list):
            value = [str((base / v).resolve()) if not Path(v).is_absolute() else v for v in value]
        elif bare in _PATH_KEYS and isinstance(value, str):
            value = str((base / value).resolve()) if not Path(value).is_absolute() else value
        out[key] = value
    return out


def merge_layer(base: Dict[str, Any], layer: Dict[str, Any]) -> Dict[str, Any]:
    """Applies one configuration layer on top of base, honouring '+key' appends."""
    merged = dict(base)
    for key, value in layer.items():
        if not key.startswith("+"):
            merged[key] = value
            continue
        key = key[1:]
        current = merged.get(key)
        if current is None:
            merged[key] = value
        elif isinstance(current, dict) and isinstance(value, dict):
            merged[key] = {**current, **value}
        elif isinstance(current, (list, tuple)) and isinstance(value, (list, tuple)):
            merged[key] = list(current) + list(value)
        else:
            raise ConfigurationError(f"Cannot extend '{key}': only lists and maps support '+{key}'")
    return merged


def _load_layer(path: Path) -> Dict[str, Any]:
    try:
        data = read_json_file(path)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration {path} must hold a JSON object")
    logger.debug(f"Loaded configuration layer {path}")
    return _absolutize(data, path.parent.resolve())


def tool_env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """PROOFBUILD_GOTO_CC, PROOFBUILD_CBMC, ... as a '+tools' layer."""
    environ = os.environ if environ is None else environ
    tools = {}
    for name in ToolPaths.model_fields:
        value = environ.get(f"PROOFBUILD_{name.upper()}")
        if value:
            tools[name] = value
    return {"+tools": tools} if tools else {}


def parse_override(text: str) -> Tuple[str, Any]:
    """Parses a --set KEY=VALUE argument; VALUE is JSON when it parses as JSON."""
    if "=" not in text:
        raise ConfigurationError(f"Override '{text}' must look like KEY=VALUE")
    key, raw = text.split("=", 1)
    key = key.strip()
    if not key:
        raise ConfigurationError(f"Override '{text}' has an empty key")
    try:
        value = from_json(raw)
    except ValueError:
        value = raw
    return key, value


def build_config(data: Dict[str, Any]) -> ProofConfig:
    """Validates a merged mapping into a ProofConfig."""
    try:
        return ProofConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid proof configuration:\n{e}")


def load_proof_config(proof_dir: Path,
                      config_files: Sequence[Path] = (),
                      overrides: Sequence[str] = (),
                      environ: Optional[Dict[str, str]] = None) -> ProofConfig:
    """Merges every configuration layer for the proof in proof_dir."""
    proof_dir = Path(proof_dir).resolve()
    if not proof_dir.is_dir():
        raise ConfigurationError(f"Proof directory not found: {proof_dir}")

    data: Dict[str, Any] = {}
    layers = find_project_configs(proof_dir)
    if (proof_dir / PROOF_FILE).is_file():
        layers.append(proof_dir / PROOF_FILE)
    layers.extend(Path(p).resolve() for p in config_files)

    for path in layers:
        data = merge_layer(data, _load_layer(path))

    data = merge_layer(data, tool_env_overrides(environ))

    for text in overrides:
        key, value = parse_override(text)
        data = merge_layer(data, _absolutize({key: value}, proof_dir))

    data["proof_root"] = str(proof_dir)
    if "entry" not in data:
        raise ConfigurationError(f"No entry point configured for proof {proof_dir}")
    return build_config(data)
