"""CBMC flag composition.

The same configuration drives the compile defines (goto-cc) and the analysis
flags (cbmc). Object bits appear on both sides and must agree, otherwise
the compiled program and the checker disagree on how many objects exist.
"""

from typing import Dict, List, Sequence

from proofbuild.config import ProofConfig
from proofbuild.core.errors import ConfigurationError

# Always-on safety checks
BASELINE_CHECKS = (
    "--bounds-check",
    "--conversion-check",
    "--div-by-zero-check",
    "--enum-range-check",
    "--float-overflow-check",
    "--nan-check",
    "--pointer-check",
    "--pointer-overflow-check",
    "--pointer-primitive-check",
    "--signed-overflow-check",
    "--undefined-shift-check",
    "--unsigned-overflow-check",
)

UNWINDING_ASSERTIONS = "--unwinding-assertions"
OBJECT_BITS_FLAG = "--object-bits"
OBJECT_BITS_DEFINE = "CBMC_OBJECT_BITS"
DEEP_CHECKS_DEFINE = "DEEP_CHECKS"


def render_unwindset(unwindset: Dict[str, int]) -> str:
    """{"f": 2, "g.0": 3} -> "f:2,g.0:3" (sorted, so the result is stable)."""
    return ",".join(f"{name}:{bound}" for name, bound in sorted(unwindset.items()))


def unwind_flags(config: ProofConfig) -> List[str]:
    flags = ["--unwind", str(config.unwind)]
    if config.unwindset:
        flags += ["--unwindset", render_unwindset(dict(config.unwindset))]
    return flags


def compose_cbmc_flags(config: ProofConfig) -> List[str]:
    """The full flag list handed to every cbmc invocation, in a fixed order."""
    flags = list(BASELINE_CHECKS)
    flags += ["--unwind", str(config.unwind)]
    if config.unwinding_assertions:
        flags.append(UNWINDING_ASSERTIONS)
    if config.unwindset:
        flags += ["--unwindset", render_unwindset(dict(config.unwindset))]
    flags += [OBJECT_BITS_FLAG, str(config.object_bits)]
    flags += ["--verbosity", str(config.verbosity)]
    flags += list(config.extra_cbmc_flags)
    return flags


def compose_defines(config: ProofConfig) -> List[str]:
    defines = [f"-D{d}" for d in config.defines]
    defines.append(f"-D{OBJECT_BITS_DEFINE}={config.object_bits}")
    defines.append(f"-D{DEEP_CHECKS_DEFINE}={1 if config.deep_checks else 0}")
    return defines


def compose_includes(config: ProofConfig) -> List[str]:
    return [f"-I{config.resolve(d)}" for d in config.include_dirs]


def coverage_flags(flags: Sequence[str]) -> List[str]:
    """Coverage must not be rejected by an unwinding-assertion failure."""
    return [f for f in flags if f != UNWINDING_ASSERTIONS]


def _object_bits_in_flags(flags: Sequence[str]) -> List[str]:
    values = []
    for i, tok in enumerate(flags):
        if tok == OBJECT_BITS_FLAG:
            values.append(flags[i + 1] if i + 1 < len(flags) else "")
        elif tok.startswith(OBJECT_BITS_FLAG + "="):
            values.append(tok.split("=", 1)[1])
    return values


def _object_bits_in_defines(defines: Sequence[str]) -> List[str]:
    prefix = f"-D{OBJECT_BITS_DEFINE}"
    values = []
    for d in defines:
        if d == prefix:
            values.append("")
        elif d.startswith(prefix + "="):
            values.append(d.split("=", 1)[1])
    return values


def check_object_bits(flags: Sequence[str], defines: Sequence[str]) -> int:
    """
    Verifies the analysis and the compile step agree on object bits.
    Returns the agreed width; raises ConfigurationError otherwise.
    """
    in_flags = _object_bits_in_flags(flags)
    in_defines = _object_bits_in_defines(defines)
    if len(in_flags) != 1:
        raise ConfigurationError(f"Expected exactly one {OBJECT_BITS_FLAG} flag, found {len(in_flags)}")
    if len(in_defines) != 1:
        raise ConfigurationError(f"Expected exactly one {OBJECT_BITS_DEFINE} define, found {len(in_defines)}")
    if in_flags[0] != in_defines[0]:
        raise ConfigurationError(
            f"{OBJECT_BITS_FLAG} {in_flags[0]} does not match -D{OBJECT_BITS_DEFINE}={in_defines[0]}"
        )
    try:
        return int(in_flags[0])
    except ValueError:
        raise ConfigurationError(f"{OBJECT_BITS_FLAG} value '{in_flags[0]}' is not an integer")
