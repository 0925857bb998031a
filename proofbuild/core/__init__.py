"""
Core module for proofbuild.
Provides error handling, logging, types, and serialization.
"""
from proofbuild.core.errors import (
    ProofbuildError, ConfigurationError, WorkspaceError, StageFailedError, UnknownTargetError
)
from proofbuild.core.logging import get_logger, set_level
from proofbuild.core.types import (
    FunctionName, LoopId, UnwindBound, sha256_file, digest_parts, utc_now_iso
)
from proofbuild.core.serialization import (
    from_json, atomic_write_text, atomic_copy, safe_mkdir, read_text, read_json_file
)

__all__ = [
    "ProofbuildError", "ConfigurationError", "WorkspaceError", "StageFailedError", "UnknownTargetError",
    "get_logger", "set_level",
    "FunctionName", "LoopId", "UnwindBound", "sha256_file", "digest_parts", "utc_now_iso",
    "from_json", "atomic_write_text", "atomic_copy", "safe_mkdir", "read_text", "read_json_file"
]
