"""
proofbuild: builds goto programs for CBMC proofs and runs the analyses.
"""
from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Lazy import
if TYPE_CHECKING:
    from proofbuild.targets import ProofBuild

def __getattr__(name: str):
    if name == "ProofBuild":
        from proofbuild.targets import ProofBuild
        return ProofBuild
    raise AttributeError(f"module {__name__} has no attribute {name}")

__all__ = ["ProofBuild"]
