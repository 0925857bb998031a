"""Decides whether a stage output is stale.

Each successful stage leaves a stamp next to its output holding a digest of
everything the stage declared as input: input files and the command line.
A stage reruns when its output is missing or
the digest differs. Headers pulled in by the preprocessor are not tracked,
so a clean is needed after editing one.
"""

from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from proofbuild.core.logging import get_logger
from proofbuild.core.serialization import atomic_write_text, read_text
from proofbuild.core.types import digest_parts, sha256_file, utc_now_iso
from proofbuild.workspace import Workspace

logger = get_logger(__name__)


class Stamp(BaseModel):
    """Record of the inputs an output was last built from."""
    output: str
    digest: str
    inputs: List[str] = Field(default_factory=list)
    # Exit status of the producing invocation, kept for analyses whose result
    # is replayed when the output is fresh
    status: Optional[int] = None
    built_at: str = Field(default_factory=utc_now_iso)


class StampResolver:
    def __init__(self, workspace: Workspace, force: bool = False):
        self.workspace = workspace
        self.force = force

    @staticmethod
    def input_digest(input_files: Iterable[Path], command: Sequence[str]) -> str:
        """
        Digest of a stage's declared inputs. The command line carries every
        configuration value the stage reads, so it stands in for the
        configuration.
        """
        parts = []
        for path in input_files:
            path = Path(path)
            # A missing input still changes the digest; the tool reports the real error
            parts.append(f"{path}={sha256_file(path) if path.is_file() else 'missing'}")
        parts.append("cmd=" + "\0".join(str(c) for c in command))
        return digest_parts(parts)

    def _load(self, output: Path) -> Optional[Stamp]:
        path = self.workspace.stamp(Path(output).name)
        if not path.is_file():
            return None
        try:
            return Stamp.model_validate_json(read_text(path))
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable stamp {path}: {e}")
            return None

    def is_fresh(self, output: Path, digest: str) -> bool:
        if self.force or not Path(output).is_file():
            return False
        stamp = self._load(output)
        return stamp is not None and stamp.digest == digest

    def recorded_status(self, output: Path) -> Optional[int]:
        stamp = self._load(output)
        return stamp.status if stamp is not None else None

    def record(self, output: Path, digest: str, input_files: Iterable[Path] = (),
               status: Optional[int] = None) -> None:
        stamp = Stamp(output=Path(output).name, digest=digest,
                      inputs=[str(p) for p in input_files], status=status)
        atomic_write_text(self.workspace.stamp(stamp.output), stamp.model_dump_json(indent=2))

    def invalidate(self, output: Path) -> None:
        path = self.workspace.stamp(Path(output).name)
        if path.is_file():
            path.unlink()
