import shutil
from pathlib import Path
from typing import List

from proofbuild.config import ProofConfig
from proofbuild.core.errors import WorkspaceError
from proofbuild.core.logging import get_logger
from proofbuild.core.serialization import safe_mkdir

logger = get_logger(__name__)

FIRST_STAGE = 0
LAST_STAGE = 7

# Result kinds produced by the analysis driver, mapped to file suffixes
RESULT_SUFFIXES = {
    "cbmc": "cbmc.txt",
    "property": "property.xml",
    "coverage": "coverage.xml",
}

# Written by the report renderer next to the proof; shared by every entry
TAGS_FILE = "TAGS"

# Entry names are C identifiers and never contain ".", so "<entry>.stage<N>"
# can't be mistaken for another entry's final artifact or log
STAGE_INFIX = ".stage"


class Workspace:
    """
    Directories and file names owned by one entry point's build.

    Everything is prefixed with the entry name and the report gets its own
    subdirectory, so two entries sharing a proof directory never touch each
    other's files.
    """

    def __init__(self, proof_root: Path, entry: str,
                 build_dir: str = "gotos", log_dir: str = "logs", report_dir: str = "html"):
        self.root = Path(proof_root)
        self.entry = entry
        self.build_dir = self.root / build_dir
        self.log_dir = self.root / log_dir
        self.report_root = self.root / report_dir
        self.report_dir = self.report_root / entry

    @classmethod
    def for_config(cls, config: ProofConfig) -> "Workspace":
        return cls(config.proof_root, config.entry,
                   build_dir=config.build_dir, log_dir=config.log_dir, report_dir=config.report_dir)

    def ensure(self) -> None:
        if not self.root.is_dir():
            raise WorkspaceError(f"Proof directory does not exist: {self.root}")
        safe_mkdir(self.build_dir)
        safe_mkdir(self.log_dir)

    def artifact(self, index: int) -> Path:
        if not FIRST_STAGE <= index <= LAST_STAGE:
            raise WorkspaceError(f"No stage {index}; stages run {FIRST_STAGE}..{LAST_STAGE}")
        return self.build_dir / f"{self.entry}{STAGE_INFIX}{index}.goto"

    @property
    def final_artifact(self) -> Path:
        return self.build_dir / f"{self.entry}.goto"

    def stage_log(self, index: int) -> Path:
        return self.log_dir / f"{self.artifact(index).stem}.log"

    @property
    def final_log(self) -> Path:
        return self.log_dir / f"{self.entry}.log"

    def result(self, kind: str) -> Path:
        try:
            suffix = RESULT_SUFFIXES[kind]
        except KeyError:
            raise WorkspaceError(f"Unknown result kind '{kind}'")
        return self.log_dir / f"{self.entry}-{suffix}"

    def analysis_log(self, kind: str) -> Path:
        """Annotated log of the invocation that produced result(kind)."""
        self.result(kind)
        return self.log_dir / f"{self.entry}-{kind}.log"

    @property
    def report_log(self) -> Path:
        return self.log_dir / f"{self.entry}-report.log"

    def stamp(self, name: str) -> Path:
        return self.build_dir / f"{name}.stamp.json"

    def _owned_files(self) -> List[Path]:
        outputs = [self.artifact(i) for i in range(FIRST_STAGE, LAST_STAGE + 1)]
        outputs += [self.final_artifact]
        outputs += [self.result(kind) for kind in RESULT_SUFFIXES]
        files = outputs + [self.stamp(p.name) for p in outputs]
        files += [self.stage_log(i) for i in range(FIRST_STAGE, LAST_STAGE + 1)]
        files += [self.analysis_log(kind) for kind in RESULT_SUFFIXES]
        files += [self.final_log, self.report_log, self.root / TAGS_FILE]
        return files

    def clean(self) -> int:
        """Removes artifacts, logs, results, stamps and TAGS. Returns the number of files removed."""
        removed = 0
        for path in self._owned_files():
            if path.is_file():
                path.unlink()
                removed += 1
        for d in (self.build_dir, self.log_dir):
            if d.is_dir() and not any(d.iterdir()):
                d.rmdir()
        logger.info(f"[{self.entry}] clean removed {removed} file(s)")
        return removed

    def veryclean(self) -> int:
        """
        clean, plus this entry's rendered report and the log directory.

        The log directory is only removed once no other entry has goto
        programs left in the build directory; the report root goes once it
        is empty.
        """
        removed = self.clean()
        if self.report_dir.is_dir():
            shutil.rmtree(self.report_dir)
            logger.info(f"[{self.entry}] removed {self.report_dir}")
        if self.report_root.is_dir() and not any(self.report_root.iterdir()):
            self.report_root.rmdir()
        if self.log_dir.is_dir():
            if self.build_dir.exists():
                logger.info(f"[{self.entry}] keeping {self.log_dir}; other entries still build here")
            else:
                shutil.rmtree(self.log_dir)
                logger.info(f"[{self.entry}] removed {self.log_dir}")
        return removed
