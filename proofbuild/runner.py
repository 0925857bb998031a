"""Runs one external tool invocation and classifies how it ended."""

import shlex
import subprocess
from collections import deque
from enum import Enum
from pathlib import Path
from typing import Annotated, IO, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from proofbuild.core.errors import StageFailedError
from proofbuild.core.logging import get_logger
from proofbuild.core.serialization import atomic_copy, safe_mkdir

logger = get_logger(__name__)

# cbmc: "completed, and found a counterexample"
VIOLATION_EXIT_STATUS = 10

# Shell convention for "command not found"
TOOL_NOT_FOUND_STATUS = 127

# Shell convention for "killed by signal N": 128 + N
SIGNAL_STATUS_BASE = 128


def normalize_status(returncode: int) -> int:
    """Popen reports death by signal N as -N; turn that into 128 + N."""
    if returncode < 0:
        return SIGNAL_STATUS_BASE - returncode
    return returncode

# Tail of the tool output kept on a Failure; the log keeps everything
MAX_CAPTURED_LINES = 200


class ExitPolicy(str, Enum):
    STRICT = "strict"
    TOLERATE_VIOLATION = "tolerate-violation"


class Success(BaseModel):
    kind: Literal["success"] = "success"
    stage: str
    log: Path
    status: int = 0
    skipped: bool = False
    command: List[str] = Field(default_factory=list)

    @property
    def exit_status(self) -> int:
        return 0


class ViolationFound(BaseModel):
    """The tool ran to completion and reported a property violation."""
    kind: Literal["violation"] = "violation"
    stage: str
    log: Path
    status: int = VIOLATION_EXIT_STATUS
    command: List[str] = Field(default_factory=list)

    @property
    def exit_status(self) -> int:
        return 0


class Failure(BaseModel):
    kind: Literal["failure"] = "failure"
    stage: str
    log: Path
    status: int
    output: str = ""
    command: List[str] = Field(default_factory=list)

    @property
    def exit_status(self) -> int:
        return self.status


Outcome = Annotated[Union[Success, ViolationFound, Failure], Field(discriminator="kind")]


def classify(stage: str, status: int, policy: ExitPolicy, log: Path,
             command: Sequence[str] = (), output: str = "") -> Union[Success, ViolationFound, Failure]:
    """Maps an exit status to an outcome under the given policy."""
    command = list(command)
    if status == 0:
        return Success(stage=stage, log=log, command=command)
    if policy == ExitPolicy.TOLERATE_VIOLATION and status == VIOLATION_EXIT_STATUS:
        return ViolationFound(stage=stage, log=log, command=command)
    return Failure(stage=stage, log=log, status=status, output=output, command=command)


class StageRunner:
    """
    Executes tool invocations for one proof.

    Every call leaves a log behind, whether the tool succeeded, failed,
    or could not be started at all.
    """

    def __init__(self, cwd: Optional[Path] = None):
        self.cwd = Path(cwd) if cwd is not None else None

    def run(self,
            stage: str,
            command: Sequence[str],
            log_path: Path,
            policy: ExitPolicy = ExitPolicy.STRICT,
            output_path: Optional[Path] = None,
            raise_on_failure: bool = True) -> Union[Success, ViolationFound, Failure]:
        """
        Runs command, teeing stdout+stderr into log_path.

        When output_path is given the raw tool output also goes there,
        without the command header and classification trailer of the log.
        """
        command = [str(c) for c in command]
        log_path = Path(log_path)
        safe_mkdir(log_path.parent)
        logger.info(f"[{stage}] {shlex.join(command)}")

        tail: deque = deque(maxlen=MAX_CAPTURED_LINES)
        with open(log_path, "w", encoding="utf-8") as log:
            log.write(f"$ {shlex.join(command)}\n")
            log.flush()
            out = None
            if output_path is not None:
                safe_mkdir(Path(output_path).parent)
                out = open(output_path, "w", encoding="utf-8")
            try:
                status = self._execute(stage, command, log, out, tail)
            finally:
                if out is not None:
                    out.close()

            outcome = classify(stage, status, policy, log_path, command, "".join(tail))
            log.write(f"# {stage}: exit status {status} ({outcome.kind})\n")

        if isinstance(outcome, Failure):
            logger.error(f"[{stage}] failed with status {status}; log: {log_path}")
            if raise_on_failure:
                raise StageFailedError(stage, outcome)
        elif isinstance(outcome, ViolationFound):
            logger.warning(f"[{stage}] property violation found; see {output_path or log_path}")
        else:
            logger.info(f"[{stage}] done")
        return outcome

    def _execute(self, stage: str, command: List[str], log: IO[str],
                 out: Optional[IO[str]], tail: deque) -> int:
        try:
            proc = subprocess.Popen(
                command,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            message = f"{command[0]}: cannot execute: {e.strerror or e}\n"
            log.write(message)
            tail.append(message)
            return TOOL_NOT_FOUND_STATUS

        with proc:
            for line in proc.stdout:
                log.write(line)
                if out is not None:
                    out.write(line)
                tail.append(line)
                logger.debug(f"[{stage}] {line.rstrip()}")
            return normalize_status(proc.wait())

    def skip(self, stage: str, src: Path, dst: Path, log_path: Path, reason: str) -> Success:
        """No-op stage: dst becomes a byte-for-byte copy of src, and the log says why."""
        log_path = Path(log_path)
        safe_mkdir(log_path.parent)
        atomic_copy(src, dst)
        with open(log_path, "w", encoding="utf-8") as log:
            log.write(f"{reason}\n")
            log.write(f"# {stage}: skipped, copied {Path(src).name} to {Path(dst).name}\n")
        logger.info(f"[{stage}] {reason}")
        return Success(stage=stage, log=log_path, skipped=True)
