"""The three cbmc runs over the final goto program.

All three tolerate cbmc's violation status: finding a bug is the expected
result of some proofs, and the trace, property list and coverage must still
be produced for the report.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from proofbuild.config import ProofConfig
from proofbuild.core.errors import WorkspaceError
from proofbuild.core.logging import get_logger
from proofbuild.flags import compose_cbmc_flags, coverage_flags
from proofbuild.resolver import StampResolver
from proofbuild.runner import ExitPolicy, Failure, StageRunner, Success, ViolationFound, classify
from proofbuild.workspace import Workspace

logger = get_logger(__name__)

AnyOutcome = Union[Success, ViolationFound, Failure]

ANALYSES = ("cbmc", "property", "coverage")


@dataclass
class AnalysisResults:
    outcomes: Dict[str, AnyOutcome]

    @property
    def violation_found(self) -> bool:
        return any(isinstance(o, ViolationFound) for o in self.outcomes.values())

    @property
    def exit_status(self) -> int:
        """Exit status of the last analysis run, after the violation remap."""
        if not self.outcomes:
            return 0
        return list(self.outcomes.values())[-1].exit_status


class AnalysisDriver:
    def __init__(self, config: ProofConfig,
                 workspace: Optional[Workspace] = None,
                 runner: Optional[StageRunner] = None,
                 force: bool = False):
        self.config = config
        self.workspace = workspace or Workspace.for_config(config)
        self.runner = runner or StageRunner(cwd=config.proof_root)
        self.resolver = StampResolver(self.workspace, force=force)
        self.flags = compose_cbmc_flags(config)

    def command(self, kind: str) -> List[str]:
        goto = str(self.workspace.final_artifact)
        cbmc = self.config.tools.cbmc
        if kind == "cbmc":
            return [cbmc, *self.flags, "--trace", goto]
        if kind == "property":
            return [cbmc, *self.flags, "--show-properties", "--xml-ui", goto]
        if kind == "coverage":
            return [cbmc, *coverage_flags(self.flags), "--cover", "location", "--xml-ui", goto]
        raise WorkspaceError(f"Unknown analysis '{kind}'")

    def run(self, kind: str) -> AnyOutcome:
        if not self.workspace.final_artifact.is_file():
            raise WorkspaceError(
                f"{self.workspace.final_artifact} does not exist; build the goto target first"
            )
        stage = f"{self.config.entry}:{kind}"
        command = self.command(kind)
        result = self.workspace.result(kind)
        log = self.workspace.analysis_log(kind)

        digest = self.resolver.input_digest([self.workspace.final_artifact], command)
        status = self.resolver.recorded_status(result)
        if status is not None and self.resolver.is_fresh(result, digest):
            logger.info(f"[{stage}] {result.name} is up to date")
            return classify(stage, status, ExitPolicy.TOLERATE_VIOLATION, log, command)
        self.resolver.invalidate(result)

        outcome = self.runner.run(
            stage, command, log,
            policy=ExitPolicy.TOLERATE_VIOLATION,
            output_path=result,
        )
        self.resolver.record(result, digest, [self.workspace.final_artifact], status=outcome.status)
        return outcome

    def full_check(self) -> AnyOutcome:
        return self.run("cbmc")

    def properties(self) -> AnyOutcome:
        return self.run("property")

    def coverage(self) -> AnyOutcome:
        return self.run("coverage")

    def run_all(self) -> AnalysisResults:
        return AnalysisResults({kind: self.run(kind) for kind in ANALYSES})
