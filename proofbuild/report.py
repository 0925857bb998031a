from typing import List, Optional, Union

from proofbuild.config import ProofConfig
from proofbuild.core.errors import WorkspaceError
from proofbuild.core.logging import get_logger
from proofbuild.runner import ExitPolicy, Failure, StageRunner, Success
from proofbuild.workspace import Workspace

logger = get_logger(__name__)


def report_command(config: ProofConfig, workspace: Workspace) -> List[str]:
    return [
        config.tools.cbmc_viewer,
        "--goto", str(workspace.final_artifact),
        "--srcdir", str(config.proof_root),
        "--htmldir", str(workspace.report_dir),
        "--result", str(workspace.result("cbmc")),
        "--property", str(workspace.result("property")),
        "--coverage", str(workspace.result("coverage")),
    ]


def render_report(config: ProofConfig,
                  workspace: Optional[Workspace] = None,
                  runner: Optional[StageRunner] = None) -> Union[Success, Failure]:
    """
    Renders the HTML report from the goto program and the three analysis
    results. The viewer only reads them; it writes to the report directory.
    """
    workspace = workspace or Workspace.for_config(config)
    runner = runner or StageRunner(cwd=config.proof_root)

    needed = [workspace.final_artifact] + [workspace.result(k) for k in ("cbmc", "property", "coverage")]
    missing = [p.name for p in needed if not p.is_file()]
    if missing:
        raise WorkspaceError(f"Cannot render report, missing: {', '.join(missing)}")

    outcome = runner.run(f"{config.entry}:report", report_command(config, workspace),
                         workspace.report_log, policy=ExitPolicy.STRICT)
    logger.info(f"[{config.entry}] report written to {workspace.report_dir}")
    return outcome
