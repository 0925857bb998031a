"""Named build goals and the order they run in.

    goto -> cbmc, property, coverage -> report

clean and veryclean stand alone. Asking for a goal runs everything upstream
of it first; the stamp resolver keeps the already-fresh steps cheap.
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import networkx as nx
from joblib import Parallel, delayed
from pydantic import BaseModel

from proofbuild.analysis import ANALYSES, AnalysisDriver
from proofbuild.config import ProofConfig, load_proof_config
from proofbuild.core.errors import ProofbuildError, StageFailedError, UnknownTargetError
from proofbuild.core.logging import get_logger
from proofbuild.pipeline import Pipeline
from proofbuild.report import render_report
from proofbuild.runner import StageRunner
from proofbuild.workspace import Workspace

logger = get_logger(__name__)

GOALS = ("goto", "cbmc", "property", "coverage", "report", "clean", "veryclean")


def build_target_graph() -> nx.DiGraph:
    graph = nx.DiGraph()
    graph.add_nodes_from(GOALS)
    for kind in ANALYSES:
        graph.add_edge("goto", kind)
        graph.add_edge(kind, "report")
    return graph


TARGET_GRAPH = build_target_graph()


def plan_target(name: str, graph: nx.DiGraph = TARGET_GRAPH) -> List[str]:
    """Goals to run for name, upstream first, in a stable order."""
    if name not in graph:
        raise UnknownTargetError(f"Unknown target '{name}'; choose from {', '.join(GOALS)}")
    needed = nx.ancestors(graph, name) | {name}
    order = nx.lexicographical_topological_sort(graph, key=GOALS.index)
    return [n for n in order if n in needed]


class ProofBuild:
    """Runs build goals for one proof."""

    def __init__(self, config: ProofConfig,
                 runner: Optional[StageRunner] = None,
                 force: bool = False):
        self.config = config
        self.workspace = Workspace.for_config(config)
        self.runner = runner or StageRunner(cwd=config.proof_root)
        self.pipeline = Pipeline(config, self.workspace, self.runner, force=force)
        self.analysis = AnalysisDriver(config, self.workspace, self.runner, force=force)
        self._actions: Dict[str, Callable[[], int]] = {
            "goto": self._goto,
            "cbmc": lambda: self.analysis.full_check().exit_status,
            "property": lambda: self.analysis.properties().exit_status,
            "coverage": lambda: self.analysis.coverage().exit_status,
            "report": lambda: render_report(config, self.workspace, self.runner).exit_status,
            "clean": self._clean,
            "veryclean": self._veryclean,
        }

    def _goto(self) -> int:
        self.pipeline.build()
        return 0

    def _clean(self) -> int:
        self.workspace.clean()
        return 0

    def _veryclean(self) -> int:
        self.workspace.veryclean()
        return 0

    def run_target(self, name: str) -> int:
        """Runs name and its prerequisites; returns the exit status of the last step."""
        status = 0
        for step in plan_target(name):
            logger.info(f"[{self.config.entry}] target {step}")
            status = self._actions[step]()
        return status


class ProofResult(BaseModel):
    proof_dir: str
    target: str
    entry: Optional[str] = None
    status: int = 0
    error: Optional[str] = None


def run_proof(proof_dir: Path, target: str,
              config_files: Sequence[Path] = (),
              overrides: Sequence[str] = (),
              force: bool = False) -> ProofResult:
    """Loads the proof in proof_dir and runs target, folding errors into the result."""
    result = ProofResult(proof_dir=str(proof_dir), target=target)
    try:
        config = load_proof_config(proof_dir, config_files, overrides)
        result.entry = config.entry
        result.status = ProofBuild(config, force=force).run_target(target)
    except StageFailedError as e:
        result.status = e.status or 1
        result.error = str(e)
    except ProofbuildError as e:
        result.status = 1
        result.error = str(e)
    if result.error:
        logger.error(f"[{proof_dir}] {result.error}")
    return result


def run_proofs(proof_dirs: Sequence[Path], target: str,
               config_files: Sequence[Path] = (),
               overrides: Sequence[str] = (),
               force: bool = False,
               jobs: int = 1) -> List[ProofResult]:
    """
    Runs target for several proofs. Each proof owns its directories, so
    they can build side by side; jobs > 1 runs them on a thread pool.
    """
    if jobs == 1 or len(proof_dirs) <= 1:
        return [run_proof(d, target, config_files, overrides, force) for d in proof_dirs]
    return Parallel(n_jobs=jobs, prefer="threads")(
        delayed(run_proof)(d, target, config_files, overrides, force) for d in proof_dirs
    )
