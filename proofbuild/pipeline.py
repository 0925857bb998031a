"""The goto transformation pipeline.

Eight stages turn the harness source into ``<entry>.goto``. Stage N reads
artifact N-1 (stage 0 reads the sources) and writes artifact N. A stage
that is configured off still produces its artifact, as an unchanged copy
of its input, so the numbering never has gaps.

    0 compile                goto-cc, restricted to the entry function
    1 remove-bodies          strip configured functions (and abort)
    2 abstractions           link stubs over the stripped functions
    3 unwind                 optional: unwind loops before simplification
    4 function-bodies        optional: bodies for functions that have none
    5 simplify               optional: constant propagation
    6 drop-unused-functions  always
    7 slice-global-inits     always

Removal must come before abstraction, or the stub collides with the
original definition. Dead code elimination comes last so it sees the
final call graph.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from proofbuild.config import ProofConfig
from proofbuild.core.errors import WorkspaceError
from proofbuild.core.logging import get_logger
from proofbuild.flags import (
    check_object_bits, compose_cbmc_flags, compose_defines, compose_includes, unwind_flags
)
from proofbuild.resolver import StampResolver
from proofbuild.runner import StageRunner
from proofbuild.workspace import Workspace

logger = get_logger(__name__)

ABORT_FUNCTION = "abort"
ABORT_STUB = Path(__file__).parent / "stubs" / "abort_assert_false.c"

# goto-instrument regex for functions that get a synthesized body
GENERATED_BODY_PATTERN = "(?!__CPROVER).*"


@dataclass(frozen=True)
class StageContext:
    config: ProofConfig
    workspace: Workspace

    def input(self, index: int) -> Path:
        return self.workspace.artifact(index - 1)

    def output(self, index: int) -> Path:
        return self.workspace.artifact(index)


@dataclass(frozen=True)
class StageSpec:
    """One row of the pipeline table."""
    index: int
    name: str
    enabled: Callable[[ProofConfig], bool]
    command: Callable[[StageContext], List[str]]
    skip_reason: str = ""
    # Files read besides the previous artifact
    extra_inputs: Callable[[StageContext], List[Path]] = field(default=lambda ctx: [])
    reads_previous: bool = True

    def inputs(self, ctx: StageContext) -> List[Path]:
        files = [ctx.input(self.index)] if self.reads_previous else []
        return files + list(self.extra_inputs(ctx))


# ---------------------------------------------------------------------------
# Enablement predicates
# ---------------------------------------------------------------------------

def _always(config: ProofConfig) -> bool:
    return True


def removes_bodies(config: ProofConfig) -> bool:
    return bool(config.effective_removals)


def applies_abstractions(config: ProofConfig) -> bool:
    # The abort stub has to go in whenever abort was stripped
    return bool(config.abstractions) or removes_bodies(config)


def removal_list(config: ProofConfig) -> List[str]:
    removals = config.effective_removals
    if ABORT_FUNCTION not in removals:
        removals.append(ABORT_FUNCTION)
    return removals


def abstraction_sources(config: ProofConfig) -> List[Path]:
    sources = [config.resolve(p) for p in config.abstractions]
    if removes_bodies(config):
        sources.append(ABORT_STUB)
    return sources


# ---------------------------------------------------------------------------
# Command templates
# ---------------------------------------------------------------------------

def _compile(ctx: StageContext) -> List[str]:
    c = ctx.config
    return [
        c.tools.goto_cc,
        "--export-file-local-symbols",
        "--function", c.entry,
        *compose_includes(c),
        *compose_defines(c),
        str(c.harness_path),
        *[str(c.resolve(d)) for d in c.dependencies],
        "-o", str(ctx.output(0)),
    ]


def _compile_sources(ctx: StageContext) -> List[Path]:
    c = ctx.config
    return [c.harness_path] + [c.resolve(d) for d in c.dependencies]


def _remove_bodies(ctx: StageContext) -> List[str]:
    cmd = [ctx.config.tools.goto_instrument]
    for fn in removal_list(ctx.config):
        cmd += ["--remove-function-body", fn]
    return cmd + [str(ctx.input(1)), str(ctx.output(1))]


def _abstractions(ctx: StageContext) -> List[str]:
    c = ctx.config
    return [
        c.tools.goto_cc,
        "--function", c.entry,
        *compose_includes(c),
        *compose_defines(c),
        *[str(p) for p in abstraction_sources(c)],
        str(ctx.input(2)),
        "-o", str(ctx.output(2)),
    ]


def _unwind(ctx: StageContext) -> List[str]:
    return [ctx.config.tools.goto_instrument, *unwind_flags(ctx.config),
            str(ctx.input(3)), str(ctx.output(3))]


def _function_bodies(ctx: StageContext) -> List[str]:
    return [
        ctx.config.tools.goto_instrument,
        "--generate-function-body", GENERATED_BODY_PATTERN,
        "--generate-function-body-options", "nondet-return",
        str(ctx.input(4)), str(ctx.output(4)),
    ]


def _simplify(ctx: StageContext) -> List[str]:
    return [ctx.config.tools.goto_analyzer, str(ctx.input(5)),
            "--simplify", str(ctx.output(5))]


def _instrument(flag: str, index: int) -> Callable[[StageContext], List[str]]:
    def command(ctx: StageContext) -> List[str]:
        return [ctx.config.tools.goto_instrument, flag, str(ctx.input(index)), str(ctx.output(index))]
    return command


STAGES: Tuple[StageSpec, ...] = (
    StageSpec(0, "compile", _always, _compile,
              extra_inputs=_compile_sources, reads_previous=False),
    StageSpec(1, "remove-bodies", removes_bodies, _remove_bodies,
              skip_reason="Not removing function bodies"),
    StageSpec(2, "abstractions", applies_abstractions, _abstractions,
              skip_reason="Not implementing abstractions",
              extra_inputs=lambda ctx: abstraction_sources(ctx.config)),
    StageSpec(3, "unwind", lambda c: c.unwind_goto, _unwind,
              skip_reason="Not unwinding loops"),
    StageSpec(4, "function-bodies", lambda c: c.generate_function_bodies, _function_bodies,
              skip_reason="Not generating function bodies"),
    StageSpec(5, "simplify", lambda c: c.simplify, _simplify,
              skip_reason="Not simplifying"),
    StageSpec(6, "drop-unused-functions", _always, _instrument("--drop-unused-functions", 6)),
    StageSpec(7, "slice-global-inits", _always, _instrument("--slice-global-inits", 7)),
)


class Pipeline:
    """Builds the final goto program for one proof."""

    def __init__(self,
                 config: ProofConfig,
                 workspace: Optional[Workspace] = None,
                 runner: Optional[StageRunner] = None,
                 force: bool = False):
        self.config = config
        self.workspace = workspace or Workspace.for_config(config)
        self.runner = runner or StageRunner(cwd=config.proof_root)
        self.resolver = StampResolver(self.workspace, force=force)
        self.ctx = StageContext(config, self.workspace)

    def plan(self) -> List[Tuple[int, str, bool]]:
        """(index, name, enabled) for every stage, without running anything."""
        return [(s.index, s.name, bool(s.enabled(self.config))) for s in STAGES]

    def commands(self) -> List[List[str]]:
        """The command each stage would run; skipped stages get an empty list."""
        return [s.command(self.ctx) if s.enabled(self.config) else [] for s in STAGES]

    def build(self) -> Path:
        """Runs every stale stage and returns the path of <entry>.goto."""
        check_object_bits(compose_cbmc_flags(self.config), compose_defines(self.config))
        self.workspace.ensure()
        logger.info(f"[{self.config.entry}] building goto program")

        for stage in STAGES:
            self._run_stage(stage)

        self._finalize()
        return self.workspace.final_artifact

    def _run_stage(self, stage: StageSpec) -> None:
        output = self.ctx.output(stage.index)
        enabled = stage.enabled(self.config)
        if enabled:
            command = stage.command(self.ctx)
        else:
            command = ["<copy>", stage.skip_reason]
        inputs = stage.inputs(self.ctx)

        digest = self.resolver.input_digest(inputs, command)
        if self.resolver.is_fresh(output, digest):
            logger.debug(f"[{stage.name}] {output.name} is up to date")
            return
        self.resolver.invalidate(output)

        log = self.workspace.stage_log(stage.index)
        if enabled:
            self.runner.run(stage.name, command, log)
            if not output.is_file():
                raise WorkspaceError(f"Stage '{stage.name}' exited cleanly but wrote no {output}")
        else:
            self.runner.skip(stage.name, self.ctx.input(stage.index), output, log, stage.skip_reason)

        self.resolver.record(output, digest, inputs)

    def _finalize(self) -> None:
        last = self.workspace.artifact(STAGES[-1].index)
        final = self.workspace.final_artifact
        command = ["<copy>", last.name, final.name]
        digest = self.resolver.input_digest([last], command)
        if self.resolver.is_fresh(final, digest):
            return
        self.runner.skip("final", last, final, self.workspace.final_log,
                         f"Final goto program is {last.name}")
        self.resolver.record(final, digest, [last])
