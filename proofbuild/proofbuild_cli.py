import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from proofbuild.config import load_proof_config
from proofbuild.core.errors import ProofbuildError
from proofbuild.core.logging import set_level
from proofbuild.pipeline import Pipeline
from proofbuild.targets import GOALS, plan_target, run_proofs

TARGET_HELP = {
    "goto": "Build the final goto program only.",
    "cbmc": "Run the full check with trace.",
    "property": "List every checked property.",
    "coverage": "Measure location coverage.",
    "report": "Run all three analyses, then render the HTML report.",
    "clean": "Remove goto programs, logs, results and TAGS.",
    "veryclean": "clean, plus the rendered report and the log directory.",
}

def positive_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{text}' is not an integer")
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return value

def handle_dry_run(args) -> int:
    for proof_dir in args.proof_dirs:
        config = load_proof_config(proof_dir, args.config, args.set)
        print(f"{proof_dir} (entry {config.entry}, config {config.fingerprint()[:12]}): "
              f"{' -> '.join(plan_target(args.target))}")
        if "goto" in plan_target(args.target):
            pipeline = Pipeline(config)
            for (index, name, enabled), command in zip(pipeline.plan(), pipeline.commands()):
                shown = " ".join(command) if enabled else "(copy of previous stage)"
                print(f"  {index} {name}: {shown}")
    return 0

def handle_target(args) -> int:
    results = run_proofs(
        args.proof_dirs, args.target,
        config_files=args.config,
        overrides=args.set,
        force=args.force,
        jobs=args.jobs,
    )
    status = 0
    for res in results:
        label = res.entry or res.proof_dir
        if res.error:
            print(f"{label}: {args.target} FAILED ({res.error})")
        else:
            print(f"{label}: {args.target} ok")
        if status == 0 and res.status != 0:
            status = res.status
    return status

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proofbuild",
        description="proofbuild - build goto programs and run CBMC proofs.")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show tool output as it runs.")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show warnings and errors.")
    subparsers = parser.add_subparsers(dest="target", help="Targets")

    for goal in GOALS:
        sub = subparsers.add_parser(goal, help=TARGET_HELP[goal])
        sub.add_argument("proof_dirs", nargs="*", type=Path, default=[Path(".")],
                         help="Proof directories (default: current directory).")
        sub.add_argument("--config", action="append", type=Path,
                         help="Extra JSON configuration layered on top of proof.json (repeatable).")
        sub.add_argument("--set", action="append", metavar="KEY=VALUE",
                         help="Override one configuration key; VALUE is parsed as JSON if possible.")
        sub.add_argument("--force", action="store_true", help="Rebuild even if outputs are up to date.")
        sub.add_argument("--dry-run", action="store_true", help="Print what would run and exit.")
        sub.add_argument("--jobs", "-j", type=positive_int, default=1, help="Proofs to build in parallel.")

    return parser

def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.target:
        parser.print_help()
        return 0

    if args.verbose:
        set_level(logging.DEBUG)
    elif args.quiet:
        set_level(logging.WARNING)

    args.config = args.config or []
    args.set = args.set or []

    try:
        if args.dry_run:
            return handle_dry_run(args)
        return handle_target(args)
    except ProofbuildError as e:
        print(f"Error: {e}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
