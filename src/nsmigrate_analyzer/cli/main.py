import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from ..runtime.paths import compute_default_output_dir, default_run_name, to_local_path
from ..utils.logging import setup_logger
from ..config.loader import load_config
from ..core.pipeline.analyze_repo import analyze_repository
from ..core.tracking.tracker import ProgressTracker
from ..errors import AnalyzerError
from ..models.schema import MigrationPlan, ProgressState


def _parse_globs(s: str):
    if not s:
        return []
    parts = [p.strip() for p in s.split(",") if p.strip()]
    return parts


def _parse_timestamp(s: str):
    if not s:
        return None
    ts = datetime.fromisoformat(s)
    # naive input is taken as UTC
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _load_tracker(progress_path: Path) -> ProgressTracker:
    if progress_path.exists():
        return ProgressTracker.load(progress_path)
    return ProgressTracker()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsmigrate-analyzer",
        description="Analyze a Java codebase for a legacy-to-migrated namespace move (e.g. javax -> jakarta).",
    )
    parser.add_argument("--log-level", default="INFO", help="Log level (INFO/DEBUG/WARN/ERROR)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("analyze", help="Scan a repository and write graph, findings, plan and report")
    p.add_argument("input_dir", help="Repository root directory to analyze")
    p.add_argument(
        "--output",
        help="Output directory (defaults to <parent_of_input>/nsmigrate_output)",
        default=None,
    )
    p.add_argument(
        "--run-name",
        help="Run folder name under output root (defaults to timestamp)",
        default=None,
    )
    p.add_argument("--config", default=None, help="YAML file merged over the package defaults")
    p.add_argument("--profile", default=None, help="Namespace profile name or YAML path (default: jakarta)")
    p.add_argument("--max-phase-size", type=int, default=None, help="Max units per plan phase")
    p.add_argument("--concurrency", type=int, default=None, help="Parallel artifact scans")
    p.add_argument(
        "--max-file-mb",
        type=int,
        default=None,
        help="Max source file size (MB) to read; larger files are marked partial",
    )
    p.add_argument(
        "--include",
        default="",
        help="Comma-separated glob patterns to include, e.g. '*.java,pom.xml'",
    )
    p.add_argument(
        "--exclude",
        default="",
        help="Comma-separated glob patterns to exclude (in addition to defaults)",
    )
    p.add_argument(
        "--repo-root",
        action="append",
        default=[],
        help="Maven-layout artifact directory (repeatable), e.g. ~/.m2/repository",
    )

    p = sub.add_parser("adopt", help="Adopt a plan.json into a progress file")
    p.add_argument("plan", help="Path to plan.json")
    p.add_argument("--progress", default=None, help="Progress file (defaults to progress.json beside the plan)")
    p.add_argument("--timestamp", default=None, help="ISO-8601 timestamp (defaults to now, UTC)")

    p = sub.add_parser("transition", help="Record a state change for one plan unit")
    p.add_argument("progress", help="Path to progress.json")
    p.add_argument("subject", help="Plan unit subject")
    p.add_argument("state", choices=[s.value for s in ProgressState], help="New state")
    p.add_argument("--timestamp", default=None, help="ISO-8601 timestamp (defaults to now, UTC)")

    p = sub.add_parser("progress", help="Print progress for an adopted plan")
    p.add_argument("progress", help="Path to progress.json")
    p.add_argument("--state", choices=[s.value for s in ProgressState], default=None, help="List units in this state")
    return parser


def _cmd_analyze(args) -> int:
    input_dir = to_local_path(args.input_dir)
    if not os.path.isdir(input_dir):
        raise SystemExit(
            f"Input directory does not exist or is not a directory: {args.input_dir} (normalized: {input_dir})"
        )

    output_root = args.output or compute_default_output_dir(args.input_dir, "nsmigrate_output")
    output_root = to_local_path(output_root)

    run_name = args.run_name or default_run_name()
    run_dir = Path(output_root) / run_name
    run_dir.mkdir(parents=True, exist_ok=True)

    logger = setup_logger(run_dir / "logs" / "analyzer.log", level=args.log_level, run_name=run_name)
    logger.info("Starting analysis")
    logger.info("Input: %s", args.input_dir)
    logger.info("Normalized input: %s", input_dir)
    logger.info("Output: %s", str(run_dir))

    pkg_root = Path(__file__).resolve().parents[1]  # nsmigrate_analyzer/

    overrides = {
        "namespace_profile": args.profile,
        "max_phase_size": args.max_phase_size,
        "concurrency": args.concurrency,
        "max_file_mb": args.max_file_mb,
    }
    inc = _parse_globs(args.include)
    exc = _parse_globs(args.exclude)
    config = load_config(pkg_root, Path(args.config) if args.config else None, overrides)
    if inc:
        config.include_globs = inc
    if exc:
        config.exclude_globs = list(config.exclude_globs) + exc
    if args.repo_root:
        config.repository_roots = list(config.repository_roots) + [Path(to_local_path(r)) for r in args.repo_root]

    result = analyze_repository(
        input_dir=input_dir,
        output_run_dir=str(run_dir),
        config=config,
        log=logger,
    )

    risk = result["plan"].risk_summary
    logger.info(
        "Plan: %s phases, %s units, risk %s (%s), %s blocking findings",
        risk["phase_count"], risk["total_units"], risk["risk_level"], risk["risk_score"], risk["blocking_findings"],
    )
    logger.info("Report written: %s", str(run_dir / "report.html"))
    logger.info("Done.")
    return 0


def _cmd_adopt(args) -> int:
    plan_path = Path(args.plan)
    plan = MigrationPlan.from_dict(json.loads(plan_path.read_text(encoding="utf-8")))
    progress_path = Path(args.progress) if args.progress else plan_path.parent / "progress.json"
    tracker = _load_tracker(progress_path)
    seeded = tracker.adopt_plan(plan, _parse_timestamp(args.timestamp))
    tracker.save(progress_path)
    print(f"Adopted {len(list(plan.units()))} units ({len(seeded)} seeded PLANNED) -> {progress_path}")
    return 0


def _cmd_transition(args) -> int:
    progress_path = Path(args.progress)
    tracker = _load_tracker(progress_path)
    rec = tracker.record_transition(args.subject, ProgressState(args.state), _parse_timestamp(args.timestamp))
    tracker.save(progress_path)
    print(f"{rec.subject}: {rec.state.value} at {rec.timestamp.isoformat()}")
    return 0


def _cmd_progress(args) -> int:
    tracker = _load_tracker(Path(args.progress))
    if args.state:
        for s in tracker.subjects_in_state(ProgressState(args.state)):
            print(s)
        return 0
    snap = tracker.snapshot()
    print(json.dumps({"progress": snap["progress"], "counts": snap["counts"]}, indent=2))
    return 0


_COMMANDS = {
    "analyze": _cmd_analyze,
    "adopt": _cmd_adopt,
    "transition": _cmd_transition,
    "progress": _cmd_progress,
}


def main(argv=None):
    args = _build_parser().parse_args(argv)
    try:
        return _COMMANDS[args.command](args)
    except AnalyzerError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
