from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ...config.loader import AnalyzerConfig
from ...errors import ManifestParseError
from ...models.schema import ArtifactCoordinate, ModuleManifest
from ..blockers.detector import detect_blockers
from ..classification.scan_runner import ScanRunner
from ..dependency.graph import build_dependency_graph
from ..discovery.repo_scanner import RepoInventory, scan_repository
from ..manifest.registry import parse_manifest
from ..manifest.repository import ArtifactRepository
from ..manifest.resolver import ManifestResolver
from ..planning.planner import plan_migration
from ...reporting.csv_export import export_all_to_csv
from ...reporting.render import render_html_report


def _write_json(path: Path, obj: Any) -> None:
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=False), encoding="utf-8")


def _parse_manifests(
    inv: RepoInventory, repository: ArtifactRepository, log: Any | None
) -> Tuple[List[ModuleManifest], Dict[str, str]]:
    manifests: List[ModuleManifest] = []
    degraded: Dict[str, str] = {}
    for p in inv.manifests:
        try:
            manifests.append(parse_manifest(p, repository.locate_pom))
        except ManifestParseError as e:
            degraded[inv.rel(p)] = str(e)
            if log:
                log.warning(f"Skipping manifest {inv.rel(p)}: {e}")
    return manifests, degraded


def _module_by_dir(inv: RepoInventory, manifests: List[ModuleManifest]) -> Dict[str, ArtifactCoordinate]:
    out: Dict[str, ArtifactCoordinate] = {}
    for m in sorted(manifests, key=lambda m: m.path):
        out.setdefault(inv.rel(Path(m.path).parent), m.coordinate)
    return out


def _code_unit_jobs(inv: RepoInventory, module_of: Dict[str, ArtifactCoordinate]):
    sources = []
    for p in inv.sources:
        owner = inv.owning_module_dir(p)
        sources.append((p, module_of.get(owner) if owner is not None else None, inv.rel(p)))
    class_groups = []
    for d, files in sorted(inv.class_files.items()):
        label = f"{d}/**/*.class" if d else "**/*.class"
        class_groups.append((label, module_of.get(d), sorted(files)))
    return sources, class_groups


def analyze_repository(
    input_dir: str,
    output_run_dir: str,
    config: AnalyzerConfig,
    log: Any | None = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """
    Run the full analysis and write the run's artifacts, CSVs and report.

    Returns the in-memory results (graph, findings, plan, code units,
    resolution and summary) for callers that want to keep going.
    """
    t0 = time.time()
    repo_root = Path(input_dir)

    out_dir = Path(output_run_dir)
    artifacts_dir = out_dir / "artifacts"
    logs_dir = out_dir / "logs"
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    logs_dir.mkdir(parents=True, exist_ok=True)

    # 1) scan + classify files
    inv = scan_repository(
        repo_root=repo_root,
        include_globs=config.include_globs,
        exclude_globs=config.exclude_globs,
    )
    if log:
        log.info(
            f"Scanned {len(inv.files)} files: {len(inv.manifests)} manifests, "
            f"{len(inv.archives)} archives, {len(inv.sources)} sources"
        )

    # 2) local artifact lookup
    repository = ArtifactRepository(config.repository_roots)
    for a in inv.archives:
        repository.index_archive(a)
    for p in inv.published_poms:
        repository.index_pom(p)

    # 3) manifests + transitive resolution
    manifests, degraded = _parse_manifests(inv, repository, log)
    resolution = ManifestResolver(repository, max_depth=config.max_resolution_depth, log=log).resolve(manifests)
    resolution.degraded_manifests.update(degraded)

    # 4) inspect + classify artifacts and code units
    runner = ScanRunner(
        config.mapping,
        concurrency=config.concurrency,
        cancel_event=cancel_event,
        max_file_bytes=config.max_file_bytes,
        log=log,
    )
    jobs = {c: a.artifact_path for c, a in resolution.artifacts.items() if a.artifact_path is not None}
    artifact_results = runner.scan_artifacts(jobs)
    sources, class_groups = _code_unit_jobs(inv, _module_by_dir(inv, list(resolution.modules.values())))
    code_units = runner.scan_code_units(sources, class_groups)

    # 5) graph
    graph = build_dependency_graph(resolution, artifact_results, code_units)

    # 6) blockers
    findings = detect_blockers(
        graph,
        code_units,
        config.mapping,
        replacements=config.replacements,
        severity_overrides=config.rule_severity,
        severity_policy=config.severity_policy,
        log=log,
    )

    # 7) plan
    plan = plan_migration(
        graph,
        findings,
        code_units,
        config.mapping,
        replacements=config.replacements,
        max_phase_size=config.max_phase_size,
        risk_cfg=config.risk,
        log=log,
    )

    graph_blob = graph.to_dict()
    findings_blob = [f.to_dict() for f in findings]
    plan_blob = plan.to_dict()
    units_blob = [u.to_dict() for u in code_units]
    resolution_blob = resolution.to_dict()

    _write_json(artifacts_dir / "graph.json", graph_blob)
    _write_json(artifacts_dir / "findings.json", findings_blob)
    _write_json(artifacts_dir / "plan.json", plan_blob)
    _write_json(artifacts_dir / "code_units.json", units_blob)
    _write_json(artifacts_dir / "resolution.json", resolution_blob)
    _write_json(artifacts_dir / "artifact_scans.json", [artifact_results[c].to_dict() for c in sorted(artifact_results)])
    _write_json(artifacts_dir / "files_index.json", inv.files)

    # 8) summary
    repo_summary = {
        "repo_root": str(repo_root),
        "generated_at_epoch": int(time.time()),
        "namespace_profile": config.mapping.name,
        "file_count": len(inv.files),
        "manifest_count": len(inv.manifests),
        "module_count": len(resolution.modules),
        "dependency_count": len(resolution.artifacts),
        "unresolved_count": len(resolution.unresolved),
        "degraded_manifest_count": len(resolution.degraded_manifests),
        "code_unit_count": len(code_units),
        "finding_count": len(findings),
        "config": config.to_dict(),
        "elapsed_seconds": round(time.time() - t0, 2),
    }
    _write_json(artifacts_dir / "repo_summary.json", repo_summary)

    # 9) CSV + HTML report
    csv_dir = out_dir / "csv"
    export_all_to_csv(artifacts_dir, csv_dir)
    render_html_report(
        out_path=out_dir / "report.html",
        repo_summary=repo_summary,
        graph=graph_blob,
        findings=findings_blob,
        plan=plan_blob,
        code_units=units_blob,
        resolution=resolution_blob,
        csv_dir=csv_dir,
    )
    if log:
        log.info(f"Artifacts written to {artifacts_dir}")

    return {
        "inventory": inv,
        "resolution": resolution,
        "graph": graph,
        "findings": findings,
        "plan": plan,
        "code_units": code_units,
        "summary": repo_summary,
    }
