from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from jinja2 import Environment, FileSystemLoader, select_autoescape


def render_html_report(
    out_path: Path,
    repo_summary: Dict[str, Any],
    graph: Dict[str, Any],
    findings: List[Dict[str, Any]],
    plan: Dict[str, Any],
    code_units: List[Dict[str, Any]],
    resolution: Dict[str, Any],
    csv_dir: Path | None = None,
) -> None:
    """
    Render the HTML migration report.

    Args:
        out_path: Path where HTML report will be written
        repo_summary: High-level run statistics
        graph: Dependency graph (graph.json form)
        findings: Blocker findings, worst first
        plan: Phased migration plan with its risk summary
        code_units: Classified source files and class directories
        resolution: Manifest resolution output (conflicts, unresolved, degraded manifests)
        csv_dir: CSV directory, linked from the report when given
    """
    templates_dir = Path(__file__).parent / "templates"
    env = Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=select_autoescape(["html", "xml", "j2"]),
    )
    tpl = env.get_template("report.html.j2")

    csv_relative_path = None
    if csv_dir:
        try:
            csv_relative_path = str(Path(csv_dir).relative_to(out_path.parent))
        except ValueError:
            csv_relative_path = str(csv_dir)

    verdict_counts: Dict[str, int] = {}
    for n in graph.get("nodes") or []:
        verdict_counts[n["verdict"]] = verdict_counts.get(n["verdict"], 0) + 1
    unit_counts: Dict[str, int] = {}
    for u in code_units:
        unit_counts[u["verdict"]] = unit_counts.get(u["verdict"], 0) + 1

    html = tpl.render(
        repo=repo_summary,
        risk=plan.get("risk_summary") or {},
        phases=plan.get("phases") or [],
        findings=findings,
        nodes=graph.get("nodes") or [],
        cycles=graph.get("cycles") or {},
        code_units=code_units,
        verdict_counts=dict(sorted(verdict_counts.items())),
        unit_counts=dict(sorted(unit_counts.items())),
        conflicts=resolution.get("conflicts") or [],
        unresolved=resolution.get("unresolved") or {},
        degraded=resolution.get("degraded_manifests") or {},
        csv_dir_path=csv_relative_path,
    )
    out_path.write_text(html, encoding="utf-8")
