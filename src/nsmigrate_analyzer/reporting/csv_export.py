"""
CSV Export Module - Migration Analysis Results

Exports the run's JSON artifacts to CSV files for spreadsheets and
tracking tools.

Generates:
1. findings.csv - Every blocker finding with severity and evidence
2. plan.csv - Plan units in phase order
3. dependencies.csv - Dependency graph nodes with verdicts
"""

import csv
import json
from pathlib import Path
from typing import Any, Dict, List


def _evidence_text(evidence: List[Dict[str, Any]], limit: int = 5) -> str:
    """First few referenced types, `; ` separated"""
    names = []
    for e in evidence:
        ref = e.get("referenced_type")
        if ref and ref not in names:
            names.append(ref)
    text = "; ".join(names[:limit])
    if len(names) > limit:
        text += f"; (+{len(names) - limit} more)"
    return text


def export_findings(findings: List[Dict[str, Any]], output_path: Path) -> int:
    """
    Export blocker findings to CSV.

    Columns:
    - Severity
    - Blocking
    - Subject
    - Rule
    - Areas
    - Explanation
    - Evidence
    """
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['Severity', 'Blocking', 'Subject', 'Rule', 'Areas', 'Explanation', 'Evidence'])

        for item in findings:
            writer.writerow([
                item.get('severity', ''),
                'Yes' if item.get('blocking') else 'No',
                item.get('subject', ''),
                item.get('rule_id', ''),
                '; '.join(item.get('areas') or []),
                item.get('explanation', ''),
                _evidence_text(item.get('evidence') or []),
            ])

    return len(findings)


def export_plan(plan: Dict[str, Any], output_path: Path) -> int:
    """
    Export plan units to CSV, one row per unit in phase order.

    Columns:
    - Phase
    - Subject
    - Kind
    - Action
    - Severity
    - Group
    - Hint
    - Phase Rationale
    """
    count = 0
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow(['Phase', 'Subject', 'Kind', 'Action', 'Severity', 'Group', 'Hint', 'Phase Rationale'])

        for phase in plan.get('phases') or []:
            for unit in phase.get('units') or []:
                writer.writerow([
                    phase.get('ordinal', ''),
                    unit.get('subject', ''),
                    unit.get('kind', ''),
                    unit.get('action', ''),
                    unit.get('severity') or '',
                    unit.get('group') or '',
                    unit.get('hint', ''),
                    phase.get('rationale', ''),
                ])
                count += 1

    return count


def export_dependencies(graph: Dict[str, Any], output_path: Path) -> int:
    """
    Export dependency graph nodes to CSV.

    Columns:
    - Coordinate
    - Kind
    - Verdict
    - Scope
    - Declared By
    - Children
    - Cycle
    - Partial Scan
    - Errors
    """
    nodes = graph.get('nodes') or []
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.writer(f)
        writer.writerow([
            'Coordinate', 'Kind', 'Verdict', 'Scope', 'Declared By',
            'Children', 'Cycle', 'Partial Scan', 'Errors',
        ])

        for node in nodes:
            writer.writerow([
                node.get('coordinate', ''),
                node.get('kind', ''),
                node.get('verdict', ''),
                node.get('scope', ''),
                ', '.join(node.get('declared_by') or []),
                len(node.get('children') or []),
                node.get('cycle_id') or '',
                'Yes' if node.get('partial_scan') else 'No',
                ' | '.join(node.get('errors') or []),
            ])

    return len(nodes)


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with open(path, encoding='utf-8') as f:
        return json.load(f)


def export_all_to_csv(artifacts_dir: Path, output_dir: Path) -> Dict[str, int]:
    """
    Export all analysis results to CSV files.

    Args:
        artifacts_dir: Path to artifacts directory
        output_dir: Path where CSV files will be saved

    Returns:
        Dictionary with counts of exported rows per file
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    findings = _load_json(artifacts_dir / "findings.json", [])
    plan = _load_json(artifacts_dir / "plan.json", {})
    graph = _load_json(artifacts_dir / "graph.json", {})

    results = {
        'findings': export_findings(findings, output_dir / "findings.csv"),
        'plan': export_plan(plan, output_dir / "plan.csv"),
        'dependencies': export_dependencies(graph, output_dir / "dependencies.csv"),
    }
    return results
