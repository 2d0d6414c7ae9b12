"""
Migration planning.

The graph is condensed (each cycle becomes one pseudo-node), layered
leaves-first with Kahn's algorithm over child counts, ordered within a layer
by worst severity then name, and cut into phases. Dependencies always land
in the same or an earlier phase than whatever depends on them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ...errors import InfeasiblePlanError
from ...models.schema import (
    EXTERNAL,
    MODULE,
    ArtifactCoordinate,
    BlockerFinding,
    CodeUnit,
    DependencyGraph,
    MigrationPhase,
    MigrationPlan,
    NamespaceVerdict,
    PlanUnit,
    Severity,
    SymbolReference,
)
from ..blockers.detector import findings_by_severity, worst_severity
from ..classification.areas import legacy_areas
from ..classification.namespaces import NamespaceMapping

REPLACE_DEPENDENCY = "replace-dependency"
MANUAL_REVIEW = "manual-review"
REWRITE_SOURCE = "rewrite-source"
UPDATE_MODULE = "update-module"
REMOVE_DEPENDENCY = "remove-dependency"
MIGRATE_ATOMICALLY = "migrate-atomically"

NO_ACTION = (NamespaceVerdict.NOT_APPLICABLE, NamespaceVerdict.MIGRATED)
CONFLICTING = (NamespaceVerdict.LEGACY_ONLY, NamespaceVerdict.MIXED)

DEFAULT_RISK = {
    "points": {"FATAL": 25, "HIGH": 10, "MEDIUM": 4, "LOW": 1},
    "thresholds": {"low_max": 39, "medium_max": 69},
}


def classify_level(score: int, thresholds: Dict[str, int]) -> str:
    if score <= thresholds.get("low_max", 39):
        return "low"
    if score <= thresholds.get("medium_max", 69):
        return "medium"
    return "high"


@dataclass
class _PseudoNode:
    name: str
    members: List[ArtifactCoordinate]
    cycle_id: Optional[str]
    children: set = field(default_factory=set)
    severity: Optional[Severity] = None


def _rank(sev: Optional[Severity]) -> int:
    return sev.rank if sev else 0


def _condense(graph: DependencyGraph, sev_of: Dict[str, Optional[Severity]]) -> Tuple[Dict[str, _PseudoNode], Dict[ArtifactCoordinate, str]]:
    pseudo: Dict[str, _PseudoNode] = {}
    owner: Dict[ArtifactCoordinate, str] = {}
    cycles = graph.cycles()
    for cid, members in cycles.items():
        name = str(min(members))
        pseudo[name] = _PseudoNode(name=name, members=sorted(members), cycle_id=cid)
        for m in members:
            owner[m] = name
    for node in graph.sorted_nodes():
        if node.coordinate in owner:
            continue
        name = str(node.coordinate)
        pseudo[name] = _PseudoNode(name=name, members=[node.coordinate], cycle_id=None)
        owner[node.coordinate] = name

    for p in pseudo.values():
        for m in p.members:
            for c in graph.nodes[m].children:
                target = owner[c]
                if target != p.name:
                    p.children.add(target)
        worst = None
        for m in p.members:
            s = sev_of.get(str(m))
            if _rank(s) > _rank(worst):
                worst = s
        p.severity = worst
    return pseudo, owner


def _layers(pseudo: Dict[str, _PseudoNode]) -> Dict[str, int]:
    """Kahn's algorithm leaves-first: a node's layer is one more than its deepest child."""
    remaining = {name: len(p.children) for name, p in pseudo.items()}
    parents: Dict[str, List[str]] = {name: [] for name in pseudo}
    for p in pseudo.values():
        for c in p.children:
            parents[c].append(p.name)

    layer_of: Dict[str, int] = {}
    frontier = sorted(n for n, k in remaining.items() if k == 0)
    layer = 0
    while frontier:
        nxt = []
        for n in frontier:
            layer_of[n] = layer
            for parent in parents[n]:
                remaining[parent] -= 1
                if remaining[parent] == 0:
                    nxt.append(parent)
        frontier = sorted(nxt)
        layer += 1
    if len(layer_of) != len(pseudo):
        # condensation is acyclic, so this only trips on a corrupted graph
        stuck = sorted(set(pseudo) - set(layer_of))
        raise InfeasiblePlanError(f"graph could not be layered; unresolved ordering among {', '.join(stuck)}", stuck)
    return layer_of


def _check_feasible(graph: DependencyGraph, replacements: Dict[str, str]) -> None:
    for cid, members in sorted(graph.cycles().items()):
        migrated = [m for m in members if graph.nodes[m].verdict == NamespaceVerdict.MIGRATED]
        stuck = [
            m for m in members
            if graph.nodes[m].kind == EXTERNAL
            and graph.nodes[m].verdict in CONFLICTING
            and m.key not in replacements
        ]
        if migrated and stuck:
            raise InfeasiblePlanError(
                f"cycle {cid} mixes migrated members ({', '.join(map(str, migrated))}) with legacy externals "
                f"that have no replacement ({', '.join(map(str, stuck))})",
                members,
            )


def _pairs_hint(symbols: Iterable[SymbolReference], mapping: NamespaceMapping) -> str:
    pairs = mapping.pairs_for(s.referenced_type for s in symbols)
    return ", ".join(f"{p.legacy} -> {p.migrated}" for p in pairs)


def _with_pairs(text: str, pairs: str) -> str:
    return f"{text} [{pairs}]" if pairs else text


def _node_action(node, rules: set, replacement: Optional[str], pairs: str, in_group: bool) -> Tuple[str, str]:
    if node.kind == MODULE:
        if node.verdict == NamespaceVerdict.UNKNOWN:
            base = (MANUAL_REVIEW, "module could not be classified completely; review its sources")
        else:
            base = (UPDATE_MODULE, _with_pairs("update module build and imports", pairs))
    elif "declared-unused" in rules:
        base = (REMOVE_DEPENDENCY, "declared but unreferenced; remove the declaration")
    elif replacement and node.verdict in CONFLICTING:
        base = (REPLACE_DEPENDENCY, _with_pairs(f"replace with {replacement}", pairs))
    elif node.verdict == NamespaceVerdict.UNKNOWN:
        base = (MANUAL_REVIEW, "verdict unknown; inspect the artifact by hand")
    else:
        base = (MANUAL_REVIEW, _with_pairs("no known migrated alternative; find a compatible release", pairs))
    if in_group:
        return MIGRATE_ATOMICALLY, f"{base[0]}: {base[1]}"
    return base


def _unit_action(unit: CodeUnit, pairs: str) -> Tuple[str, str]:
    if unit.verdict == NamespaceVerdict.LEGACY_ONLY:
        return REWRITE_SOURCE, _with_pairs("rewrite legacy references", pairs)
    if unit.verdict == NamespaceVerdict.MIXED:
        return MANUAL_REVIEW, _with_pairs("mixes legacy and migrated references", pairs)
    if unit.verdict == NamespaceVerdict.UNKNOWN:
        return MANUAL_REVIEW, "could not be scanned completely"
    return MANUAL_REVIEW, "see findings"


def _build_phases(entries: List[Tuple[List[PlanUnit], int]], max_phase_size: int) -> List[MigrationPhase]:
    phases: List[MigrationPhase] = []
    current: List[PlanUnit] = []
    current_layers: List[int] = []

    def close(note: str = "") -> None:
        nonlocal current, current_layers
        if not current:
            return
        lo, hi = min(current_layers), max(current_layers)
        span = f"layer {lo}" if lo == hi else f"layers {lo}-{hi}"
        rationale = f"{len(current)} unit(s) from dependency {span}"
        if note:
            rationale = f"{rationale}; {note}"
        phases.append(MigrationPhase(ordinal=len(phases) + 1, units=tuple(current), rationale=rationale))
        current, current_layers = [], []

    for units, layer in entries:
        fatal = any(u.severity == Severity.FATAL for u in units)
        if fatal:
            close()
            current, current_layers = list(units), [layer]
            close(f"isolated: FATAL blocker on {', '.join(u.subject for u in units if u.severity == Severity.FATAL)}")
            continue
        if len(units) > max_phase_size:
            close()
            current, current_layers = list(units), [layer]
            close(f"cycle group {units[0].group} kept whole")
            continue
        if current and len(current) + len(units) > max_phase_size:
            close("phase size limit reached")
        current.extend(units)
        current_layers.append(layer)
    close()
    return phases


def _area_breakdown(graph: DependencyGraph, code_units: List[CodeUnit], mapping: NamespaceMapping) -> Dict[str, Any]:
    subjects = [(str(n.coordinate), n.evidence) for n in graph.sorted_nodes() if n.kind == EXTERNAL]
    subjects += [(u.path, u.symbols) for u in code_units]
    return legacy_areas(subjects, mapping)


def risk_summary(
    plan_units: List[PlanUnit],
    phases: List[MigrationPhase],
    findings: List[BlockerFinding],
    graph: DependencyGraph,
    code_units: List[CodeUnit],
    risk_cfg: Optional[Dict[str, Any]] = None,
    mapping: Optional[NamespaceMapping] = None,
) -> Dict[str, Any]:
    cfg = risk_cfg or DEFAULT_RISK
    points = cfg.get("points") or DEFAULT_RISK["points"]
    thresholds = cfg.get("thresholds") or DEFAULT_RISK["thresholds"]

    by_sev = findings_by_severity(findings)
    score = min(100, sum(int(points.get(s.value, 0)) * len(fs) for s, fs in by_sev.items()))
    verdicts = [n.verdict for n in graph.nodes.values()] + [u.verdict for u in code_units]
    ready = sum(1 for v in verdicts if v in NO_ACTION)
    worst = worst_severity(findings)
    return {
        "total_units": len(plan_units),
        "phase_count": len(phases),
        "findings_by_severity": {s.value: len(by_sev[s]) for s in Severity},
        "blocking_findings": sum(1 for f in findings if f.blocking),
        "highest_severity": worst.value if worst else None,
        "readiness_score": round(ready / len(verdicts), 4) if verdicts else 1.0,
        "risk_score": score,
        "risk_level": classify_level(score, thresholds),
        "cycles": len(graph.cycles()),
        "legacy_areas": _area_breakdown(graph, code_units, mapping) if mapping else {},
    }


def plan_migration(
    graph: DependencyGraph,
    findings: List[BlockerFinding],
    code_units: List[CodeUnit],
    mapping: NamespaceMapping,
    replacements: Optional[Dict[str, str]] = None,
    max_phase_size: int = 10,
    risk_cfg: Optional[Dict[str, Any]] = None,
    log: Any | None = None,
) -> MigrationPlan:
    """
    Build a phased plan from the annotated graph and findings.

    Units that need no action (NOT_APPLICABLE or MIGRATED without findings)
    are left out. Raises InfeasiblePlanError for a cycle that mixes a
    migrated member with a legacy external that has no replacement.
    """
    if max_phase_size < 1:
        raise ValueError("max_phase_size must be at least 1")
    replacements = replacements or {}
    _check_feasible(graph, replacements)

    by_subject: Dict[str, List[BlockerFinding]] = {}
    for f in findings:
        by_subject.setdefault(f.subject, []).append(f)
    sev_of = {s: worst_severity(fs) for s, fs in by_subject.items()}

    pseudo, owner = _condense(graph, sev_of)
    layer_of = _layers(pseudo)

    # layer -> [(sort key, units)]
    slots: Dict[int, List[Tuple[Tuple[int, str], List[PlanUnit]]]] = {}

    for name, p in pseudo.items():
        included = [
            graph.nodes[m] for m in p.members
            if not (graph.nodes[m].verdict in NO_ACTION and str(m) not in by_subject)
        ]
        if not included:
            continue
        in_group = p.cycle_id is not None and len(p.members) > 1
        units: List[PlanUnit] = []
        for node in included:
            subj = str(node.coordinate)
            rules = {f.rule_id for f in by_subject.get(subj, [])}
            action, hint = _node_action(
                node, rules, replacements.get(node.coordinate.key), _pairs_hint(node.evidence, mapping), in_group
            )
            units.append(PlanUnit(
                subject=subj,
                kind="module" if node.kind == MODULE else "dependency",
                action=action,
                hint=hint,
                severity=sev_of.get(subj),
                group=p.cycle_id if in_group else None,
            ))
        key = (-_rank(p.severity), name)
        slots.setdefault(layer_of[name], []).append((key, units))

    for u in code_units:
        if u.verdict in NO_ACTION and u.path not in by_subject:
            continue
        layer = layer_of[owner[u.module]] if u.module is not None and u.module in owner else 0
        action, hint = _unit_action(u, _pairs_hint(u.symbols, mapping))
        sev = sev_of.get(u.path)
        unit = PlanUnit(subject=u.path, kind="source", action=action, hint=hint, severity=sev)
        slots.setdefault(layer, []).append(((-_rank(sev), u.path), [unit]))

    entries: List[Tuple[List[PlanUnit], int]] = []
    for layer in sorted(slots):
        for _, units in sorted(slots[layer], key=lambda s: s[0]):
            entries.append((units, layer))

    phases = _build_phases(entries, max_phase_size)
    plan_units = [u for ph in phases for u in ph.units]
    summary = risk_summary(plan_units, phases, findings, graph, code_units, risk_cfg, mapping)
    if log:
        log.info(f"Plan: {len(phases)} phases, {len(plan_units)} units, risk {summary['risk_level']}")
    return MigrationPlan(phases=tuple(phases), risk_summary=summary)
