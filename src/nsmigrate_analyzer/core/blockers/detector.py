from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ...errors import ConfigurationError
from ...models.schema import BlockerFinding, CodeUnit, DependencyGraph, DependencyNode, Severity
from ..classification.areas import areas_of
from ..classification.namespaces import NamespaceMapping
from .rules import NODE, UNIT, BlockerRule, RuleContext, registered_rules

BLOCK = "block"
REVIEW = "review"
INFO = "info"
POLICIES = (BLOCK, REVIEW, INFO)

DEFAULT_POLICY = {
    Severity.FATAL: BLOCK,
    Severity.HIGH: REVIEW,
    Severity.MEDIUM: REVIEW,
    Severity.LOW: INFO,
}


def parse_severity_policy(raw: Optional[Mapping[str, str]]) -> Dict[Severity, str]:
    policy = dict(DEFAULT_POLICY)
    for sev, pol in (raw or {}).items():
        try:
            s = Severity(str(sev).upper())
        except ValueError:
            raise ConfigurationError(f"unknown severity in policy: {sev!r}")
        if pol not in POLICIES:
            raise ConfigurationError(f"unknown policy {pol!r} for {s.value}; expected one of {', '.join(POLICIES)}")
        policy[s] = pol
    return policy


def parse_severity_overrides(raw: Optional[Mapping[str, str]]) -> Dict[str, Severity]:
    out: Dict[str, Severity] = {}
    for rule_id, sev in (raw or {}).items():
        try:
            out[str(rule_id)] = Severity(str(sev).upper())
        except ValueError:
            raise ConfigurationError(f"unknown severity {sev!r} for rule {rule_id}")
    return out


def detect_blockers(
    graph: DependencyGraph,
    code_units: List[CodeUnit],
    mapping: NamespaceMapping,
    replacements: Optional[Dict[str, str]] = None,
    severity_overrides: Optional[Dict[str, Severity]] = None,
    severity_policy: Optional[Dict[Severity, str]] = None,
    rules: Optional[Iterable[BlockerRule]] = None,
    log: Any | None = None,
) -> List[BlockerFinding]:
    """
    Apply every registered rule to every node and code unit.

    Rules are independent of each other. Returned findings are sorted by
    severity (worst first), then subject, then rule id.
    """
    ctx = RuleContext(graph=graph, mapping=mapping, code_units=list(code_units), replacements=dict(replacements or {}))
    overrides = severity_overrides or {}
    policy = severity_policy or DEFAULT_POLICY
    active = list(rules) if rules is not None else registered_rules()

    nodes = graph.sorted_nodes()
    units = sorted(code_units, key=lambda u: u.path)

    findings: List[BlockerFinding] = []
    for rule in active:
        subjects = nodes if rule.applies_to == NODE else units if rule.applies_to == UNIT else []
        for subject in subjects:
            f = rule.fn(subject, ctx)
            if f is None:
                continue
            sev = overrides.get(f.rule_id, f.severity)
            symbols = subject.evidence if isinstance(subject, DependencyNode) else subject.symbols
            findings.append(replace(
                f,
                severity=sev,
                blocking=policy.get(sev) == BLOCK,
                areas=tuple(areas_of(symbols, mapping)),
            ))

    findings.sort(key=lambda f: f.sort_key())
    if log:
        log.info(f"Blocker detection: {len(findings)} findings from {len(active)} rules")
    return findings


def findings_by_severity(findings: Iterable[BlockerFinding]) -> Dict[Severity, List[BlockerFinding]]:
    out: Dict[Severity, List[BlockerFinding]] = {s: [] for s in Severity}
    for f in findings:
        out[f.severity].append(f)
    return out


def worst_severity(findings: Iterable[BlockerFinding]) -> Optional[Severity]:
    worst: Optional[Severity] = None
    for f in findings:
        if worst is None or f.severity.rank > worst.rank:
            worst = f.severity
    return worst


def findings_for_subject(findings: Iterable[BlockerFinding], subject: str) -> List[BlockerFinding]:
    return [f for f in findings if f.subject == subject]
