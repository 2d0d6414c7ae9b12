from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Union

from ...models.schema import (
    EXTERNAL,
    ArtifactCoordinate,
    BlockerFinding,
    CodeUnit,
    DependencyGraph,
    DependencyNode,
    NamespaceVerdict,
    Severity,
    SymbolReference,
)
from ..classification.namespaces import NamespaceMapping, prefix_matches

NODE = "node"
UNIT = "unit"
EVIDENCE_LIMIT = 25

Subject = Union[DependencyNode, CodeUnit]


@dataclass
class RuleContext:
    graph: DependencyGraph
    mapping: NamespaceMapping
    code_units: List[CodeUnit] = field(default_factory=list)
    # group:name -> replacement coordinate text
    replacements: Dict[str, str] = field(default_factory=dict)

    def replacement_for(self, coord: ArtifactCoordinate) -> Optional[str]:
        return self.replacements.get(coord.key)

    def units_of(self, module: str) -> List[CodeUnit]:
        return [u for u in self.code_units if u.module is not None and str(u.module) == module]


RuleFn = Callable[[Subject, RuleContext], Optional[BlockerFinding]]


@dataclass(frozen=True)
class BlockerRule:
    rule_id: str
    applies_to: str
    severity: Severity
    fn: RuleFn


_RULES: Dict[str, BlockerRule] = {}


def blocker_rule(rule_id: str, applies_to: str = NODE, severity: Severity = Severity.MEDIUM):
    """Register a rule. The function gets (subject, context) and returns a finding or None."""

    def deco(fn: RuleFn) -> RuleFn:
        _RULES[rule_id] = BlockerRule(rule_id=rule_id, applies_to=applies_to, severity=severity, fn=fn)
        return fn

    return deco


def registered_rules() -> List[BlockerRule]:
    return [_RULES[k] for k in sorted(_RULES)]


def unregister_rule(rule_id: str) -> None:
    _RULES.pop(rule_id, None)


def _finding(rule_id: str, subject: str, explanation: str, evidence: Sequence[SymbolReference] = ()) -> BlockerFinding:
    return BlockerFinding(
        subject=subject,
        rule_id=rule_id,
        severity=_RULES[rule_id].severity,
        explanation=explanation,
        evidence=tuple(evidence[:EVIDENCE_LIMIT]),
    )


def _pairs_text(node_or_unit, ctx: RuleContext) -> str:
    symbols = node_or_unit.evidence if isinstance(node_or_unit, DependencyNode) else node_or_unit.symbols
    pairs = ctx.mapping.pairs_for(s.referenced_type for s in symbols)
    return ", ".join(f"{p.legacy} -> {p.migrated}" for p in pairs)


# --- dependency nodes ---

@blocker_rule("mixed-no-alternative", NODE, Severity.FATAL)
def mixed_no_alternative(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    """
    External nodes only. A MIXED module is reported through its code units
    (mixed-source), which point at the files that need the decision.
    """
    if node.kind != EXTERNAL or node.verdict != NamespaceVerdict.MIXED:
        return None
    if ctx.replacement_for(node.coordinate):
        return None
    return _finding(
        "mixed-no-alternative",
        str(node.coordinate),
        "Uses both legacy and migrated namespaces and no migrated-only alternative is known; "
        "it cannot be upgraded as a unit.",
        node.evidence,
    )


@blocker_rule("mixed-with-alternative", NODE, Severity.HIGH)
def mixed_with_alternative(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.kind != EXTERNAL or node.verdict != NamespaceVerdict.MIXED:
        return None
    repl = ctx.replacement_for(node.coordinate)
    if not repl:
        return None
    return _finding(
        "mixed-with-alternative",
        str(node.coordinate),
        f"Uses both legacy and migrated namespaces; replace with {repl}.",
        node.evidence,
    )


@blocker_rule("legacy-leaf-replacement", NODE, Severity.HIGH)
def legacy_leaf_replacement(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.kind != EXTERNAL or node.verdict != NamespaceVerdict.LEGACY_ONLY or not node.is_leaf:
        return None
    repl = ctx.replacement_for(node.coordinate)
    if not repl:
        return None
    return _finding(
        "legacy-leaf-replacement",
        str(node.coordinate),
        f"Legacy-only leaf dependency with a migrated replacement: {repl}.",
        node.evidence,
    )


@blocker_rule("legacy-with-replacement", NODE, Severity.MEDIUM)
def legacy_with_replacement(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.kind != EXTERNAL or node.verdict != NamespaceVerdict.LEGACY_ONLY or node.is_leaf:
        return None
    repl = ctx.replacement_for(node.coordinate)
    if not repl:
        return None
    return _finding(
        "legacy-with-replacement",
        str(node.coordinate),
        f"Legacy-only dependency with a migrated replacement: {repl}; "
        "its own dependencies have to be migrated first.",
        node.evidence,
    )


@blocker_rule("legacy-no-replacement", NODE, Severity.MEDIUM)
def legacy_no_replacement(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.kind != EXTERNAL or node.verdict != NamespaceVerdict.LEGACY_ONLY:
        return None
    if ctx.replacement_for(node.coordinate):
        return None
    pairs = _pairs_text(node, ctx)
    return _finding(
        "legacy-no-replacement",
        str(node.coordinate),
        "Legacy-only dependency with no known migrated replacement; look for a newer release"
        + (f" ({pairs})." if pairs else "."),
        node.evidence,
    )


@blocker_rule("unknown-verdict", NODE, Severity.MEDIUM)
def unknown_verdict(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.verdict != NamespaceVerdict.UNKNOWN:
        return None
    reasons = "; ".join(node.errors) if node.errors else "no scan result"
    return _finding(
        "unknown-verdict",
        str(node.coordinate),
        f"Namespace usage could not be determined, manual review required: {reasons}",
        node.evidence,
    )


@blocker_rule("cyclic-legacy", NODE, Severity.MEDIUM)
def cyclic_legacy(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if not node.cyclic or node.verdict in (NamespaceVerdict.MIGRATED, NamespaceVerdict.NOT_APPLICABLE):
        return None
    return _finding(
        "cyclic-legacy",
        str(node.coordinate),
        f"Part of dependency cycle {node.cycle_id}; every member has to migrate in the same step.",
        node.evidence,
    )


@blocker_rule("declared-unused", NODE, Severity.LOW)
def declared_unused(node: DependencyNode, ctx: RuleContext) -> Optional[BlockerFinding]:
    if node.kind != EXTERNAL or not node.declared_by or not node.defined_packages:
        return None
    if node.scope in ("runtime", "test"):
        return None
    unused_in: List[str] = []
    for module in node.declared_by:
        units = [u for u in ctx.units_of(module) if u.symbols]
        if not units:
            continue
        used = any(
            prefix_matches(s.referenced_type, pkg)
            for u in units
            for s in u.symbols
            for pkg in node.defined_packages
        )
        if not used:
            unused_in.append(module)
    if not unused_in:
        return None
    return _finding(
        "declared-unused",
        str(node.coordinate),
        f"Declared by {', '.join(unused_in)} but none of its packages are referenced there; "
        "removing it may be simpler than migrating it.",
    )


# --- code units ---

@blocker_rule("mixed-source", UNIT, Severity.HIGH)
def mixed_source(unit: CodeUnit, ctx: RuleContext) -> Optional[BlockerFinding]:
    if unit.verdict != NamespaceVerdict.MIXED:
        return None
    hits = [s for s in unit.symbols if ctx.mapping.side_of(s.referenced_type)]
    return _finding(
        "mixed-source",
        unit.path,
        "References both legacy and migrated namespaces; needs a manual decision.",
        hits,
    )


@blocker_rule("unreadable-source", UNIT, Severity.MEDIUM)
def unreadable_source(unit: CodeUnit, ctx: RuleContext) -> Optional[BlockerFinding]:
    if unit.verdict != NamespaceVerdict.UNKNOWN:
        return None
    reasons = "; ".join(unit.errors) if unit.errors else "partial scan"
    return _finding(
        "unreadable-source",
        unit.path,
        f"Could not be scanned completely, manual review required: {reasons}",
    )
