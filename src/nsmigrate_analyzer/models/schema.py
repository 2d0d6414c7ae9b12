from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple


class NamespaceVerdict(str, Enum):
    LEGACY_ONLY = "LEGACY_ONLY"
    MIGRATED = "MIGRATED"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class SymbolKind(str, Enum):
    TYPE_REF = "TYPE_REF"
    METHOD_CALL = "METHOD_CALL"
    FIELD_REF = "FIELD_REF"
    ANNOTATION = "ANNOTATION"
    STRING_LITERAL = "STRING_LITERAL"


class Severity(str, Enum):
    FATAL = "FATAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.FATAL: 4, Severity.HIGH: 3, Severity.MEDIUM: 2, Severity.LOW: 1}


class ProgressState(str, Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"


# node kinds
MODULE = "module"
EXTERNAL = "external"
UNRESOLVED = "unresolved"


@dataclass(frozen=True, order=True)
class ArtifactCoordinate:
    group: str
    name: str
    version: str

    @property
    def key(self) -> str:
        return f"{self.group}:{self.name}"

    def __str__(self) -> str:
        return f"{self.group}:{self.name}:{self.version}"

    @classmethod
    def parse(cls, text: str) -> "ArtifactCoordinate":
        parts = [p.strip() for p in (text or "").split(":")]
        if len(parts) < 3 or not all(parts[:3]):
            raise ValueError(f"Not a group:name:version coordinate: {text!r}")
        return cls(group=parts[0], name=parts[1], version=parts[2])

    def with_version(self, version: str) -> "ArtifactCoordinate":
        return ArtifactCoordinate(self.group, self.name, version)

    def to_dict(self) -> Dict[str, str]:
        return {"group": self.group, "name": self.name, "version": self.version}


@dataclass
class DeclaredDependency:
    coordinate: ArtifactCoordinate
    scope: str = "compile"
    optional: bool = False
    exclusions: List[str] = field(default_factory=list)  # group:name, "*" wildcards allowed
    project_ref: Optional[str] = None  # gradle project(':path')


@dataclass
class ModuleManifest:
    path: str
    format: str
    coordinate: ArtifactCoordinate
    dependencies: List[DeclaredDependency] = field(default_factory=list)
    parent: Optional[ArtifactCoordinate] = None
    modules: List[str] = field(default_factory=list)
    project_path: Optional[str] = None  # gradle ':sub' path
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "format": self.format,
            "coordinate": str(self.coordinate),
            "parent": str(self.parent) if self.parent else None,
            "modules": list(self.modules),
            "errors": list(self.errors),
            "dependencies": [
                {
                    "coordinate": str(d.coordinate) if not d.project_ref else None,
                    "project_ref": d.project_ref,
                    "scope": d.scope,
                    "optional": d.optional,
                    "exclusions": list(d.exclusions),
                }
                for d in self.dependencies
            ],
        }


@dataclass(frozen=True)
class SymbolReference:
    owner_type: str
    referenced_type: str
    kind: SymbolKind

    def to_dict(self) -> Dict[str, str]:
        return {"owner_type": self.owner_type, "referenced_type": self.referenced_type, "kind": self.kind.value}


@dataclass
class ArtifactScan:
    path: str
    symbols: List[SymbolReference] = field(default_factory=list)
    defined_types: List[str] = field(default_factory=list)
    partial: bool = False
    errors: List[str] = field(default_factory=list)
    entries_scanned: int = 0

    @property
    def defined_packages(self) -> List[str]:
        return sorted({t.rsplit(".", 1)[0] for t in self.defined_types if "." in t})


@dataclass
class CodeUnit:
    path: str
    kind: str  # source|classes
    module: Optional[ArtifactCoordinate] = None
    verdict: NamespaceVerdict = NamespaceVerdict.UNKNOWN
    symbols: List[SymbolReference] = field(default_factory=list)
    partial: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind,
            "module": str(self.module) if self.module else None,
            "verdict": self.verdict.value,
            "partial": self.partial,
            "errors": list(self.errors),
            "symbol_count": len(self.symbols),
        }


@dataclass
class DependencyNode:
    coordinate: ArtifactCoordinate
    verdict: NamespaceVerdict = NamespaceVerdict.UNKNOWN
    scope: str = "compile"
    children: Set[ArtifactCoordinate] = field(default_factory=set)
    kind: str = EXTERNAL
    cyclic: bool = False
    cycle_id: Optional[str] = None
    partial_scan: bool = False
    errors: List[str] = field(default_factory=list)
    declared_by: List[str] = field(default_factory=list)
    defined_packages: List[str] = field(default_factory=list)
    evidence: List[SymbolReference] = field(default_factory=list)
    artifact_path: Optional[str] = None

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinate": str(self.coordinate),
            "kind": self.kind,
            "verdict": self.verdict.value,
            "scope": self.scope,
            "children": sorted(str(c) for c in self.children),
            "cyclic": self.cyclic,
            "cycle_id": self.cycle_id,
            "partial_scan": self.partial_scan,
            "errors": list(self.errors),
            "declared_by": sorted(self.declared_by),
            "artifact_path": self.artifact_path,
        }


@dataclass
class GraphEdge:
    src: ArtifactCoordinate
    dst: ArtifactCoordinate
    scope: str = "compile"
    evidence: Optional[str] = None


@dataclass
class DependencyGraph:
    nodes: Dict[ArtifactCoordinate, DependencyNode] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)

    def node(self, coordinate: ArtifactCoordinate) -> DependencyNode:
        return self.nodes[coordinate]

    def sorted_nodes(self) -> List[DependencyNode]:
        return [self.nodes[c] for c in sorted(self.nodes)]

    def cycles(self) -> Dict[str, List[ArtifactCoordinate]]:
        out: Dict[str, List[ArtifactCoordinate]] = {}
        for n in self.sorted_nodes():
            if n.cyclic and n.cycle_id:
                out.setdefault(n.cycle_id, []).append(n.coordinate)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.sorted_nodes()],
            "edges": [
                {"src": str(e.src), "dst": str(e.dst), "scope": e.scope, "evidence": e.evidence}
                for e in sorted(self.edges, key=lambda e: (e.src, e.dst))
            ],
            "cycles": {cid: [str(c) for c in members] for cid, members in sorted(self.cycles().items())},
        }


@dataclass(frozen=True)
class BlockerFinding:
    subject: str
    rule_id: str
    severity: Severity
    explanation: str
    evidence: Tuple[SymbolReference, ...] = ()
    blocking: bool = False
    # legacy API areas of the subject
    areas: Tuple[str, ...] = ()

    def sort_key(self) -> Tuple[int, str, str]:
        return (-self.severity.rank, self.subject, self.rule_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "explanation": self.explanation,
            "blocking": self.blocking,
            "areas": list(self.areas),
            "evidence": [s.to_dict() for s in self.evidence],
        }


@dataclass(frozen=True)
class PlanUnit:
    subject: str
    kind: str  # dependency|module|source
    action: str
    hint: str = ""
    severity: Optional[Severity] = None
    group: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "kind": self.kind,
            "action": self.action,
            "hint": self.hint,
            "severity": self.severity.value if self.severity else None,
            "group": self.group,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PlanUnit":
        sev = d.get("severity")
        return cls(
            subject=d["subject"],
            kind=d.get("kind", "dependency"),
            action=d.get("action", ""),
            hint=d.get("hint") or "",
            severity=Severity(sev) if sev else None,
            group=d.get("group"),
        )


@dataclass(frozen=True)
class MigrationPhase:
    ordinal: int
    units: Tuple[PlanUnit, ...]
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"ordinal": self.ordinal, "rationale": self.rationale, "units": [u.to_dict() for u in self.units]}


@dataclass(frozen=True)
class MigrationPlan:
    phases: Tuple[MigrationPhase, ...]
    risk_summary: Dict[str, Any] = field(default_factory=dict)

    def units(self) -> Iterator[PlanUnit]:
        for ph in self.phases:
            yield from ph.units

    def phase_of(self, subject: str) -> Optional[int]:
        for ph in self.phases:
            for u in ph.units:
                if u.subject == subject:
                    return ph.ordinal
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"phases": [p.to_dict() for p in self.phases], "risk_summary": dict(self.risk_summary)}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MigrationPlan":
        phases = tuple(
            MigrationPhase(
                ordinal=int(p["ordinal"]),
                units=tuple(PlanUnit.from_dict(u) for u in p.get("units") or []),
                rationale=p.get("rationale") or "",
            )
            for p in d.get("phases") or []
        )
        return cls(phases=phases, risk_summary=dict(d.get("risk_summary") or {}))


@dataclass(frozen=True)
class ProgressRecord:
    subject: str
    state: ProgressState
    timestamp: datetime

    def to_dict(self) -> Dict[str, str]:
        return {"subject": self.subject, "state": self.state.value, "timestamp": self.timestamp.isoformat()}
