from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ...errors import ManifestParseError, UnresolvableDependencyError
from ...models.schema import ArtifactCoordinate, DeclaredDependency, GraphEdge, ModuleManifest
from .pom_parser import parse_pom
from .repository import ArtifactRepository
from .versions import highest, in_range, is_range, version_key

# widest first
SCOPE_ORDER = ["compile", "runtime", "provided", "system", "test"]

# (parent effective scope, child declared scope) -> effective child scope; missing = not transitive
_MEDIATION = {
    ("compile", "compile"): "compile",
    ("compile", "runtime"): "runtime",
    ("runtime", "compile"): "runtime",
    ("runtime", "runtime"): "runtime",
    ("provided", "compile"): "provided",
    ("provided", "runtime"): "provided",
    ("test", "compile"): "test",
    ("test", "runtime"): "test",
}


def mediate_scope(parent_scope: str, child_scope: str) -> Optional[str]:
    return _MEDIATION.get((parent_scope, child_scope))


def wider_scope(a: str, b: str) -> str:
    ia = SCOPE_ORDER.index(a) if a in SCOPE_ORDER else len(SCOPE_ORDER)
    ib = SCOPE_ORDER.index(b) if b in SCOPE_ORDER else len(SCOPE_ORDER)
    return a if ia <= ib else b


@dataclass
class VersionConflict:
    module: str
    key: str
    requested: str
    selected: str
    requested_by: str
    reason: str  # nearer|higher-version

    def to_dict(self) -> Dict[str, str]:
        return {
            "module": self.module,
            "key": self.key,
            "requested": self.requested,
            "selected": self.selected,
            "requested_by": self.requested_by,
            "reason": self.reason,
        }


@dataclass
class ResolvedArtifact:
    coordinate: ArtifactCoordinate
    scope: str
    artifact_path: Optional[Path] = None
    pom_path: Optional[Path] = None
    declared_by: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class ResolutionResult:
    modules: Dict[ArtifactCoordinate, ModuleManifest] = field(default_factory=dict)
    artifacts: Dict[ArtifactCoordinate, ResolvedArtifact] = field(default_factory=dict)
    edges: List[GraphEdge] = field(default_factory=list)
    conflicts: List[VersionConflict] = field(default_factory=list)
    unresolved: Dict[ArtifactCoordinate, str] = field(default_factory=dict)
    degraded_manifests: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "modules": [m.to_dict() for _, m in sorted(self.modules.items())],
            "artifacts": [
                {
                    "coordinate": str(a.coordinate),
                    "scope": a.scope,
                    "artifact_path": str(a.artifact_path) if a.artifact_path else None,
                    "pom_path": str(a.pom_path) if a.pom_path else None,
                    "declared_by": sorted(a.declared_by),
                    "errors": list(a.errors),
                }
                for _, a in sorted(self.artifacts.items())
            ],
            "conflicts": [c.to_dict() for c in self.conflicts],
            "unresolved": {str(c): r for c, r in sorted(self.unresolved.items())},
            "degraded_manifests": dict(sorted(self.degraded_manifests.items())),
        }


@dataclass
class _Request:
    coordinate: ArtifactCoordinate
    parent: ArtifactCoordinate
    scope: str
    exclusions: FrozenSet[str]


def _excluded(key: str, patterns: FrozenSet[str]) -> bool:
    return any(fnmatch.fnmatchcase(key, p) for p in patterns)


class ManifestResolver:
    """
    Breadth-first transitive resolution for every module in the tree.

    Per module: the nearest declaration of a group:name wins; among
    declarations at the same depth the highest version wins. Losing
    requests become VersionConflict entries and their edges point at the
    winner. Coordinates that cannot be located are kept as unresolved.
    """

    def __init__(self, repository: ArtifactRepository, max_depth: int = 50, log: Any | None = None):
        self.repository = repository
        self.max_depth = max_depth
        self.log = log
        self._children_cache: Dict[ArtifactCoordinate, Tuple[List[DeclaredDependency], List[str]]] = {}

    # --- lookup ---

    def _pin_version(self, coord: ArtifactCoordinate) -> ArtifactCoordinate:
        v = coord.version
        if not v:
            raise UnresolvableDependencyError(coord, "no version declared or managed")
        if "${" in v or v.startswith("$"):
            raise UnresolvableDependencyError(coord, f"uninterpolated version {v}")
        if is_range(v):
            candidates = [x for x in self.repository.available_versions(coord.group, coord.name) if in_range(x, v)]
            best = highest(candidates)
            if best is None:
                raise UnresolvableDependencyError(coord, f"no available version in range {v}")
            return coord.with_version(best)
        return coord

    def _locate(self, coord: ArtifactCoordinate) -> ResolvedArtifact:
        jar = self.repository.locate_artifact(coord)
        pom = self.repository.locate_pom(coord)
        if jar is None and pom is None:
            raise UnresolvableDependencyError(coord, "not found in any repository root or the scanned tree")
        return ResolvedArtifact(coordinate=coord, scope="compile", artifact_path=jar, pom_path=pom)

    def _children(self, art: ResolvedArtifact) -> Tuple[List[DeclaredDependency], List[str]]:
        if art.coordinate in self._children_cache:
            return self._children_cache[art.coordinate]
        if art.pom_path is None:
            out: Tuple[List[DeclaredDependency], List[str]] = ([], [])
        else:
            try:
                manifest = parse_pom(art.pom_path, self.repository.locate_pom)
                out = (manifest.dependencies, list(manifest.errors))
            except ManifestParseError as e:
                out = ([], [f"pom unreadable: {e}"])
        self._children_cache[art.coordinate] = out
        return out

    # --- resolution ---

    def resolve(self, manifests: List[ModuleManifest]) -> ResolutionResult:
        result = ResolutionResult()
        by_key: Dict[str, ArtifactCoordinate] = {}
        by_project: Dict[str, ArtifactCoordinate] = {}
        for m in sorted(manifests, key=lambda m: m.path):
            if m.coordinate in result.modules:
                result.degraded_manifests[m.path] = f"duplicate module coordinate {m.coordinate}"
                continue
            result.modules[m.coordinate] = m
            by_key.setdefault(m.coordinate.key, m.coordinate)
            if m.project_path:
                by_project.setdefault(m.project_path, m.coordinate)

        edges: Dict[Tuple[ArtifactCoordinate, ArtifactCoordinate], GraphEdge] = {}
        for coord in sorted(result.modules):
            self._resolve_module(result.modules[coord], by_key, by_project, result, edges)

        result.edges = [edges[k] for k in sorted(edges)]
        if self.log:
            self.log.info(
                f"Resolved {len(result.modules)} modules, {len(result.artifacts)} artifacts, "
                f"{len(result.unresolved)} unresolved, {len(result.conflicts)} conflicts"
            )
        return result

    def _add_edge(self, edges, src, dst, scope, evidence=None) -> None:
        cur = edges.get((src, dst))
        if cur is None:
            edges[(src, dst)] = GraphEdge(src=src, dst=dst, scope=scope, evidence=evidence)
        else:
            cur.scope = wider_scope(cur.scope, scope)

    def _module_target(self, dep: DeclaredDependency, by_key, by_project) -> Optional[ArtifactCoordinate]:
        if dep.project_ref:
            return by_project.get(dep.project_ref)
        return by_key.get(dep.coordinate.key)

    def _resolve_module(self, manifest: ModuleManifest, by_key, by_project, result: ResolutionResult, edges) -> None:
        root = manifest.coordinate
        label = str(root)
        selected: Dict[str, ArtifactCoordinate] = {}

        level: List[_Request] = []
        for dep in manifest.dependencies:
            if dep.scope == "import":
                continue  # BOM/platform, contributes versions only
            target = self._module_target(dep, by_key, by_project)
            if target is not None:
                if target != root:
                    self._add_edge(edges, root, target, dep.scope, evidence="module")
                continue
            if dep.project_ref:
                missing = ArtifactCoordinate("project", dep.project_ref, "unspecified")
                result.unresolved.setdefault(missing, f"{label}: project {dep.project_ref} not found in tree")
                self._add_edge(edges, root, missing, dep.scope, evidence="project")
                continue
            level.append(_Request(dep.coordinate, root, dep.scope, frozenset(dep.exclusions)))

        depth = 1
        while level and depth <= self.max_depth:
            by_req_key: Dict[str, List[_Request]] = {}
            for req in level:
                by_req_key.setdefault(req.coordinate.key, []).append(req)

            next_level: List[_Request] = []
            for key in sorted(by_req_key):
                reqs = by_req_key[key]
                module_target = by_key.get(key)
                if module_target is not None:
                    for r in reqs:
                        self._add_edge(edges, r.parent, module_target, r.scope, evidence="module")
                    continue

                if key in selected:
                    winner = selected[key]
                    for r in reqs:
                        if r.coordinate.version != winner.version:
                            result.conflicts.append(VersionConflict(
                                label, key, r.coordinate.version, winner.version, str(r.parent), "nearer"))
                        self._add_edge(edges, r.parent, winner, r.scope)
                    continue

                pinned: List[Tuple[_Request, Optional[ArtifactCoordinate]]] = []
                for r in reqs:
                    try:
                        pinned.append((r, self._pin_version(r.coordinate)))
                    except UnresolvableDependencyError as e:
                        self._record_unresolved(result, edges, r, e)
                        pinned.append((r, None))
                candidates = [c for _, c in pinned if c is not None]
                if not candidates:
                    continue
                winner = max(candidates, key=lambda c: version_key(c.version))
                selected[key] = winner

                try:
                    art = result.artifacts.get(winner) or self._locate(winner)
                except UnresolvableDependencyError as e:
                    for r, c in pinned:
                        if c is not None:
                            self._record_unresolved(result, edges, r, e, coord=c)
                    continue

                scope: Optional[str] = None
                exclusions: Optional[FrozenSet[str]] = None
                for r, c in pinned:
                    if c is None:
                        continue
                    if c.version != winner.version:
                        result.conflicts.append(VersionConflict(
                            label, key, c.version, winner.version, str(r.parent), "higher-version"))
                    elif exclusions is None:
                        exclusions = r.exclusions  # first winning path
                    self._add_edge(edges, r.parent, winner, r.scope)
                    scope = r.scope if scope is None else wider_scope(scope, r.scope)
                    if depth == 1 and label not in art.declared_by:
                        art.declared_by.append(label)
                scope = scope or "compile"
                exclusions = exclusions or frozenset()

                existing = result.artifacts.get(winner)
                if existing is None:
                    art.scope = scope
                    result.artifacts[winner] = art
                else:
                    existing.scope = wider_scope(existing.scope, scope)
                art = result.artifacts[winner]

                children, errors = self._children(art)
                for err in errors:
                    if err not in art.errors:
                        art.errors.append(err)
                for child in children:
                    if child.optional:
                        continue
                    child_scope = mediate_scope(scope, child.scope)
                    if child_scope is None:
                        continue
                    if _excluded(child.coordinate.key, exclusions):
                        continue
                    next_level.append(_Request(child.coordinate, winner, child_scope, exclusions | frozenset(child.exclusions)))

            level = next_level
            depth += 1

        if level:
            manifest.errors.append(f"resolution stopped at depth {self.max_depth}")

    def _record_unresolved(self, result, edges, req: _Request, err: UnresolvableDependencyError,
                           coord: Optional[ArtifactCoordinate] = None) -> None:
        c = coord or req.coordinate
        if not c.version:
            c = c.with_version("unspecified")
        result.unresolved.setdefault(c, err.reason)
        self._add_edge(edges, req.parent, c, req.scope)
        if self.log:
            self.log.warning(f"Unresolvable dependency {err}")
