import hashlib
from typing import Dict, Iterable, List, Optional

from ...models.schema import (
    EXTERNAL,
    MODULE,
    UNRESOLVED,
    ArtifactCoordinate,
    CodeUnit,
    DependencyGraph,
    DependencyNode,
    GraphEdge,
    NamespaceVerdict,
)
from ..classification.classifier import combine_verdicts
from ..classification.scan_runner import ArtifactResult
from ..manifest.resolver import ResolutionResult


def ensure_node(g: DependencyGraph, coord: ArtifactCoordinate, kind: str, scope: str = "compile") -> DependencyNode:
    node = g.nodes.get(coord)
    if node is None:
        node = DependencyNode(coordinate=coord, kind=kind, scope=scope)
        g.nodes[coord] = node
    return node


def add_edge(g: DependencyGraph, src: ArtifactCoordinate, dst: ArtifactCoordinate, scope: str = "compile",
             evidence: Optional[str] = None) -> None:
    # a dangling child becomes an unresolved placeholder so every edge lands on a node
    if dst not in g.nodes:
        node = ensure_node(g, dst, UNRESOLVED, scope)
        node.errors.append(f"{dst}: referenced by {src} but never resolved")
    g.nodes[src].children.add(dst)
    g.edges.append(GraphEdge(src=src, dst=dst, scope=scope, evidence=evidence))


def strongly_connected_components(g: DependencyGraph) -> List[List[ArtifactCoordinate]]:
    """
    Tarjan's algorithm with an explicit stack.

    Returns components in discovery order, members sorted. Deep chains are
    fine; nothing here recurses.
    """
    index: Dict[ArtifactCoordinate, int] = {}
    low: Dict[ArtifactCoordinate, int] = {}
    on_stack = set()
    stack: List[ArtifactCoordinate] = []
    out: List[List[ArtifactCoordinate]] = []
    counter = 0

    for start in sorted(g.nodes):
        if start in index:
            continue
        work = [(start, iter(sorted(g.nodes[start].children)))]
        index[start] = low[start] = counter
        counter += 1
        stack.append(start)
        on_stack.add(start)

        while work:
            v, children = work[-1]
            advanced = False
            for w in children:
                if w not in index:
                    index[w] = low[w] = counter
                    counter += 1
                    stack.append(w)
                    on_stack.add(w)
                    work.append((w, iter(sorted(g.nodes[w].children))))
                    advanced = True
                    break
                if w in on_stack:
                    low[v] = min(low[v], index[w])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[v])
            if low[v] == index[v]:
                comp = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    comp.append(w)
                    if w == v:
                        break
                out.append(sorted(comp))
    return out


def cycle_id_for(members: Iterable[ArtifactCoordinate]) -> str:
    text = "|".join(str(c) for c in sorted(members))
    return "cycle-" + hashlib.sha1(text.encode("utf-8")).hexdigest()[:10]


def mark_cycles(g: DependencyGraph) -> int:
    found = 0
    for comp in strongly_connected_components(g):
        if len(comp) == 1 and comp[0] not in g.nodes[comp[0]].children:
            continue
        cid = cycle_id_for(comp)
        for c in comp:
            g.nodes[c].cyclic = True
            g.nodes[c].cycle_id = cid
        found += 1
    return found


def build_dependency_graph(
    resolution: ResolutionResult,
    artifact_results: Dict[ArtifactCoordinate, ArtifactResult],
    code_units: List[CodeUnit],
) -> DependencyGraph:
    """
    Assemble the graph from resolution output and scan results.

    Module verdicts fold their code units' verdicts; external verdicts come
    from the artifact scan; unresolved coordinates are UNKNOWN placeholders
    without children.
    """
    g = DependencyGraph()

    units_by_module: Dict[ArtifactCoordinate, List[CodeUnit]] = {}
    for u in code_units:
        if u.module is not None:
            units_by_module.setdefault(u.module, []).append(u)

    for coord in sorted(resolution.modules):
        manifest = resolution.modules[coord]
        node = ensure_node(g, coord, MODULE)
        node.errors.extend(manifest.errors)
        units = units_by_module.get(coord, [])
        node.verdict = combine_verdicts(u.verdict for u in units)
        node.partial_scan = any(u.partial for u in units)
        for u in units:
            node.errors.extend(u.errors)

    for coord in sorted(resolution.artifacts):
        art = resolution.artifacts[coord]
        node = ensure_node(g, coord, EXTERNAL, art.scope)
        node.declared_by = sorted(art.declared_by)
        node.errors.extend(art.errors)
        node.artifact_path = str(art.artifact_path) if art.artifact_path else None
        result = artifact_results.get(coord)
        if result is None:
            # pom-only artifact: nothing to inspect
            node.verdict = NamespaceVerdict.NOT_APPLICABLE if art.artifact_path is None else NamespaceVerdict.UNKNOWN
            if art.artifact_path is not None:
                node.errors.append(f"{coord}: archive was not scanned")
            continue
        node.verdict = result.verdict
        node.partial_scan = result.partial
        node.errors.extend(result.errors)
        node.defined_packages = list(result.defined_packages)
        node.evidence = list(result.evidence)

    for coord in sorted(resolution.unresolved):
        node = ensure_node(g, coord, UNRESOLVED)
        node.verdict = NamespaceVerdict.UNKNOWN
        node.errors.append(f"{coord}: {resolution.unresolved[coord]}")

    for e in resolution.edges:
        if e.src not in g.nodes:
            ensure_node(g, e.src, UNRESOLVED).errors.append(f"{e.src}: edge source never resolved")
        add_edge(g, e.src, e.dst, e.scope, e.evidence)

    mark_cycles(g)
    return g
