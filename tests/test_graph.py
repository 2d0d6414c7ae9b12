"""Tests for dependency graph assembly and cycle detection."""

from pathlib import Path

from nsmigrate_analyzer.core.classification.scan_runner import ArtifactResult
from nsmigrate_analyzer.core.dependency.graph import (
    build_dependency_graph,
    cycle_id_for,
    strongly_connected_components,
)
from nsmigrate_analyzer.core.manifest.resolver import ResolutionResult, ResolvedArtifact
from nsmigrate_analyzer.models.schema import (
    EXTERNAL,
    MODULE,
    UNRESOLVED,
    ArtifactCoordinate,
    CodeUnit,
    GraphEdge,
    ModuleManifest,
    NamespaceVerdict,
)

from conftest import make_graph

V = NamespaceVerdict
C = ArtifactCoordinate.parse


class TestCycles:
    """Tarjan SCCs and cycle marking."""

    def test_two_node_cycle(self):
        g = make_graph(
            {"g:x:1": V.LEGACY_ONLY, "g:y:1": V.LEGACY_ONLY, "g:z:1": V.LEGACY_ONLY},
            [("g:x:1", "g:y:1"), ("g:y:1", "g:x:1"), ("g:y:1", "g:z:1")],
        )
        x, y, z = g.node(C("g:x:1")), g.node(C("g:y:1")), g.node(C("g:z:1"))
        assert x.cyclic and y.cyclic
        assert x.cycle_id == y.cycle_id
        assert not z.cyclic
        assert g.cycles() == {x.cycle_id: [C("g:x:1"), C("g:y:1")]}

    def test_self_loop_is_a_cycle(self):
        g = make_graph({"g:s:1": V.MIXED}, [("g:s:1", "g:s:1")])
        assert g.node(C("g:s:1")).cyclic

    def test_cycle_id_is_order_independent(self):
        a, b = C("g:a:1"), C("g:b:1")
        assert cycle_id_for([a, b]) == cycle_id_for([b, a])
        assert cycle_id_for([a, b]).startswith("cycle-")
        assert cycle_id_for([a]) != cycle_id_for([a, b])

    def test_deep_chain_does_not_recurse(self):
        depth = 5000
        nodes = {f"g:n{i}:1": V.NOT_APPLICABLE for i in range(depth)}
        edges = [(f"g:n{i}:1", f"g:n{i + 1}:1") for i in range(depth - 1)]
        g = make_graph(nodes, edges)
        comps = strongly_connected_components(g)
        assert len(comps) == depth
        assert g.cycles() == {}

    def test_long_ring_is_one_component(self):
        n = 2000
        nodes = {f"g:r{i}:1": V.LEGACY_ONLY for i in range(n)}
        edges = [(f"g:r{i}:1", f"g:r{(i + 1) % n}:1") for i in range(n)]
        g = make_graph(nodes, edges)
        [members] = g.cycles().values()
        assert len(members) == n

    def test_dangling_child_becomes_unresolved_node(self):
        g = make_graph({"g:a:1": V.LEGACY_ONLY}, [("g:a:1", "g:gone:1")])
        node = g.node(C("g:gone:1"))
        assert node.kind == UNRESOLVED
        assert node.verdict == V.UNKNOWN


class TestBuildGraph:
    """Assembly from resolution output and scan results."""

    def test_verdicts_and_kinds(self):
        app, lib, pom_only, missing = C("com.acme:app:1"), C("g:lib:1"), C("g:bom-ish:1"), C("g:missing:1")
        resolution = ResolutionResult(
            modules={app: ModuleManifest(path="/r/pom.xml", format="maven", coordinate=app)},
            artifacts={
                lib: ResolvedArtifact(lib, "compile", artifact_path=Path("/m2/lib-1.jar"), declared_by=[str(app)]),
                pom_only: ResolvedArtifact(pom_only, "compile", pom_path=Path("/m2/bom-ish-1.pom")),
            },
            edges=[
                GraphEdge(app, lib),
                GraphEdge(app, pom_only),
                GraphEdge(app, missing),
            ],
            unresolved={missing: "not found"},
        )
        results = {lib: ArtifactResult(lib, "/m2/lib-1.jar", V.LEGACY_ONLY, defined_packages=["org.lib"])}
        units = [
            CodeUnit(path="src/A.java", kind="source", module=app, verdict=V.MIGRATED),
            CodeUnit(path="src/B.java", kind="source", module=app, verdict=V.LEGACY_ONLY),
        ]

        g = build_dependency_graph(resolution, results, units)

        assert g.node(app).kind == MODULE
        assert g.node(app).verdict == V.MIXED
        assert g.node(lib).kind == EXTERNAL
        assert g.node(lib).verdict == V.LEGACY_ONLY
        assert g.node(lib).defined_packages == ["org.lib"]
        assert g.node(lib).declared_by == [str(app)]
        assert g.node(pom_only).verdict == V.NOT_APPLICABLE
        assert g.node(missing).kind == UNRESOLVED
        assert g.node(missing).verdict == V.UNKNOWN
        assert g.node(app).children == {lib, pom_only, missing}

    def test_unscanned_archive_is_unknown(self):
        lib = C("g:lib:1")
        resolution = ResolutionResult(
            artifacts={lib: ResolvedArtifact(lib, "compile", artifact_path=Path("/m2/lib-1.jar"))},
        )
        g = build_dependency_graph(resolution, {}, [])
        assert g.node(lib).verdict == V.UNKNOWN
        assert g.node(lib).errors

    def test_module_without_units_is_not_applicable(self):
        app = C("com.acme:app:1")
        resolution = ResolutionResult(modules={app: ModuleManifest(path="/r/pom.xml", format="maven", coordinate=app)})
        g = build_dependency_graph(resolution, {}, [])
        assert g.node(app).verdict == V.NOT_APPLICABLE

    def test_to_dict_is_stable(self):
        g = make_graph(
            {"g:b:1": V.MIXED, "g:a:1": V.LEGACY_ONLY},
            [("g:b:1", "g:a:1")],
        )
        blob = g.to_dict()
        assert [n["coordinate"] for n in blob["nodes"]] == ["g:a:1", "g:b:1"]
        assert blob["edges"] == [{"src": "g:b:1", "dst": "g:a:1", "scope": "compile", "evidence": None}]
        assert blob == g.to_dict()
