"""Pytest configuration and fixtures for nsmigrate-analyzer tests."""

import shutil
import struct
import tempfile
import zipfile
from pathlib import Path
from typing import Dict, Generator, Iterable, Optional, Sequence, Tuple

import pytest

import nsmigrate_analyzer
from nsmigrate_analyzer.config.loader import load_config, load_namespace_profile
from nsmigrate_analyzer.core.classification.namespaces import NamespaceMapping, PrefixPair
from nsmigrate_analyzer.core.dependency.graph import add_edge, ensure_node, mark_cycles
from nsmigrate_analyzer.models.schema import EXTERNAL, ArtifactCoordinate, DependencyGraph

PKG_ROOT = Path(list(nsmigrate_analyzer.__path__)[0])


# --- class files ---

def build_class(
    name: str,
    refs: Iterable[str] = (),
    strings: Iterable[str] = (),
    major: int = 52,
    magic: int = 0xCAFEBABE,
) -> bytes:
    """Minimal class file: this/super classes, extra CONSTANT_Class refs and CONSTANT_String entries."""
    pool = []

    def utf8(s: str) -> int:
        raw = s.encode("utf-8")
        pool.append(b"\x01" + struct.pack(">H", len(raw)) + raw)
        return len(pool)

    def cls(s: str) -> int:
        i = utf8(s)
        pool.append(b"\x07" + struct.pack(">H", i))
        return len(pool)

    this_idx = cls(name)
    super_idx = cls("java/lang/Object")
    for r in refs:
        cls(r)
    for s in strings:
        i = utf8(s)
        pool.append(b"\x08" + struct.pack(">H", i))

    header = struct.pack(">IHHH", magic, 0, major, len(pool) + 1)
    tail = struct.pack(">HHHHHHH", 0x21, this_idx, super_idx, 0, 0, 0, 0)
    return header + b"".join(pool) + tail


def build_jar(path: Path, classes: Dict[str, bytes], extra: Optional[Dict[str, bytes]] = None) -> Path:
    """Write a jar; `classes` maps internal names (com/x/A) to class bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w", zipfile.ZIP_DEFLATED) as zf:
        for internal, data in sorted(classes.items()):
            zf.writestr(f"{internal}.class", data)
        for entry, data in sorted((extra or {}).items()):
            zf.writestr(entry, data)
    return path


def jar_of(group_pkg: str, cls_name: str, refs: Sequence[str] = ()) -> Dict[str, bytes]:
    internal = f"{group_pkg.replace('.', '/')}/{cls_name}"
    return {internal: build_class(internal, refs)}


# --- poms ---

Dep = Tuple[str, str, str]


def pom_xml(
    group: str,
    name: str,
    version: str,
    deps: Iterable[Dep] = (),
    scope: Optional[str] = None,
    body: str = "",
    packaging: str = "jar",
) -> str:
    dep_xml = []
    for g, a, v in deps:
        version_el = f"<version>{v}</version>" if v else ""
        scope_el = f"<scope>{scope}</scope>" if scope else ""
        dep_xml.append(
            f"<dependency><groupId>{g}</groupId><artifactId>{a}</artifactId>{version_el}{scope_el}</dependency>"
        )
    deps_block = f"<dependencies>{''.join(dep_xml)}</dependencies>" if dep_xml else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<project xmlns="http://maven.apache.org/POM/4.0.0">\n'
        "  <modelVersion>4.0.0</modelVersion>\n"
        f"  <groupId>{group}</groupId>\n"
        f"  <artifactId>{name}</artifactId>\n"
        f"  <version>{version}</version>\n"
        f"  <packaging>{packaging}</packaging>\n"
        f"  {body}\n"
        f"  {deps_block}\n"
        "</project>\n"
    )


def publish(
    repo_root: Path,
    group: str,
    name: str,
    version: str,
    classes: Optional[Dict[str, bytes]] = None,
    deps: Iterable[Dep] = (),
) -> Path:
    """Put a jar (when classes are given) and its pom under a Maven-layout root."""
    d = repo_root.joinpath(*group.split("."), name, version)
    d.mkdir(parents=True, exist_ok=True)
    (d / f"{name}-{version}.pom").write_text(pom_xml(group, name, version, deps), encoding="utf-8")
    if classes is not None:
        build_jar(d / f"{name}-{version}.jar", classes)
    return d


# --- graphs ---

def make_graph(nodes, edges=(), kinds=None):
    """Graph from {"g:a:1.0": verdict} plus ("src", "dst") edge pairs; cycles are marked."""
    g = DependencyGraph()
    for text, verdict in nodes.items():
        kind = (kinds or {}).get(text, EXTERNAL)
        ensure_node(g, ArtifactCoordinate.parse(text), kind).verdict = verdict
    for src, dst in edges:
        add_edge(g, ArtifactCoordinate.parse(src), ArtifactCoordinate.parse(dst))
    mark_cycles(g)
    return g


# --- fixtures ---

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def pkg_root() -> Path:
    return PKG_ROOT


@pytest.fixture
def jakarta_mapping() -> NamespaceMapping:
    """The bundled javax -> jakarta profile."""
    return load_namespace_profile(PKG_ROOT, "jakarta")


@pytest.fixture
def small_mapping() -> NamespaceMapping:
    return NamespaceMapping(
        name="small",
        pairs=[
            PrefixPair("javax.servlet", "jakarta.servlet"),
            PrefixPair("javax.persistence", "jakarta.persistence"),
        ],
        legacy_markers=["http://xmlns.jcp.org/xml/ns/javaee"],
        migrated_markers=["https://jakarta.ee/xml/ns/jakartaee"],
        ignored=["javax.servlet.legacyjdk"],
    )


@pytest.fixture
def analyzer_config(temp_dir: Path):
    """Package defaults with a Maven-layout root inside the temp dir."""
    m2 = temp_dir / "m2"
    m2.mkdir()
    cfg = load_config(PKG_ROOT)
    cfg.repository_roots = [m2]
    cfg.concurrency = 2
    return cfg


def build_sample_repo(root: Path, m2: Path) -> Path:
    """
    One Maven module using javax.servlet in a class and web.xml, declaring
    g:A:1.0 (legacy leaf) and g:B:2.0 (mixed, depends on A).
    """
    publish(m2, "g", "A", "1.0", classes=jar_of("org.a", "A", ["javax/servlet/Filter"]))
    publish(
        m2, "g", "B", "2.0",
        classes=jar_of("org.b", "B", ["javax/persistence/Entity", "jakarta/persistence/Id"]),
        deps=[("g", "A", "1.0")],
    )

    repo = root / "repo"
    java = repo / "src" / "main" / "java" / "com" / "acme"
    java.mkdir(parents=True)
    (repo / "pom.xml").write_text(
        pom_xml("com.acme", "app", "1.0", deps=[("g", "A", "1.0"), ("g", "B", "2.0")], packaging="war"),
        encoding="utf-8",
    )
    (java / "Hello.java").write_text(
        "package com.acme;\n\nimport javax.servlet.Filter;\nimport org.a.A;\n\npublic abstract class Hello implements Filter {}\n",
        encoding="utf-8",
    )
    (java / "Plain.java").write_text("package com.acme;\n\npublic class Plain {}\n", encoding="utf-8")
    webinf = repo / "src" / "main" / "webapp" / "WEB-INF"
    webinf.mkdir(parents=True)
    (webinf / "web.xml").write_text(
        '<web-app xmlns="http://xmlns.jcp.org/xml/ns/javaee" version="4.0"/>\n', encoding="utf-8"
    )
    return repo


@pytest.fixture
def sample_repo(temp_dir: Path, analyzer_config) -> Path:
    return build_sample_repo(temp_dir, analyzer_config.repository_roots[0])
