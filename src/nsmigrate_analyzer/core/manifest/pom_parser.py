from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ...errors import ManifestParseError
from ...models.schema import ArtifactCoordinate, DeclaredDependency, ModuleManifest
from .properties import merge_properties, resolve_string

MAX_PARENT_DEPTH = 10
MAX_BOM_DEPTH = 5

PomLoader = Callable[[ArtifactCoordinate], Optional[Path]]


@dataclass
class PomDependency:
    group: Optional[str]
    name: Optional[str]
    version: Optional[str]
    scope: Optional[str]
    type: Optional[str]
    optional: bool = False
    exclusions: List[str] = field(default_factory=list)


@dataclass
class PomModel:
    group: Optional[str]
    name: Optional[str]
    version: Optional[str]
    packaging: Optional[str]
    parent: Optional[Tuple[str, str, str]]
    parent_relative_path: Optional[str]
    properties: Dict[str, str] = field(default_factory=dict)
    dependencies: List[PomDependency] = field(default_factory=list)
    managed: List[PomDependency] = field(default_factory=list)
    modules: List[str] = field(default_factory=list)


def _text(el: Optional[ET.Element], tag: str) -> Optional[str]:
    if el is None:
        return None
    v = el.findtext(f"{{*}}{tag}")
    if v is None:
        return None
    v = " ".join(v.split())
    return v or None


def _local(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _read_dependency(el: ET.Element) -> PomDependency:
    exclusions: List[str] = []
    for ex in el.findall("{*}exclusions/{*}exclusion"):
        g = _text(ex, "groupId") or "*"
        a = _text(ex, "artifactId") or "*"
        exclusions.append(f"{g}:{a}")
    return PomDependency(
        group=_text(el, "groupId"),
        name=_text(el, "artifactId"),
        version=_text(el, "version"),
        scope=_text(el, "scope"),
        type=_text(el, "type"),
        optional=(_text(el, "optional") or "").lower() == "true",
        exclusions=exclusions,
    )


def read_pom_model(xml_text: str) -> Tuple[Optional[PomModel], str]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        return None, f"xml_parse_error:{e}"
    if _local(root.tag) != "project":
        return None, f"not_a_pom:root element is <{_local(root.tag)}>"

    parent_el = root.find("{*}parent")
    parent = None
    rel_path = None
    if parent_el is not None:
        pg, pa, pv = _text(parent_el, "groupId"), _text(parent_el, "artifactId"), _text(parent_el, "version")
        if pg and pa and pv:
            parent = (pg, pa, pv)
        rel_el = parent_el.find("{*}relativePath")
        if rel_el is None:
            rel_path = "../pom.xml"
        else:
            rel_path = (rel_el.text or "").strip() or None  # empty element disables the lookup

    props: Dict[str, str] = {}
    props_el = root.find("{*}properties")
    if props_el is not None:
        for p in props_el:
            if not isinstance(p.tag, str):
                continue
            props[_local(p.tag)] = " ".join((p.text or "").split())

    model = PomModel(
        group=_text(root, "groupId"),
        name=_text(root, "artifactId"),
        version=_text(root, "version"),
        packaging=_text(root, "packaging"),
        parent=parent,
        parent_relative_path=rel_path,
        properties=props,
    )
    # only direct declarations; plugin and profile dependencies are ignored
    for d in root.findall("{*}dependencies/{*}dependency"):
        model.dependencies.append(_read_dependency(d))
    for d in root.findall("{*}dependencyManagement/{*}dependencies/{*}dependency"):
        model.managed.append(_read_dependency(d))
    for m in root.findall("{*}modules/{*}module"):
        if m.text and m.text.strip():
            model.modules.append(m.text.strip())
    return model, ""


def _load_model(path: Path) -> PomModel:
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ManifestParseError(f"read_error:{e}", str(path))
    model, err = read_pom_model(text)
    if model is None:
        raise ManifestParseError(err, str(path))
    return model


def _find_parent(path: Path, model: PomModel, pom_loader: Optional[PomLoader]) -> Optional[Path]:
    g, a, v = model.parent  # type: ignore[misc]
    if model.parent_relative_path:
        candidate = (path.parent / model.parent_relative_path)
        if candidate.is_dir():
            candidate = candidate / "pom.xml"
        if candidate.is_file():
            try:
                cm = _load_model(candidate)
            except ManifestParseError:
                cm = None
            if cm is not None and cm.name == a and (cm.group or (cm.parent or ("",))[0]) == g:
                return candidate
    if pom_loader:
        return pom_loader(ArtifactCoordinate(g, a, v))
    return None


def _builtin_properties(model: PomModel, group: str, version: str) -> Dict[str, str]:
    out = {
        "project.groupId": group,
        "project.artifactId": model.name or "",
        "project.version": version,
        "pom.groupId": group,
        "pom.artifactId": model.name or "",
        "pom.version": version,
        "groupId": group,
        "version": version,
    }
    if model.parent:
        out["project.parent.groupId"] = model.parent[0]
        out["project.parent.artifactId"] = model.parent[1]
        out["project.parent.version"] = model.parent[2]
    return out


def _key(dep: PomDependency, props: Dict[str, str]) -> str:
    g, _ = resolve_string(dep.group or "", props)
    a, _ = resolve_string(dep.name or "", props)
    return f"{g}:{a}"


def parse_pom(path: Path, pom_loader: Optional[PomLoader] = None, _bom_depth: int = 0) -> ModuleManifest:
    """
    Parse a POM into a ModuleManifest.

    Inherits properties, dependencyManagement and dependencies from parent
    POMs found through relativePath or the pom_loader, folds in import-scoped
    BOMs, and interpolates ${...} placeholders. Problems with parents or BOMs
    are recorded on the manifest; only an unreadable primary file raises.
    """
    path = Path(path)
    model = _load_model(path)
    errors: List[str] = []

    chain: List[PomModel] = [model]
    cur_path, cur = path, model
    for _ in range(MAX_PARENT_DEPTH):
        if not cur.parent:
            break
        ppath = _find_parent(cur_path, cur, pom_loader)
        if ppath is None:
            errors.append(f"parent {':'.join(cur.parent)} not found")
            break
        try:
            pmodel = _load_model(ppath)
        except ManifestParseError as e:
            errors.append(f"parent {':'.join(cur.parent)} unreadable: {e}")
            break
        chain.append(pmodel)
        cur_path, cur = ppath, pmodel

    group = model.group or (model.parent[0] if model.parent else None) or "unknown"
    version = model.version or (model.parent[2] if model.parent else None) or "unknown"

    # root-most first so children override
    ordered = list(reversed(chain))
    props = merge_properties([m.properties for m in ordered] + [_builtin_properties(model, group, version)])
    group, _ = resolve_string(group, props)
    version, _ = resolve_string(version, props)
    name, _ = resolve_string(model.name or "unknown", props)
    props.update(_builtin_properties(model, group, version))

    managed: Dict[str, PomDependency] = {}
    for m in ordered:
        for d in m.managed:
            managed[_key(d, props)] = d
    for key, d in list(managed.items()):
        if (d.scope or "") == "import" and (d.type or "") == "pom":
            del managed[key]
            _import_bom(d, props, managed, pom_loader, errors, _bom_depth)

    declared: Dict[str, PomDependency] = {}
    for m in ordered:
        for d in m.dependencies:
            declared[_key(d, props)] = d

    deps: List[DeclaredDependency] = []
    for key, d in declared.items():
        if not d.group or not d.name:
            errors.append(f"dependency without groupId/artifactId skipped: {key}")
            continue
        mgmt = managed.get(key)
        g, _ = resolve_string(d.group, props)
        a, _ = resolve_string(d.name, props)
        raw_version = d.version or (mgmt.version if mgmt else None) or ""
        v, unresolved = resolve_string(raw_version, props)
        if unresolved:
            errors.append(f"{g}:{a}: unresolved version placeholder(s) {', '.join(unresolved)}")
        scope = d.scope or (mgmt.scope if mgmt else None) or "compile"
        exclusions = list(d.exclusions) or (list(mgmt.exclusions) if mgmt else [])
        deps.append(DeclaredDependency(
            coordinate=ArtifactCoordinate(g, a, v),
            scope=scope,
            optional=d.optional,
            exclusions=exclusions,
        ))

    parent = ArtifactCoordinate(*model.parent) if model.parent else None
    return ModuleManifest(
        path=str(path),
        format="maven",
        coordinate=ArtifactCoordinate(group, name, version),
        dependencies=deps,
        parent=parent,
        modules=list(model.modules),
        errors=errors,
    )


def _import_bom(
    d: PomDependency,
    props: Dict[str, str],
    managed: Dict[str, PomDependency],
    pom_loader: Optional[PomLoader],
    errors: List[str],
    depth: int,
) -> None:
    g, _ = resolve_string(d.group or "", props)
    a, _ = resolve_string(d.name or "", props)
    v, _ = resolve_string(d.version or "", props)
    label = f"{g}:{a}:{v}"
    if depth >= MAX_BOM_DEPTH:
        errors.append(f"bom {label}: import nesting too deep")
        return
    bom_path = pom_loader(ArtifactCoordinate(g, a, v)) if pom_loader else None
    if bom_path is None:
        errors.append(f"bom {label} not found")
        return
    try:
        bom = parse_pom(bom_path, pom_loader, _bom_depth=depth + 1)
        bom_model = _load_model(Path(bom_path))
    except ManifestParseError as e:
        errors.append(f"bom {label} unreadable: {e}")
        return
    bom_props = dict(bom_model.properties)
    bom_props.update(_builtin_properties(bom_model, bom.coordinate.group, bom.coordinate.version))
    for md in bom_model.managed:
        key = _key(md, bom_props)
        if key in managed:
            continue  # explicit management wins over imported
        mv, _ = resolve_string(md.version or "", bom_props)
        managed[key] = PomDependency(
            group=resolve_string(md.group or "", bom_props)[0],
            name=resolve_string(md.name or "", bom_props)[0],
            version=mv,
            scope=md.scope,
            type=md.type,
            optional=md.optional,
            exclusions=list(md.exclusions),
        )
    errors.extend(f"bom {label}: {e}" for e in bom.errors)
