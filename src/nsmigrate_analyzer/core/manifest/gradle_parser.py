from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ...errors import ManifestParseError
from ...models.schema import ArtifactCoordinate, DeclaredDependency, ModuleManifest
from ...utils.text import strip_c_comments
from .properties import merge_properties, parse_properties_text, resolve_gradle_string

BUILD_FILES = ("build.gradle", "build.gradle.kts")
SETTINGS_FILES = ("settings.gradle", "settings.gradle.kts")

_Q = r"""['"]"""
_STR = r"""['"]([^'"\n]*)['"]"""

_BLOCK_START_RE = re.compile(r"\b(dependencies|ext)\s*\{")

_STRING_DEP_RE = re.compile(
    r"\b([a-z][A-Za-z]*)\s*\(?\s*(?:(platform|enforcedPlatform)\s*\(\s*)?" + _STR
)
_MAP_DEP_RE = re.compile(
    r"\b([a-z][A-Za-z]*)\s*\(?\s*group\s*[:=]\s*" + _STR
    + r"\s*,\s*name\s*[:=]\s*" + _STR
    + r"(?:\s*,\s*version\s*[:=]\s*" + _STR + r")?"
)
_PROJECT_DEP_RE = re.compile(
    r"\b([a-z][A-Za-z]*)\s*\(?\s*project\s*\(\s*(?:path\s*[:=]\s*)?" + _STR + r"\s*\)"
)
_EXCLUDE_RE = re.compile(
    r"\bexclude\s*\(?\s*(?:group\s*[:=]\s*" + _STR + r")?\s*,?\s*(?:module\s*[:=]\s*" + _STR + r")?"
)

_VAR_PATTERNS = [
    re.compile(r"\bext\.(\w+)\s*=\s*" + _STR),
    re.compile(r"\bext\[\s*" + _Q + r"(\w+)" + _Q + r"\s*\]\s*=\s*" + _STR),
    re.compile(r"\bdef\s+(\w+)\s*=\s*" + _STR),
    re.compile(r"\bval\s+(\w+)(?:\s*:\s*String)?\s*=\s*" + _STR),
    re.compile(r"\bval\s+(\w+)\s+by\s+extra\s*\(\s*" + _STR + r"\s*\)"),
    re.compile(r"\bextra\[\s*" + _Q + r"(\w+)" + _Q + r"\s*\]\s*=\s*" + _STR),
    re.compile(r"\bextra\.set\(\s*" + _Q + r"(\w+)" + _Q + r"\s*,\s*" + _STR + r"\s*\)"),
]
_EXT_ASSIGN_RE = re.compile(r"(?m)^\s*(?:set\(\s*" + _Q + r")?(\w+)" + _Q + r"?\s*(?:=|,)\s*" + _STR)

_GROUP_RE = re.compile(r"(?m)^\s*(?:project\.)?group\s*=\s*" + _STR)
_VERSION_RE = re.compile(r"(?m)^\s*(?:project\.)?version\s*=\s*" + _STR)
_ROOT_NAME_RE = re.compile(r"rootProject\.name\s*=\s*" + _STR)


def scope_for_configuration(conf: str) -> Optional[str]:
    """Map a Gradle configuration to a Maven-style scope; None for non-dependency calls."""
    if conf.startswith("test") or conf.startswith("androidTest"):
        return "test"
    if conf in ("implementation", "api", "compile"):
        return "compile"
    if conf in ("runtimeOnly", "runtime"):
        return "runtime"
    if conf in ("compileOnly", "compileOnlyApi", "annotationProcessor", "kapt"):
        return "provided"
    return None


def _block_spans(text: str, keyword: str) -> List[Tuple[int, int]]:
    """(start, end) of every `keyword { ... }` body, braces balanced."""
    spans: List[Tuple[int, int]] = []
    for m in _BLOCK_START_RE.finditer(text):
        if m.group(1) != keyword:
            continue
        end = _matching_brace(text, m.end() - 1)
        spans.append((m.end(), end))
    return spans


def _matching_brace(text: str, open_pos: int) -> int:
    depth = 0
    for i in range(open_pos, len(text)):
        c = text[i]
        if c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
    return len(text)


def _outside(text: str, spans: List[Tuple[int, int]]) -> str:
    out, pos = [], 0
    for s, e in sorted(spans):
        if s < pos:
            continue
        out.append(text[pos:s])
        pos = e
    out.append(text[pos:])
    return "".join(out)


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise ManifestParseError(f"read_error:{e}", str(path))


def _settings_root(build_dir: Path) -> Optional[Path]:
    for d in [build_dir, *build_dir.parents]:
        if any((d / s).is_file() for s in SETTINGS_FILES):
            return d
    return None


def collect_variables(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for s, e in _block_spans(text, "ext"):
        for m in _EXT_ASSIGN_RE.finditer(text[s:e]):
            out[m.group(1)] = m.group(2)
    for rx in _VAR_PATTERNS:
        for m in rx.finditer(text):
            out[m.group(1)] = m.group(2)
    return out


def _parse_notation(notation: str) -> Tuple[str, str, str]:
    body = notation.split("@", 1)[0]
    parts = body.split(":")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValueError(notation)
    version = parts[2] if len(parts) > 2 else ""
    return parts[0], parts[1], version


def _exclusions_after(text: str, pos: int) -> List[str]:
    rest = text[pos:]
    stripped = rest.lstrip(" \t)")
    if not stripped.startswith("{"):
        return []
    start = pos + (len(rest) - len(stripped))
    body = text[start:_matching_brace(text, start)]
    out: List[str] = []
    for m in _EXCLUDE_RE.finditer(body):
        g, mod = m.group(1), m.group(2)
        if g or mod:
            out.append(f"{g or '*'}:{mod or '*'}")
    return out


def parse_dependency_block(body: str, variables: Dict[str, str], errors: List[str]) -> List[DeclaredDependency]:
    deps: List[DeclaredDependency] = []
    taken: List[Tuple[int, int]] = []

    def overlaps(s: int, e: int) -> bool:
        return any(s < te and ts < e for ts, te in taken)

    for m in _PROJECT_DEP_RE.finditer(body):
        scope = scope_for_configuration(m.group(1))
        if scope is None:
            continue
        taken.append(m.span())
        ref = m.group(2)
        deps.append(DeclaredDependency(
            coordinate=ArtifactCoordinate("", ref, ""),
            scope=scope,
            project_ref=ref,
        ))

    for m in _MAP_DEP_RE.finditer(body):
        scope = scope_for_configuration(m.group(1))
        if scope is None or overlaps(*m.span()):
            continue
        taken.append(m.span())
        g, _ = resolve_gradle_string(m.group(2), variables)
        n, _ = resolve_gradle_string(m.group(3), variables)
        v, unresolved = resolve_gradle_string(m.group(4) or "", variables)
        if unresolved:
            errors.append(f"{g}:{n}: unresolved version variable(s) {', '.join(unresolved)}")
        deps.append(DeclaredDependency(
            coordinate=ArtifactCoordinate(g, n, v),
            scope=scope,
            exclusions=_exclusions_after(body, m.end()),
        ))

    for m in _STRING_DEP_RE.finditer(body):
        scope = scope_for_configuration(m.group(1))
        if scope is None or overlaps(*m.span()):
            continue
        taken.append(m.span())
        text, unresolved = resolve_gradle_string(m.group(3), variables)
        try:
            g, n, v = _parse_notation(text)
        except ValueError:
            errors.append(f"unrecognised dependency notation {m.group(3)!r}")
            continue
        if unresolved:
            errors.append(f"{g}:{n}: unresolved version variable(s) {', '.join(unresolved)}")
        if m.group(2):
            scope = "import"
        deps.append(DeclaredDependency(
            coordinate=ArtifactCoordinate(g, n, v),
            scope=scope,
            exclusions=_exclusions_after(body, m.end()),
        ))
    return deps


def _project_settings(build_dir: Path) -> Tuple[Optional[Path], Optional[str]]:
    root = _settings_root(build_dir)
    if root is None:
        return None, None
    for s in SETTINGS_FILES:
        p = root / s
        if p.is_file():
            m = _ROOT_NAME_RE.search(strip_c_comments(_read(p)))
            if m:
                return root, m.group(1)
    return root, None


def _root_build_text(root: Path) -> str:
    for b in BUILD_FILES:
        p = root / b
        if p.is_file():
            return strip_c_comments(_read(p))
    return ""


def parse_gradle(path: Path) -> ModuleManifest:
    """
    Parse a Groovy or Kotlin DSL build script into a ModuleManifest.

    Regex based: string, map and project() notations inside `dependencies {}`
    blocks, with variables from ext/def/val/extra and gradle.properties.
    Group and version fall back to the root build script of the settings tree.
    """
    path = Path(path)
    text = strip_c_comments(_read(path))
    build_dir = path.parent
    errors: List[str] = []

    root, root_name = _project_settings(build_dir)
    layers: List[Dict[str, str]] = []
    root_text = ""
    if root is not None and root != build_dir:
        root_text = _root_build_text(root)
        rp = root / "gradle.properties"
        if rp.is_file():
            layers.append(parse_properties_text(_read(rp)))
        layers.append(collect_variables(root_text))
    own_props = build_dir / "gradle.properties"
    if own_props.is_file():
        layers.append(parse_properties_text(_read(own_props)))
    layers.append(collect_variables(text))
    variables = merge_properties(layers)

    dep_spans = _block_spans(text, "dependencies")
    top = _outside(text, dep_spans + _block_spans(text, "ext"))
    root_top = _outside(root_text, _block_spans(root_text, "dependencies")) if root_text else ""

    def project_value(rx: re.Pattern, key: str) -> Optional[str]:
        m = rx.search(top) or (rx.search(root_top) if root_top else None)
        raw = m.group(1) if m else variables.get(key)
        if raw is None:
            return None
        v, _ = resolve_gradle_string(raw, variables)
        return v

    group = project_value(_GROUP_RE, "group") or "unknown"
    version = project_value(_VERSION_RE, "version") or "unspecified"

    if root is not None and root == build_dir:
        name = root_name or build_dir.name
        project_path = ":"
    elif root is not None:
        rel = build_dir.relative_to(root)
        name = build_dir.name
        project_path = ":" + ":".join(rel.parts)
    else:
        name = build_dir.name
        project_path = None

    deps: List[DeclaredDependency] = []
    for s, e in dep_spans:
        deps.extend(parse_dependency_block(text[s:e], variables, errors))

    return ModuleManifest(
        path=str(path),
        format="gradle",
        coordinate=ArtifactCoordinate(group, name, version),
        dependencies=deps,
        project_path=project_path,
        errors=errors,
    )
