from __future__ import annotations

import re
from typing import Dict, Iterable, List, Mapping, Tuple

_VAR_RE = re.compile(r"\$\{([^}]+)\}")
_GRADLE_VAR_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][\w.]*)")


def parse_properties_text(text: str) -> Dict[str, str]:
    """Parse `.properties` content (gradle.properties, maven config) into a dict."""
    out: Dict[str, str] = {}
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or line.startswith("!"):
            continue
        if "=" in line:
            k, v = line.split("=", 1)
        elif ":" in line:
            k, v = line.split(":", 1)
        else:
            continue
        k = k.strip()
        if k:
            out[k] = v.strip()
    return out


def merge_properties(layers: Iterable[Mapping[str, str]]) -> Dict[str, str]:
    # later layers win (child POM over parent, build script over gradle.properties)
    out: Dict[str, str] = {}
    for layer in layers:
        out.update(layer)
    return out


def resolve_string(s: str, lookup: Mapping[str, str], max_depth: int = 10) -> Tuple[str, List[str]]:
    """Substitute `${name}` placeholders repeatedly; return the text and the names left unresolved."""
    return _resolve(s, lookup, _VAR_RE, max_depth)


def resolve_gradle_string(s: str, lookup: Mapping[str, str], max_depth: int = 10) -> Tuple[str, List[str]]:
    """Like resolve_string but also understands Groovy/Kotlin `$name` templates."""
    return _resolve(s, lookup, _GRADLE_VAR_RE, max_depth)


def _resolve(s: str, lookup: Mapping[str, str], rx: re.Pattern, max_depth: int) -> Tuple[str, List[str]]:
    unresolved: List[str] = []
    cur = s or ""

    for _ in range(max_depth):
        changed = False

        def repl(m: re.Match) -> str:
            nonlocal changed
            key = (m.group(1) or m.group(m.lastindex or 1)).strip()
            if key in lookup:
                changed = True
                return lookup[key]
            return m.group(0)

        cur = rx.sub(repl, cur)
        if not changed:
            break

    for m in rx.finditer(cur):
        key = (m.group(1) or m.group(m.lastindex or 1)).strip()
        if key not in unresolved:
            unresolved.append(key)
    return cur, unresolved
