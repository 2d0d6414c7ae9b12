from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from ...models.schema import SymbolKind, SymbolReference
from ...utils.text import qualified_names, strip_c_comments, strip_xml_comments
from ..discovery.content_loader import load_text

CODE_EXTENSIONS = (".java", ".kt", ".groovy", ".scala")
MARKUP_EXTENSIONS = (".xml", ".jsp", ".jspx", ".jspf", ".tld", ".tag", ".xhtml", ".faces")
CONFIG_EXTENSIONS = (".properties", ".yml", ".yaml")

_IMPORT_RE = re.compile(r"(?m)^\s*import\s+(static\s+)?([\w$.]+)(\.\*)?\s*;?")
_ANNOTATION_RE = re.compile(r"@([A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*)")
_STRING_RE = re.compile(r"\"(?:\\.|[^\"\\\n])*\"")
_TEXT_BLOCK_RE = re.compile(r'"""(.*?)"""', re.DOTALL)
_URI_IN_TEXT_RE = re.compile(r"https?://[^\s\"'<>]+")
_JSP_COMMENT_RE = re.compile(r"<%--.*?--%>", re.DOTALL)
_HASH_COMMENT_RE = re.compile(r"(?m)^\s*[#!].*$")


def source_kind(path: str) -> Optional[str]:
    p = path.lower()
    if p.endswith(CODE_EXTENSIONS):
        return "code"
    if p.endswith(MARKUP_EXTENSIONS):
        return "markup"
    if p.endswith(CONFIG_EXTENSIONS):
        return "config"
    return None


class _Symbols:
    def __init__(self, owner: str):
        self.owner = owner
        self.out: List[SymbolReference] = []
        self._seen: Set[Tuple[str, SymbolKind]] = set()

    def add(self, kind: SymbolKind, name: str) -> None:
        name = name.strip().rstrip(".")
        if not name or (name, kind) in self._seen:
            return
        self._seen.add((name, kind))
        self.out.append(SymbolReference(owner_type=self.owner, referenced_type=name, kind=kind))

    def add_text(self, text: str) -> None:
        for uri in _URI_IN_TEXT_RE.findall(text):
            self.add(SymbolKind.STRING_LITERAL, uri)
        for n in qualified_names(_URI_IN_TEXT_RE.sub(" ", text)):
            self.add(SymbolKind.STRING_LITERAL, n)


def _scan_code(text: str, syms: _Symbols) -> None:
    code = strip_c_comments(text)

    literals: List[str] = [m.group(1) for m in _TEXT_BLOCK_RE.finditer(code)]
    code = _TEXT_BLOCK_RE.sub('""', code)
    literals.extend(m.group(0)[1:-1] for m in _STRING_RE.finditer(code))
    bare = _STRING_RE.sub('""', code)

    imports: Dict[str, str] = {}
    for m in _IMPORT_RE.finditer(bare):
        is_static, name, star = m.group(1), m.group(2), m.group(3)
        if is_static:
            owner = name if star else name.rsplit(".", 1)[0]
            syms.add(SymbolKind.TYPE_REF, owner)
            continue
        syms.add(SymbolKind.TYPE_REF, name)
        if not star:
            imports[name.rsplit(".", 1)[-1]] = name

    for m in _ANNOTATION_RE.finditer(bare):
        name = m.group(1)
        if "." not in name:
            name = imports.get(name, "")
        if name:
            syms.add(SymbolKind.ANNOTATION, name)

    body = _IMPORT_RE.sub("", bare)
    for n in qualified_names(body):
        # package-qualified names only; skips obj.method chains
        if n.count(".") >= 2 and n[0].islower():
            syms.add(SymbolKind.TYPE_REF, n)

    for lit in literals:
        syms.add_text(lit)


def _scan_markup(text: str, syms: _Symbols) -> None:
    syms.add_text(strip_xml_comments(_JSP_COMMENT_RE.sub("", text)))


def _scan_config(text: str, syms: _Symbols) -> None:
    syms.add_text(_HASH_COMMENT_RE.sub("", text))


def scan_source(text: str, path: str) -> List[SymbolReference]:
    """
    Namespace-relevant references in a source or descriptor file.

    Code files give imports, static imports, annotations, qualified names and
    string literal content; markup and config files give every qualified
    name and URI in their text. Comments are dropped first.
    """
    syms = _Symbols(owner=path)
    kind = source_kind(path)
    if kind == "code":
        _scan_code(text, syms)
    elif kind == "markup":
        _scan_markup(text, syms)
    elif kind == "config":
        _scan_config(text, syms)
    return syms.out


def scan_source_file(path: Path, max_bytes: Optional[int] = None) -> Tuple[List[SymbolReference], Optional[str]]:
    """(symbols, error); error is set when the file cannot be read."""
    text, err = load_text(str(path), max_bytes)
    if err:
        return [], f"{path}: {err}"
    return scan_source(text, str(path)), None
