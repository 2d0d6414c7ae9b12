"""
Structural reader for JVM class files.

Walks the constant pool, member descriptors and annotation attributes of a
class file and turns them into SymbolReference records. Nothing is loaded,
linked or verified; the bytes are only parsed.

Header problems (magic, version) raise MalformedArtifactError. Running out of
bytes anywhere after the header is treated as truncation: everything read so
far is kept and the result is flagged partial.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ...errors import MalformedArtifactError
from ...models.schema import ArtifactScan, SymbolKind, SymbolReference
from ...utils.text import looks_like_uri, qualified_names, to_dotted

MAGIC = 0xCAFEBABE
MIN_MAJOR = 45
MAX_MAJOR = 80
MAX_STRING_SCAN = 4096

CONSTANT_Utf8 = 1
CONSTANT_Integer = 3
CONSTANT_Float = 4
CONSTANT_Long = 5
CONSTANT_Double = 6
CONSTANT_Class = 7
CONSTANT_String = 8
CONSTANT_Fieldref = 9
CONSTANT_Methodref = 10
CONSTANT_InterfaceMethodref = 11
CONSTANT_NameAndType = 12
CONSTANT_MethodHandle = 15
CONSTANT_MethodType = 16
CONSTANT_Dynamic = 17
CONSTANT_InvokeDynamic = 18
CONSTANT_Module = 19
CONSTANT_Package = 20

_ANNOTATION_ATTRS = ("RuntimeVisibleAnnotations", "RuntimeInvisibleAnnotations")
_PARAM_ANNOTATION_ATTRS = ("RuntimeVisibleParameterAnnotations", "RuntimeInvisibleParameterAnnotations")


class _Truncated(Exception):
    pass


class _BadStructure(Exception):
    pass


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        end = self.pos + n
        if end > len(self.data):
            raise _Truncated(f"needed {n} bytes at offset {self.pos}, {len(self.data) - self.pos} left")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def u1(self) -> int:
        return self.take(1)[0]

    def u2(self) -> int:
        return struct.unpack(">H", self.take(2))[0]

    def u4(self) -> int:
        return struct.unpack(">I", self.take(4))[0]


@dataclass
class ClassFileInfo:
    name: Optional[str] = None
    super_name: Optional[str] = None
    interfaces: List[str] = field(default_factory=list)
    major: int = 0
    minor: int = 0
    symbols: List[SymbolReference] = field(default_factory=list)
    partial: bool = False
    errors: List[str] = field(default_factory=list)


def decode_modified_utf8(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        pass
    # class files encode NUL as C0 80 and supplementary chars as surrogate pairs
    fixed = raw.replace(b"\xc0\x80", b"\x00")
    try:
        return fixed.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError:
        return fixed.decode("utf-8", "replace")


# -------------------------------------------------------------------
# Descriptors and generic signatures
# -------------------------------------------------------------------

def _scan_type(sig: str, i: int, out: List[str]) -> int:
    c = sig[i]
    if c in "BCDFIJSZV":
        return i + 1
    if c == "[":
        return _scan_type(sig, i + 1, out)
    if c == "T":
        end = sig.index(";", i)
        return end + 1
    if c == "*":
        return i + 1
    if c in "+-":
        return _scan_type(sig, i + 1, out)
    if c != "L":
        raise ValueError(f"unexpected {c!r} at {i} in {sig!r}")

    j = i + 1
    while sig[j] not in ";<.":
        j += 1
    name = sig[i + 1:j]
    out.append(name)
    while True:
        c = sig[j]
        if c == ";":
            return j + 1
        if c == "<":
            j += 1
            while sig[j] != ">":
                j = _scan_type(sig, j, out)
            j += 1
        elif c == ".":
            k = j + 1
            while sig[k] not in ";<.":
                k += 1
            name = f"{name}${sig[j + 1:k]}"
            out.append(name)
            j = k
        else:
            raise ValueError(f"unexpected {c!r} at {j} in {sig!r}")


def _scan_formal_parameters(sig: str, i: int, out: List[str]) -> int:
    # <T:Ljava/lang/Object;U::Ljava/lang/Comparable<TU;>;>
    while sig[i] != ">":
        i = sig.index(":", i)
        while sig[i] == ":":
            i += 1
            if sig[i] in "LT[":
                i = _scan_type(sig, i, out)
    return i + 1


def signature_types(sig: str) -> List[str]:
    """Internal class names mentioned in a field/method descriptor or a generic signature."""
    out: List[str] = []
    i = 0
    if sig.startswith("<"):
        i = _scan_formal_parameters(sig, 1, out)
    while i < len(sig):
        c = sig[i]
        if c in "()^":
            i += 1
            continue
        i = _scan_type(sig, i, out)
    return out


# -------------------------------------------------------------------
# Constant pool
# -------------------------------------------------------------------

class _ConstantPool:
    def __init__(self):
        self.entries: Dict[int, Tuple[int, object]] = {}

    def utf8(self, idx: int) -> Optional[str]:
        e = self.entries.get(idx)
        if e and e[0] == CONSTANT_Utf8:
            return e[1]  # type: ignore[return-value]
        return None

    def class_name(self, idx: int) -> Optional[str]:
        e = self.entries.get(idx)
        if e and e[0] == CONSTANT_Class:
            return self.utf8(e[1])  # type: ignore[arg-type]
        return None

    def name_and_type(self, idx: int) -> Tuple[Optional[str], Optional[str]]:
        e = self.entries.get(idx)
        if e and e[0] == CONSTANT_NameAndType:
            name_idx, desc_idx = e[1]  # type: ignore[misc]
            return self.utf8(name_idx), self.utf8(desc_idx)
        return None, None


def _read_constant_pool(r: _Reader, cp: _ConstantPool) -> None:
    count = r.u2()
    idx = 1
    while idx < count:
        tag = r.u1()
        if tag == CONSTANT_Utf8:
            length = r.u2()
            cp.entries[idx] = (tag, decode_modified_utf8(r.take(length)))
        elif tag in (CONSTANT_Integer, CONSTANT_Float):
            r.take(4)
            cp.entries[idx] = (tag, None)
        elif tag in (CONSTANT_Long, CONSTANT_Double):
            r.take(8)
            cp.entries[idx] = (tag, None)
            idx += 1  # eight-byte constants take two slots
        elif tag in (CONSTANT_Class, CONSTANT_String, CONSTANT_MethodType, CONSTANT_Module, CONSTANT_Package):
            cp.entries[idx] = (tag, r.u2())
        elif tag in (CONSTANT_Fieldref, CONSTANT_Methodref, CONSTANT_InterfaceMethodref,
                     CONSTANT_NameAndType, CONSTANT_Dynamic, CONSTANT_InvokeDynamic):
            cp.entries[idx] = (tag, (r.u2(), r.u2()))
        elif tag == CONSTANT_MethodHandle:
            cp.entries[idx] = (tag, (r.u1(), r.u2()))
        else:
            raise _BadStructure(f"unknown constant pool tag {tag} at entry {idx}")
        idx += 1


# -------------------------------------------------------------------
# Symbol collection
# -------------------------------------------------------------------

class _Collector:
    def __init__(self, owner: str, errors: List[str]):
        self.owner = owner
        self.errors = errors
        self.partial = False
        self.symbols: List[SymbolReference] = []
        self._seen = set()

    def degrade(self, message: str) -> None:
        self.errors.append(message)
        self.partial = True

    def types_of(self, sig: str) -> List[str]:
        try:
            return signature_types(sig)
        except (ValueError, IndexError) as e:
            self.degrade(f"unparseable signature {sig!r}: {e}")
            return []

    def add(self, kind: SymbolKind, internal_name: Optional[str]) -> None:
        if not internal_name:
            return
        if internal_name.startswith("["):
            for t in self.types_of(internal_name):
                self.add(kind, t)
            return
        name = to_dotted(internal_name)
        key = (kind, name)
        if key in self._seen:
            return
        self._seen.add(key)
        self.symbols.append(SymbolReference(owner_type=self.owner, referenced_type=name, kind=kind))

    def add_descriptor(self, desc: Optional[str], kind: SymbolKind = SymbolKind.TYPE_REF) -> None:
        if not desc:
            return
        for t in self.types_of(desc):
            self.add(kind, t)

    def add_string(self, value: Optional[str]) -> None:
        if not value:
            return
        value = value[:MAX_STRING_SCAN]
        if looks_like_uri(value):
            self._add_literal(value)
            return
        for name in qualified_names(value):
            self._add_literal(name)

    def _add_literal(self, value: str) -> None:
        key = (SymbolKind.STRING_LITERAL, value)
        if key in self._seen:
            return
        self._seen.add(key)
        self.symbols.append(SymbolReference(owner_type=self.owner, referenced_type=value, kind=SymbolKind.STRING_LITERAL))


def _collect_pool_symbols(cp: _ConstantPool, col: _Collector) -> None:
    for idx in sorted(cp.entries):
        tag, val = cp.entries[idx]
        if tag == CONSTANT_Class:
            col.add(SymbolKind.TYPE_REF, cp.utf8(val))  # type: ignore[arg-type]
        elif tag in (CONSTANT_Fieldref, CONSTANT_Methodref, CONSTANT_InterfaceMethodref):
            class_idx, nat_idx = val  # type: ignore[misc]
            kind = SymbolKind.FIELD_REF if tag == CONSTANT_Fieldref else SymbolKind.METHOD_CALL
            col.add(kind, cp.class_name(class_idx))
            col.add_descriptor(cp.name_and_type(nat_idx)[1])
        elif tag in (CONSTANT_Dynamic, CONSTANT_InvokeDynamic):
            col.add_descriptor(cp.name_and_type(val[1])[1])  # type: ignore[index]
        elif tag == CONSTANT_MethodType:
            col.add_descriptor(cp.utf8(val))  # type: ignore[arg-type]
        elif tag == CONSTANT_String:
            col.add_string(cp.utf8(val))  # type: ignore[arg-type]
        elif tag == CONSTANT_Package:
            col.add(SymbolKind.TYPE_REF, cp.utf8(val))  # type: ignore[arg-type]


# -------------------------------------------------------------------
# Attributes
# -------------------------------------------------------------------

def _element_value(r: _Reader, cp: _ConstantPool, col: _Collector) -> None:
    tag = chr(r.u1())
    if tag in "BCDFIJSZ":
        r.u2()
    elif tag == "s":
        col.add_string(cp.utf8(r.u2()))
    elif tag == "e":
        col.add_descriptor(cp.utf8(r.u2()))
        r.u2()
    elif tag == "c":
        col.add_descriptor(cp.utf8(r.u2()))
    elif tag == "@":
        _annotation(r, cp, col)
    elif tag == "[":
        for _ in range(r.u2()):
            _element_value(r, cp, col)
    else:
        raise _BadStructure(f"unknown element_value tag {tag!r}")


def _annotation(r: _Reader, cp: _ConstantPool, col: _Collector) -> None:
    col.add_descriptor(cp.utf8(r.u2()), SymbolKind.ANNOTATION)
    for _ in range(r.u2()):
        r.u2()
        _element_value(r, cp, col)


def _read_attribute_body(name: str, body: bytes, cp: _ConstantPool, col: _Collector) -> None:
    r = _Reader(body)
    if name == "Signature":
        col.add_descriptor(cp.utf8(r.u2()))
    elif name in _ANNOTATION_ATTRS:
        for _ in range(r.u2()):
            _annotation(r, cp, col)
    elif name in _PARAM_ANNOTATION_ATTRS:
        for _ in range(r.u1()):
            for _ in range(r.u2()):
                _annotation(r, cp, col)
    elif name == "AnnotationDefault":
        _element_value(r, cp, col)
    elif name == "Exceptions":
        for _ in range(r.u2()):
            col.add(SymbolKind.TYPE_REF, cp.class_name(r.u2()))
    elif name == "Code":
        r.u2()
        r.u2()
        r.take(r.u4())
        r.take(r.u2() * 8)
        _read_attributes(r, cp, col)
    elif name == "LocalVariableTable":
        for _ in range(r.u2()):
            r.take(4)
            r.u2()
            col.add_descriptor(cp.utf8(r.u2()))
            r.u2()
    elif name == "LocalVariableTypeTable":
        for _ in range(r.u2()):
            r.take(4)
            r.u2()
            col.add_descriptor(cp.utf8(r.u2()))
            r.u2()


def _read_attributes(r: _Reader, cp: _ConstantPool, col: _Collector) -> None:
    for _ in range(r.u2()):
        name = cp.utf8(r.u2()) or ""
        body = r.take(r.u4())
        try:
            _read_attribute_body(name, body, cp, col)
        except (_Truncated, _BadStructure) as e:
            # the declared length already moved the outer reader past this body
            col.degrade(f"attribute {name}: {e}")


def _read_members(r: _Reader, cp: _ConstantPool, col: _Collector) -> None:
    for _ in range(r.u2()):
        r.u2()  # access flags
        r.u2()  # name
        col.add_descriptor(cp.utf8(r.u2()))
        _read_attributes(r, cp, col)


def _name_from_hint(hint: Optional[str]) -> str:
    if not hint:
        return "<unknown>"
    h = hint.replace("\\", "/")
    if h.endswith(".class"):
        h = h[: -len(".class")]
    for marker in ("BOOT-INF/classes/", "WEB-INF/classes/", "META-INF/versions/"):
        if marker in h:
            h = h.split(marker, 1)[1]
    return to_dotted(h)


def read_class(data: bytes, name_hint: Optional[str] = None) -> ClassFileInfo:
    r = _Reader(data)
    try:
        magic = r.u4()
        minor = r.u2()
        major = r.u2()
    except _Truncated:
        raise MalformedArtifactError("too short to hold a class file header", name_hint)
    if magic != MAGIC:
        raise MalformedArtifactError(f"bad magic 0x{magic:08X}", name_hint)
    if not (MIN_MAJOR <= major <= MAX_MAJOR):
        raise MalformedArtifactError(f"unsupported class file version {major}.{minor}", name_hint)
    if major >= 56 and minor not in (0, 0xFFFF):
        raise MalformedArtifactError(f"invalid minor version {minor} for major {major}", name_hint)

    info = ClassFileInfo(major=major, minor=minor)
    cp = _ConstantPool()
    pool_ok = True
    try:
        _read_constant_pool(r, cp)
    except (_Truncated, _BadStructure) as e:
        pool_ok = False
        info.partial = True
        info.errors.append(f"constant pool: {e}")

    header_ok = False
    if pool_ok:
        try:
            r.u2()  # access flags
            info.name = cp.class_name(r.u2())
            info.super_name = cp.class_name(r.u2())
            header_ok = True
        except _Truncated as e:
            info.partial = True
            info.errors.append(f"class header: {e}")

    owner = to_dotted(info.name) if info.name else _name_from_hint(name_hint)
    col = _Collector(owner, info.errors)
    _collect_pool_symbols(cp, col)

    if header_ok:
        try:
            for _ in range(r.u2()):
                iface = cp.class_name(r.u2())
                if iface:
                    info.interfaces.append(iface)
            _read_members(r, cp, col)  # fields
            _read_members(r, cp, col)  # methods
            _read_attributes(r, cp, col)
        except (_Truncated, _BadStructure) as e:
            info.partial = True
            info.errors.append(f"members/attributes: {e}")

    info.symbols = col.symbols
    info.partial = info.partial or col.partial
    return info


def inspect_class_file(path: Path) -> ArtifactScan:
    """Scan a loose .class file into an ArtifactScan."""
    scan = ArtifactScan(path=str(path))
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise MalformedArtifactError(f"{path}: cannot read ({e})", str(path))
    info = read_class(data, name_hint=str(path))
    scan.symbols = info.symbols
    scan.partial = info.partial
    scan.errors = [f"{path}: {e}" for e in info.errors]
    scan.entries_scanned = 1
    if info.name:
        scan.defined_types.append(to_dotted(info.name))
    return scan
