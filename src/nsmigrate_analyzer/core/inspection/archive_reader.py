from __future__ import annotations

import io
import struct
import zipfile
import zlib
from pathlib import Path
from typing import List, Tuple

from ...errors import MalformedArtifactError
from ...models.schema import ArtifactScan, SymbolKind, SymbolReference
from ...utils.text import to_dotted
from .class_reader import read_class

ARCHIVE_EXTENSIONS = (".jar", ".war", ".ear", ".zip")
MAX_NESTING = 3
SERVICES_PREFIX = "META-INF/services/"

_LOCAL_HEADER = b"PK\x03\x04"
_LOCAL_HEADER_FMT = "<IHHHHHIIIHH"
_LOCAL_HEADER_LEN = struct.calcsize(_LOCAL_HEADER_FMT)

_FLAG_ENCRYPTED = 0x01
_FLAG_DATA_DESCRIPTOR = 0x08
_FLAG_UTF8 = 0x800

_STORED = 0
_DEFLATED = 8


def is_archive(name: str) -> bool:
    return name.lower().endswith(ARCHIVE_EXTENSIONS)


def _wanted(name: str) -> bool:
    if name.endswith("/"):
        return False
    return name.endswith(".class") or is_archive(name) or name.startswith(SERVICES_PREFIX)


def _walk_local_headers(data: bytes, label: str, errors: List[str]) -> List[Tuple[str, bytes]]:
    """
    Read entries straight from local file headers.

    Used when the central directory is gone (typically a truncated download).
    Deflated entries are self-terminating, so they can be inflated even when
    sizes live in a trailing data descriptor.
    """
    out: List[Tuple[str, bytes]] = []
    pos = data.find(_LOCAL_HEADER)
    while 0 <= pos and pos + _LOCAL_HEADER_LEN <= len(data):
        (_sig, _ver, flags, method, _t, _d, crc, csize, _usize, nlen, xlen) = struct.unpack(
            _LOCAL_HEADER_FMT, data[pos:pos + _LOCAL_HEADER_LEN]
        )
        raw_name = data[pos + _LOCAL_HEADER_LEN:pos + _LOCAL_HEADER_LEN + nlen]
        name = raw_name.decode("utf-8" if flags & _FLAG_UTF8 else "cp437", "replace")
        start = pos + _LOCAL_HEADER_LEN + nlen + xlen
        nxt = start + 1

        if flags & _FLAG_ENCRYPTED:
            errors.append(f"{label}!{name}: encrypted entry skipped")
        elif method == _DEFLATED:
            d = zlib.decompressobj(-15)
            try:
                payload = d.decompress(data[start:])
            except zlib.error as e:
                errors.append(f"{label}!{name}: inflate failed ({e})")
            else:
                if not d.eof:
                    errors.append(f"{label}!{name}: entry cut off")
                    break
                nxt = len(data) - len(d.unused_data)
                if not (flags & _FLAG_DATA_DESCRIPTOR) and zlib.crc32(payload) & 0xFFFFFFFF != crc:
                    errors.append(f"{label}!{name}: crc mismatch")
                elif _wanted(name):
                    out.append((name, payload))
        elif method == _STORED and not (flags & _FLAG_DATA_DESCRIPTOR):
            payload = data[start:start + csize]
            if len(payload) < csize:
                errors.append(f"{label}!{name}: entry cut off")
                break
            nxt = start + csize
            if zlib.crc32(payload) & 0xFFFFFFFF != crc:
                errors.append(f"{label}!{name}: crc mismatch")
            elif _wanted(name):
                out.append((name, payload))
        else:
            errors.append(f"{label}!{name}: unsupported entry layout (method {method}, flags {flags:#x})")

        pos = data.find(_LOCAL_HEADER, nxt)
    return out


def _handle_entry(name: str, payload: bytes, label: str, scan: ArtifactScan, depth: int) -> None:
    where = f"{label}!{name}"
    if name.startswith(SERVICES_PREFIX):
        service = name[len(SERVICES_PREFIX):]
        if service and "/" not in service:
            scan.symbols.append(SymbolReference(owner_type=where, referenced_type=service, kind=SymbolKind.STRING_LITERAL))
        return

    if name.endswith(".class"):
        scan.entries_scanned += 1
        try:
            info = read_class(payload, name_hint=name)
        except MalformedArtifactError as e:
            scan.partial = True
            scan.errors.append(f"{where}: {e}")
            return
        scan.symbols.extend(info.symbols)
        if info.name:
            scan.defined_types.append(to_dotted(info.name))
        if info.partial:
            scan.partial = True
        scan.errors.extend(f"{where}: {e}" for e in info.errors)
        return

    if is_archive(name):
        if depth >= MAX_NESTING:
            scan.errors.append(f"{where}: nested archive deeper than {MAX_NESTING} levels not scanned")
            scan.partial = True
            return
        try:
            _inspect_bytes(payload, where, scan, depth + 1)
        except MalformedArtifactError as e:
            scan.partial = True
            scan.errors.append(str(e))


def _inspect_bytes(data: bytes, label: str, scan: ArtifactScan, depth: int) -> None:
    try:
        zf = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile:
        errors: List[str] = []
        entries = _walk_local_headers(data, label, errors)
        if not entries and not errors:
            raise MalformedArtifactError(f"{label}: not a zip archive", label)
        scan.partial = True
        scan.errors.append(f"{label}: central directory missing, recovered {len(entries)} entries from local headers")
        scan.errors.extend(errors)
        for name, payload in entries:
            _handle_entry(name, payload, label, scan, depth)
        return

    with zf:
        for zi in sorted(zf.infolist(), key=lambda z: z.filename):
            if zi.is_dir() or not _wanted(zi.filename):
                continue
            try:
                payload = zf.read(zi)
            except (zipfile.BadZipFile, zlib.error, EOFError, OSError, NotImplementedError, RuntimeError) as e:
                scan.partial = True
                scan.errors.append(f"{label}!{zi.filename}: unreadable entry ({e})")
                continue
            _handle_entry(zi.filename, payload, label, scan, depth)


def inspect_archive(path: Path) -> ArtifactScan:
    """
    Scan every class inside a jar/war/ear (nested archives included).

    Unreadable entries are skipped and flag the scan partial. Raises
    MalformedArtifactError only when nothing in the file is readable as zip.
    """
    p = Path(path)
    try:
        data = p.read_bytes()
    except OSError as e:
        raise MalformedArtifactError(f"{p}: cannot read ({e})", str(p))
    scan = ArtifactScan(path=str(p))
    _inspect_bytes(data, p.name, scan, depth=0)
    return scan
