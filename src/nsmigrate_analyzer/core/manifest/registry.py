from __future__ import annotations

import fnmatch
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from ...models.schema import ModuleManifest
from .gradle_parser import parse_gradle
from .pom_parser import PomLoader, parse_pom

ParseFn = Callable[[Path, Optional[PomLoader]], ModuleManifest]


@dataclass(frozen=True)
class ManifestFormat:
    name: str
    patterns: Tuple[str, ...]
    parse: ParseFn

    def matches(self, file_name: str) -> bool:
        return any(fnmatch.fnmatchcase(file_name, p) for p in self.patterns)


_FORMATS: Dict[str, ManifestFormat] = {}


def register_format(name: str, patterns: List[str], parse: ParseFn) -> ManifestFormat:
    """Register a manifest format detected by file name. Re-registering a name replaces it."""
    fmt = ManifestFormat(name=name, patterns=tuple(patterns), parse=parse)
    _FORMATS[name] = fmt
    return fmt


def formats() -> List[ManifestFormat]:
    return [_FORMATS[k] for k in sorted(_FORMATS)]


def detect_format(path: Path) -> Optional[ManifestFormat]:
    name = Path(path).name
    for fmt in formats():
        if fmt.matches(name):
            return fmt
    return None


def parse_manifest(path: Path, pom_loader: Optional[PomLoader] = None) -> ModuleManifest:
    fmt = detect_format(path)
    if fmt is None:
        raise ValueError(f"No manifest format matches {path}")
    return fmt.parse(Path(path), pom_loader)


register_format("maven", ["pom.xml", "*.pom"], lambda p, loader: parse_pom(p, loader))
register_format("gradle", ["build.gradle", "build.gradle.kts"], lambda p, loader: parse_gradle(p))
