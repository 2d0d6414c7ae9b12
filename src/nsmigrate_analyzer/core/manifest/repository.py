from __future__ import annotations

import re
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ...models.schema import ArtifactCoordinate
from .versions import version_key

# name-1.2.3.jar, name-1.2.3-SNAPSHOT.jar, name-2.0.0.Final.war
_FLAT_NAME_RE = re.compile(r"^(?P<name>.+?)-(?P<version>\d[\w.\-+]*)\.(?P<ext>jar|war|ear|zip|pom)$", re.I)


def split_archive_name(file_name: str) -> Optional[Tuple[str, str]]:
    m = _FLAT_NAME_RE.match(file_name)
    if not m or m.group("ext").lower() == "pom":
        return None
    return m.group("name"), m.group("version")


class ArtifactRepository:
    """
    Local artifact lookup.

    Two sources: Maven-layout roots (`group/as/path/name/version/name-version.jar`
    and `.pom`) and flat indexes of archives and `.pom` files found while walking the
    input tree, matched by `name-version.<ext>` only.
    """

    def __init__(self, roots: Optional[Sequence[Path]] = None):
        self.roots: List[Path] = [Path(r) for r in (roots or [])]
        self._flat: Dict[Tuple[str, str], Path] = {}
        self._flat_poms: Dict[Tuple[str, str], Path] = {}

    def index_archive(self, path: Path) -> bool:
        parsed = split_archive_name(Path(path).name)
        if parsed is None:
            return False
        # first one wins; callers feed paths in sorted order
        self._flat.setdefault(parsed, Path(path))
        return True

    def index_pom(self, path: Path) -> bool:
        m = _FLAT_NAME_RE.match(Path(path).name)
        if not m or m.group("ext").lower() != "pom":
            return False
        self._flat_poms.setdefault((m.group("name"), m.group("version")), Path(path))
        return True

    def _version_dir(self, root: Path, group: str, name: str, version: str) -> Path:
        return root.joinpath(*group.split("."), name, version)

    def locate_artifact(self, coord: ArtifactCoordinate) -> Optional[Path]:
        for root in self.roots:
            d = self._version_dir(root, coord.group, coord.name, coord.version)
            for ext in ("jar", "war", "ear", "zip"):
                p = d / f"{coord.name}-{coord.version}.{ext}"
                if p.is_file():
                    return p
        return self._flat.get((coord.name, coord.version))

    def locate_pom(self, coord: ArtifactCoordinate) -> Optional[Path]:
        for root in self.roots:
            p = self._version_dir(root, coord.group, coord.name, coord.version) / f"{coord.name}-{coord.version}.pom"
            if p.is_file():
                return p
        return self._flat_poms.get((coord.name, coord.version))

    def available_versions(self, group: str, name: str) -> List[str]:
        found = set()
        for root in self.roots:
            base = root.joinpath(*group.split("."), name)
            if not base.is_dir():
                continue
            for d in base.iterdir():
                if d.is_dir() and any((d / f"{name}-{d.name}.{ext}").is_file() for ext in ("jar", "pom", "war")):
                    found.add(d.name)
        for (n, v) in list(self._flat) + list(self._flat_poms):
            if n == name:
                found.add(v)
        return sorted(found, key=version_key)

    def indexed_archives(self) -> List[Path]:
        return [self._flat[k] for k in sorted(self._flat)]
