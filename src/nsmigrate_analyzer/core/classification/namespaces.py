from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ...errors import ConfigurationError

LEGACY = "legacy"
MIGRATED = "migrated"

# legacy hits with no labelled pair
OTHER_AREA = "other"
# legacy hits through a descriptor marker (schema URI, taglib)
CONFIG_FILES_AREA = "config-files"


def prefix_matches(name: str, prefix: str) -> bool:
    """Package-boundary prefix test: `javax.servlet` matches `javax.servlet.http.X`, not `javax.servletx`."""
    if not name.startswith(prefix):
        return False
    return len(name) == len(prefix) or name[len(prefix)] in ".$/"


@dataclass(frozen=True)
class PrefixPair:
    legacy: str
    migrated: str
    # API area label, e.g. "jpa" or "servlet-jsp"
    area: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        d = {"legacy": self.legacy, "migrated": self.migrated}
        if self.area:
            d["area"] = self.area
        return d


@dataclass
class NamespaceMapping:
    """
    Legacy -> migrated prefix pairs plus text markers (schema URIs and the like).

    `ignored` lists prefixes under a legacy prefix that stay where they are
    (JDK packages such as `javax.annotation.processing`).
    """

    name: str
    pairs: List[PrefixPair]
    legacy_markers: List[str] = field(default_factory=list)
    migrated_markers: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)

    def __post_init__(self):
        if not self.pairs:
            raise ConfigurationError(f"namespace mapping {self.name!r} has no prefix pairs")
        legacy = self.legacy_prefixes
        migrated = self.migrated_prefixes
        overlap = sorted(
            {a for a in legacy for b in migrated if prefix_matches(a, b) or prefix_matches(b, a)}
        )
        if overlap:
            raise ConfigurationError(
                f"namespace mapping {self.name!r}: legacy and migrated prefixes overlap: {', '.join(overlap)}"
            )
        shared = sorted(set(self.legacy_markers) & set(self.migrated_markers))
        if shared:
            raise ConfigurationError(f"namespace mapping {self.name!r}: marker on both sides: {', '.join(shared)}")

    @property
    def legacy_prefixes(self) -> List[str]:
        return [p.legacy for p in self.pairs]

    @property
    def migrated_prefixes(self) -> List[str]:
        return [p.migrated for p in self.pairs]

    def _longest(self, name: str, side: str) -> Optional[PrefixPair]:
        best: Optional[PrefixPair] = None
        for p in self.pairs:
            prefix = p.legacy if side == LEGACY else p.migrated
            if prefix_matches(name, prefix):
                if best is None or len(prefix) > len(best.legacy if side == LEGACY else best.migrated):
                    best = p
        return best

    def is_ignored(self, name: str) -> bool:
        return any(prefix_matches(name, p) for p in self.ignored)

    def match(self, name: str) -> Optional[tuple]:
        """(side, pair) for a qualified name or marker-bearing text; None when unrelated."""
        if not name:
            return None
        if not self.is_ignored(name):
            pair = self._longest(name, LEGACY)
            if pair is not None:
                return LEGACY, pair
        pair = self._longest(name, MIGRATED)
        if pair is not None:
            return MIGRATED, pair
        for m in self.legacy_markers:
            if m in name:
                return LEGACY, None
        for m in self.migrated_markers:
            if m in name:
                return MIGRATED, None
        return None

    def side_of(self, name: str) -> Optional[str]:
        hit = self.match(name)
        return hit[0] if hit else None

    def area_of(self, name: str) -> Optional[str]:
        """API area of a legacy name; None for anything that is not legacy."""
        hit = self.match(name)
        if not hit or hit[0] != LEGACY:
            return None
        if hit[1] is None:
            return CONFIG_FILES_AREA
        return hit[1].area or OTHER_AREA

    def replacement_prefix(self, name: str) -> Optional[str]:
        """Migrated spelling of a legacy name, or None."""
        hit = self.match(name)
        if not hit or hit[0] != LEGACY or hit[1] is None:
            return None
        pair = hit[1]
        return pair.migrated + name[len(pair.legacy):]

    def pairs_for(self, names: Iterable[str]) -> List[PrefixPair]:
        out = []
        for n in names:
            hit = self.match(n)
            if hit and hit[1] is not None and hit[1] not in out:
                out.append(hit[1])
        return sorted(out, key=lambda p: p.legacy)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NamespaceMapping":
        if not isinstance(data, dict):
            raise ConfigurationError("namespace mapping must be a mapping")
        pairs = []
        for item in data.get("pairs") or []:
            try:
                area = item.get("area")
                pairs.append(PrefixPair(
                    legacy=str(item["legacy"]).strip(),
                    migrated=str(item["migrated"]).strip(),
                    area=str(area).strip() if area else None,
                ))
            except (KeyError, TypeError, AttributeError):
                raise ConfigurationError(f"invalid prefix pair: {item!r}")
        markers = data.get("markers") or {}
        return cls(
            name=str(data.get("name") or "unnamed"),
            pairs=pairs,
            legacy_markers=[str(m) for m in markers.get("legacy") or []],
            migrated_markers=[str(m) for m in markers.get("migrated") or []],
            ignored=[str(p) for p in data.get("ignored") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pairs": [p.to_dict() for p in self.pairs],
            "markers": {"legacy": list(self.legacy_markers), "migrated": list(self.migrated_markers)},
            "ignored": list(self.ignored),
        }
