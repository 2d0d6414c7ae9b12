from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

from ...models.schema import SymbolReference
from .namespaces import NamespaceMapping


def areas_of(symbols: Iterable[SymbolReference], mapping: NamespaceMapping) -> List[str]:
    """Sorted API areas touched by the legacy references among `symbols`."""
    out = set()
    for s in symbols:
        area = mapping.area_of(s.referenced_type)
        if area:
            out.add(area)
    return sorted(out)


def legacy_areas(
    subjects: Iterable[Tuple[str, Iterable[SymbolReference]]],
    mapping: NamespaceMapping,
) -> Dict[str, Dict[str, Any]]:
    """
    Legacy usage per API area.

    `subjects` yields (subject, symbols) pairs, typically every external
    dependency node with its evidence and every code unit with its symbols.
    Returns {area: {"references": n, "subjects": [...]}} keyed in area order.
    """
    refs: Dict[str, int] = {}
    seen: Dict[str, set] = {}
    for subject, symbols in subjects:
        for s in symbols:
            area = mapping.area_of(s.referenced_type)
            if not area:
                continue
            refs[area] = refs.get(area, 0) + 1
            seen.setdefault(area, set()).add(subject)
    return {a: {"references": refs[a], "subjects": sorted(seen[a])} for a in sorted(refs)}
