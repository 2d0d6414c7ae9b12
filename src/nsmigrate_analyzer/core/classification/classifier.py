from __future__ import annotations

from typing import Iterable, List, Tuple

from ...models.schema import NamespaceVerdict, SymbolReference
from .namespaces import LEGACY, MIGRATED, NamespaceMapping
from .source_scanner import scan_source


def namespace_evidence(symbols: Iterable[SymbolReference], mapping: NamespaceMapping) -> Tuple[List[SymbolReference], List[SymbolReference]]:
    """Split symbols into (legacy hits, migrated hits), original order kept."""
    legacy: List[SymbolReference] = []
    migrated: List[SymbolReference] = []
    for s in symbols:
        side = mapping.side_of(s.referenced_type)
        if side == LEGACY:
            legacy.append(s)
        elif side == MIGRATED:
            migrated.append(s)
    return legacy, migrated


def verdict_for(has_legacy: bool, has_migrated: bool, partial: bool = False) -> NamespaceVerdict:
    if partial:
        return NamespaceVerdict.UNKNOWN
    if has_legacy and has_migrated:
        return NamespaceVerdict.MIXED
    if has_legacy:
        return NamespaceVerdict.LEGACY_ONLY
    if has_migrated:
        return NamespaceVerdict.MIGRATED
    return NamespaceVerdict.NOT_APPLICABLE


def classify_symbols(symbols: Iterable[SymbolReference], mapping: NamespaceMapping, partial: bool = False) -> NamespaceVerdict:
    legacy, migrated = namespace_evidence(symbols, mapping)
    return verdict_for(bool(legacy), bool(migrated), partial)


def classify_source(text: str, path: str, mapping: NamespaceMapping) -> Tuple[NamespaceVerdict, List[SymbolReference]]:
    symbols = scan_source(text, path)
    return classify_symbols(symbols, mapping), symbols


def combine_verdicts(verdicts: Iterable[NamespaceVerdict]) -> NamespaceVerdict:
    """
    Fold unit verdicts into one (module level).

    Any UNKNOWN makes the whole UNKNOWN; otherwise legacy and migrated
    sides are unioned with the usual rule. No verdicts at all is
    NOT_APPLICABLE.
    """
    has_legacy = has_migrated = False
    for v in verdicts:
        if v == NamespaceVerdict.UNKNOWN:
            return NamespaceVerdict.UNKNOWN
        if v in (NamespaceVerdict.LEGACY_ONLY, NamespaceVerdict.MIXED):
            has_legacy = True
        if v in (NamespaceVerdict.MIGRATED, NamespaceVerdict.MIXED):
            has_migrated = True
    return verdict_for(has_legacy, has_migrated)
