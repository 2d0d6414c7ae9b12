"""
Version ordering for dependency mediation.

Follows the Maven ordering closely enough for conflict resolution: numeric
segments compare numerically, missing segments count as zero, and
qualifiers order alpha < beta < milestone < rc < snapshot < release < sp,
with unrecognised qualifiers after those (lexically).
"""

import re
from functools import cmp_to_key
from typing import Iterable, List, Optional, Tuple, Union

_TOKEN_RE = re.compile(r"\d+|[a-z]+")

_QUALIFIER_RANK = {
    "alpha": 0, "a": 0,
    "beta": 1, "b": 1,
    "milestone": 2, "m": 2,
    "rc": 3, "cr": 3,
    "snapshot": 4,
    "": 5, "ga": 5, "final": 5, "release": 5,
    "sp": 6,
}
_RELEASE_RANK = 5
_UNKNOWN_RANK = 7

Token = Union[int, str]


def tokenize(version: str) -> List[Token]:
    out: List[Token] = []
    for t in _TOKEN_RE.findall((version or "").lower()):
        out.append(int(t) if t.isdigit() else t)
    return out


def _qualifier_key(q: str) -> Tuple[int, str]:
    rank = _QUALIFIER_RANK.get(q, _UNKNOWN_RANK)
    return rank, q if rank == _UNKNOWN_RANK else ""


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _cmp_token(a: Optional[Token], b: Optional[Token]) -> int:
    if a is None and b is None:
        return 0
    if a is None:
        return -_cmp_token(b, None)
    if isinstance(a, int):
        if b is None:
            return _cmp(a, 0)
        if isinstance(b, int):
            return _cmp(a, b)
        return 1
    # a is a qualifier
    if b is None:
        return _cmp(_qualifier_key(a), (_RELEASE_RANK, ""))
    if isinstance(b, int):
        return -1
    return _cmp(_qualifier_key(a), _qualifier_key(b))


def _cmp_ordering(a: str, b: str) -> int:
    ta, tb = tokenize(a), tokenize(b)
    for i in range(max(len(ta), len(tb))):
        c = _cmp_token(ta[i] if i < len(ta) else None, tb[i] if i < len(tb) else None)
        if c:
            return c
    return 0


def compare_versions(a: str, b: str) -> int:
    # equal by ordering ("1.0" vs "1"): fall back to the raw text so the order stays total
    return _cmp_ordering(a, b) or _cmp(a, b)


version_key = cmp_to_key(compare_versions)


def highest(versions: Iterable[str]) -> Optional[str]:
    vs = list(versions)
    if not vs:
        return None
    return max(vs, key=version_key)


def is_range(spec: str) -> bool:
    s = (spec or "").strip()
    return bool(s) and s[0] in "[(" and s[-1] in "])"


def in_range(version: str, spec: str) -> bool:
    """Membership test for a Maven range such as `[1.0,2.0)` or `[1.5]`.

    Unions (`[1,2),[3,4)`) are accepted as a comma-joined list of ranges.
    """
    for part in re.findall(r"[\[(][^\])]*[\])]", spec.strip()):
        lo_inc = part[0] == "["
        hi_inc = part[-1] == "]"
        body = part[1:-1]
        if "," not in body:
            if _cmp_ordering(version, body.strip()) == 0:
                return True
            continue
        lo, hi = (x.strip() for x in body.split(",", 1))
        ok = True
        if lo:
            c = _cmp_ordering(version, lo)
            ok = c > 0 or (lo_inc and c == 0)
        if ok and hi:
            c = _cmp_ordering(version, hi)
            ok = c < 0 or (hi_inc and c == 0)
        if ok:
            return True
    return False
