"""Version parsing and range matching for capability requirements.

Supports the subset of npm-style ranges that module manifests use:
``*``, ``latest`` or empty (anything), exact versions (``1.2.0`` / ``=1.2``),
caret (``^1.0``), tilde (``~1.2``), comparators (``>=1.0 <2.0``), x-ranges
(``1.x``, ``1.2.*``) and ``||`` unions. Missing minor/patch parts are zero.
"""

from __future__ import annotations

import re
from typing import NamedTuple


class Version(NamedTuple):
    major: int
    minor: int
    patch: int


_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?(?:[-+].*)?$")
_COMPARATOR_RE = re.compile(r"^(>=|<=|>|<|=|\^|~)?\s*(.+)$")
_WILDCARDS = {"x", "X", "*"}


def parse_version(raw: str) -> Version | None:
    """Parse ``"1.2.3"``, ``"1.2"`` or ``"v1"`` into a :class:`Version`.

    A leading range operator is ignored, so a provider declared as ``"^2.0"``
    parses as ``2.0.0``. Returns ``None`` for empty or non-numeric input.
    Wildcard parts are zero.
    """
    match = _VERSION_RE.match(raw.strip().lstrip("^~=>< "))
    if not match:
        return None
    parts = [0 if (p is None or p in _WILDCARDS) else int(p) for p in match.groups()]
    return Version(*parts)


def _partial(raw: str) -> tuple[list[int], int] | None:
    """Parse a possibly partial version: numeric parts and how many were given."""
    match = _VERSION_RE.match(raw.strip())
    if not match:
        return None
    given: list[int] = []
    for part in match.groups():
        if part is None or part in _WILDCARDS:
            break
        given.append(int(part))
    return given, len(given)


def _bump(parts: list[int], index: int) -> Version:
    padded = (parts + [0, 0, 0])[:3]
    padded[index] += 1
    for i in range(index + 1, 3):
        padded[i] = 0
    return Version(*padded)


def _caret_upper(parts: list[int], given: int) -> Version:
    padded = (parts + [0, 0, 0])[:3]
    if padded[0] > 0 or given == 1:
        return _bump(parts, 0)
    if padded[1] > 0 or given == 2:
        return _bump(parts, 1)
    return _bump(parts, 2)


def _comparator_matches(token: str, version: Version) -> bool:
    match = _COMPARATOR_RE.match(token)
    if not match:
        return False
    operator, operand = match.group(1) or "", match.group(2)
    if operand in _WILDCARDS:
        return True
    parsed = _partial(operand)
    if parsed is None:
        return False
    parts, given = parsed
    lower = Version(*(parts + [0, 0, 0])[:3])

    if operator == "^":
        return lower <= version < _caret_upper(parts, max(given, 1))
    if operator == "~":
        upper = _bump(parts, 0) if given <= 1 else _bump(parts, 1)
        return lower <= version < upper
    if operator == ">=":
        return version >= lower
    if operator == ">":
        return version > lower
    if operator == "<=":
        return version <= lower
    if operator == "<":
        return version < lower

    # Exact or x-range: every given part must match.
    if given == 0:
        return True
    return list(version)[:given] == parts[:given]


def satisfies(version: str, version_range: str) -> bool:
    """Return True when *version* falls inside *version_range*.

    An unversioned provider (empty *version*) satisfies only open ranges.
    """
    spec = version_range.strip()
    if spec in ("", "*", "latest") or spec in _WILDCARDS:
        return True
    parsed = parse_version(version) if version else None
    if parsed is None:
        return False
    for alternative in spec.split("||"):
        tokens = _tokenize(alternative)
        if tokens and all(_comparator_matches(tok, parsed) for tok in tokens):
            return True
    return False


def _tokenize(alternative: str) -> list[str]:
    """Split ``">= 1.0 <2.0"`` into ``[">=1.0", "<2.0"]``."""
    raw_tokens = alternative.split()
    tokens: list[str] = []
    pending = ""
    for tok in raw_tokens:
        if tok in (">=", "<=", ">", "<", "=", "^", "~"):
            pending = tok
            continue
        tokens.append(pending + tok)
        pending = ""
    return tokens


def compatible(a: str, b: str) -> bool:
    """Caret compatibility between two provided versions.

    Versions are compatible when they share a major (or, below 1.0, a minor)
    version. Unparseable or empty versions are treated as compatible with
    everything.
    """
    va, vb = parse_version(a) if a else None, parse_version(b) if b else None
    if va is None or vb is None:
        return True
    if va.major != vb.major:
        return False
    if va.major == 0:
        return va.minor == vb.minor
    return True
