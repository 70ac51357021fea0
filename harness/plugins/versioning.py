"""Semantic version and version-range helpers.

Manifests speak npm-style ranges (``^1.2.0``, ``~0.3``, ``1.x``,
``>=1.0.0 <2.0.0``, ``1.0.0 - 1.4.0``, ``^1.0.0 || ^2.0.0``). Each
alternative is translated into a :class:`packaging.specifiers.SpecifierSet`
and versions are compared as :class:`packaging.version.Version`.
"""

import re
from typing import List, Optional, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from harness.plugins.errors import InvalidVersionRange

SEMVER_PATTERN = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

_PARTIAL_PATTERN = re.compile(
    r"^v?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?"
    r"(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)

_COMPARATOR_PATTERN = re.compile(r"^(\^|~>?|>=|<=|>|<|=)?(.*)$")

Partial = Tuple[Optional[int], Optional[int], Optional[int], Optional[str]]


def is_valid_semver(value) -> bool:
    """Check that value is a well-formed semantic version (``MAJOR.MINOR.PATCH``)."""
    return isinstance(value, str) and SEMVER_PATTERN.match(value) is not None


def to_version(value: str) -> Version:
    """Convert a semantic version string into a comparable Version.

    Pre-release tags that PEP 440 understands (alpha, beta, rc, dev) are kept;
    any other tag sorts as a dev release of the same core version so that it
    still orders below the final release. Build metadata is ignored.

    Raises:
        InvalidVersion: If value is not a semantic version.
    """
    text = value.strip()
    if text.startswith("v"):
        text = text[1:]
    match = SEMVER_PATTERN.match(text)
    if not match:
        raise InvalidVersion(f"Not a semantic version: {value!r}")

    major, minor, patch, pre, _build = match.groups()
    core = f"{major}.{minor}.{patch}"
    if pre is None:
        return Version(core)

    try:
        candidate = Version(f"{core}-{pre}")
        if candidate.is_prerelease:
            return candidate
    except InvalidVersion:
        pass
    return Version(f"{core}.dev0")


def _parse_partial(text: str) -> Partial:
    match = _PARTIAL_PATTERN.match(text)
    if not match:
        raise InvalidVersionRange(f"Invalid version in range: {text!r}")

    parts: List[Optional[int]] = []
    wildcard = False
    for group in match.groups()[:3]:
        if group is None or group in ("x", "X", "*") or wildcard:
            wildcard = True
            parts.append(None)
        else:
            parts.append(int(group))
    return parts[0], parts[1], parts[2], match.group(4)


def _full(major: int, minor: Optional[int], patch: Optional[int], pre: Optional[str]) -> str:
    text = f"{major}.{minor or 0}.{patch or 0}"
    if pre and minor is not None and patch is not None:
        text = f"{text}-{pre}"
    return str(to_version(text))


def _comparator_specs(op: str, partial: Partial) -> List[str]:
    major, minor, patch, pre = partial
    if major is None:
        if op in ("<", ">"):
            # "<*" and ">*" can never match
            return ["<0.0.0.dev0"]
        return []

    if op in ("", "="):
        if minor is None:
            return [f">={major}.0.0", f"<{major + 1}.0.0"]
        if patch is None:
            return [f">={major}.{minor}.0", f"<{major}.{minor + 1}.0"]
        return [f"=={_full(major, minor, patch, pre)}"]

    if op == "^":
        lower = _full(major, minor, patch, pre)
        if major > 0 or minor is None:
            upper = f"{major + 1}.0.0"
        elif minor > 0 or patch is None:
            upper = f"0.{minor + 1}.0"
        else:
            upper = f"0.0.{patch + 1}"
        return [f">={lower}", f"<{upper}"]

    if op in ("~", "~>"):
        lower = _full(major, minor, patch, pre)
        upper = f"{major + 1}.0.0" if minor is None else f"{major}.{minor + 1}.0"
        return [f">={lower}", f"<{upper}"]

    if op == ">=":
        return [f">={_full(major, minor, patch, pre)}"]

    if op == ">":
        if minor is None:
            return [f">={major + 1}.0.0"]
        if patch is None:
            return [f">={major}.{minor + 1}.0"]
        return [f">{_full(major, minor, patch, pre)}"]

    if op == "<":
        return [f"<{_full(major, minor, patch, pre)}"]

    if op == "<=":
        if minor is None:
            return [f"<{major + 1}.0.0"]
        if patch is None:
            return [f"<{major}.{minor + 1}.0"]
        return [f"<={_full(major, minor, patch, pre)}"]

    raise InvalidVersionRange(f"Unknown comparator: {op!r}")


def _hyphen_specs(lower_text: str, upper_text: str) -> List[str]:
    lower = _parse_partial(lower_text.strip())
    upper = _parse_partial(upper_text.strip())
    return _comparator_specs(">=", lower) + _comparator_specs("<=", upper)


class VersionRange:
    """A parsed version range: any alternative (``||``) may match."""

    def __init__(self, text: str, alternatives: List[SpecifierSet]):
        self.text = text
        self.alternatives = alternatives

    def contains(self, version: str) -> bool:
        """Check whether a semantic version falls inside this range.

        Raises:
            InvalidVersion: If version is not a semantic version.
        """
        parsed = to_version(version)
        return any(spec.contains(parsed) for spec in self.alternatives)

    def __repr__(self) -> str:
        return f"VersionRange({self.text!r})"


def parse_range(text) -> VersionRange:
    """Parse an npm-style version range.

    Raises:
        InvalidVersionRange: If the range is malformed.
    """
    if not isinstance(text, str):
        raise InvalidVersionRange(f"Version range must be a string, got {type(text).__name__}")

    alternatives = []
    for part in text.split("||"):
        part = part.strip()
        if " - " in part:
            lower_text, upper_text = part.split(" - ", 1)
            specs = _hyphen_specs(lower_text, upper_text)
        else:
            # ">= 1.2.0" is the same comparator as ">=1.2.0"
            part = re.sub(r"(>=|<=|>|<|=|\^|~>?)\s+", r"\1", part)
            specs = []
            for token in re.split(r"[\s,]+", part):
                if not token:
                    continue
                op, version_text = _COMPARATOR_PATTERN.match(token).groups()
                specs.extend(_comparator_specs(op or "", _parse_partial(version_text)))

        try:
            alternatives.append(SpecifierSet(",".join(specs)))
        except InvalidSpecifier as e:
            raise InvalidVersionRange(f"Invalid version range {text!r}: {e}") from e

    return VersionRange(text, alternatives)


def is_valid_range(text) -> bool:
    """Check that text parses as a version range."""
    try:
        parse_range(text)
    except InvalidVersionRange:
        return False
    return True


def satisfies(version: str, range_text: str) -> bool:
    """Check whether version satisfies range_text.

    Returns False for an unparseable version or range instead of raising.
    """
    try:
        return parse_range(range_text).contains(version)
    except (InvalidVersionRange, InvalidVersion):
        return False
