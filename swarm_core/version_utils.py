import re
from typing import Tuple

_VERSION_RE = re.compile(r"(\d+(?:\.\d+)*)")


def parse_version(version: str) -> Tuple[int, ...]:
    """Parse a dotted engine version into a tuple of integers.

    Leading text and trailing qualifiers are ignored, so '17.05.0-ce',
    'v20.10.7' and '24.0' all parse. Components are compared numerically,
    never lexically.
    """
    m = _VERSION_RE.search(version or '')
    if not m:
        raise ValueError(f"Invalid version string: {version!r}")
    return tuple(int(part) for part in m.group(1).split('.'))


def compare_versions(version1: str, version2: str) -> int:
    """Return 1 if version1 > version2, -1 if lower, 0 if equal.

    Missing trailing components count as zero ('17.5' == '17.5.0').
    """
    v1 = parse_version(version1)
    v2 = parse_version(version2)
    width = max(len(v1), len(v2))
    v1 = v1 + (0,) * (width - len(v1))
    v2 = v2 + (0,) * (width - len(v2))
    if v1 == v2:
        return 0
    return 1 if v1 > v2 else -1


def version_at_least(version: str, minimum: str) -> bool:
    return compare_versions(version, minimum) >= 0
