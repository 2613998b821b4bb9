"""Package reference extraction from plunk markup.

Plunker's package catalog injects tags such as::

    <script data-semver="1.2.3" data-require="angular.js@1.2.x" src="..."></script>

The scanner looks for those attribute pairs inside ``<script>``/``<link>``
elements of HTML files. It is a tolerant pattern scan rather than an HTML
parser; the pattern runs on RE2 so hostile markup cannot trigger catastrophic
backtracking.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

import re2
import semver

from ..errors import ReferenceParseError
from ..models import PackageReference
from ..storage.git_objects import MaterializedTree

logger = logging.getLogger(__name__)

MARKUP_FILE_PATTERN = re.compile(r"\.html?$", re.IGNORECASE)

PACKAGE_REF_PATTERN = re2.compile(
    r'<(?:script|link) [^>]*?data-(semver|require)="([^"]*)"'
    r'(?: [^>]*?data-(semver|require)="([^"]*)")?'
)

# Width each numeric component is zero-padded to, so versions sort lexically
PADDED_COMPONENT_WIDTH = 5

ANY_RANGE = "*"


def normalize_semver(raw: str) -> str:
    """Validate a declared version and return it in canonical form.

    Surrounding whitespace and at most one leading ``=`` followed by at most
    one ``v`` are tolerated; build metadata is dropped.

    Raises:
        ReferenceParseError: If the value is not a semantic version
    """
    candidate = raw.strip()
    if candidate.startswith("="):
        candidate = candidate[1:]
    if candidate.startswith("v"):
        candidate = candidate[1:]
    try:
        version = semver.Version.parse(candidate)
    except (ValueError, TypeError) as e:
        raise ReferenceParseError(f"Invalid semver {raw!r}: {e}") from e
    return str(version.replace(build=None))


def pad_semver(version: str) -> str:
    """Zero-pad major.minor.patch of a normalized version."""
    parsed = semver.Version.parse(version)
    core = ".".join(
        str(part).zfill(PADDED_COMPONENT_WIDTH)
        for part in (parsed.major, parsed.minor, parsed.patch)
    )
    if parsed.prerelease:
        return f"{core}-{parsed.prerelease}"
    return core


def split_require(require: str) -> Tuple[str, str]:
    """Split ``name@range`` into (name, range); a missing range means any."""
    name, _, version_range = require.partition("@")
    return name, version_range or ANY_RANGE


def parse_declaration(attributes: Dict[str, str]) -> Optional[PackageReference]:
    """Turn the attributes matched in one element into a reference.

    Returns None when the element declares no package.

    Raises:
        ReferenceParseError: If the declaration is malformed
    """
    require = attributes.get("require")
    if require is None:
        return None

    name, version_range = split_require(require)
    if not name:
        raise ReferenceParseError(f"Package declaration {require!r} has no name")

    declared = attributes.get("semver")
    if not declared:
        raise ReferenceParseError(f"Package {name!r} declares no data-semver")

    return PackageReference(
        name=name,
        semver=pad_semver(normalize_semver(declared)),
        semver_range=version_range,
    )


class PackageScanner:
    """Extracts declared package references from a tree."""

    def is_markup_file(self, path: str) -> bool:
        return bool(MARKUP_FILE_PATTERN.search(path))

    def iter_declarations(self, content: str) -> Iterable[Dict[str, str]]:
        """Yield the data-semver/data-require attributes of each element."""
        for match in PACKAGE_REF_PATTERN.finditer(content):
            attributes = {match.group(1): match.group(2)}
            if match.group(3):
                attributes[match.group(3)] = match.group(4)
            yield attributes

    def scan_content(self, content: str, refs: Dict[str, PackageReference]) -> None:
        for attributes in self.iter_declarations(content):
            try:
                reference = parse_declaration(attributes)
            except ReferenceParseError as e:
                logger.debug(f"Dropping package declaration: {e}")
                continue
            if reference is not None:
                refs[reference.name] = reference

    def scan(self, tree: MaterializedTree) -> List[PackageReference]:
        """Collect references from every markup file, last one per name wins."""
        refs: Dict[str, PackageReference] = {}
        for path, content in tree.walk():
            if self.is_markup_file(path):
                self.scan_content(content, refs)
        return list(refs.values())
