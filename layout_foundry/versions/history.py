"""
Pure helpers for module version history: checksums, numbering and diffs.
"""

import hashlib
import math
from typing import Dict, List, Mapping, Optional, Tuple

from ..schemas.versions import MetadataChange, VersionDifferences

FIRST_VERSION = "1.0.0"

# Metadata fields that count as a breaking change when they differ.
COMPARED_METADATA_FIELDS = ("module_name",)


def calculate_checksum(files: Mapping[str, str]) -> str:
    """SHA-256 over "path:content" pairs sorted by path and joined with "|"."""
    payload = "|".join(f"{path}:{files[path]}" for path in sorted(files))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def total_size_bytes(files: Mapping[str, str]) -> int:
    return sum(len(content.encode("utf-8")) for content in files.values())


def parse_version_number(version_number: str) -> Tuple[int, int, int]:
    parts = version_number.split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid version number: {version_number!r}")
    major, minor, patch = (int(p) for p in parts)
    return major, minor, patch


def next_version_number(previous: Optional[str]) -> str:
    """Bump the patch component. Major and minor never move on their own."""
    if not previous:
        return FIRST_VERSION
    major, minor, patch = parse_version_number(previous)
    return f"{major}.{minor}.{patch + 1}"


def diff_files(
    files_a: Mapping[str, str],
    files_b: Mapping[str, str],
    metadata_a: Optional[Mapping[str, object]] = None,
    metadata_b: Optional[Mapping[str, object]] = None,
) -> VersionDifferences:
    added = sorted(p for p in files_b if p not in files_a)
    removed = sorted(p for p in files_a if p not in files_b)
    modified = sorted(p for p in files_a if p in files_b and files_a[p] != files_b[p])

    metadata_changes: Dict[str, MetadataChange] = {}
    metadata_a = metadata_a or {}
    metadata_b = metadata_b or {}
    for name in COMPARED_METADATA_FIELDS:
        old, new = metadata_a.get(name), metadata_b.get(name)
        if old != new:
            metadata_changes[name] = MetadataChange(old=old, new=new)

    return VersionDifferences(
        files_added=added,
        files_removed=removed,
        files_modified=modified,
        metadata_changes=metadata_changes,
    )


def compatibility_score(
    differences: VersionDifferences, count_a: int, count_b: int
) -> int:
    """100 for identical file sets, falling to 0 as changes reach the larger count."""
    total = max(count_a, count_b)
    if total == 0:
        return 100
    raw = max(0.0, 100 - 100 * differences.total_changed / total)
    return int(math.floor(raw + 0.5))


def migration_required(differences: VersionDifferences) -> bool:
    return bool(differences.files_removed or differences.metadata_changes)


def rollback_change_log(
    from_version: str, to_version: str, reason: str, actor: str
) -> List[str]:
    return [
        f"Rolled back from version {from_version} to {to_version}",
        f"Reason: {reason}",
        f"Performed by: {actor}",
    ]
