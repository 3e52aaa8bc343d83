"""
Change-set detection.

Compares a remote listing with the fingerprints recorded by earlier scans.
Pure: no I/O, no database access.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Sequence, Union

from ..db.models import FileFingerprintModel
from ..sources.base import SourceFile


@dataclass
class ChangeSet:
    """Disjoint partition of a listing against prior fingerprints."""

    changed: List[SourceFile] = field(default_factory=list)
    unchanged: List[SourceFile] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when nothing needs to be fetched or removed."""
        return not self.changed and not self.deleted

    @property
    def changed_paths(self) -> List[str]:
        return [f.path for f in self.changed]

    def summary(self) -> Dict[str, int]:
        return {
            "changed": len(self.changed),
            "unchanged": len(self.unchanged),
            "deleted": len(self.deleted),
        }


PriorFingerprints = Union[Mapping[str, str], Iterable[FileFingerprintModel]]


def _as_map(prior: PriorFingerprints) -> Dict[str, str]:
    if isinstance(prior, Mapping):
        return dict(prior)
    return {row.file_path: row.content_id for row in prior}


def detect_changes(listing: Sequence[SourceFile], prior: PriorFingerprints) -> ChangeSet:
    """Partition ``listing`` into changed and unchanged files and find deletions.

    A file is changed when no prior identity exists for its path or the
    identities differ. Deleted paths are prior paths missing from the listing.
    With no prior fingerprints every listed file is changed.

    Args:
        listing: Qualifying files of the current revision
        prior: {path: content_id} or fingerprint rows from earlier scans

    Returns:
        ChangeSet preserving listing order; deleted paths sorted
    """
    prior_map = _as_map(prior)
    result = ChangeSet()
    seen = set()

    for source_file in listing:
        if source_file.path in seen:
            continue
        seen.add(source_file.path)
        previous = prior_map.get(source_file.path)
        if previous is not None and previous == source_file.content_id:
            result.unchanged.append(source_file)
        else:
            result.changed.append(source_file)

    result.deleted = sorted(path for path in prior_map if path not in seen)
    return result
