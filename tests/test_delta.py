"""
Tests for change-set detection.

Verifies:
- changed / unchanged / deleted partition against prior fingerprints
- first scan treats every file as changed
- fingerprint rows are accepted as prior state
"""

from compliance_tower.db.models import FileFingerprintModel
from compliance_tower.scanner.delta import ChangeSet, detect_changes
from compliance_tower.sources.base import SourceFile


def blob(path: str, content_id: str) -> SourceFile:
    return SourceFile(path=path, kind="blob", content_id=content_id)


class TestDetectChanges:
    """Partitioning a listing against prior fingerprints."""

    def test_modified_and_new_files_are_changed(self):
        prior = {"A": "h1", "B": "h2"}
        listing = [blob("A", "h1"), blob("B", "h3"), blob("C", "h4")]

        changes = detect_changes(listing, prior)

        assert changes.changed_paths == ["B", "C"]
        assert [f.path for f in changes.unchanged] == ["A"]
        assert changes.deleted == []

    def test_missing_paths_are_deleted(self):
        prior = {"A": "h1", "Z": "h9", "M": "h5"}
        changes = detect_changes([blob("A", "h1")], prior)

        assert changes.deleted == ["M", "Z"]
        assert changes.changed == []

    def test_first_scan_marks_everything_changed(self):
        listing = [blob("A", "h1"), blob("B", "h2")]
        changes = detect_changes(listing, {})

        assert changes.changed_paths == ["A", "B"]
        assert changes.unchanged == []
        assert changes.deleted == []

    def test_partition_is_disjoint_and_complete(self):
        prior = {"A": "h1", "B": "h2", "D": "h7"}
        listing = [blob("A", "h1"), blob("B", "x"), blob("C", "h4")]

        changes = detect_changes(listing, prior)

        changed = set(changes.changed_paths)
        unchanged = {f.path for f in changes.unchanged}
        assert changed.isdisjoint(unchanged)
        assert changed | unchanged == {"A", "B", "C"}
        assert set(changes.deleted).isdisjoint(changed | unchanged)

    def test_duplicate_listing_entries_counted_once(self):
        changes = detect_changes([blob("A", "h1"), blob("A", "h1")], {})
        assert changes.changed_paths == ["A"]

    def test_accepts_fingerprint_rows(self):
        rows = [
            FileFingerprintModel(repository_id="r", file_path="A", content_id="h1"),
            FileFingerprintModel(repository_id="r", file_path="B", content_id="h2"),
        ]
        changes = detect_changes([blob("A", "h1")], rows)

        assert [f.path for f in changes.unchanged] == ["A"]
        assert changes.deleted == ["B"]


class TestChangeSet:
    """ChangeSet helpers."""

    def test_empty_when_nothing_changed_or_deleted(self):
        changes = ChangeSet(unchanged=[blob("A", "h1")])
        assert changes.is_empty

    def test_summary_counts(self):
        changes = ChangeSet(
            changed=[blob("A", "h1")], unchanged=[blob("B", "h2")], deleted=["C", "D"]
        )
        assert changes.summary() == {"changed": 1, "unchanged": 1, "deleted": 2}
        assert not changes.is_empty
