"""
Tests for snapshot differencing.
"""

import logging

import pytest

from rungscope.diff import DiffEngine, compare_snapshots, compare_tasks, compare_udts
from rungscope.errors import ParseError, SnapshotNotFound
from rungscope.models import Task, UDT, UDTMember


def _modified(l5x_bytes):
    """The sample export with one tag retyped, one replaced and a module moved."""
    return (l5x_bytes
            .replace(b'<Tag Name="Spare" TagType="Base" DataType="DINT"',
                     b'<Tag Name="Spare" TagType="Base" DataType="REAL"')
            .replace(b'<Tag Name="Timer1" TagType="Base" DataType="TIMER" ExternalAccess="Read/Write"/>',
                     b'<Tag Name="NewTag" TagType="Base" DataType="BOOL"/>')
            .replace(b'Address="2"', b'Address="3"'))


class TestCompareSnapshots:
    """Test cases for compare_snapshots."""

    @pytest.fixture(autouse=True)
    def _snapshots(self, store, l5x_bytes):
        self.store = store
        record = store.register_file("p1", "Plant.L5X")
        self.old = store.ingest(record.file_id, l5x_bytes)
        self.new = store.ingest(record.file_id, _modified(l5x_bytes))

    def test_self_compare_is_empty(self):
        """Test a snapshot compared with itself has no changes."""
        report = compare_snapshots(self.old, self.old)

        assert report.total_changes == 0
        assert report.definition_changes == 0
        assert report.to_dict()["tags"] == {"added": [], "removed": [], "modified": []}

    def _ingest_twice(self, file_name, data):
        first = self.store.register_file("p2", file_name)
        second = self.store.register_file("p2", file_name)
        return compare_snapshots(self.store.ingest(first.file_id, data),
                                 self.store.ingest(second.file_id, data))

    def test_separate_l5x_ingests_are_equal(self, l5x_bytes):
        """Test two files ingested from the same L5X bytes compare with no changes."""
        report = self._ingest_twice("Plant.L5X", l5x_bytes)

        assert report.total_changes == 0
        assert report.definition_changes == 0

    def test_separate_l5k_ingests_are_equal(self, l5k_bytes):
        """Test two files ingested from the same L5K bytes compare with no changes."""
        report = self._ingest_twice("Line2.L5K", l5k_bytes)

        assert report.total_changes == 0
        assert report.definition_changes == 0

    def test_tag_changes(self):
        """Test added, removed and retyped tags."""
        report = compare_snapshots(self.old, self.new)

        assert report.tags.added == [{"name": "NewTag", "data_type": "BOOL"}]
        assert report.tags.removed == [{"name": "Timer1", "data_type": "TIMER"}]
        assert report.tags.modified == [{
            "name": "Spare", "data_type": "REAL", "changes": ["Data type: DINT → REAL"],
        }]

    def test_module_changes(self):
        """Test a module slot move."""
        report = compare_snapshots(self.old, self.new)

        assert report.modules.modified == [{
            "name": "DI_Card", "catalog_number": "1756-IB16", "changes": ["Slot: 2 → 3"],
        }]

    def test_summary(self):
        """Test the summary counters."""
        summary = compare_snapshots(self.old, self.new).to_dict()["summary"]

        assert summary == {
            "totalChanges": 4,
            "tagsChanged": 3,
            "routinesChanged": 0,
            "modulesChanged": 1,
            "definitionChanges": 0,
        }

    def test_symmetry(self):
        """Test swapping the arguments swaps added and removed."""
        forward = compare_snapshots(self.old, self.new)
        backward = compare_snapshots(self.new, self.old)

        assert [r["name"] for r in backward.tags.added] == [r["name"] for r in forward.tags.removed]
        assert [r["name"] for r in backward.tags.removed] == [r["name"] for r in forward.tags.added]
        assert backward.total_changes == forward.total_changes

    def test_deterministic(self):
        """Test the same pair always yields the same report."""
        assert compare_snapshots(self.old, self.new).to_dict() == \
            compare_snapshots(self.old, self.new).to_dict()

    def test_engine_versions(self):
        """Test comparing stored versions by number and by id."""
        engine = DiffEngine(self.store)

        by_number = engine.compare_files(self.old.file_id, self.old.file_id, 1, 2)
        by_id = engine.compare_versions(self.old.version_id, self.new.version_id)

        assert by_number.to_dict() == by_id.to_dict()
        assert by_id.total_changes == 4

    def test_engine_missing_version(self):
        """Test an unknown version surfaces as SnapshotNotFound."""
        engine = DiffEngine(self.store)

        with pytest.raises(SnapshotNotFound):
            engine.compare_files(self.old.file_id, self.old.file_id, 1, 7)


class TestDefinitionDiffs:
    """Test cases for UDT and task differencing."""

    def test_udt_member_order(self):
        """Test a member reorder is a change even with identical members."""
        a = UDT(name="Pump", members=(UDTMember("Run", "BOOL"), UDTMember("Speed", "REAL")))
        b = UDT(name="Pump", members=(UDTMember("Speed", "REAL"), UDTMember("Run", "BOOL")))

        result = compare_udts([a], [b])

        assert result.modified[0]["changes"] == ["Member order changed"]

    def test_udt_member_type(self):
        """Test member additions and type changes."""
        a = UDT(name="Pump", members=(UDTMember("Run", "BOOL"),))
        b = UDT(name="Pump", members=(UDTMember("Run", "DINT"), UDTMember("Fault", "BOOL")))

        changes = compare_udts([a], [b]).modified[0]["changes"]

        assert changes == ["Member added: Fault", "Member Run data type: BOOL → DINT"]

    def test_task_changes(self):
        """Test task attribute changes use the none marker for missing values."""
        a = Task(name="Fast", type="PERIODIC", rate=10)
        b = Task(name="Fast", type="PERIODIC", rate=None)

        changes = compare_tasks([a], [b]).modified[0]["changes"]

        assert changes == ["Rate: 10 → none"]


class TestFolderComparison:
    """Test cases for DiffEngine.compare_folders."""

    def test_compare_folders(self, store, l5x_bytes, l5k_bytes):
        """Test same-named files are paired and the rest are listed by side."""
        for folder, data in (("left", l5x_bytes), ("right", _modified(l5x_bytes))):
            record = store.register_file("p1", "Plant.L5X", folder_id=folder)
            store.ingest(record.file_id, data)
        extra = store.register_file("p1", "Line2.L5K", folder_id="right")
        store.ingest(extra.file_id, l5k_bytes)

        result = DiffEngine(store, max_workers=2).compare_folders("left", "right").to_dict()

        assert result["type"] == "folder"
        assert [p["fileName"] for p in result["matchedPairs"]] == ["Plant.L5X"]
        assert result["unmatchedFiles"] == [
            {"fileName": "Line2.L5K", "fileId": extra.file_id, "side": "right"},
        ]
        assert result["summary"] == {
            "totalFiles": 3,
            "matchedFiles": 1,
            "unmatchedLeft": 0,
            "unmatchedRight": 1,
            "filesWithChanges": 1,
            "totalChanges": 4,
        }

    def test_failed_files_are_ignored(self, store, l5x_bytes):
        """Test files whose parse failed take no part in folder comparison."""
        good = store.register_file("p1", "Plant.L5X", folder_id="left")
        store.ingest(good.file_id, l5x_bytes)
        bad = store.register_file("p1", "Plant.L5X", folder_id="right")
        with pytest.raises(ParseError):
            store.ingest(bad.file_id, b"<broken")

        result = DiffEngine(store).compare_folders("left", "right")

        assert result.comparisons == []
        assert [u.side for u in result.unmatched_files] == ["left"]

    def test_duplicate_names_in_folder(self, store, l5x_bytes, caplog):
        """Test a second file of the same name in one folder is skipped with a warning."""
        first = store.register_file("p1", "Plant.L5X", folder_id="left")
        store.ingest(first.file_id, l5x_bytes)
        second = store.register_file("p1", "Plant.L5X", folder_id="left")
        store.ingest(second.file_id, _modified(l5x_bytes))
        other = store.register_file("p1", "Plant.L5X", folder_id="right")
        store.ingest(other.file_id, l5x_bytes)

        with caplog.at_level(logging.WARNING, logger="rungscope.diff"):
            result = DiffEngine(store).compare_folders("left", "right")

        assert [(p.file1_id, p.file2_id) for p in result.comparisons] == [
            (first.file_id, other.file_id),
        ]
        assert result.total_changes == 0
        assert second.file_id in caplog.text
