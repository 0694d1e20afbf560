"""
Tests for the snapshot store.
"""

import pytest

from rungscope.errors import MalformedDocument, SnapshotNotFound, UnsupportedFileKind
from rungscope.models import FileKind
from rungscope.store import ParsingStatus


class TestSnapshotStore:
    """Test cases for SnapshotStore."""

    def test_register_file(self, store):
        """Test registration infers the kind and starts pending."""
        record = store.register_file("p1", "Line1.L5K")

        assert record.kind is FileKind.L5K
        assert record.parsing_status is ParsingStatus.PENDING
        assert record.current_version == 0
        assert store.get_file(record.file_id) == record

    def test_register_unknown_extension(self, store):
        """Test files without a known extension need an explicit kind."""
        with pytest.raises(UnsupportedFileKind):
            store.register_file("p1", "Line1.txt")

        assert store.register_file("p1", "Line1.txt", kind="l5k").kind is FileKind.L5K

    def test_ingest_creates_versions(self, store, l5x_bytes):
        """Test each ingest appends a numbered version."""
        record = store.register_file("p1", "Plant.L5X")

        first = store.ingest(record.file_id, l5x_bytes)
        second = store.ingest(record.file_id, l5x_bytes)

        assert (first.version_number, second.version_number) == (1, 2)
        assert first.version_id != second.version_id
        assert store.get_file(record.file_id).current_version == 2
        assert store.get_snapshot(record.file_id) is second
        assert store.get_snapshot(record.file_id, 1) is first
        assert store.get_version(first.version_id) is first
        assert [s.version_number for s in store.list_versions(record.file_id)] == [1, 2]

    def test_references_are_stamped(self, store, l5x_bytes):
        """Test references carry the file and version identity."""
        record = store.register_file("p1", "Plant.L5X")
        snapshot = store.ingest(record.file_id, l5x_bytes)

        assert len(snapshot.references) == 10
        assert {r.file_id for r in snapshot.references} == {record.file_id}
        assert {r.version_id for r in snapshot.references} == {snapshot.version_id}

    def test_failed_ingest(self, store):
        """Test a rejected document marks the file failed and adds no version."""
        record = store.register_file("p1", "Plant.L5X")

        with pytest.raises(MalformedDocument):
            store.ingest(record.file_id, b"<Project/>")

        failed = store.get_file(record.file_id)
        assert failed.parsing_status is ParsingStatus.FAILED
        assert "root element" in failed.error
        assert store.list_versions(record.file_id) == []
        with pytest.raises(SnapshotNotFound):
            store.get_snapshot(record.file_id)

    def test_failed_reparse_keeps_old_versions(self, store, l5x_bytes):
        """Test a failed second ingest leaves version 1 readable by number."""
        record = store.register_file("p1", "Plant.L5X")
        store.ingest(record.file_id, l5x_bytes)

        with pytest.raises(MalformedDocument):
            store.ingest(record.file_id, b"<Project/>")

        assert store.get_snapshot(record.file_id, 1).version_number == 1
        with pytest.raises(SnapshotNotFound):
            store.get_snapshot(record.file_id)

    def test_failed_ingest_keeps_concurrent_version(self, store, l5x_bytes, monkeypatch):
        """Test a failure does not roll back a version stored while it was parsing."""
        record = store.register_file("p1", "Plant.L5X")
        store.ingest(record.file_id, l5x_bytes)
        real_parse = store.parser.parse

        def parse_with_reingest(data, kind):
            if data == b"<Project/>":
                store.ingest(record.file_id, l5x_bytes)
            return real_parse(data, kind)

        monkeypatch.setattr(store.parser, "parse", parse_with_reingest)

        with pytest.raises(MalformedDocument):
            store.ingest(record.file_id, b"<Project/>")

        failed = store.get_file(record.file_id)
        assert failed.parsing_status is ParsingStatus.FAILED
        assert failed.current_version == 2
        assert [s.version_number for s in store.list_versions(record.file_id)] == [1, 2]

    def test_add_file(self, store, sample_files):
        """Test registering and ingesting from disk."""
        snapshot = store.add_file("p1", sample_files["l5k"], folder_id="f1")

        assert snapshot.file_name == "Plant.L5K"
        assert snapshot.kind is FileKind.L5K
        assert [r.file_name for r in store.folder_files("f1")] == ["Plant.L5K"]

    def test_list_snapshots(self, store, l5x_bytes):
        """Test only completed files of the project are listed."""
        good = store.register_file("p1", "A.L5X")
        store.ingest(good.file_id, l5x_bytes)
        store.register_file("p1", "B.L5X")
        other = store.register_file("p2", "C.L5X")
        store.ingest(other.file_id, l5x_bytes)

        assert [s.file_name for s in store.list_snapshots("p1")] == ["A.L5X"]
        assert len(store.list_files("p1")) == 2

    def test_unknown_ids(self, store):
        """Test unknown files and versions raise SnapshotNotFound."""
        with pytest.raises(SnapshotNotFound):
            store.get_file("missing")
        with pytest.raises(SnapshotNotFound):
            store.get_version("missing")
        with pytest.raises(SnapshotNotFound):
            store.ingest("missing", b"")

    def test_delete_file(self, store, l5x_bytes):
        """Test deleting a file removes its versions."""
        record = store.register_file("p1", "Plant.L5X")
        snapshot = store.ingest(record.file_id, l5x_bytes)

        store.delete_file(record.file_id)

        with pytest.raises(SnapshotNotFound):
            store.get_file(record.file_id)
        with pytest.raises(SnapshotNotFound):
            store.get_version(snapshot.version_id)
