"""
Tests for the document parser entry point.
"""

import pytest

from rungscope.config import RungscopeConfig
from rungscope.errors import (
    MalformedDocument, ParseLimitExceeded, TruncatedInput, UnsupportedFileKind,
)
from rungscope.models import FileKind, ParsedDocument, Rung, Tag, Task
from rungscope.parser import DocumentParser, check_invariants, kind_for_path, resolve_kind


class TestKindResolution:
    """Test cases for file kind handling."""

    def test_resolve_kind(self):
        """Test declared kinds are case-insensitive."""
        assert resolve_kind("l5x") is FileKind.L5X
        assert resolve_kind("L5K") is FileKind.L5K
        assert resolve_kind(FileKind.L5X) is FileKind.L5X

    def test_resolve_unknown_kind(self):
        """Test an unknown kind is a client error."""
        with pytest.raises(UnsupportedFileKind) as exc_info:
            resolve_kind("acd")

        assert exc_info.value.status_code == 400

    def test_kind_for_path(self):
        """Test kind inference from extensions."""
        assert kind_for_path("Plant.L5X") is FileKind.L5X
        assert kind_for_path("/tmp/line1.l5k") is FileKind.L5K

        with pytest.raises(UnsupportedFileKind):
            kind_for_path("Plant.ACD")


class TestInvariants:
    """Test cases for snapshot invariants."""

    def test_duplicate_tag_in_scope(self):
        """Test a tag declared twice in one scope is rejected."""
        doc = ParsedDocument(kind=FileKind.L5X, tags=(
            Tag(name="A", data_type="BOOL"),
            Tag(name="A", data_type="DINT"),
        ))

        with pytest.raises(MalformedDocument):
            check_invariants(doc)

    def test_same_name_in_different_scopes(self):
        """Test the same tag name may exist in controller and program scope."""
        doc = ParsedDocument(kind=FileKind.L5X, tags=(
            Tag(name="A", data_type="BOOL"),
            Tag(name="A", data_type="BOOL", scope="program:Main"),
        ))

        check_invariants(doc)

    def test_duplicate_rung_number(self):
        """Test rung numbers are unique per routine."""
        doc = ParsedDocument(kind=FileKind.L5K, rungs=(
            Rung(program_name="Main", routine_name="R", number=0, logic_text="NOP()"),
            Rung(program_name="Main", routine_name="R", number=0, logic_text="NOP()"),
        ))

        with pytest.raises(MalformedDocument):
            check_invariants(doc)

    def test_two_continuous_tasks(self):
        """Test at most one CONTINUOUS task is allowed."""
        doc = ParsedDocument(kind=FileKind.L5X, tasks=(
            Task(name="T1", type="CONTINUOUS"),
            Task(name="T2", type="CONTINUOUS"),
        ))

        with pytest.raises(MalformedDocument):
            check_invariants(doc)


class TestDocumentParser:
    """Test cases for DocumentParser."""

    def setup_method(self):
        """Set up test fixtures."""
        self.parser = DocumentParser(RungscopeConfig())

    def test_parse_both_kinds(self, l5x_bytes, l5k_bytes):
        """Test dispatch by declared kind."""
        assert self.parser.parse(l5x_bytes, "l5x").kind is FileKind.L5X
        assert self.parser.parse(l5k_bytes, "l5k").kind is FileKind.L5K

    def test_size_limit(self, l5x_bytes):
        """Test input over the byte limit is refused before parsing."""
        parser = DocumentParser(RungscopeConfig(max_input_bytes=100))

        with pytest.raises(ParseLimitExceeded) as exc_info:
            parser.parse(l5x_bytes, "l5x")

        assert exc_info.value.kind == "l5x"

    def test_parse_without_timeout(self, l5k_bytes):
        """Test parsing in the calling thread when no timeout is set."""
        parser = DocumentParser(RungscopeConfig(parse_timeout_seconds=None))

        assert len(parser.parse(l5k_bytes, "l5k").tags) == 6

    def test_parse_file(self, sample_files):
        """Test parsing from disk with the kind taken from the extension."""
        doc = self.parser.parse_file(sample_files["l5x"])

        assert doc.kind is FileKind.L5X
        assert doc.metadata.project_name == "Plant"

    def test_parse_many(self, l5x_bytes, l5k_bytes):
        """Test failures are isolated per file and order is kept."""
        outcomes = self.parser.parse_many([
            ("a.L5X", l5x_bytes, "l5x"),
            ("broken.L5K", b"", "l5k"),
            ("b.L5K", l5k_bytes, "l5k"),
        ])

        assert [o.key for o in outcomes] == ["a.L5X", "broken.L5K", "b.L5K"]
        assert [o.ok for o in outcomes] == [True, False, True]
        assert isinstance(outcomes[1].error, TruncatedInput)
