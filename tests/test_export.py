"""
Tests for snapshot export.
"""

import csv
import io
import json

import pytest

from rungscope.export import (
    CSV_EXPORTS, build_context_summary, export_json, modules_csv, project_manual,
    references_csv, tags_csv, truncate, udts_csv,
)
from rungscope.metrics import HealthStats, compute_health_score


def _rows(text):
    return list(csv.reader(io.StringIO(text)))


class TestExportJSON:
    """Test cases for JSON export."""

    @pytest.fixture(autouse=True)
    def _snapshot(self, store, l5x_bytes):
        record = store.register_file("p1", "Plant.L5X")
        self.snapshot = store.ingest(record.file_id, l5x_bytes)

    def test_export_all(self):
        """Test a full export carries every component."""
        data = export_json(self.snapshot)

        assert data["fileName"] == "Plant.L5X"
        assert data["kind"] == "l5x"
        assert data["versionNumber"] == 1
        assert "exportTime" in data
        assert data["sectionsPresent"] == sorted(data["sectionsPresent"])
        assert len(data["tags"]) == 8
        assert len(data["references"]) == 10
        assert data["references"][0]["usage_type"] == "Read"
        assert data["metadata"]["project_name"] == "Plant"

    def test_export_selected(self):
        """Test selecting components and ignoring unknown ones."""
        data = export_json(self.snapshot, include=["tags", "bogus"])

        assert "tags" in data
        assert "rungs" not in data
        assert "bogus" not in data

    def test_export_to_file(self, tmp_path):
        """Test writing the JSON to disk."""
        output = tmp_path / "out" / "plant.json"

        export_json(self.snapshot, output_path=str(output), include=["udts"])

        with open(output, encoding="utf-8") as f:
            data = json.load(f)
        assert data["udts"][0]["name"] == "MotorData"
        assert [m["name"] for m in data["udts"][0]["members"]] == ["Running", "Speed"]


class TestExportCSV:
    """Test cases for CSV listings."""

    @pytest.fixture(autouse=True)
    def _snapshot(self, store, l5x_bytes):
        record = store.register_file("p1", "Plant.L5X")
        self.snapshots = [store.ingest(record.file_id, l5x_bytes)]

    def test_tags_csv(self):
        """Test tag rows are sorted by name and None becomes blank."""
        rows = _rows(tags_csv(self.snapshots))

        assert rows[0][:3] == ["Name", "Data Type", "Scope"]
        assert [r[0] for r in rows[1:]] == sorted(r[0] for r in rows[1:])
        alias = next(r for r in rows if r[0] == "Running_Alias")
        assert alias[6] == "Motor1.Running"
        assert alias[3] == ""

    def test_references_csv(self):
        """Test the cross-reference listing."""
        rows = _rows(references_csv(self.snapshots))

        assert rows[0] == ["Tag Name", "Program", "Routine", "Rung", "Usage Type"]
        assert len(rows) == 11
        assert rows[1] == ["Count", "MainProgram", "MainRoutine", "2", "Read"]

    def test_udts_csv(self):
        """Test one row per UDT member."""
        rows = _rows(udts_csv(self.snapshots))

        assert [r[3] for r in rows[1:]] == ["Running", "Speed"]
        assert rows[1][4] == "BOOL"

    def test_modules_csv(self):
        """Test connection info is serialized as JSON."""
        rows = _rows(modules_csv(self.snapshots))
        card = next(r for r in rows if r[0] == "DI_Card")

        assert card[3] == "2"
        assert json.loads(card[5])["communications"]["CommMethod"] == "536870914"

    def test_empty_listing(self):
        """Test an empty listing still has its header."""
        assert CSV_EXPORTS["aois"]([]) == (
            "AOI Name,Revision,Vendor,Description,Created By,Edited By,Parameter Name,"
            "Parameter Type,Parameter Usage,Required,Visible,Parameter Description\n"
        )


class TestDocumentation:
    """Test cases for the Markdown manual and context summaries."""

    @pytest.fixture(autouse=True)
    def _snapshot(self, store, l5x_bytes):
        record = store.register_file("p1", "Plant.L5X")
        self.snapshots = [store.ingest(record.file_id, l5x_bytes)]

    def test_project_manual(self):
        """Test the manual sections."""
        health = compute_health_score(HealthStats(total_tags=10, unused_tags=3, total_rungs=10,
                                                  commented_rungs=6, total_references=40))

        text = project_manual(self.snapshots, "Plant", health)

        assert text.startswith("# Plant\n")
        for heading in ("## Executive Summary", "## System Architecture", "## I/O Configuration",
                        "## Programs & Routines", "## Tag Database", "## User-Defined Types",
                        "## Add-On Instructions", "## Cross-Reference Summary",
                        "## Quality Metrics"):
            assert heading in text
        assert "| Overall | 57 |" in text
        assert "approximate" not in text

    def test_manual_without_health(self):
        """Test the quality section is omitted without a report."""
        assert "## Quality Metrics" not in project_manual(self.snapshots, "Plant")

    def test_context_summary(self):
        """Test the plain-text summary sections."""
        text = build_context_summary(self.snapshots, "Plant")

        assert text.startswith('PROJECT "Plant"')
        assert "TAGS (8):" in text
        assert "MainProgram/MainRoutine:" in text
        assert "  Rung 0 [Start/stop seal-in]: XIC(Start)XIO(Stop)OTE(Motor1.Running)" in text
        assert "TAG CROSS-REFERENCES (10 references):" in text

    def test_context_summary_budget(self):
        """Test the summary never exceeds its budget and says what was cut."""
        text = build_context_summary(self.snapshots, "Plant", max_chars=300)

        assert len(text) <= 300
        assert text.splitlines()[-1].startswith("[... context truncated:")

    def test_truncate(self):
        """Test truncation at a line boundary."""
        text = "\n".join(f"line {i}" for i in range(100))

        result = truncate(text, 120)

        assert len(result) <= 120
        head, marker = result.rsplit("\n", 1)
        assert text.startswith(head)
        assert marker == f"[... context truncated: {len(text) - len(head)} characters omitted ...]"
        assert truncate("short", 120) == "short"
