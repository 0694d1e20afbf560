"""
Tests for the command-line interface.
"""

import json

from click.testing import CliRunner

from rungscope.cli import main


RULES_YAML = """
naming:
  rule_sets:
    - id: plant
      name: Plant standard
      is_default: true
      rules:
        - id: di
          name: Digital inputs
          pattern: "^DI_"
          applies_to: module
          severity: error
        - id: no-underscore
          name: No underscores in tags
          pattern: "^[A-Za-z0-9]+$"
          applies_to: tag
"""


class TestCLI:
    """Test cases for the rungscope commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def invoke_json(self, *args):
        result = self.runner.invoke(main, list(args))
        assert result.exit_code == 0, result.output
        return json.loads(result.stdout)

    def test_parse(self, sample_files):
        """Test parsing a file to JSON."""
        data = self.invoke_json("parse", str(sample_files["l5x"]), "--include", "tags")

        assert data["fileName"] == "Plant.L5X"
        assert len(data["tags"]) == 8
        assert "rungs" not in data

    def test_parse_to_file(self, sample_files, tmp_path):
        """Test writing the parse result to a file."""
        output = tmp_path / "plant.json"

        result = self.runner.invoke(main, ["parse", str(sample_files["l5k"]), "-o", str(output)])

        assert result.exit_code == 0
        assert "Wrote" in result.output
        assert json.loads(output.read_text(encoding="utf-8"))["kind"] == "l5k"

    def test_unsupported_file(self, tmp_path):
        """Test a file of unknown kind exits with the client error code."""
        path = tmp_path / "notes.txt"
        path.write_text("hello", encoding="utf-8")

        result = self.runner.invoke(main, ["parse", str(path)])

        assert result.exit_code == 2
        assert "Error" in result.output

    def test_malformed_file(self, tmp_path):
        """Test a rejected document exits with the client error code."""
        path = tmp_path / "Broken.L5X"
        path.write_bytes(b"<Project/>")

        result = self.runner.invoke(main, ["parse", str(path)])

        assert result.exit_code == 2

    def test_refs(self, sample_files):
        """Test the cross-reference search."""
        data = self.invoke_json("refs", str(sample_files["l5x"]), "--search", "start")

        assert data["totalCount"] == 2
        assert {r["tagName"] for r in data["references"]} == {"Start"}

    def test_diff(self, sample_files, tmp_path):
        """Test comparing two exports."""
        changed = tmp_path / "changed" / "Plant.L5X"
        changed.parent.mkdir()
        source = sample_files["l5x"].read_text(encoding="utf-8")
        changed.write_text(source.replace('Address="2"', 'Address="3"'), encoding="utf-8")

        data = self.invoke_json("diff", str(sample_files["l5x"]), str(changed))

        assert data["summary"]["totalChanges"] == 1
        assert data["modules"]["modified"][0]["name"] == "DI_Card"

    def test_compare_folders(self, sample_files, tmp_path):
        """Test comparing same-named files in two folders."""
        left, right = tmp_path / "left", tmp_path / "right"
        left.mkdir()
        right.mkdir()
        source = sample_files["l5x"].read_text(encoding="utf-8")
        (left / "Plant.L5X").write_text(source, encoding="utf-8")
        (right / "Plant.L5X").write_text(source.replace('Address="2"', 'Address="3"'),
                                         encoding="utf-8")
        (right / "readme.txt").write_text("ignored", encoding="utf-8")

        data = self.invoke_json("compare-folders", str(left), str(right))

        assert data["summary"]["matchedFiles"] == 1
        assert data["summary"]["totalChanges"] == 1
        assert data["unmatchedFiles"] == []

    def test_unused(self, sample_files):
        """Test the unused-tag listing."""
        data = self.invoke_json("unused", str(sample_files["l5x"]))

        assert [t["name"] for t in data["unusedTags"]] == ["Motor1", "Running_Alias", "Spare"]

    def test_coverage(self, sample_files):
        """Test the comment coverage report."""
        data = self.invoke_json("coverage", str(sample_files["l5x"]))

        assert data["summary"]["coveragePercent"] == 67

    def test_health(self, sample_files):
        """Test the health score without naming."""
        data = self.invoke_json("health", str(sample_files["l5x"]))

        assert data["overall"] == 40
        assert "naming" not in data
        assert data["exportTypes"]["hasPartialExports"] is False

    def test_health_with_naming(self, sample_files, tmp_path):
        """Test naming rule sets from the configuration file."""
        config = tmp_path / "rungscope.yaml"
        config.write_text(RULES_YAML, encoding="utf-8")

        data = self.invoke_json("-c", str(config), "health", "--naming", str(sample_files["l5x"]))

        # Local breaks the module rule and Running_Alias the tag rule: 2 of 10 names
        assert data["naming"] == 60

    def test_naming_without_rules(self, sample_files):
        """Test the naming command when no rule set is configured."""
        data = self.invoke_json("naming", str(sample_files["l5x"]))

        assert data == {"violations": [], "message": "No naming rule set configured"}

    def test_naming_with_rules(self, sample_files, tmp_path):
        """Test violations filtered by severity."""
        config = tmp_path / "rungscope.yaml"
        config.write_text(RULES_YAML, encoding="utf-8")

        data = self.invoke_json("-c", str(config), "naming", str(sample_files["l5x"]),
                                "--severity", "error")

        assert [v["entityName"] for v in data["violations"]] == ["Local"]
        assert data["summary"]["warnings"] == 1

    def test_export_csv(self, sample_files):
        """Test the CSV export."""
        result = self.runner.invoke(main, ["export", str(sample_files["l5x"]), "--what", "io"])

        assert result.exit_code == 0
        header = result.stdout.splitlines()[0]
        assert header == "Name,Catalog Number,Parent Module,Slot,File,Connection Info"

    def test_export_markdown_and_context(self, sample_files):
        """Test the manual and the bounded summary."""
        manual = self.runner.invoke(main, ["export", str(sample_files["l5x"]),
                                           "--format", "markdown", "--project-name", "Plant"])
        context = self.runner.invoke(main, ["export", str(sample_files["l5x"]),
                                            "--format", "context", "--max-chars", "300"])

        assert manual.exit_code == 0
        assert "## Quality Metrics" in manual.stdout
        assert context.exit_code == 0
        assert len(context.stdout) <= 300
