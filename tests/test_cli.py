"""Tests for the KT Intake CLI."""

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest
from click.testing import CliRunner

SRC = Path(__file__).resolve().parents[1] / "src"


def run_module(*args):
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(SRC), env.get("PYTHONPATH")]))
    return subprocess.run(
        [sys.executable, "-m", "kt_intake.cli", *args],
        capture_output=True,
        text=True,
        env=env,
    )


class TestCLIEntryPoints:
    """Test CLI entry points."""

    def test_version(self):
        """Test --version flag."""
        result = run_module("--version")
        assert result.returncode == 0
        assert "kt-intake" in result.stdout

    def test_help(self):
        """Test --help flag lists the commands."""
        result = run_module("--help")
        assert result.returncode == 0
        assert "KT Intake" in result.stdout
        for command in ("migrate", "causes", "likely", "convert", "summarize"):
            assert command in result.stdout

    def test_edit_help(self):
        """Test edit --help shows the decision options."""
        result = run_module("edit", "--help")
        assert result.returncode == 0
        assert "--decision" in result.stdout
        assert "--test-eta" in result.stdout


@pytest.fixture
def cli(tmp_path, monkeypatch):
    """Invoke the CLI against a temporary home."""
    from kt_intake.cli import main

    monkeypatch.delenv("KT_INTAKE_HOME", raising=False)
    runner = CliRunner()
    home = tmp_path / "home"

    def invoke(*args):
        return runner.invoke(main, ["--home", str(home), *args])

    return invoke


def cause_rows(cli):
    result = cli("causes", "--json")
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


class TestCauseCommands:
    """Test the cause workflow end to end."""

    def test_empty_status(self, cli):
        """Test status on a fresh home."""
        result = cli("status", "--json")
        assert result.exit_code == 0, result.output
        summary = json.loads(result.stdout)
        assert summary["causes"] == 0
        assert summary["likely_cause"] is None
        assert summary["saved_at"] is None

    def test_full_flow(self, cli):
        """Test add, decide, designate, convert and rule out."""
        result = cli("add", "--suspect", "Pump 7", "--accusation", "is leaking")
        assert result.exit_code == 0, result.output

        rows = cause_rows(cli)
        assert len(rows) == 1
        cause_id = rows[0]["id"]
        assert rows[0]["hypothesis"] == "We suspect Pump 7 is leaking."
        assert rows[0]["state"] == "pending"

        result = cli(
            "edit", cause_id,
            "--decision", "conditional",
            "--assumptions", "seal failed",
            "--test-text", "Inspect seal",
            "--test-owner", "Dana",
            "--test-eta", "2024-05-01T12:00:00+02:00",
        )
        assert result.exit_code == 0, result.output
        row = cause_rows(cli)[0]
        assert row["state"] == "conditional"
        assert row["assumptions"] == 1

        result = cli("likely", cause_id)
        assert result.exit_code == 0, result.output
        assert "Likely Cause set to: Pump 7." in result.stdout

        result = cli("convert", cause_id)
        assert result.exit_code == 0, result.output
        assert "Action created for Pump 7." in result.stdout
        assert cause_rows(cli)[0]["actions"] == 1

        result = cli("edit", cause_id, "--decision", "does_not_explain")
        assert result.exit_code == 0, result.output
        assert "ruled out" in result.stdout

        summary = json.loads(cli("status", "--json").stdout)
        assert summary["likely_cause"] is None
        assert summary["states"] == {"failed": 1}
        assert summary["actions"] == 1

    def test_causes_summary_report(self, cli):
        """Test the shareable plain-text report."""
        result = cli("causes", "--summary")
        assert result.exit_code == 0, result.output
        assert result.stdout.strip() == "No possible causes captured."

        cli("add", "--suspect", "Pump 7", "--accusation", "is leaking")
        result = cli("causes", "--summary")
        assert result.exit_code == 0, result.output
        assert "• Possible Cause 1: We suspect Pump 7 is leaking." in result.stdout
        assert "  Status: " in result.stdout

    def test_convert_refused(self, cli):
        """Test converting a pending cause exits non-zero."""
        cli("add", "--suspect", "Pump 7", "--accusation", "is leaking")
        cause_id = cause_rows(cli)[0]["id"]

        result = cli("convert", cause_id)
        assert result.exit_code == 1
        assert "Only conditional causes" in result.stdout

    def test_failed_cause_cannot_be_likely(self, cli):
        """Test a ruled-out cause is refused as the Likely Cause."""
        cli("add", "--suspect", "Pump 7", "--accusation", "is leaking")
        cause_id = cause_rows(cli)[0]["id"]
        cli("edit", cause_id, "--decision", "does_not_explain")

        result = cli("likely", cause_id)
        assert result.exit_code == 0
        assert cause_rows(cli)[0]["likely"] is False

    def test_unknown_cause(self, cli):
        """Test unknown ids exit with the validation error code."""
        result = cli("edit", "nope", "--suspect", "x")
        assert result.exit_code == 14

    def test_likely_needs_argument(self, cli):
        """Test likely with neither an id nor --clear is a usage error."""
        result = cli("likely")
        assert result.exit_code == 2


class TestSnapshotCommands:
    """Test migrate, import and export."""

    def test_migrate_to_stdout(self, cli, tmp_path):
        """Test a legacy file is printed in the current shape."""
        source = tmp_path / "old.json"
        source.write_text(json.dumps({"meta": {"version": 0}, "ops": {"containmentStatus": "mitigation"}}))

        result = cli("migrate", str(source))
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["ops"]["containStatus"] == "stabilized"
        assert data["meta"]["version"] == 2

    def test_migrate_bad_file(self, cli, tmp_path):
        """Test invalid JSON exits with the snapshot error code."""
        source = tmp_path / "bad.json"
        source.write_text("{nope")
        result = cli("migrate", str(source))
        assert result.exit_code == 12
        assert "not valid JSON" in result.stdout

    def test_export_then_import(self, cli, tmp_path):
        """Test an exported intake imports back."""
        cli("add", "--suspect", "Pump 7", "--accusation", "is leaking")
        out_dir = tmp_path / "exports"

        result = cli("export", "--dir", str(out_dir))
        assert result.exit_code == 0, result.output
        exported = list(out_dir.glob("kt-intake-*.json"))
        assert len(exported) == 1

        source = tmp_path / "incoming.json"
        source.write_text(json.dumps({
            "causes": [{"id": "c9", "suspect": "Valve", "accusation": "sticking"}],
            "actions": {"analysisId": "an-9", "items": [{"id": "a1", "links": {"hypothesisId": "c9"}}]},
        }))
        result = cli("import", str(source))
        assert result.exit_code == 0, result.output
        assert "Intake snapshot imported." in result.stdout

        rows = cause_rows(cli)
        assert [row["id"] for row in rows] == ["c9"]
        assert rows[0]["actions"] == 1
        assert json.loads(cli("status", "--json").stdout)["analysis_id"] == "an-9"


class TestMiscCommands:
    """Test summarize and config."""

    def test_summarize(self, cli):
        """Test the one-off hypothesis sentence."""
        result = cli("summarize", "--suspect", "Pump 7", "--accusation", "leaking", "--impact", "Downtime")
        assert result.exit_code == 0
        assert result.stdout.strip() == "We suspect Pump 7 because they are leaking. This could lead to Downtime."

    def test_config_set_and_show(self, cli):
        """Test config values are parsed and persisted."""
        result = cli("config", "set", "hypothesis.preview", "true")
        assert result.exit_code == 0, result.output

        result = cli("config", "show")
        assert result.exit_code == 0
        assert "hypothesis.preview: True" in result.stdout

    def test_config_show_lists_environment(self, cli):
        """Test config show documents the environment variables."""
        result = cli("config", "show")
        assert result.exit_code == 0, result.output
        assert "KT_INTAKE_DEBUG" in result.stdout
        assert "KT_INTAKE_HOME" in result.stdout
