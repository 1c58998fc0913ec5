"""
Tests for kql_console.output module.

Tests CSV generation, table rendering, the result sink and summary
formatting.
"""

import csv
import re
from unittest.mock import patch

import pytest

from kql_console.models import (
    BackendKind,
    ResultSet,
    RunStatus,
    TemplateRunSummary,
    create_batch_summary,
)
from kql_console.output import (
    OutputError,
    ResultSink,
    build_table,
    format_batch_summary,
    format_run_summary,
    generate_output_filename,
    unique_output_path,
    write_csv,
)
from kql_console.selection import SelectionError


def _read_csv(path):
    with open(path, newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


class TestWriteCsv:
    """Tests for write_csv function."""

    def test_header_in_column_order(self, sample_results, tmp_path):
        path = write_csv(sample_results, tmp_path / "out.csv")

        rows = _read_csv(path)
        assert rows[0] == ["TimeGenerated", "UserPrincipalName", "ResultType", "IPAddress"]
        assert len(rows) == 4

    def test_missing_cells_empty(self, sample_results, tmp_path):
        rows = _read_csv(write_csv(sample_results, tmp_path / "out.csv"))

        assert rows[1] == ["2026-02-04T10:00:00Z", "alice@contoso.com", "50126", ""]
        assert rows[3][3] == "203.0.113.7"

    def test_none_written_empty(self, tmp_path):
        results = ResultSet.from_records([{"Computer": "web-01", "OSType": None}])

        rows = _read_csv(write_csv(results, tmp_path / "out.csv"))

        assert rows[1] == ["web-01", ""]

    def test_values_with_commas_quoted(self, tmp_path):
        results = ResultSet.from_records([{"CommandLine": 'cmd.exe /c "echo a, b"'}])

        rows = _read_csv(write_csv(results, tmp_path / "out.csv"))

        assert rows[1] == ['cmd.exe /c "echo a, b"']

    def test_unwritable_path(self, sample_results, tmp_path):
        with pytest.raises(OutputError, match="Failed to write CSV"):
            write_csv(sample_results, tmp_path / "missing-dir" / "out.csv")


class TestGenerateOutputFilename:
    """Tests for generate_output_filename function."""

    def test_format(self):
        name = generate_output_filename("SigninFailures", "csv")
        assert re.fullmatch(r"SigninFailures_\d{8}_\d{6}\.csv", name)

    def test_unsafe_characters_replaced(self):
        name = generate_output_filename("Risky users / prod", "csv")
        assert name.startswith("Risky_users_prod_")

    def test_fallback_prefix(self):
        assert generate_output_filename("///", "csv").startswith("results_")


class TestUniqueOutputPath:
    """Tests for unique_output_path function."""

    def test_free_name_unchanged(self, tmp_path):
        assert unique_output_path(tmp_path, "Overview_1.csv") == tmp_path / "Overview_1.csv"

    def test_counts_past_taken_names(self, tmp_path):
        (tmp_path / "Overview.csv").write_text("")
        (tmp_path / "Overview_1.csv").write_text("")

        assert unique_output_path(tmp_path, "Overview.csv") == tmp_path / "Overview_2.csv"


class TestBuildTable:
    def test_columns_and_rows(self, sample_results):
        table = build_table(sample_results, title="SigninFailures")

        assert [column.header for column in table.columns] == list(sample_results.columns)
        assert table.row_count == 3
        assert table.title == "SigninFailures"


class TestResultSink:
    """Tests for ResultSink."""

    def test_export_choice(self, make_io, sample_results, tmp_path):
        sink = ResultSink(make_io("1"), tmp_path / "output")

        path = sink.emit(sample_results, "SigninFailures")

        assert path.parent == tmp_path / "output"
        assert path.name.startswith("SigninFailures_")
        assert len(_read_csv(path)) == 4

    def test_same_prefix_twice_keeps_both_files(self, make_io, sample_results, tmp_path):
        sink = ResultSink(make_io(), tmp_path / "output")

        with patch("kql_console.output.generate_output_filename", return_value="Overview_20260204_100000.csv"):
            first = sink.export(sample_results, "Overview")
            second = sink.export(ResultSet.from_records([{"Computer": "web-01"}]), "Overview")

        assert first.name == "Overview_20260204_100000.csv"
        assert second.name == "Overview_20260204_100000_1.csv"
        assert len(_read_csv(first)) == 4
        assert _read_csv(second) == [["Computer"], ["web-01"]]

    def test_render_choice(self, make_io, sample_results, tmp_path):
        io = make_io("2")
        sink = ResultSink(io, tmp_path / "output")

        assert sink.emit(sample_results, "SigninFailures") is None

        output = io.console.file.getvalue()
        assert "3 row(s) returned for SigninFailures." in output
        assert "alice@contoso.com" in output
        assert not (tmp_path / "output").exists()

    def test_empty_results_no_prompt(self, make_io, tmp_path):
        io = make_io()
        sink = ResultSink(io, tmp_path)

        assert sink.emit(ResultSet(), "Empty") is None
        assert sink.emit(None, "Nothing") is None
        assert io.console.file.getvalue() == ""

    def test_invalid_choice(self, make_io, sample_results, tmp_path):
        sink = ResultSink(make_io("9"), tmp_path)

        with pytest.raises(SelectionError):
            sink.emit(sample_results, "SigninFailures")

    def test_output_dir_not_creatable(self, make_io, sample_results, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        sink = ResultSink(make_io(), blocker / "output")

        with pytest.raises(OutputError, match="Failed to create output directory"):
            sink.export(sample_results, "SigninFailures")


class TestFormatting:
    """Tests for summary formatting."""

    def test_run_summary(self, tmp_path):
        summary = TemplateRunSummary(
            template_name="SigninFailures",
            backend=BackendKind.WORKSPACE_QUERY,
            row_count=1234,
            elapsed_seconds=2.25,
            status=RunStatus.COMPLETED,
            output_path=tmp_path / "SigninFailures.csv",
        )

        text = format_run_summary(summary)

        assert "Template: SigninFailures" in text
        assert "Status: COMPLETED" in text
        assert "Rows: 1,234" in text
        assert f"Output: {tmp_path / 'SigninFailures.csv'}" in text

    def test_failed_run_shows_error(self):
        summary = TemplateRunSummary(
            template_name="RiskyUsers",
            backend=BackendKind.WORKSPACE_QUERY,
            row_count=0,
            elapsed_seconds=0.1,
            status=RunStatus.FAILED,
            error="Unresolved placeholders: User",
        )

        assert "Error: Unresolved placeholders: User" in format_run_summary(summary)

    def test_batch_summary(self):
        runs = [
            TemplateRunSummary("A", BackendKind.THREAT_HUNTING_QUERY, 10, 1.0, RunStatus.COMPLETED),
            TemplateRunSummary("B", BackendKind.THREAT_HUNTING_QUERY, 0, 1.0, RunStatus.FAILED, error="x"),
        ]

        text = format_batch_summary(create_batch_summary(BackendKind.THREAT_HUNTING_QUERY, runs, 2.0))

        assert "Backend: hunting" in text
        assert "Total Templates: 2" in text
        assert "Successful: 1" in text
        assert "Failed: 1" in text
        assert "Success Rate: 50.0%" in text
        assert "Total Rows: 10" in text
