"""
Output generation for KQL Console.

Handles CSV export, console table rendering and summary formatting.
"""

import csv
import logging
import re
from datetime import datetime
from pathlib import Path

from rich.table import Table

from kql_console.models import BatchSummary, ResultSet, TemplateRunSummary
from kql_console.prompts import ConsoleIO


__all__ = [
    "OutputError",
    "ResultSink",
    "write_csv",
    "build_table",
    "format_run_summary",
    "format_batch_summary",
    "generate_output_filename",
    "unique_output_path",
]

logger = logging.getLogger(__name__)


class OutputError(Exception):
    """Raised when output generation fails."""

    pass


def write_csv(results: ResultSet, output_path: Path) -> Path:
    """
    Write a ResultSet to a CSV file.

    The header row is the ResultSet's columns in backend order. Cells for
    columns a row does not carry are left empty.

    Args:
        results: Rows to write.
        output_path: Path to output CSV file.

    Returns:
        Path to the created CSV file.

    Raises:
        OutputError: If file cannot be written.
    """
    try:
        with open(output_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=list(results.columns), restval="")
            writer.writeheader()
            for row in results.rows:
                writer.writerow({column: "" if value is None else value for column, value in row})
    except OSError as e:
        raise OutputError(f"Failed to write CSV to {output_path}: {e}") from e

    return output_path


def build_table(results: ResultSet, title: str | None = None) -> Table:
    """Build a rich Table sized to its content."""
    table = Table(title=title, show_header=True, header_style="bold cyan", expand=False)
    for column in results.columns:
        table.add_column(column, overflow="fold")
    for cells in results.cells():
        table.add_row(*("" if value is None else str(value) for value in cells))
    return table


def generate_output_filename(prefix: str, extension: str) -> str:
    """
    Generate a timestamped output filename, ``<prefix>_<YYYYMMDD_HHMMSS>.<ext>``.

    The prefix is reduced to ASCII alphanumerics, underscore and hyphen.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    safe_prefix = re.sub(r"[^a-zA-Z0-9_-]", "_", prefix)
    safe_prefix = re.sub(r"_+", "_", safe_prefix).strip("_") or "results"

    return f"{safe_prefix}_{timestamp}.{extension}"


def unique_output_path(directory: Path, filename: str) -> Path:
    """
    Return ``directory / filename``, adding ``_1``, ``_2``... before the
    extension while that file already exists.
    """
    path = directory / filename
    counter = 1
    while path.exists():
        path = directory / f"{Path(filename).stem}_{counter}{Path(filename).suffix}"
        counter += 1
    return path


class ResultSink:
    """
    Sends a ResultSet to a CSV file or the console, as the operator chooses.

    Attributes:
        io: Console used for the choice and for table rendering.
        output_dir: Directory for exported files.
    """

    EXPORT = "Export to CSV"
    RENDER = "Show as table"

    def __init__(self, io: ConsoleIO, output_dir: Path):
        self.io = io
        self.output_dir = output_dir

    def export(self, results: ResultSet, name_prefix: str) -> Path:
        """Write ``results`` to a new CSV file in the output directory."""
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise OutputError(f"Failed to create output directory {self.output_dir}: {e}") from e

        path = unique_output_path(self.output_dir, generate_output_filename(name_prefix, "csv"))
        write_csv(results, path)
        logger.info(f"Results written to: {path}")
        return path

    def render(self, results: ResultSet, title: str | None = None) -> None:
        self.io.console.print(build_table(results, title=title))

    def emit(self, results: ResultSet | None, name_prefix: str) -> Path | None:
        """
        Offer the operator an export or a table for non-empty results.

        Args:
            results: Rows from the dispatcher; None or empty does nothing.
            name_prefix: File name prefix, usually the template name.

        Returns:
            The CSV path when exported, otherwise None.

        Raises:
            SelectionError: If the operator's choice is invalid.
            OutputError: If the export cannot be written.
        """
        if results is None or results.is_empty:
            return None

        self.io.show(f"{len(results)} row(s) returned for {name_prefix}.")
        choice = self.io.choose_one("Output", [self.EXPORT, self.RENDER])
        if choice == self.EXPORT:
            return self.export(results, name_prefix)

        self.render(results, title=name_prefix)
        return None


def format_run_summary(summary: TemplateRunSummary) -> str:
    """
    Format a per-template summary for display.

    Args:
        summary: TemplateRunSummary to format.

    Returns:
        Formatted summary string.
    """
    lines = [
        f"Template: {summary.template_name}",
        f"  Status: {summary.status.value.upper()}",
        f"  Rows: {summary.row_count:,}",
        f"  Execution Time: {summary.elapsed_seconds:.1f}s",
    ]

    if summary.output_path:
        lines.append(f"  Output: {summary.output_path}")
    if summary.error:
        lines.append(f"  Error: {summary.error}")

    return "\n".join(lines)


def format_batch_summary(summary: BatchSummary) -> str:
    """
    Format the batch execution summary for display.

    Args:
        summary: BatchSummary to format.

    Returns:
        Formatted summary string.
    """
    lines = [
        "=" * 60,
        "EXECUTION SUMMARY",
        "=" * 60,
        f"Backend: {summary.backend.value}",
        f"Total Templates: {summary.total_templates}",
        f"Successful: {summary.succeeded}",
        f"Failed: {summary.failed}",
        f"Success Rate: {summary.success_rate:.1f}%",
        "-" * 60,
        f"Total Rows: {summary.total_rows:,}",
        f"Total Execution Time: {summary.elapsed_seconds:.1f}s",
        "=" * 60,
    ]

    return "\n".join(lines)
