"""
Data models for KQL Console.

Contains the value types that flow between the query library, token
substitution, the dispatcher and the result sink: time ranges, scopes,
templates, result sets and run summaries.

All models are immutable (frozen). The active scope for a flow is one of
these values and is passed explicitly to every call that needs it.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

import isodate


class BackendKind(Enum):
    """Query backend selected by the menu flow."""

    WORKSPACE_QUERY = "workspace"
    THREAT_HUNTING_QUERY = "hunting"
    RESOURCE_INVENTORY_QUERY = "inventory"

    @property
    def uses_time_range(self) -> bool:
        """Return True if the backend accepts a TimeRange."""
        return self is not BackendKind.RESOURCE_INVENTORY_QUERY


class RunStatus(Enum):
    """Outcome of a single template run."""

    COMPLETED = "completed"
    EMPTY = "empty"
    FAILED = "failed"


def parse_duration(value: str) -> timedelta:
    """
    Parse an ISO-8601 duration string ("PT24H", "P30D") into a timedelta.

    Raises:
        ValueError: If the string is not a valid ISO-8601 duration, uses
            year/month components, or is not positive.
    """
    try:
        parsed = isodate.parse_duration(value)
    except (isodate.ISO8601Error, TypeError) as e:
        raise ValueError(f"Invalid ISO-8601 duration: {value!r}") from e

    if isinstance(parsed, isodate.Duration):
        # Year/month durations have no fixed length
        raise ValueError(f"Duration must not use years or months: {value!r}")
    if parsed <= timedelta(0):
        raise ValueError(f"Duration must be positive: {value!r}")
    return parsed


@dataclass(frozen=True, slots=True)
class TimeRange:
    """
    Query time window: either a duration or an absolute start/end pair.

    Exactly one form is populated. Use ``TimeRange.last(...)`` or
    ``TimeRange.between(...)`` to construct.

    Attributes:
        duration: ISO-8601 duration string, e.g. "PT24H".
        start: Absolute window start.
        end: Absolute window end.
    """

    duration: str | None = None
    start: datetime | None = None
    end: datetime | None = None

    def __post_init__(self) -> None:
        has_duration = self.duration is not None
        has_window = self.start is not None or self.end is not None

        if has_duration and has_window:
            raise ValueError("TimeRange takes a duration or a start/end pair, not both")
        if not has_duration and not has_window:
            raise ValueError("TimeRange requires a duration or a start/end pair")

        if has_duration:
            parse_duration(self.duration)  # type: ignore[arg-type]
        else:
            if self.start is None or self.end is None:
                raise ValueError("Absolute TimeRange requires both start and end")
            if self.start > self.end:
                raise ValueError(
                    f"TimeRange start ({self.start.isoformat()}) is after end ({self.end.isoformat()})"
                )

    @classmethod
    def last(cls, duration: str) -> "TimeRange":
        """Create a relative TimeRange from an ISO-8601 duration."""
        return cls(duration=duration)

    @classmethod
    def between(cls, start: datetime, end: datetime) -> "TimeRange":
        """Create an absolute TimeRange."""
        return cls(start=start, end=end)

    @property
    def is_duration(self) -> bool:
        return self.duration is not None

    def as_timedelta(self) -> timedelta:
        """
        Return the duration form as a timedelta.

        Raises:
            ValueError: If this is an absolute range.
        """
        if self.duration is None:
            raise ValueError("Absolute TimeRange has no duration form")
        return parse_duration(self.duration)

    def __str__(self) -> str:
        if self.duration is not None:
            return self.duration
        assert self.start is not None and self.end is not None
        return f"{self.start.isoformat()}/{self.end.isoformat()}"


def parse_time_range(text: str) -> TimeRange:
    """
    Parse operator input into a TimeRange.

    "PT24H" gives a duration; "2024-05-01T00:00Z/2024-05-02T00:00Z" gives an
    absolute window. Naive timestamps are taken as UTC.

    Raises:
        ValueError: If the text is neither form.
    """
    text = text.strip()
    if "/" not in text:
        return TimeRange.last(text)

    start_text, _, end_text = text.partition("/")
    try:
        start = datetime.fromisoformat(start_text.strip())
        end = datetime.fromisoformat(end_text.strip())
    except ValueError as e:
        raise ValueError(f"Invalid start/end timestamps: {text!r}") from e

    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return TimeRange.between(start, end)


@dataclass(frozen=True, slots=True)
class WorkspaceScope:
    """
    A Log Analytics workspace selected by the operator.

    Attributes:
        tenant_id: Directory (tenant) the workspace lives in.
        subscription_id: Subscription holding the workspace.
        resource_group: Resource group holding the workspace.
        workspace_name: Workspace resource name.
        workspace_id: Workspace identifier (customer ID) used for queries.
    """

    tenant_id: str
    subscription_id: str
    resource_group: str
    workspace_name: str
    workspace_id: str

    def __str__(self) -> str:
        return f"{self.workspace_name} ({self.resource_group}, {self.subscription_id})"


@dataclass(frozen=True, slots=True)
class ResourceScope:
    """
    A target resource whose identity fills resource placeholders.

    Attributes:
        resource_id: Full ARM resource ID.
        name: Resource name.
        resource_type: ARM resource type, e.g. microsoft.compute/virtualmachines.
        resource_group: Resource group name.
        subscription_id: Subscription ID.
        location: Azure region.
    """

    resource_id: str
    name: str
    resource_type: str
    resource_group: str
    subscription_id: str
    location: str

    def auto_context(self) -> dict[str, str]:
        """Return the placeholder values this resource provides."""
        return {
            "ResourceId": self.resource_id,
            "ResourceName": self.name,
            "ResourceGroup": self.resource_group,
            "SubscriptionId": self.subscription_id,
            "ResourceType": self.resource_type,
            "Location": self.location,
        }

    def __str__(self) -> str:
        return f"{self.name} [{self.resource_type}] ({self.resource_group})"


@dataclass(frozen=True, slots=True)
class QueryTemplate:
    """
    Raw text of a query file.

    Attributes:
        path: File the template was read from.
        text: Template text, possibly containing {{NAME}} placeholders.
    """

    path: Path
    text: str

    @property
    def name(self) -> str:
        """Display name (file stem)."""
        return self.path.stem


Scalar = str | int | float | bool | None


def _to_scalar(value: Any) -> Scalar:
    """Flatten a cell value to a scalar; nested values become JSON text."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


@dataclass(frozen=True, slots=True)
class ResultSet:
    """
    Ordered rows returned by a backend.

    Each row is a tuple of (column, value) pairs. Columns are taken from
    the first row and unioned, in order of first appearance, with any new
    columns in later rows.

    Attributes:
        rows: Tuple of rows; each row a tuple of (column, value) pairs.
        columns: Column names in export order.
    """

    rows: tuple[tuple[tuple[str, Scalar], ...], ...] = ()
    columns: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        seen = set(self.columns)
        for row in self.rows:
            for column, _ in row:
                if column not in seen:
                    raise ValueError(f"Row column {column!r} missing from columns")

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ResultSet":
        """Build a ResultSet from dict-like records, preserving key order."""
        rows: list[tuple[tuple[str, Scalar], ...]] = []
        columns: list[str] = []
        seen: set[str] = set()

        for record in records:
            row = tuple((str(k), _to_scalar(v)) for k, v in record.items())
            for column, _ in row:
                if column not in seen:
                    seen.add(column)
                    columns.append(column)
            rows.append(row)

        return cls(rows=tuple(rows), columns=tuple(columns))

    @classmethod
    def from_table(cls, columns: Iterable[str], rows: Iterable[Iterable[Any]]) -> "ResultSet":
        """Build a ResultSet from a column list and positional rows."""
        names = tuple(columns)
        return cls.from_records(dict(zip(names, row)) for row in rows)

    def __len__(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return len(self.rows) == 0

    def as_dicts(self) -> list[dict[str, Scalar]]:
        """Return rows as plain dicts (missing columns omitted)."""
        return [dict(row) for row in self.rows]

    def cells(self) -> list[list[Scalar]]:
        """Return rows aligned to ``columns``; missing cells are None."""
        return [[dict(row).get(column) for column in self.columns] for row in self.rows]


@dataclass(frozen=True, slots=True)
class TemplateRunSummary:
    """
    Execution summary for one template in a batch.

    Raises:
        ValueError: If row_count or elapsed_seconds is negative.
    """

    template_name: str
    backend: BackendKind
    row_count: int
    elapsed_seconds: float
    status: RunStatus
    error: str | None = None
    output_path: Path | None = None

    def __post_init__(self) -> None:
        if self.row_count < 0:
            raise ValueError(f"row_count must be non-negative, got {self.row_count}")
        if self.elapsed_seconds < 0:
            raise ValueError(f"elapsed_seconds must be non-negative, got {self.elapsed_seconds}")

    @property
    def has_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True, slots=True)
class BatchSummary:
    """
    Aggregated summary across every template in a batch.

    Attributes:
        backend: Backend the batch ran against.
        total_templates: Number of templates attempted.
        succeeded: Templates that ran without error (including empty results).
        failed: Templates that raised.
        total_rows: Rows returned across all templates.
        elapsed_seconds: Wall-clock time for the batch.
        runs: Per-template summaries in selection order.

    Raises:
        ValueError: If succeeded + failed != total_templates, or any count
            is negative.
    """

    backend: BackendKind
    total_templates: int
    succeeded: int
    failed: int
    total_rows: int
    elapsed_seconds: float
    runs: tuple[TemplateRunSummary, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        for name in ("total_templates", "succeeded", "failed", "total_rows"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if self.elapsed_seconds < 0:
            raise ValueError(f"elapsed_seconds must be non-negative, got {self.elapsed_seconds}")
        if self.succeeded + self.failed != self.total_templates:
            raise ValueError(
                f"succeeded ({self.succeeded}) + failed ({self.failed}) "
                f"must equal total_templates ({self.total_templates})"
            )

    @property
    def success_rate(self) -> float:
        """Percentage of templates that ran without error (0.0 when empty)."""
        if self.total_templates == 0:
            return 0.0
        return (self.succeeded / self.total_templates) * 100.0


def create_batch_summary(
    backend: BackendKind,
    runs: list[TemplateRunSummary],
    elapsed_seconds: float,
) -> BatchSummary:
    """
    Build a BatchSummary from per-template summaries.

    Args:
        backend: Backend the batch ran against.
        runs: Per-template summaries in selection order.
        elapsed_seconds: Wall-clock time for the batch.

    Returns:
        BatchSummary with counts derived from ``runs``.
    """
    failed = sum(1 for run in runs if run.status is RunStatus.FAILED)
    return BatchSummary(
        backend=backend,
        total_templates=len(runs),
        succeeded=len(runs) - failed,
        failed=failed,
        total_rows=sum(run.row_count for run in runs),
        elapsed_seconds=elapsed_seconds,
        runs=tuple(runs),
    )
