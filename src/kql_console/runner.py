"""
Main orchestration for KQL Console.

Ties the query library, scope pickers, token substitution, dispatcher and
result sink into the interactive menu flows, and provides the batch driver
they share. This is the "glue" module that every other module plugs into.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

from kql_console.client import CredentialFactory, get_credential
from kql_console.config import Config
from kql_console.dispatcher import QueryDispatcher, create_dispatcher
from kql_console.library import QueryLibrary
from kql_console.logger import LogContext, get_query_logger, log_with_data
from kql_console.models import (
    BackendKind,
    BatchSummary,
    ResultSet,
    RunStatus,
    TemplateRunSummary,
    TimeRange,
    WorkspaceScope,
    create_batch_summary,
    parse_time_range,
)
from kql_console.output import ResultSink, format_batch_summary, format_run_summary
from kql_console.prompts import ConsoleIO
from kql_console.scope import ScopeResolver
from kql_console.selection import SelectionError
from kql_console.tokens import (
    MappingTokenResolver,
    PromptTokenResolver,
    TokenResolver,
    substitute,
)

logger = logging.getLogger(__name__)

Emitter = Callable[[ResultSet | None, str], Path | None]


@dataclass
class Session:
    """
    Everything one operator session needs.

    Attributes:
        config: Loaded configuration.
        io: Console for prompts and output.
        library: Query library view.
        dispatcher: Backend router.
        scopes: Workspace and resource pickers.
        sink: Export/render target for results.
    """

    config: Config
    io: ConsoleIO
    library: QueryLibrary
    dispatcher: QueryDispatcher
    scopes: ScopeResolver
    sink: ResultSink

    def prompt_resolver(self) -> TokenResolver:
        return PromptTokenResolver(self.io.ask)

    def close(self) -> None:
        """Release the backend clients."""
        self.dispatcher.close()


def build_session(
    config: Config,
    io: ConsoleIO | None = None,
    credential_factory: CredentialFactory = get_credential,
) -> Session:
    """Wire a Session from configuration."""
    io = io or ConsoleIO()
    return Session(
        config=config,
        io=io,
        library=QueryLibrary(config.library),
        dispatcher=create_dispatcher(config, credential_factory),
        scopes=ScopeResolver(io, credential_factory=credential_factory),
        sink=ResultSink(io, config.output_dir),
    )


# =============================================================================
# Batch driver
# =============================================================================


def run_template(
    session: Session,
    path: Path,
    kind: BackendKind,
    resolver: TokenResolver,
    emit: Emitter,
    scope: WorkspaceScope | None = None,
    time_range: TimeRange | None = None,
    row_limit: int | None = None,
    auto_context: Mapping[str, str] | None = None,
) -> TemplateRunSummary:
    """
    Load, substitute, dispatch and emit one template.

    Raises whatever the steps raise; ``run_batch`` decides what to do.
    """
    query_logger = get_query_logger()
    started = time.monotonic()

    template = session.library.load_template(path)
    query = substitute(template.text, auto_context, resolver)

    query_logger.query_started(template.name, str(time_range) if time_range and kind.uses_time_range else None)
    results = session.dispatcher.dispatch(
        kind,
        query,
        scope=scope,
        time_range=time_range,
        row_limit=row_limit,
    )
    elapsed = time.monotonic() - started

    if results is None or results.is_empty:
        query_logger.query_empty(template.name)
        return TemplateRunSummary(
            template_name=template.name,
            backend=kind,
            row_count=0,
            elapsed_seconds=elapsed,
            status=RunStatus.EMPTY,
        )

    query_logger.query_completed(template.name, len(results), elapsed)
    output_path = emit(results, template.name)
    return TemplateRunSummary(
        template_name=template.name,
        backend=kind,
        row_count=len(results),
        elapsed_seconds=elapsed,
        status=RunStatus.COMPLETED,
        output_path=output_path,
    )


def run_batch(
    session: Session,
    paths: list[Path],
    kind: BackendKind,
    resolver: TokenResolver,
    emit: Emitter | None = None,
    scope: WorkspaceScope | None = None,
    time_range: TimeRange | None = None,
    row_limit: int | None = None,
    auto_context: Mapping[str, str] | None = None,
) -> BatchSummary:
    """
    Run each selected template in order.

    A failure in one template is logged and recorded, and the loop moves on
    to the next. Only running out of input (EOFError) or an interrupt stops
    the batch.

    Returns:
        BatchSummary with one entry per template, in selection order.
    """
    if not paths:
        raise SelectionError("Invalid selection: no query files selected")

    emit = emit or session.sink.emit
    batch_started = time.monotonic()
    runs: list[TemplateRunSummary] = []

    for number, path in enumerate(paths, start=1):
        name = path.stem
        logger.debug("Template %d/%d: %s", number, len(paths), path)
        with LogContext(
            workspace=scope.workspace_name if scope else None,
            template=name,
            backend=kind.value,
        ):
            started = time.monotonic()
            try:
                summary = run_template(
                    session,
                    path,
                    kind,
                    resolver,
                    emit,
                    scope=scope,
                    time_range=time_range,
                    row_limit=row_limit,
                    auto_context=auto_context,
                )
            except EOFError:
                raise
            except Exception as e:
                get_query_logger().query_failed(name, e)
                logger.debug("Template %s failed", name, exc_info=True)
                summary = TemplateRunSummary(
                    template_name=name,
                    backend=kind,
                    row_count=0,
                    elapsed_seconds=time.monotonic() - started,
                    status=RunStatus.FAILED,
                    error=str(e),
                )
        runs.append(summary)

    batch = create_batch_summary(kind, runs, time.monotonic() - batch_started)
    for run in runs:
        logger.debug(format_run_summary(run))
    log_with_data(
        logging.INFO,
        format_batch_summary(batch),
        {
            "backend": kind.value,
            "templates": batch.total_templates,
            "succeeded": batch.succeeded,
            "failed": batch.failed,
            "rows": batch.total_rows,
        },
        logger=logger,
    )
    return batch


# =============================================================================
# Interactive flows
# =============================================================================


def ask_time_range(session: Session, default: str) -> TimeRange:
    """
    Ask for a window: an ISO-8601 duration or ``start/end`` timestamps.

    Raises:
        ValueError: If the answer is neither form.
    """
    answer = session.io.ask("Time range (ISO duration, or start/end timestamps)", default=default)
    return parse_time_range(answer)


def ask_row_limit(session: Session) -> int:
    """
    Ask for an inventory row limit, defaulting to the ceiling.

    Raises:
        SelectionError: If the answer is not a positive integer.
    """
    ceiling = session.config.query_defaults.max_rows
    answer = session.io.ask(f"Maximum rows (1-{ceiling})", default=str(ceiling))
    try:
        limit = int(answer)
    except ValueError:
        raise SelectionError(f"Invalid selection: {answer!r} is not a number") from None
    if limit < 1:
        raise SelectionError(f"Invalid selection: row limit must be positive, got {limit}")
    return session.dispatcher.resolve_row_limit(limit)


def _choose_category(session: Session) -> str:
    return session.io.choose_one("Categories", session.library.list_categories())


def _choose_files(session: Session, title: str, files: list[Path]) -> list[Path]:
    return session.io.choose_many(title, files, label=session.library.display_name)


def workspace_category_flow(session: Session) -> BatchSummary:
    """Pick a workspace, browse a category, run the selected queries."""
    scope = session.scopes.resolve_workspace()
    category = _choose_category(session)
    files = session.library.list_files(
        session.library.category_path(category), session.config.library.query_extension
    )
    selected = _choose_files(session, f"Queries in {category}", files)
    time_range = ask_time_range(session, session.config.query_defaults.duration)
    return run_batch(
        session,
        selected,
        BackendKind.WORKSPACE_QUERY,
        session.prompt_resolver(),
        scope=scope,
        time_range=time_range,
    )


def workspace_search_flow(session: Session) -> BatchSummary:
    """Pick a workspace, search the library by keyword, run the selected queries."""
    scope = session.scopes.resolve_workspace()
    keyword = session.io.ask("Search keyword")
    files = session.library.search(
        keyword,
        [session.config.library.query_extension],
        exclude=session.config.library.reserved_dirs,
    )
    selected = _choose_files(session, f"Queries matching {keyword!r}", files)
    time_range = ask_time_range(session, session.config.query_defaults.duration)
    return run_batch(
        session,
        selected,
        BackendKind.WORKSPACE_QUERY,
        session.prompt_resolver(),
        scope=scope,
        time_range=time_range,
    )


def resource_scoped_flow(session: Session) -> BatchSummary:
    """
    Pick a target resource and a workspace, then run resource-scoped
    queries with the resource's identity as auto-context.
    """
    resource = session.scopes.resolve_resource()
    scope = session.scopes.resolve_workspace()
    category = _choose_category(session)
    folder = session.library.resource_variant_path(category)
    files = session.library.list_files(folder, session.config.library.query_extension)
    selected = _choose_files(session, f"Resource queries in {category}", files)
    time_range = ask_time_range(session, session.config.query_defaults.duration)
    return run_batch(
        session,
        selected,
        BackendKind.WORKSPACE_QUERY,
        session.prompt_resolver(),
        scope=scope,
        time_range=time_range,
        auto_context=resource.auto_context(),
    )


def threat_hunting_flow(session: Session) -> BatchSummary:
    """Run hunting queries from the threat-hunting folder."""
    files = session.library.list_files(
        session.library.threat_hunting_path(), session.config.library.query_extension
    )
    selected = _choose_files(session, "Threat-hunting queries", files)
    answer = session.io.ask(
        "Timespan (ISO duration)", default=session.config.query_defaults.threat_hunting_duration
    )
    return run_batch(
        session,
        selected,
        BackendKind.THREAT_HUNTING_QUERY,
        session.prompt_resolver(),
        time_range=TimeRange.last(answer),
    )


def resource_inventory_flow(session: Session) -> BatchSummary:
    """Run Resource Graph queries from the inventory folder."""
    files = session.library.list_files(
        session.library.resource_graph_path(), session.config.library.inventory_extension
    )
    selected = _choose_files(session, "Resource inventory queries", files)
    row_limit = ask_row_limit(session)
    return run_batch(
        session,
        selected,
        BackendKind.RESOURCE_INVENTORY_QUERY,
        session.prompt_resolver(),
        row_limit=row_limit,
    )


MENU: tuple[tuple[str, Callable[[Session], BatchSummary] | None], ...] = (
    ("Workspace query: browse categories", workspace_category_flow),
    ("Workspace query: keyword search", workspace_search_flow),
    ("Resource-scoped workspace query", resource_scoped_flow),
    ("Threat-hunting query", threat_hunting_flow),
    ("Resource inventory query", resource_inventory_flow),
    ("Quit", None),
)


def run_console(session: Session) -> None:
    """
    Show the main menu until the operator quits.

    Any failure inside a flow is reported and the menu comes back. Ctrl-C
    inside a flow cancels that flow; Ctrl-C or end of input at the menu
    leaves the console.
    """
    titles = [title for title, _ in MENU]
    flows = dict(MENU)

    while True:
        try:
            title = session.io.choose_one("Main menu", titles)
        except SelectionError as e:
            logger.error(str(e))
            continue
        except (EOFError, KeyboardInterrupt):
            session.io.show("")
            return

        flow = flows[title]
        if flow is None:
            return

        try:
            flow(session)
        except EOFError:
            return
        except KeyboardInterrupt:
            session.io.show("\nCancelled.")
        except Exception as e:
            logger.error(f"{title} failed: {e}")
            logger.debug("Flow failure", exc_info=True)


# =============================================================================
# Non-interactive run
# =============================================================================


def run_once(
    session: Session,
    query_path: Path,
    kind: BackendKind,
    tokens: Mapping[str, str] | None = None,
    workspace_id: str | None = None,
    time_range: TimeRange | None = None,
    row_limit: int | None = None,
) -> BatchSummary:
    """
    Run one query file without prompting.

    Placeholders must be supplied through ``tokens``; missing ones fail the
    run with every missing name listed. Non-empty results are exported to
    CSV.

    Raises:
        ValueError: If a workspace query has no workspace ID.
    """
    scope = None
    if kind is BackendKind.WORKSPACE_QUERY:
        if not workspace_id:
            raise ValueError("Workspace query requires --workspace-id")
        scope = WorkspaceScope(
            tenant_id="",
            subscription_id="",
            resource_group="",
            workspace_name=workspace_id,
            workspace_id=workspace_id,
        )
        if time_range is None:
            time_range = TimeRange.last(session.config.query_defaults.duration)

    def export(results: ResultSet | None, name: str) -> Path | None:
        if results is None or results.is_empty:
            return None
        return session.sink.export(results, name)

    return run_batch(
        session,
        [query_path],
        kind,
        MappingTokenResolver(tokens or {}),
        emit=export,
        scope=scope,
        time_range=time_range,
        row_limit=row_limit,
    )
