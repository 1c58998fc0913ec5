"""
Query dispatch: route a final query string to its backend.

The dispatcher decides which remote call runs and with which parameter
shape. It does not touch the query text (placeholders are already filled)
and does not reshape results beyond treating "no data" as empty.

Failure handling differs by backend. Workspace and inventory failures
propagate to the caller; threat-hunting failures are reported and become
"no rows" so a batch keeps going.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from kql_console.client import (
    CredentialFactory,
    RemoteCallError,
    ResourceGraphQueryClient,
    ThreatHuntingClient,
    WorkspaceQueryClient,
    get_credential,
)
from kql_console.config import Config, QueryDefaults
from kql_console.models import BackendKind, ResultSet, TimeRange, WorkspaceScope


logger = logging.getLogger(__name__)


@dataclass
class QueryDispatcher:
    """
    Routes queries to the workspace, threat-hunting or inventory backend.

    Clients are obtained through factories so the scope chosen for a flow
    decides which tenant a workspace client authenticates against.

    Attributes:
        query_defaults: Default hunting duration and inventory row ceiling.
        workspace_client: Returns a workspace client for a scope.
        hunting_client: Returns the threat-hunting client.
        inventory_client: Returns the Resource Graph client.
        close_clients: Releases every client the factories built.
    """

    query_defaults: QueryDefaults
    workspace_client: Callable[[WorkspaceScope], WorkspaceQueryClient]
    hunting_client: Callable[[], ThreatHuntingClient]
    inventory_client: Callable[[], ResourceGraphQueryClient]
    close_clients: Callable[[], None] = lambda: None

    def close(self) -> None:
        self.close_clients()

    def dispatch(
        self,
        kind: BackendKind,
        query: str,
        scope: WorkspaceScope | None = None,
        time_range: TimeRange | None = None,
        row_limit: int | None = None,
    ) -> ResultSet | None:
        """
        Execute ``query`` on the backend named by ``kind``.

        Args:
            kind: Backend chosen by the menu flow.
            query: Final query text.
            scope: Workspace scope (workspace queries only).
            time_range: Query window (workspace and hunting queries).
            row_limit: Row ceiling (inventory queries only).

        Returns:
            The rows, or None when the backend had nothing to return.

        Raises:
            ValueError: If a required parameter is missing or invalid.
            RemoteCallError: On workspace or inventory backend failure.
        """
        if kind is BackendKind.WORKSPACE_QUERY:
            return self._run_workspace(query, scope, time_range)
        if kind is BackendKind.THREAT_HUNTING_QUERY:
            return self._run_hunting(query, time_range)
        if kind is BackendKind.RESOURCE_INVENTORY_QUERY:
            if time_range is not None:
                logger.debug("Ignoring time range %s for inventory query", time_range)
            return self._run_inventory(query, row_limit)
        raise ValueError(f"Unsupported backend: {kind!r}")

    def _run_workspace(
        self,
        query: str,
        scope: WorkspaceScope | None,
        time_range: TimeRange | None,
    ) -> ResultSet:
        if scope is None:
            raise ValueError("Workspace query requires a workspace scope")
        if time_range is None:
            raise ValueError("Workspace query requires a time range")

        return self.workspace_client(scope).query(scope.workspace_id, query, time_range)

    def _run_hunting(self, query: str, time_range: TimeRange | None) -> ResultSet | None:
        if time_range is None:
            time_range = TimeRange.last(self.query_defaults.threat_hunting_duration)
        if not time_range.is_duration:
            raise ValueError("Threat-hunting query takes a duration, not a start/end pair")

        try:
            return self.hunting_client().run(query, time_range.duration)  # type: ignore[arg-type]
        except RemoteCallError as e:
            logger.error("Threat-hunting query failed, treating as no rows: %s", e)
            return None

    def resolve_row_limit(self, row_limit: int | None) -> int:
        """
        Clamp a requested row limit to the configured ceiling.

        Raises:
            ValueError: If ``row_limit`` is not positive.
        """
        ceiling = self.query_defaults.max_rows
        if row_limit is None:
            return ceiling
        if row_limit < 1:
            raise ValueError(f"Row limit must be positive, got {row_limit}")
        if row_limit > ceiling:
            logger.warning("Row limit %d exceeds ceiling, using %d", row_limit, ceiling)
            return ceiling
        return row_limit

    def _run_inventory(self, query: str, row_limit: int | None) -> ResultSet:
        return self.inventory_client().query(query, self.resolve_row_limit(row_limit))


@dataclass
class _ClientCache:
    """Builds backend clients lazily, one workspace client per tenant."""

    config: Config
    credential_factory: CredentialFactory
    _workspace: dict[str, WorkspaceQueryClient] = field(default_factory=dict)
    _hunting: ThreatHuntingClient | None = None
    _inventory: ResourceGraphQueryClient | None = None

    def workspace(self, scope: WorkspaceScope) -> WorkspaceQueryClient:
        client = self._workspace.get(scope.tenant_id)
        if client is None:
            client = WorkspaceQueryClient(self.credential_factory(scope.tenant_id or None))
            self._workspace[scope.tenant_id] = client
        return client

    def hunting(self) -> ThreatHuntingClient:
        if self._hunting is None:
            self._hunting = ThreatHuntingClient(
                self.credential_factory(None), self.config.threat_hunting
            )
        return self._hunting

    def inventory(self) -> ResourceGraphQueryClient:
        if self._inventory is None:
            self._inventory = ResourceGraphQueryClient(self.credential_factory(None))
        return self._inventory

    def close(self) -> None:
        """Close every client built so far; later calls build fresh ones."""
        clients: list = [*self._workspace.values(), self._hunting, self._inventory]
        self._workspace.clear()
        self._hunting = None
        self._inventory = None
        for client in clients:
            if client is not None:
                client.close()


def create_dispatcher(
    config: Config,
    credential_factory: CredentialFactory = get_credential,
) -> QueryDispatcher:
    """Build a dispatcher whose clients authenticate via ``credential_factory``."""
    cache = _ClientCache(config=config, credential_factory=credential_factory)
    return QueryDispatcher(
        query_defaults=config.query_defaults,
        workspace_client=cache.workspace,
        hunting_client=cache.hunting,
        inventory_client=cache.inventory,
        close_clients=cache.close,
    )
