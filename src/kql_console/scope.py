"""
Scope resolution: which workspace to query, which resource to target.

Both pickers list candidates through Resource Graph, present them as a
numbered menu and return an immutable scope value. The caller threads that
value through the rest of the flow.
"""

import logging

from kql_console.client import (
    CredentialFactory,
    RemoteCallError,
    ResourceGraphQueryClient,
    get_credential,
    list_tenants,
)
from kql_console.models import ResourceScope, WorkspaceScope
from kql_console.prompts import ConsoleIO
from kql_console.selection import NothingFoundError, SelectionError

logger = logging.getLogger(__name__)

# Listing ceiling for the pickers; far above what fits a menu.
LISTING_MAX_ROWS = 1000


def _workspace_label(scope: WorkspaceScope) -> str:
    return f"{scope.workspace_name}  rg={scope.resource_group}  sub={scope.subscription_id}"


def _resource_label(scope: ResourceScope) -> str:
    return f"{scope.name}  [{scope.resource_type}]  rg={scope.resource_group}"


class ScopeResolver:
    """
    Interactive workspace and resource pickers.

    Args:
        io: Console used for menus.
        credential_factory: Builds a credential for a tenant (None = default).
        graph_factory: Builds a Resource Graph client from a credential.
    """

    def __init__(
        self,
        io: ConsoleIO,
        credential_factory: CredentialFactory = get_credential,
        graph_factory=ResourceGraphQueryClient,
    ):
        self.io = io
        self._credential_factory = credential_factory
        self._graph_factory = graph_factory

    def list_workspaces(self) -> list[WorkspaceScope]:
        """
        Collect workspaces across every reachable tenant.

        Tenants that cannot be queried are logged and skipped.

        Raises:
            RemoteCallError: If the tenant listing itself fails.
        """
        tenants = list(list_tenants(self._credential_factory(None)))
        logger.debug("Enumerating workspaces across %d tenant(s)", len(tenants))

        workspaces: list[WorkspaceScope] = []
        seen: set[str] = set()
        for tenant_id, tenant_name in tenants:
            graph = self._graph_factory(self._credential_factory(tenant_id))
            try:
                rows = graph.list_workspaces(LISTING_MAX_ROWS)
            except RemoteCallError as e:
                logger.warning("Skipping tenant %s: %s", tenant_name, e)
                continue
            finally:
                graph.close()

            for row in rows:
                workspace_id = row.get("workspaceId") or ""
                if not workspace_id or workspace_id in seen:
                    continue
                seen.add(workspace_id)
                workspaces.append(
                    WorkspaceScope(
                        tenant_id=row.get("tenantId") or tenant_id,
                        subscription_id=row.get("subscriptionId") or "",
                        resource_group=row.get("resourceGroup") or "",
                        workspace_name=row.get("name") or workspace_id,
                        workspace_id=workspace_id,
                    )
                )

        return workspaces

    def resolve_workspace(self) -> WorkspaceScope:
        """
        Let the operator pick a workspace.

        Raises:
            NothingFoundError: If no workspace is visible.
            SelectionError: If the answer selects nothing valid.
        """
        workspaces = self.list_workspaces()
        if not workspaces:
            raise NothingFoundError("Nothing found: no Log Analytics workspaces are visible")

        scope = self.io.choose_one("Workspaces", workspaces, label=_workspace_label)
        logger.info("Selected workspace %s", scope)
        return scope

    def search_resources(self, keyword: str) -> list[ResourceScope]:
        graph = self._graph_factory(self._credential_factory(None))
        try:
            rows = graph.search_resources(keyword, LISTING_MAX_ROWS)
        finally:
            graph.close()
        return [
            ResourceScope(
                resource_id=row.get("id") or "",
                name=row.get("name") or "",
                resource_type=row.get("type") or "",
                resource_group=row.get("resourceGroup") or "",
                subscription_id=row.get("subscriptionId") or "",
                location=row.get("location") or "",
            )
            for row in rows
        ]

    def resolve_resource(self, keyword: str | None = None) -> ResourceScope:
        """
        Let the operator pick a target resource, filtered by keyword.

        Args:
            keyword: Name filter; asked for when None.

        Raises:
            NothingFoundError: If no resource matches.
            SelectionError: If the keyword is empty or the answer selects
                nothing valid.
        """
        if keyword is None:
            keyword = self.io.ask("Resource name contains")
        if not keyword:
            raise SelectionError("Invalid selection: empty resource keyword")

        resources = self.search_resources(keyword)
        if not resources:
            raise NothingFoundError(f"Nothing found: no resources match {keyword!r}")

        scope = self.io.choose_one("Resources", resources, label=_resource_label)
        logger.info("Selected resource %s", scope.resource_id)
        return scope
