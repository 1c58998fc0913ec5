"""
Azure query backend clients.

Thin wrappers over the three remote query surfaces:

- Log Analytics workspace queries via ``azure.monitor.query.LogsQueryClient``
- hosted threat-hunting queries via an HTTPS POST (httpx) with a bearer
  token from ``azure.identity``
- Resource Graph inventory queries via ``azure.mgmt.resourcegraph``

Each wrapper turns the SDK's result shape into a ResultSet and every SDK
or transport failure into a RemoteCallError. Nothing here retries,
paginates or caches.
"""

import logging
from typing import Any, Callable, Iterator

import httpx
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import AzureCliCredential, DefaultAzureCredential
from azure.mgmt.resource import SubscriptionClient
from azure.mgmt.resourcegraph import ResourceGraphClient
from azure.mgmt.resourcegraph.models import QueryRequest, QueryRequestOptions, ResultFormat
from azure.monitor.query import LogsQueryClient, LogsQueryStatus

from kql_console.config import ThreatHuntingConfig
from kql_console.models import ResultSet, TimeRange


logger = logging.getLogger(__name__)

HUNTING_RESULTS_FIELD = "results"


# =============================================================================
# Exceptions
# =============================================================================


class RemoteCallError(Exception):
    """Base exception for failures surfaced by a backend call."""

    pass


class AuthenticationError(RemoteCallError):
    """Raised when authentication or authorization fails (HTTP 401/403)."""

    pass


# =============================================================================
# Credentials
# =============================================================================


CredentialFactory = Callable[[str | None], TokenCredential]


def get_credential(tenant_id: str | None = None) -> TokenCredential:
    """
    Return a credential for the signed-in operator.

    Without a tenant the default credential chain is used. With a tenant
    the Azure CLI login is asked for a token in that directory, which is how
    one operator session reaches workspaces across several tenants.
    """
    if tenant_id:
        return AzureCliCredential(tenant_id=tenant_id)
    return DefaultAzureCredential()


# =============================================================================
# Log Analytics
# =============================================================================


class WorkspaceQueryClient:
    """
    Runs KQL against a Log Analytics workspace.

    Example:
        client = WorkspaceQueryClient(get_credential(scope.tenant_id))
        rows = client.query(scope.workspace_id, "SigninLogs | take 10", TimeRange.last("PT24H"))
    """

    def __init__(self, credential: TokenCredential, logs_client: LogsQueryClient | None = None):
        self._client = logs_client or LogsQueryClient(credential)

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def _timespan(time_range: TimeRange) -> Any:
        """Forward exactly one time form: a timedelta or a (start, end) tuple."""
        if time_range.is_duration:
            return time_range.as_timedelta()
        return (time_range.start, time_range.end)

    def query(self, workspace_id: str, query: str, time_range: TimeRange) -> ResultSet:
        """
        Run a workspace query.

        Args:
            workspace_id: Workspace identifier (customer ID).
            query: Final KQL text.
            time_range: Query window.

        Returns:
            Rows of the primary result table. Partial results are returned
            with a warning.

        Raises:
            RemoteCallError: If the service rejects or fails the query.
        """
        logger.debug("Workspace query on %s (range=%s): %s", workspace_id, time_range, query[:200])

        try:
            response = self._client.query_workspace(
                workspace_id,
                query,
                timespan=self._timespan(time_range),
            )
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Workspace query authentication failed: {e}") from e
        except AzureError as e:
            raise RemoteCallError(f"Workspace query failed: {e}") from e

        if response.status == LogsQueryStatus.PARTIAL:
            logger.warning("Workspace query returned partial results: %s", response.partial_error)
            tables = response.partial_data
        else:
            tables = response.tables

        if not tables:
            return ResultSet()

        table = tables[0]
        return ResultSet.from_table(table.columns, table.rows)


# =============================================================================
# Threat hunting
# =============================================================================


class ThreatHuntingClient:
    """
    Posts hunting queries to the hosted query endpoint.

    The endpoint takes ``{"Query": ..., "Timespan": ...}`` and answers with
    a JSON body whose ``results`` array holds loosely-typed records.
    """

    def __init__(
        self,
        credential: TokenCredential,
        config: ThreatHuntingConfig,
        http_client: httpx.Client | None = None,
    ):
        self.endpoint = config.endpoint
        self.scope = config.scope
        self._credential = credential
        self._http = http_client or httpx.Client(timeout=httpx.Timeout(config.timeout_seconds))

    def _check_response(self, response: httpx.Response, operation: str) -> dict[str, Any]:
        """
        Validate an HTTP response and return the decoded body.

        Raises:
            AuthenticationError: On HTTP 401 or 403.
            RemoteCallError: On any other non-2xx status or a non-JSON body.
        """
        status = response.status_code

        if 200 <= status < 300:
            try:
                body = response.json()
            except ValueError as e:
                raise RemoteCallError(f"{operation} returned invalid JSON: {e}") from e
            if not isinstance(body, dict):
                raise RemoteCallError(f"{operation} returned {type(body).__name__}, expected object")
            return body

        msg = _error_message(response)
        if status in (401, 403):
            logger.error("%s authorization failure (HTTP %s): %s", operation, status, msg)
            raise AuthenticationError(f"{operation} (HTTP {status}): {msg}")

        logger.error("%s failed (HTTP %s): %s", operation, status, msg)
        raise RemoteCallError(f"{operation} failed (HTTP {status}): {msg}")

    def run(self, query: str, timespan: str) -> ResultSet | None:
        """
        Run a hunting query.

        Args:
            query: Final query text.
            timespan: ISO-8601 duration, e.g. "P30D".

        Returns:
            The rows, or None when the response carries no results field.

        Raises:
            AuthenticationError: If no token could be obtained or the API
                refuses it.
            RemoteCallError: On transport or API failure.
        """
        try:
            token = self._credential.get_token(self.scope).token
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Could not obtain token for {self.scope}: {e}") from e
        except AzureError as e:
            raise RemoteCallError(f"Token request for {self.scope} failed: {e}") from e

        logger.debug("Posting hunting query to %s (timespan=%s): %s", self.endpoint, timespan, query[:200])

        try:
            response = self._http.post(
                self.endpoint,
                json={"Query": query, "Timespan": timespan},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise RemoteCallError(f"Threat-hunting query request failed: {e}") from e

        body = self._check_response(response, "Threat-hunting query")
        records = body.get(HUNTING_RESULTS_FIELD)
        if records is None:
            return None
        if not isinstance(records, list) or not all(isinstance(r, dict) for r in records):
            raise RemoteCallError(
                f"Threat-hunting query returned malformed '{HUNTING_RESULTS_FIELD}': expected a list of objects"
            )
        return ResultSet.from_records(records)

    def close(self) -> None:
        self._http.close()


def _error_message(response: httpx.Response) -> str:
    """Pull the message out of a Graph-style error envelope."""
    try:
        body = response.json()
    except ValueError:
        return response.text or "Empty response body"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return str(body) if body else "Empty response body"


# =============================================================================
# Resource Graph
# =============================================================================


WORKSPACE_INVENTORY_QUERY = """\
resources
| where type =~ 'microsoft.operationalinsights/workspaces'
| project name, resourceGroup, subscriptionId, tenantId, workspaceId = tostring(properties.customerId)
| order by name asc"""

RESOURCE_INVENTORY_QUERY = """\
resources
| where name contains '{keyword}'
| project id, name, type, resourceGroup, subscriptionId, location
| order by name asc"""


def _escape_kql_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class ResourceGraphQueryClient:
    """Runs Resource Graph queries, returning flat object-array rows."""

    def __init__(self, credential: TokenCredential, graph_client: ResourceGraphClient | None = None):
        self._client = graph_client or ResourceGraphClient(credential)

    def close(self) -> None:
        self._client.close()

    def query(
        self,
        query: str,
        max_rows: int,
        subscriptions: list[str] | None = None,
    ) -> ResultSet:
        """
        Run a Resource Graph query.

        Args:
            query: Final Resource Graph query text.
            max_rows: Row ceiling passed as ``top``.
            subscriptions: Optional subscription filter.

        Raises:
            RemoteCallError: If the query fails.
        """
        request = QueryRequest(
            query=query,
            subscriptions=subscriptions,
            options=QueryRequestOptions(top=max_rows, result_format=ResultFormat.OBJECT_ARRAY),
        )

        logger.debug("Resource Graph query (top=%s): %s", max_rows, query[:200])

        try:
            response = self._client.resources(request)
        except ClientAuthenticationError as e:
            raise AuthenticationError(f"Resource Graph authentication failed: {e}") from e
        except AzureError as e:
            raise RemoteCallError(f"Resource Graph query failed: {e}") from e

        return ResultSet.from_records(response.data or [])

    def list_workspaces(self, max_rows: int) -> list[dict[str, Any]]:
        """Return the Log Analytics workspaces visible to this credential."""
        return self.query(WORKSPACE_INVENTORY_QUERY, max_rows).as_dicts()

    def search_resources(self, keyword: str, max_rows: int) -> list[dict[str, Any]]:
        """Return resources whose name contains ``keyword`` (case-insensitive)."""
        query = RESOURCE_INVENTORY_QUERY.format(keyword=_escape_kql_string(keyword))
        return self.query(query, max_rows).as_dicts()


def list_tenants(credential: TokenCredential) -> Iterator[tuple[str, str]]:
    """
    Yield (tenant_id, display name) for every directory the operator can reach.

    Raises:
        RemoteCallError: If the tenant listing fails.
    """
    client = SubscriptionClient(credential)
    try:
        for tenant in client.tenants.list():
            yield tenant.tenant_id, getattr(tenant, "display_name", None) or tenant.tenant_id
    except AzureError as e:
        raise RemoteCallError(f"Tenant listing failed: {e}") from e
