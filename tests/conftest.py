"""
Shared pytest fixtures for KQL Console tests.

These fixtures provide realistic sample data used across multiple test
modules: scopes, result records, an on-disk query library and a scripted
console. Simple fixtures (sample_records, tmp_library) are combined into
more complex ones (sample_results, library_config) in individual test
files.
"""

import logging
from io import StringIO

import pytest
from rich.console import Console

import kql_console.logger as kql_logger
from kql_console.config import LibraryConfig
from kql_console.models import ResourceScope, ResultSet, WorkspaceScope
from kql_console.prompts import ConsoleIO


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging() between tests so caplog keeps working."""
    yield
    logger = logging.getLogger("kql_console")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
    kql_logger._root_logger = None
    kql_logger._query_logger = None


@pytest.fixture
def sample_workspace():
    """Sample workspace scope.

    workspace_id is the workspace's customer ID, the GUID Log Analytics
    queries are addressed to. It differs from the ARM resource name.
    """
    return WorkspaceScope(
        tenant_id="11111111-1111-1111-1111-111111111111",
        subscription_id="22222222-2222-2222-2222-222222222222",
        resource_group="rg-security",
        workspace_name="law-prod",
        workspace_id="33333333-3333-3333-3333-333333333333",
    )


@pytest.fixture
def sample_resource():
    """Sample resource scope for a virtual machine."""
    return ResourceScope(
        resource_id=(
            "/subscriptions/22222222-2222-2222-2222-222222222222/resourceGroups/rg-app"
            "/providers/Microsoft.Compute/virtualMachines/vm-web-01"
        ),
        name="vm-web-01",
        resource_type="microsoft.compute/virtualmachines",
        resource_group="rg-app",
        subscription_id="22222222-2222-2222-2222-222222222222",
        location="westeurope",
    )


@pytest.fixture
def sample_records():
    """Sample rows as a hunting or inventory backend returns them.

    The third record carries a column the first two lack, the way
    loosely-typed hunting results do.
    """
    return [
        {"TimeGenerated": "2026-02-04T10:00:00Z", "UserPrincipalName": "alice@contoso.com", "ResultType": "50126"},
        {"TimeGenerated": "2026-02-04T10:01:00Z", "UserPrincipalName": "bob@contoso.com", "ResultType": "50126"},
        {"TimeGenerated": "2026-02-04T10:02:00Z", "UserPrincipalName": "carol@contoso.com", "ResultType": "0", "IPAddress": "203.0.113.7"},
    ]


@pytest.fixture
def sample_results(sample_records):
    return ResultSet.from_records(sample_records)


@pytest.fixture
def tmp_library(tmp_path):
    """Query library tree on disk.

    Layout:
        Identity/SigninFailures.kql      uses {{UserPrincipalName}}
        Identity/RiskyUsers.kql
        Identity/notes.txt               ignored (wrong extension)
        Identity/Resource/Activity.kql   uses {{ResourceId}}
        Network/DeniedFlows.kql          uses {{SourceIp}} twice
        DefenderHunting/Encoded.kql      uses {{DeviceName}}
        ResourceGraph/PublicIps.arg
        .hidden/Secret.kql
    """
    root = tmp_path / "queries"
    files = {
        "Identity/SigninFailures.kql": (
            "SigninLogs\n| where UserPrincipalName == '{{UserPrincipalName}}'\n| where ResultType != '0'"
        ),
        "Identity/RiskyUsers.kql": "AADRiskyUsers\n| where RiskState == 'atRisk'",
        "Identity/notes.txt": "SigninLogs notes",
        "Identity/Resource/Activity.kql": "AzureActivity\n| where _ResourceId =~ '{{ResourceId}}'",
        "Network/DeniedFlows.kql": (
            "AzureNetworkAnalytics_CL\n| where SrcIP_s == '{{SourceIp}}' or DestIP_s == '{{SourceIp}}'"
        ),
        "DefenderHunting/Encoded.kql": (
            "DeviceProcessEvents\n| where DeviceName == '{{DeviceName}}'\n| where ProcessCommandLine has '-enc'"
        ),
        "ResourceGraph/PublicIps.arg": (
            "resources\n| where type =~ 'microsoft.network/publicipaddresses'\n| project name, resourceGroup"
        ),
        ".hidden/Secret.kql": "SigninLogs",
    }
    for relative, text in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    return root


@pytest.fixture
def library_config(tmp_library):
    return LibraryConfig(root=tmp_library)


@pytest.fixture
def make_io():
    """Factory for a ConsoleIO driven by scripted answers.

    Each answer is one line of input. Output is captured in a StringIO
    reachable as ``io.console.file``.
    """

    def _make(*answers: str) -> ConsoleIO:
        console = Console(
            file=StringIO(),
            width=120,
            force_terminal=False,
            color_system=None,
        )
        stream = StringIO("".join(f"{answer}\n" for answer in answers))
        return ConsoleIO(console=console, stream=stream)

    return _make
