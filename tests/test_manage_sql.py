from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest

from manage_sql_database import manage_sql, sql_resources
from manage_sql_database.azure_core.azure_exceptions import (
    AzureRestApiError,
    ResourceNotFoundError,
)
from manage_sql_database.config import SampleConfig
from manage_sql_database.manage_sql import (
    ResourceGroupScope,
    command_line_main,
    main,
    run_sample,
)
from manage_sql_database.sql_resources import (
    DatabasePatch,
    FirewallRule,
    ResourceGroup,
    SqlDatabase,
    SqlServer,
)

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


_OPERATIONS = [
    "create_resource_group",
    "delete_resource_group",
    "create_sql_server",
    "delete_sql_server",
    "create_firewall_rule",
    "list_firewall_rules",
    "delete_firewall_rule",
    "create_database",
    "update_database",
    "delete_database",
]


class FakeAzure:
    """
    An in-memory stand-in for the sql_resources operations. Records every call, and
    raises on the operation named by fail_on (or fail_cleanup for the resource group
    deletion). fail_on="resource_group_provisioning" means the resource group PUT is
    accepted but waiting for it to be provisioned times out.
    """

    def __init__(self, fail_on: Optional[str] = None, fail_cleanup: bool = False):
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.firewall_rules: Dict[str, FirewallRule] = {}
        self.created_firewall_rules: List[FirewallRule] = []
        self.fail_on = fail_on
        self.fail_cleanup = fail_cleanup

    def install(self, mocker: MockerFixture) -> None:
        for name in _OPERATIONS:
            mocker.patch.object(sql_resources, name, side_effect=getattr(self, name))
        mocker.patch.object(
            manage_sql, "get_subscription_id", AsyncMock(return_value="sub1")
        )

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))
        if self.fail_on == name:
            raise AzureRestApiError(409, "Conflict", f"{name} failed")

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def create_resource_group(
        self,
        subscription_id: str,
        name: str,
        location: str,
        timeout: float,
        on_accepted: Optional[Callable[[ResourceGroup], None]] = None,
    ) -> ResourceGroup:
        self._record("create_resource_group", subscription_id, name, location)
        resource_group = ResourceGroup(
            f"/subscriptions/{subscription_id}/resourceGroups/{name}", name, location
        )
        if on_accepted is not None:
            on_accepted(resource_group)
        if self.fail_on == "resource_group_provisioning":
            raise TimeoutError("resource group provisioning timed out")
        return resource_group

    async def delete_resource_group(
        self, resource_group_id: str, timeout: float
    ) -> None:
        self.calls.append(("delete_resource_group", (resource_group_id,)))
        if self.fail_cleanup:
            raise ResourceNotFoundError(404, "ResourceGroupNotFound", "already gone")

    async def create_sql_server(
        self,
        resource_group_id: str,
        name: str,
        location: str,
        administrator_login: str,
        administrator_login_password: str,
        timeout: float,
    ) -> SqlServer:
        self._record(
            "create_sql_server",
            resource_group_id,
            name,
            location,
            administrator_login,
            administrator_login_password,
        )
        return SqlServer(
            f"{resource_group_id}/providers/Microsoft.Sql/servers/{name}",
            name,
            location,
            administrator_login,
            f"{name}.database.windows.net",
        )

    async def delete_sql_server(self, server_id: str, timeout: float) -> None:
        self._record("delete_sql_server", server_id)

    async def create_firewall_rule(
        self, server_id: str, name: str, start: str, end: str, timeout: float
    ) -> FirewallRule:
        self._record("create_firewall_rule", server_id, name, start, end)
        rule = FirewallRule(f"{server_id}/firewallRules/{name}", name, start, end)
        self.firewall_rules[rule.id] = rule
        self.created_firewall_rules.append(rule)
        return rule

    async def list_firewall_rules(self, server_id: str) -> List[FirewallRule]:
        self._record("list_firewall_rules", server_id)
        return list(self.firewall_rules.values())

    async def delete_firewall_rule(self, firewall_rule_id: str, timeout: float) -> None:
        self._record("delete_firewall_rule", firewall_rule_id)
        del self.firewall_rules[firewall_rule_id]

    async def create_database(
        self, server_id: str, name: str, location: str, timeout: float
    ) -> SqlDatabase:
        self._record("create_database", server_id, name, location)
        return SqlDatabase(
            f"{server_id}/databases/{name}", name, location, "GP_Gen5_2", None, None
        )

    async def update_database(
        self, database_id: str, patch: DatabasePatch, timeout: float
    ) -> SqlDatabase:
        self._record("update_database", database_id, patch)
        name = sql_resources.resource_name_from_id(database_id)
        return SqlDatabase(
            database_id,
            name,
            "eastus",
            patch.sku_name,
            patch.max_size_bytes,
            patch.license_type,
        )

    async def delete_database(self, database_id: str, timeout: float) -> None:
        self._record("delete_database", database_id)


_CONFIG = SampleConfig(
    "client", "secret", "tenant", "sub1", "eastus", operation_timeout_seconds=120
)


@pytest.mark.asyncio
async def test_run_sample_order(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)

    await run_sample(_CONFIG)

    assert fake.call_names() == [
        "create_resource_group",
        "create_sql_server",
        "create_firewall_rule",
        "create_firewall_rule",
        "create_database",
        "update_database",
        "list_firewall_rules",
        "delete_firewall_rule",
        "delete_firewall_rule",
        "create_firewall_rule",
        "delete_database",
        "delete_sql_server",
        "delete_resource_group",
    ]


@pytest.mark.asyncio
async def test_run_sample_threads_identifiers(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)

    await run_sample(_CONFIG)

    calls = dict(fake.calls)
    _, resource_group_name, location = calls["create_resource_group"]
    assert resource_group_name.startswith("rgSQLServer")
    assert location == "eastus"
    resource_group_id = f"/subscriptions/sub1/resourceGroups/{resource_group_name}"

    server_args = calls["create_sql_server"]
    assert server_args[0] == resource_group_id
    server_name = server_args[1]
    assert server_name.startswith("sqlserver")
    assert server_args[3] == "sqladmin" + server_name
    server_id = f"{resource_group_id}/providers/Microsoft.Sql/servers/{server_name}"

    for name, args in fake.calls:
        if name in ("create_firewall_rule", "list_firewall_rules", "create_database"):
            assert args[0] == server_id
    assert calls["delete_sql_server"] == (server_id,)
    assert calls["delete_resource_group"] == (resource_group_id,)


@pytest.mark.asyncio
async def test_firewall_rules(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)

    await run_sample(_CONFIG)

    first, second, new = fake.created_firewall_rules
    assert first.name.startswith("firewallrule1-")
    assert (first.start_ip_address, first.end_ip_address) == ("10.0.0.1", "10.0.0.10")
    assert second.name.startswith("firewallrule2-")
    assert (second.start_ip_address, second.end_ip_address) == (
        "10.2.0.1",
        "10.2.0.10",
    )
    assert new.name.startswith("newfirewallrule")
    assert (new.start_ip_address, new.end_ip_address) == ("10.10.10.10", "10.10.10.10")

    # exactly the two rules created before listing get deleted, one at a time
    deleted = [args[0] for name, args in fake.calls if name == "delete_firewall_rule"]
    assert deleted == [first.id, second.id]

    # deleting the rules doesn't touch the server or database
    names = fake.call_names()
    last_rule_deletion = len(names) - 1 - names[::-1].index("delete_firewall_rule")
    assert "delete_database" not in names[:last_rule_deletion]
    assert "delete_sql_server" not in names[:last_rule_deletion]

    # only the replacement rule is left
    assert list(fake.firewall_rules.values()) == [new]


@pytest.mark.asyncio
async def test_database_patch(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)

    await run_sample(_CONFIG)

    _, patch = dict(fake.calls)["update_database"]
    assert patch.sku_name == "HS_Gen5_2"
    assert patch.max_size_bytes == 268435456000
    assert patch.license_type == "LicenseIncluded"


@pytest.mark.asyncio
async def test_resource_group_creation_fails(mocker: MockerFixture) -> None:
    fake = FakeAzure(fail_on="create_resource_group")
    fake.install(mocker)

    with pytest.raises(AzureRestApiError):
        await run_sample(_CONFIG)

    # no child resources, and nothing to clean up
    assert fake.call_names() == ["create_resource_group"]


@pytest.mark.asyncio
async def test_resource_group_provisioning_timeout_still_cleans_up(
    mocker: MockerFixture,
) -> None:
    fake = FakeAzure(fail_on="resource_group_provisioning")
    fake.install(mocker)

    with pytest.raises(TimeoutError):
        await run_sample(_CONFIG)

    assert fake.call_names() == ["create_resource_group", "delete_resource_group"]
    _, resource_group_name, _ = fake.calls[0][1]
    assert fake.calls[1][1] == (
        f"/subscriptions/sub1/resourceGroups/{resource_group_name}",
    )


@pytest.mark.asyncio
async def test_subscription_lookup_fails(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)
    mocker.patch.object(
        manage_sql,
        "get_subscription_id",
        AsyncMock(side_effect=ValueError("There are no subscriptions available")),
    )

    with pytest.raises(ValueError):
        await run_sample(_CONFIG)
    assert fake.calls == []


@pytest.mark.parametrize(
    "fail_on",
    [
        "create_sql_server",
        "create_firewall_rule",
        "create_database",
        "update_database",
        "list_firewall_rules",
        "delete_firewall_rule",
        "delete_database",
        "delete_sql_server",
    ],
)
@pytest.mark.asyncio
async def test_failure_still_cleans_up(mocker: MockerFixture, fail_on: str) -> None:
    fake = FakeAzure(fail_on=fail_on)
    fake.install(mocker)

    with pytest.raises(AzureRestApiError, match=f"{fail_on} failed"):
        await run_sample(_CONFIG)

    names = fake.call_names()
    # aborted right after the failed step, then cleaned up exactly once
    assert names.index(fail_on) == len(names) - 2
    assert names[-1] == "delete_resource_group"
    assert names.count("delete_resource_group") == 1


@pytest.mark.asyncio
async def test_cleanup_failure_is_logged_not_raised(
    mocker: MockerFixture, caplog: pytest.LogCaptureFixture
) -> None:
    fake = FakeAzure(fail_cleanup=True)
    fake.install(mocker)

    with caplog.at_level(logging.INFO):
        await run_sample(_CONFIG)

    assert fake.call_names()[-1] == "delete_resource_group"
    assert "Error deleting resource group" in caplog.text
    assert "already gone" in caplog.text


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_mask_earlier_error(
    mocker: MockerFixture,
) -> None:
    fake = FakeAzure(fail_on="create_database", fail_cleanup=True)
    fake.install(mocker)

    with pytest.raises(AzureRestApiError, match="create_database failed"):
        await run_sample(_CONFIG)


@pytest.mark.asyncio
async def test_resource_group_scope_only_cleans_up_once(mocker: MockerFixture) -> None:
    fake = FakeAzure()
    fake.install(mocker)

    async with ResourceGroupScope(60) as scope:
        await scope.create("sub1", "rg1", "eastus")
        assert scope.resource_group_id == "/subscriptions/sub1/resourceGroups/rg1"
        await scope.clean_up()

    assert fake.call_names() == ["create_resource_group", "delete_resource_group"]
    assert scope.resource_group_id is None


def test_main_logs_errors(
    mocker: MockerFixture, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch.object(
        manage_sql, "run_sample", AsyncMock(side_effect=RuntimeError("boom"))
    )
    close_credential = mocker.patch.object(manage_sql, "close_credential", AsyncMock())

    main(_CONFIG)

    assert "Error running the SQL Database sample" in caplog.text
    assert "boom" in caplog.text
    close_credential.assert_awaited_once()


def test_main_configures_credential(mocker: MockerFixture) -> None:
    run = mocker.patch.object(manage_sql, "run_sample", AsyncMock())
    configure_credential = mocker.patch.object(manage_sql, "configure_credential")
    mocker.patch.object(manage_sql, "close_credential", AsyncMock())

    main(_CONFIG)

    configure_credential.assert_called_once_with("client", "secret", "tenant", "sub1")
    run.assert_awaited_once_with(_CONFIG)


def test_command_line_main(
    mocker: MockerFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    for variable in ("CLIENT_ID", "CLIENT_SECRET", "TENANT_ID", "SUBSCRIPTION_ID"):
        monkeypatch.setenv(variable, f"env-{variable.lower()}")
    monkeypatch.setattr(
        sys,
        "argv",
        [
            "manage-sql-database",
            "--location",
            "westeurope",
            "--operation-timeout-seconds",
            "90",
        ],
    )
    mock_main: MagicMock = mocker.patch.object(manage_sql, "main")

    command_line_main()

    assert mock_main.call_args.args[0] == SampleConfig(
        "env-client_id",
        "env-client_secret",
        "env-tenant_id",
        "env-subscription_id",
        "westeurope",
        90,
    )


def test_command_line_main_rejects_zero_timeout(
    mocker: MockerFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(
        sys,
        "argv",
        ["manage-sql-database", "--operation-timeout-seconds", "0"],
    )
    mock_main: MagicMock = mocker.patch.object(manage_sql, "main")

    with pytest.raises(SystemExit) as exc_info:
        command_line_main()

    assert exc_info.value.code != 0
    mock_main.assert_not_called()
