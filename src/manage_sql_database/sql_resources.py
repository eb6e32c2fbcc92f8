"""
Resource groups, SQL servers, SQL firewall rules and SQL databases via the Azure
Resource Manager REST API. Every child resource is addressed through its parent's
resource id, e.g. a firewall rule lives at {server id}/firewallRules/{name}, so a
child can only be created under a parent that we've actually gotten back from Azure.

https://docs.microsoft.com/en-us/rest/api/sql/2021-11-01/servers
https://docs.microsoft.com/en-us/rest/api/sql/2021-11-01/firewall-rules
https://docs.microsoft.com/en-us/rest/api/sql/2021-11-01/databases
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable, Dict, List, Optional

from manage_sql_database.azure_core.azure_rest_api import (
    POLL_SCHEMES,
    azure_rest_api,
    azure_rest_api_paged,
    azure_rest_api_poll,
    wait_for_poll,
)
from manage_sql_database.config import (
    DEFAULT_OPERATION_TIMEOUT_SECONDS,
    RESOURCE_GROUPS_API_VERSION,
    SQL_API_VERSION,
)


def resource_name_from_id(resource_id: str) -> str:
    """
    E.g. /subscriptions/<sub>/resourceGroups/rg1/providers/Microsoft.Sql/servers/s1
    -> s1
    """
    name = resource_id.rstrip("/").rpartition("/")[2]
    if not name:
        raise ValueError(f"Unable to get a resource name from {resource_id}")
    return name


@dataclasses.dataclass(frozen=True)
class ResourceGroup:
    id: str
    name: str
    location: str

    @classmethod
    def from_json(cls, resource_json: Dict[str, Any]) -> ResourceGroup:
        return cls(
            resource_json["id"], resource_json["name"], resource_json["location"]
        )


@dataclasses.dataclass(frozen=True)
class SqlServer:
    id: str
    name: str
    location: str
    administrator_login: Optional[str]
    fully_qualified_domain_name: Optional[str]

    @classmethod
    def from_json(cls, resource_json: Dict[str, Any]) -> SqlServer:
        properties = resource_json.get("properties", {})
        return cls(
            resource_json["id"],
            resource_json["name"],
            resource_json["location"],
            properties.get("administratorLogin"),
            properties.get("fullyQualifiedDomainName"),
        )


@dataclasses.dataclass(frozen=True)
class FirewallRule:
    id: str
    name: str
    start_ip_address: str
    end_ip_address: str

    @classmethod
    def from_json(cls, resource_json: Dict[str, Any]) -> FirewallRule:
        properties = resource_json["properties"]
        return cls(
            resource_json["id"],
            resource_json["name"],
            properties["startIpAddress"],
            properties["endIpAddress"],
        )


@dataclasses.dataclass(frozen=True)
class SqlDatabase:
    id: str
    name: str
    location: str
    sku_name: Optional[str]
    max_size_bytes: Optional[int]
    license_type: Optional[str]

    @classmethod
    def from_json(cls, resource_json: Dict[str, Any]) -> SqlDatabase:
        properties = resource_json.get("properties", {})
        return cls(
            resource_json["id"],
            resource_json["name"],
            resource_json["location"],
            resource_json.get("sku", {}).get("name"),
            properties.get("maxSizeBytes"),
            properties.get("licenseType"),
        )


@dataclasses.dataclass(frozen=True)
class DatabasePatch:
    """The subset of a database's settings that we update. None means leave as is"""

    sku_name: Optional[str] = None
    max_size_bytes: Optional[int] = None
    license_type: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.sku_name is not None:
            result["sku"] = {"name": self.sku_name}

        properties: Dict[str, Any] = {}
        if self.max_size_bytes is not None:
            properties["maxSizeBytes"] = self.max_size_bytes
        if self.license_type is not None:
            properties["licenseType"] = self.license_type
        if properties:
            result["properties"] = properties

        return result


async def _put_and_get(
    method: str,
    resource_path: str,
    api_version: str,
    json_content: Dict[str, Any],
    total_timeout_seconds: float,
) -> Dict[str, Any]:
    """
    Creates/updates a resource and waits for the operation to complete. The body of a
    202 Accepted and the async operation status don't describe the resource, so in
    that case we GET the resource once the operation has completed.
    """
    result, continuation = await azure_rest_api_poll(
        method,
        resource_path,
        api_version,
        "AsyncOperationJsonStatus",
        json_content=json_content,
        total_timeout_seconds=total_timeout_seconds,
    )
    if continuation is None and result:
        return result

    if continuation is not None:
        await continuation
    return await azure_rest_api("GET", resource_path, api_version)


async def _delete(
    resource_path: str,
    api_version: str,
    poll_scheme: POLL_SCHEMES,
    total_timeout_seconds: float,
) -> None:
    await wait_for_poll(
        await azure_rest_api_poll(
            "DELETE",
            resource_path,
            api_version,
            poll_scheme,
            total_timeout_seconds=total_timeout_seconds,
        )
    )


# resource groups


async def create_resource_group(
    subscription_id: str,
    name: str,
    location: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
    on_accepted: Optional[Callable[[ResourceGroup], None]] = None,
) -> ResourceGroup:
    """
    on_accepted is called with the resource group as soon as Azure accepts the PUT, i.e.
    before we wait for the resource group to finish provisioning
    """
    # https://docs.microsoft.com/en-us/rest/api/resources/resource-groups/create-or-update
    initial, continuation = await azure_rest_api_poll(
        "PUT",
        f"subscriptions/{subscription_id}/resourcegroups/{name}",
        RESOURCE_GROUPS_API_VERSION,
        "GetProvisioningState",
        json_content={"location": location},
        total_timeout_seconds=total_timeout_seconds,
    )
    resource_group = ResourceGroup.from_json(initial)
    if on_accepted is not None:
        on_accepted(resource_group)

    if continuation is not None:
        resource_group = ResourceGroup.from_json(await continuation)
    return resource_group


async def delete_resource_group(
    resource_group_id: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> None:
    """Deletes the resource group and everything in it"""
    # https://docs.microsoft.com/en-us/rest/api/resources/resource-groups/delete
    await _delete(
        resource_group_id,
        RESOURCE_GROUPS_API_VERSION,
        "LocationStatusCode",
        total_timeout_seconds,
    )


# SQL servers


async def create_sql_server(
    resource_group_id: str,
    name: str,
    location: str,
    administrator_login: str,
    administrator_login_password: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> SqlServer:
    return SqlServer.from_json(
        await _put_and_get(
            "PUT",
            f"{resource_group_id}/providers/Microsoft.Sql/servers/{name}",
            SQL_API_VERSION,
            {
                "location": location,
                "properties": {
                    "administratorLogin": administrator_login,
                    "administratorLoginPassword": administrator_login_password,
                },
            },
            total_timeout_seconds,
        )
    )


async def delete_sql_server(
    server_id: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> None:
    await _delete(
        server_id, SQL_API_VERSION, "AsyncOperationJsonStatus", total_timeout_seconds
    )


# firewall rules


async def create_firewall_rule(
    server_id: str,
    name: str,
    start_ip_address: str,
    end_ip_address: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> FirewallRule:
    return FirewallRule.from_json(
        await _put_and_get(
            "PUT",
            f"{server_id}/firewallRules/{name}",
            SQL_API_VERSION,
            {
                "properties": {
                    "startIpAddress": start_ip_address,
                    "endIpAddress": end_ip_address,
                }
            },
            total_timeout_seconds,
        )
    )


async def list_firewall_rules(server_id: str) -> List[FirewallRule]:
    return [
        FirewallRule.from_json(item)
        async for page in azure_rest_api_paged(
            "GET", f"{server_id}/firewallRules", SQL_API_VERSION
        )
        for item in page["value"]
    ]


async def delete_firewall_rule(
    firewall_rule_id: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> None:
    await _delete(
        firewall_rule_id,
        SQL_API_VERSION,
        "AsyncOperationJsonStatus",
        total_timeout_seconds,
    )


# databases


async def create_database(
    server_id: str,
    name: str,
    location: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> SqlDatabase:
    """Creates a database with the default sku, size, etc."""
    return SqlDatabase.from_json(
        await _put_and_get(
            "PUT",
            f"{server_id}/databases/{name}",
            SQL_API_VERSION,
            {"location": location},
            total_timeout_seconds,
        )
    )


async def update_database(
    database_id: str,
    patch: DatabasePatch,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> SqlDatabase:
    return SqlDatabase.from_json(
        await _put_and_get(
            "PATCH",
            database_id,
            SQL_API_VERSION,
            patch.to_json(),
            total_timeout_seconds,
        )
    )


async def delete_database(
    database_id: str,
    total_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
) -> None:
    await _delete(
        database_id, SQL_API_VERSION, "AsyncOperationJsonStatus", total_timeout_seconds
    )
