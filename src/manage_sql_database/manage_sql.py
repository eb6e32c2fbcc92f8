"""
Azure sample for managing SQL Database:
- Create a SQL Server along with 2 firewall rules.
- Create a database in the SQL Server
- Change the performance level (SKU) of the database
- List and delete the firewall rules
- Create another firewall rule on the SQL Server
- Delete the database and the SQL Server

Everything is created in a new resource group which is always deleted at the end, even
if one of the steps fails.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from types import TracebackType
from typing import Optional, Type

from manage_sql_database import sql_resources
from manage_sql_database.azure_core.azure_identity import (
    close_credential,
    configure_credential,
)
from manage_sql_database.azure_core.azure_rest_api import get_subscription_id
from manage_sql_database.config import (
    ADMIN_LOGIN_PREFIX,
    DATABASE_PREFIX,
    FIREWALL_RULE_1_PREFIX,
    FIREWALL_RULE_1_RANGE,
    FIREWALL_RULE_2_PREFIX,
    FIREWALL_RULE_2_RANGE,
    LICENSE_INCLUDED,
    NEW_FIREWALL_RULE_PREFIX,
    NEW_FIREWALL_RULE_RANGE,
    RESOURCE_GROUP_PREFIX,
    SQL_SERVER_PREFIX,
    UPDATED_DATABASE_MAX_SIZE_BYTES,
    UPDATED_DATABASE_SKU,
    SampleConfig,
)
from manage_sql_database.naming import create_password, create_random_name


class ResourceGroupScope:
    """
    Holds on to the id of the resource group once it has been created, and deletes the
    resource group when the scope exits, whether or not there was an exception. Errors
    while deleting are logged and never raised, so they can't mask an earlier error.
    """

    def __init__(self, total_timeout_seconds: float):
        self._total_timeout_seconds = total_timeout_seconds
        self.resource_group_id: Optional[str] = None

    async def __aenter__(self) -> ResourceGroupScope:
        return self

    async def __aexit__(
        self,
        exc_typ: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.clean_up()

    async def create(
        self, subscription_id: str, name: str, location: str
    ) -> sql_resources.ResourceGroup:
        resource_group = await sql_resources.create_resource_group(
            subscription_id,
            name,
            location,
            self._total_timeout_seconds,
            on_accepted=self._record,
        )
        self._record(resource_group)
        return resource_group

    def _record(self, resource_group: sql_resources.ResourceGroup) -> None:
        # the resource group exists from the moment the PUT is accepted, even if waiting
        # for it to be provisioned then fails
        self.resource_group_id = resource_group.id

    async def clean_up(self) -> None:
        if self.resource_group_id is None:
            return

        resource_group_id = self.resource_group_id
        # only ever try once
        self.resource_group_id = None
        try:
            logging.info("Deleting resource group...")
            await sql_resources.delete_resource_group(
                resource_group_id, self._total_timeout_seconds
            )
            logging.info(
                "Deleted resource group: "
                f"{sql_resources.resource_name_from_id(resource_group_id)}"
            )
        except Exception:
            logging.exception(f"Error deleting resource group {resource_group_id}")


async def run_sample(config: SampleConfig) -> None:
    """
    Assumes configure_credential has already been called. Raises on the first failed
    step, after deleting the resource group.
    """
    timeout = config.operation_timeout_seconds

    async with ResourceGroupScope(timeout) as scope:
        subscription_id = await get_subscription_id()

        logging.info("Creating resource group...")
        resource_group = await scope.create(
            subscription_id, create_random_name(RESOURCE_GROUP_PREFIX), config.location
        )
        logging.info(f"Created a resource group with name: {resource_group.name}")

        # ============================================================
        # Create a SQL Server, with 2 firewall rules.

        server_name = create_random_name(SQL_SERVER_PREFIX)
        logging.info("Creating SQL Server...")
        sql_server = await sql_resources.create_sql_server(
            resource_group.id,
            server_name,
            config.location,
            ADMIN_LOGIN_PREFIX + server_name,
            create_password(),
            timeout,
        )
        logging.info(f"Created a SQL Server with name: {sql_server.name}")

        logging.info("Creating 2 firewall rules...")
        firewall_rule_1 = await sql_resources.create_firewall_rule(
            sql_server.id,
            create_random_name(FIREWALL_RULE_1_PREFIX),
            *FIREWALL_RULE_1_RANGE,
            timeout,
        )
        logging.info(f"Created first firewall rule with name {firewall_rule_1.name}")
        firewall_rule_2 = await sql_resources.create_firewall_rule(
            sql_server.id,
            create_random_name(FIREWALL_RULE_2_PREFIX),
            *FIREWALL_RULE_2_RANGE,
            timeout,
        )
        logging.info(f"Created second firewall rule with name {firewall_rule_2.name}")

        # ============================================================
        # Create a database in the SQL server created above.

        logging.info("Creating a database...")
        database = await sql_resources.create_database(
            sql_server.id, create_random_name(DATABASE_PREFIX), config.location, timeout
        )
        logging.info(f"Created database with name: {database.name}")

        # ============================================================
        # Update the edition of the database.

        logging.info("Updating a database...")
        database = await sql_resources.update_database(
            database.id,
            sql_resources.DatabasePatch(
                sku_name=UPDATED_DATABASE_SKU,
                max_size_bytes=UPDATED_DATABASE_MAX_SIZE_BYTES,
                license_type=LICENSE_INCLUDED,
            ),
            timeout,
        )
        logging.info(
            f"Updated database {database.name} to sku {database.sku_name}, max size "
            f"{database.max_size_bytes} bytes"
        )

        # ============================================================
        # List and delete all firewall rules.

        logging.info("Listing all firewall rules")
        for firewall_rule in await sql_resources.list_firewall_rules(sql_server.id):
            logging.info(
                f"Listing a firewall rule with name: {firewall_rule.name} "
                f"({firewall_rule.start_ip_address} - {firewall_rule.end_ip_address})"
            )

            logging.info("Deleting a firewall rule...")
            await sql_resources.delete_firewall_rule(firewall_rule.id, timeout)
            logging.info(f"Deleted a firewall rule with name: {firewall_rule.name}")

        # ============================================================
        # Add a new firewall rule.

        logging.info("Creating a new firewall rule for SQL Server...")
        new_firewall_rule = await sql_resources.create_firewall_rule(
            sql_server.id,
            create_random_name(NEW_FIREWALL_RULE_PREFIX),
            *NEW_FIREWALL_RULE_RANGE,
            timeout,
        )
        logging.info(
            "Created a new firewall rule for SQL Server with name: "
            f"{new_firewall_rule.name}"
        )

        logging.info("Deleting a database...")
        await sql_resources.delete_database(database.id, timeout)

        logging.info("Deleting a SQL Server...")
        await sql_resources.delete_sql_server(sql_server.id, timeout)


async def async_main(config: SampleConfig) -> None:
    configure_credential(
        config.client_id,
        config.client_secret,
        config.tenant_id,
        config.subscription_id,
    )
    try:
        await run_sample(config)
    finally:
        await close_credential()


def main(config: SampleConfig) -> None:
    """Runs the sample, logs rather than raises any errors"""
    try:
        asyncio.run(async_main(config))
    except Exception:
        logging.exception("Error running the SQL Database sample")


def command_line_main() -> None:
    logging.basicConfig(level=logging.INFO)

    parser = argparse.ArgumentParser(
        description="Creates, updates and deletes an Azure SQL Server and Database. "
        "Credentials are read from the CLIENT_ID, CLIENT_SECRET, TENANT_ID and "
        "SUBSCRIPTION_ID environment variables, falling back to e.g. `az login` if "
        "they aren't set."
    )
    parser.add_argument(
        "--location", help="The Azure region to create resources in, e.g. eastus"
    )
    parser.add_argument(
        "--subscription-id", help="Overrides the SUBSCRIPTION_ID environment variable"
    )
    parser.add_argument(
        "--operation-timeout-seconds",
        type=float,
        help="How long to wait for each long-running operation before giving up",
    )
    args = parser.parse_args()

    try:
        config = SampleConfig.from_environment(
            subscription_id=args.subscription_id,
            location=args.location,
            operation_timeout_seconds=args.operation_timeout_seconds,
        )
    except ValueError as e:
        parser.error(str(e))

    main(config)


if __name__ == "__main__":
    command_line_main()
