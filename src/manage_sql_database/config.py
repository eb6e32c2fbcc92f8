from __future__ import annotations

import dataclasses
import os
from typing import Mapping, Optional, Tuple

# names of the environment variables that carry credentials. The AZURE_-prefixed names
# (what azure-identity's EnvironmentCredential reads) are accepted as fallbacks
CLIENT_ID_VARIABLES = ("CLIENT_ID", "AZURE_CLIENT_ID")
CLIENT_SECRET_VARIABLES = ("CLIENT_SECRET", "AZURE_CLIENT_SECRET")
TENANT_ID_VARIABLES = ("TENANT_ID", "AZURE_TENANT_ID")
SUBSCRIPTION_ID_VARIABLES = ("SUBSCRIPTION_ID", "AZURE_SUBSCRIPTION_ID")


DEFAULT_LOCATION = "eastus"
# applies to each long-running operation individually
DEFAULT_OPERATION_TIMEOUT_SECONDS = 30 * 60


# Azure REST API versions
RESOURCE_GROUPS_API_VERSION = "2021-04-01"
SQL_API_VERSION = "2021-11-01"


# prefixes for generated resource names
RESOURCE_GROUP_PREFIX = "rgSQLServer"
SQL_SERVER_PREFIX = "sqlserver"
FIREWALL_RULE_1_PREFIX = "firewallrule1-"
FIREWALL_RULE_2_PREFIX = "firewallrule2-"
NEW_FIREWALL_RULE_PREFIX = "newfirewallrule"
DATABASE_PREFIX = "sql-database"
ADMIN_LOGIN_PREFIX = "sqladmin"


# firewall rule ranges, (start ip, end ip)
FIREWALL_RULE_1_RANGE = ("10.0.0.1", "10.0.0.10")
FIREWALL_RULE_2_RANGE = ("10.2.0.1", "10.2.0.10")
NEW_FIREWALL_RULE_RANGE = ("10.10.10.10", "10.10.10.10")


# what the database gets updated to
UPDATED_DATABASE_SKU = "HS_Gen5_2"
UPDATED_DATABASE_MAX_SIZE_BYTES = 268435456000  # 250 GB
LICENSE_INCLUDED = "LicenseIncluded"


def _first_set(environ: Mapping[str, str], names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = environ.get(name)
        if value:
            return value
    return None


@dataclasses.dataclass(frozen=True)
class SampleConfig:
    """
    Everything needed to run the sample. Credentials that are None mean we'll fall back
    to DefaultAzureCredential, and a None subscription_id means we'll use the only
    enabled subscription that the credentials can see.
    """

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    tenant_id: Optional[str] = None
    subscription_id: Optional[str] = None
    location: str = DEFAULT_LOCATION
    operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.operation_timeout_seconds <= 0:
            raise ValueError(
                "operation_timeout_seconds must be positive, got "
                f"{self.operation_timeout_seconds}"
            )
        if not self.location:
            raise ValueError("location must not be empty")

    def __repr__(self) -> str:
        # don't print the secret
        return (
            f"SampleConfig(client_id={self.client_id!r}, "
            f"client_secret={'***' if self.client_secret else None}, "
            f"tenant_id={self.tenant_id!r}, "
            f"subscription_id={self.subscription_id!r}, location={self.location!r}, "
            f"operation_timeout_seconds={self.operation_timeout_seconds!r})"
        )

    @classmethod
    def from_environment(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        *,
        subscription_id: Optional[str] = None,
        location: Optional[str] = None,
        operation_timeout_seconds: Optional[float] = None,
    ) -> SampleConfig:
        """
        Reads the credential environment variables once. Keyword arguments (e.g. from
        the command line) take precedence over the environment.
        """
        if environ is None:
            environ = os.environ

        if subscription_id is None:
            subscription_id = _first_set(environ, SUBSCRIPTION_ID_VARIABLES)
        if location is None:
            location = DEFAULT_LOCATION
        if operation_timeout_seconds is None:
            operation_timeout_seconds = DEFAULT_OPERATION_TIMEOUT_SECONDS

        # explicit values (even invalid ones like 0) are validated by __post_init__
        return cls(
            client_id=_first_set(environ, CLIENT_ID_VARIABLES),
            client_secret=_first_set(environ, CLIENT_SECRET_VARIABLES),
            tenant_id=_first_set(environ, TENANT_ID_VARIABLES),
            subscription_id=subscription_id,
            location=location,
            operation_timeout_seconds=operation_timeout_seconds,
        )
