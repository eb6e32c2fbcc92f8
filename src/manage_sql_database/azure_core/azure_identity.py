from __future__ import annotations

import dataclasses
import time
from typing import Dict, Optional, Tuple, cast

import azure.identity.aio
from azure.core.credentials_async import AsyncTokenCredential


@dataclasses.dataclass
class CachedAzureVariables:
    subscription_id: Optional[str]
    tenant_id: Optional[str]


CACHED_AZURE_VARIABLES = CachedAzureVariables(None, None)


_DEFAULT_SCOPE = "https://management.azure.com/.default"

_DEFAULT_CREDENTIAL_OPTIONS = {
    "exclude_visual_studio_code_credential": True,
    "exclude_shared_token_cache_credential": True,
}


@dataclasses.dataclass(frozen=True)
class ClientSecretSettings:
    """A service principal, i.e. the CLIENT_ID/CLIENT_SECRET/TENANT_ID triple"""

    client_id: str
    client_secret: str
    tenant_id: str


_CLIENT_SECRET_SETTINGS: Optional[ClientSecretSettings] = None
_CREDENTIAL: Optional[AsyncTokenCredential] = None

# scope -> (token, expires_on as seconds since the epoch)
_CACHED_TOKENS: Dict[str, Tuple[str, int]] = {}
# refresh a token this long before it actually expires
_CACHED_TOKEN_CUTOFF_SECONDS = 5 * 60


def configure_credential(
    client_id: Optional[str],
    client_secret: Optional[str],
    tenant_id: Optional[str],
    subscription_id: Optional[str],
) -> None:
    """
    Records the service principal and subscription to use for all subsequent calls. If
    any of client_id, client_secret, tenant_id is missing, we fall back to
    DefaultAzureCredential, which will pick up e.g. an `az login` session or a managed
    identity.
    """
    global _CLIENT_SECRET_SETTINGS, _CREDENTIAL

    if client_id and client_secret and tenant_id:
        _CLIENT_SECRET_SETTINGS = ClientSecretSettings(
            client_id, client_secret, tenant_id
        )
    else:
        _CLIENT_SECRET_SETTINGS = None
    _CREDENTIAL = None
    _CACHED_TOKENS.clear()

    CACHED_AZURE_VARIABLES.subscription_id = subscription_id or None
    CACHED_AZURE_VARIABLES.tenant_id = tenant_id or None


def get_credential_aio() -> AsyncTokenCredential:
    global _CREDENTIAL

    if _CREDENTIAL is None:
        if _CLIENT_SECRET_SETTINGS is not None:
            _CREDENTIAL = cast(
                AsyncTokenCredential,
                azure.identity.aio.ClientSecretCredential(
                    _CLIENT_SECRET_SETTINGS.tenant_id,
                    _CLIENT_SECRET_SETTINGS.client_id,
                    _CLIENT_SECRET_SETTINGS.client_secret,
                ),
            )
        else:
            _CREDENTIAL = cast(
                AsyncTokenCredential,
                azure.identity.aio.DefaultAzureCredential(
                    **_DEFAULT_CREDENTIAL_OPTIONS
                ),
            )
    return _CREDENTIAL


async def get_token(scope: Optional[str] = None) -> str:
    """Returns a bearer token for scope, which defaults to the management API"""
    if scope is None:
        scope = _DEFAULT_SCOPE

    cached: Optional[Tuple[str, int]] = _CACHED_TOKENS.get(scope)
    if cached is None or cached[1] - time.time() < _CACHED_TOKEN_CUTOFF_SECONDS:
        access_token = await get_credential_aio().get_token(scope)
        cached = access_token.token, access_token.expires_on
        _CACHED_TOKENS[scope] = cached

    return cached[0]


async def close_credential() -> None:
    global _CREDENTIAL

    if _CREDENTIAL is not None:
        await _CREDENTIAL.close()
        _CREDENTIAL = None
    _CACHED_TOKENS.clear()
