import asyncio
import dataclasses
import logging
import time
from typing import (
    Any,
    AsyncIterator,
    Coroutine,
    Dict,
    Optional,
    Tuple,
    cast,
)
from typing_extensions import Literal

import aiohttp

from .azure_exceptions import AzureRestApiError, raise_for_status
from .azure_identity import CACHED_AZURE_VARIABLES, get_token

_BASE_URL = "https://management.azure.com"


async def _return_response(response: aiohttp.ClientResponse) -> Any:
    # If there's nothing to return, the Azure APIs will return content-type:
    # application/octet-stream with no actual content. It's easier to just return this
    # as None rather than having to fully support another content type
    if response.content_length == 0:
        return None

    if response.content_type.startswith("application/json"):
        return await response.json()

    # sometimes content-length is not set, content-type is text/plain, and the actual
    # content is empty. We don't want response.json() to throw in that scenario
    return await response.text()


def _authorization_header(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _prepare_request(
    method: str,
    url_path: str,
    api_version: str,
    token: str,
    *,
    json_content: Any = None,
) -> Dict[str, Any]:
    # resource ids start with a /, relative paths don't
    return {
        "method": method,
        "url": f"{_BASE_URL}/{url_path.lstrip('/')}",
        "params": {"api-version": api_version},
        "headers": _authorization_header(token),
        "json": json_content,
    }


async def azure_rest_api(
    method: str, url_path: str, api_version: str, *, json_content: Any = None
) -> Any:
    """
    Supports any Azure Resource Manager REST API call, returns the JSON-deserialized
    content of the response
    """
    async with aiohttp.request(
        **_prepare_request(
            method, url_path, api_version, await get_token(), json_content=json_content
        )
    ) as response:
        await raise_for_status(response)
        return await _return_response(response)


async def azure_rest_api_paged(
    method: str, url_path: str, api_version: str
) -> AsyncIterator[Any]:
    """
    Supports any Azure REST API call that returns a json body with a nextLink
    parameter. Returns the json-deserialized body of each call. Typical usage will be
    [item async for page in azure_rest_api_paged(...) for item in page["value"]]
    """
    async with aiohttp.request(
        **_prepare_request(method, url_path, api_version, await get_token())
    ) as response:
        await raise_for_status(response)
        response_json = await response.json()
        next_link = response_json.get("nextLink")
        yield response_json

    while next_link:
        # nextLink already has the api-version
        async with aiohttp.request(
            method, next_link, headers=_authorization_header(await get_token())
        ) as response:
            await raise_for_status(response)
            response_json = await response.json()
            next_link = response_json.get("nextLink")
            yield response_json


DEFAULT_TOTAL_POLL_TIMEOUT_SECONDS = 30 * 60  # 30 minutes
# only used if the Retry-After header is missing
DEFAULT_RETRY_AFTER_SECONDS: float = 1


# according to the docs, these are the only permitted completed statues
_SUCCEEDED_STATUS = "Succeeded"
_FAILED_STATUSES = ("Failed", "Canceled")

POLL_SCHEMES = Literal[
    "AsyncOperationJsonStatus", "LocationStatusCode", "GetProvisioningState"
]


@dataclasses.dataclass(frozen=True)
class _PreparedPollRequest:
    retry_after: float
    # everything but the Authorization header, which is added on each request
    poll_request_args: Dict[str, Any]
    # can differ from the scheme that was requested, see _prepare_poll_request
    poll_scheme: POLL_SCHEMES


def _get_retry_after(response: aiohttp.ClientResponse) -> float:
    retry_after_str = response.headers.get("Retry-After")
    if retry_after_str is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return float(retry_after_str)
    except ValueError:
        return DEFAULT_RETRY_AFTER_SECONDS


def _raise_for_failed_operation(
    response: aiohttp.ClientResponse, status: str, response_json: Any
) -> None:
    code, message = status, "Failure while polling"
    error = response_json.get("error") if isinstance(response_json, dict) else None
    if isinstance(error, dict):
        code = error.get("code") or status
        message = error.get("message") or message
    raise AzureRestApiError(response.status, code, message)


def _prepare_poll_request(
    poll_scheme: POLL_SCHEMES,
    prev_poll_request: Optional[_PreparedPollRequest],
    response: aiohttp.ClientResponse,
    response_json: Any,
    original_url: str,
    api_version: str,
) -> Optional[_PreparedPollRequest]:
    """
    If prev_poll_request is None, this means that this is the initial response, which is
    treated differently in some schemes. Returns None if no (further) polling is needed.

    An AsyncOperationJsonStatus operation whose initial 202 response only has a
    Location header (no Azure-AsyncOperation header) is polled as LocationStatusCode
    from then on.
    """

    # common to all poll schemes

    retry_after = _get_retry_after(response)

    headers: Dict[str, str] = {}
    request_id = response.headers.get("x-ms-request-id")
    if request_id:
        headers["request-id"] = request_id

    if poll_scheme == "AsyncOperationJsonStatus":
        if prev_poll_request is None:
            # on the initial response, status codes are used to indicate whether polling
            # is needed
            if response.status not in (201, 202):
                return None

            if "Azure-AsyncOperation" in response.headers:
                url = response.headers["Azure-AsyncOperation"]
            elif response.status == 202 and "Location" in response.headers:
                return _PreparedPollRequest(
                    retry_after,
                    {"url": response.headers["Location"], "headers": headers},
                    "LocationStatusCode",
                )
            else:
                # e.g. resource groups and firewall rules return 201 without any
                # polling header, they're already done
                return None
        else:
            # on polling response, status code will always be 200, and we need to check
            # the returned content
            if response_json["status"] == _SUCCEEDED_STATUS:
                return None
            if response_json["status"] in _FAILED_STATUSES:
                _raise_for_failed_operation(
                    response, response_json["status"], response_json
                )

            # the Azure-AsyncOperation header will only be provided on the initial
            # response. After that, we have to "remember" it from the previous call
            url = prev_poll_request.poll_request_args["url"]

        return _PreparedPollRequest(
            retry_after, {"url": url, "headers": headers}, poll_scheme
        )
    elif poll_scheme == "LocationStatusCode":
        if response.status not in (201, 202):
            return None

        if "Location" in response.headers:
            url = response.headers["Location"]
        elif prev_poll_request is not None:
            url = prev_poll_request.poll_request_args["url"]
        else:
            # 201 Created with nothing to poll
            return None

        return _PreparedPollRequest(
            retry_after, {"url": url, "headers": headers}, poll_scheme
        )
    elif poll_scheme == "GetProvisioningState":
        provisioning_state = response_json["properties"]["provisioningState"]
        if provisioning_state == _SUCCEEDED_STATUS:
            return None
        elif provisioning_state in _FAILED_STATUSES:
            _raise_for_failed_operation(response, provisioning_state, response_json)

        return _PreparedPollRequest(
            retry_after,
            {
                "url": original_url,
                "params": {"api-version": api_version},
                "headers": headers,
            },
            poll_scheme,
        )
    else:
        raise ValueError(f"Unexpected poll_scheme {poll_scheme}")


async def azure_rest_api_poll(
    method: str,
    url_path: str,
    api_version: str,
    poll_scheme: POLL_SCHEMES,
    *,
    json_content: Any = None,
    total_timeout_seconds: float = DEFAULT_TOTAL_POLL_TIMEOUT_SECONDS,
) -> Tuple[Any, Optional[Coroutine[Any, Any, Any]]]:
    """
    Supports any Azure REST API that requires polling (a "long-running operation"):

    https://docs.microsoft.com/en-us/azure/azure-resource-manager/management/async-operations
    In practice there are 3 polling schemes in the Azure API:
    - AsyncOperationJsonStatus: Initial response is 201 or 202, has an
      Azure-AsyncOperation header that points us to the polling url. The polling URL
      always returns 200, and indicates completion by response_json["status"] being a
      completed status. If polling isn't needed, the initial response will be 200. This
      is what SQL servers and SQL databases use for create, update and delete:
      https://docs.microsoft.com/en-us/rest/api/sql/2021-11-01/servers/create-or-update
    - LocationStatusCode: Initial response is 202, has a Location header that points us
      to the polling url, and the content is empty. The polling URL will return 202 with
      empty content if not complete, and 200 once complete with the content containing
      information about the resource. If polling isn't needed, the initial response will
      be 200. E.g.
      https://docs.microsoft.com/en-us/rest/api/resources/resource-groups/delete
    - GetProvisioningState: Initial response is 200 or 201, does not have any special
      headers. response_json["properties"]["provisioningState"] is populated. We can
      repeatedly call GET on the resource to check this same provisioningState value.

    If the initial response indicates completion (i.e. no polling required), then this
    function will return (body of initial call, None). If polling is required, this will
    return (body of initial call, Awaitable[body of final polling call]). Use this with
    wait_for_poll to instead always get back (body of initial call, body of final
    polling call if polling was required).

    total_timeout_seconds indicates how long from start to finish we are willing to wait
    and poll for. TimeoutError is raised if the operation hasn't completed by then.
    """

    deadline = time.monotonic() + total_timeout_seconds

    prepared_request = _prepare_request(
        method, url_path, api_version, await get_token(), json_content=json_content
    )

    async with aiohttp.request(**prepared_request) as response:
        await raise_for_status(response)
        response_json = await _return_response(response)

        prepared_poll_request = _prepare_poll_request(
            poll_scheme,
            None,
            response,
            response_json,
            prepared_request["url"],
            api_version,
        )
        if prepared_poll_request is None:
            # response indicates that there's no need for polling
            return response_json, None

        return response_json, _azure_rest_api_poll_continuation(
            prepared_poll_request,
            deadline,
            total_timeout_seconds,
            prepared_request["url"],
            api_version,
        )


async def _azure_rest_api_poll_continuation(
    prepared_poll_request: _PreparedPollRequest,
    deadline: float,
    total_timeout_seconds: float,
    original_url: str,
    api_version: str,
) -> Any:
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break

        wait = min(prepared_poll_request.retry_after, remaining)
        logging.info(f"Waiting for a long-running Azure operation ({wait}s)")
        await asyncio.sleep(wait)

        # a poll can outlast a token, so get a (possibly refreshed) one every time
        request_args = dict(prepared_poll_request.poll_request_args)
        request_args["headers"] = {
            **request_args["headers"],
            **_authorization_header(await get_token()),
        }
        async with aiohttp.request("GET", **request_args) as response:
            await raise_for_status(response)
            response_json = await _return_response(response)

            next_poll_request = _prepare_poll_request(
                prepared_poll_request.poll_scheme,
                prepared_poll_request,
                response,
                response_json,
                original_url,
                api_version,
            )
            if next_poll_request is None:
                return response_json
            prepared_poll_request = next_poll_request

    raise TimeoutError(
        f"azure_rest_api_poll to {original_url} timed out after {total_timeout_seconds}"
        " seconds"
    )


async def wait_for_poll(
    poll_result: Tuple[Any, Optional[Coroutine[Any, Any, Any]]]
) -> Tuple[Any, Any]:
    """See azure_rest_api_poll"""
    first_result, continuation = poll_result
    if continuation is not None:
        second_result = await continuation
    else:
        second_result = None

    return first_result, second_result


# this really belongs in azure_identity.py, but it depends on azure_rest_api_paged


async def get_subscription_id() -> str:
    """
    Returns the configured subscription id (see configure_credential). If there isn't
    one, queries for the available subscriptions and if there's exactly one enabled
    subscription, uses that. The choice is cached for the duration of the process.
    """
    if CACHED_AZURE_VARIABLES.subscription_id is None:
        subscriptions = []
        async for page in azure_rest_api_paged("GET", "subscriptions", "2021-01-01"):
            for sub in page["value"]:
                if sub["state"] == "Enabled":
                    subscriptions.append(sub)

        if len(subscriptions) > 1:
            raise ValueError(
                "Please specify a subscription via the SUBSCRIPTION_ID environment "
                "variable from among the available subscription ids: "
                + ", ".join([sub["subscriptionId"] for sub in subscriptions])
            )
        elif len(subscriptions) == 0:
            raise ValueError("There are no subscriptions available")
        else:
            CACHED_AZURE_VARIABLES.subscription_id = cast(
                str, subscriptions[0]["subscriptionId"]
            )
            CACHED_AZURE_VARIABLES.tenant_id = cast(str, subscriptions[0]["tenantId"])

    return CACHED_AZURE_VARIABLES.subscription_id
