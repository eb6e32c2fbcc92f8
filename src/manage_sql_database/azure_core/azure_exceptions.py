from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional, Tuple, Type

if TYPE_CHECKING:
    import aiohttp


class AzureRestApiError(Exception):
    """
    status is the integer http status code. code and message are typically returned by
    Azure APIs. code is usually a single word/phrase like "ResourceNotFound", and
    message is usually a more verbose explanation.
    """

    def __init__(self, status: int, code: Optional[str], message: str):
        super().__init__(status, code, message)
        self.status = status
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.status} {self.code}: {self.message}"


class ResourceNotFoundError(AzureRestApiError):
    pass


class ResourceExistsError(AzureRestApiError):
    pass


class ResourceModifiedError(AzureRestApiError):
    pass


def _get_code_and_message_from_json(
    response_json: Any,
) -> Tuple[Optional[str], Optional[str]]:
    # Azure Resource Manager errors look like {"error": {"code": ..., "message": ...}}
    if not isinstance(response_json, dict):
        return None, None

    error = response_json.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message")
    else:
        return None, None


def _exception_type_from_code(code: Optional[str]) -> Type[AzureRestApiError]:
    if code in (
        "ResourceGroupNotFound",
        "ResourceNotFound",
        "ParentResourceNotFound",
    ):
        return ResourceNotFoundError
    elif code in ("NameAlreadyExists", "ServerAlreadyExists", "ResourceExists"):
        return ResourceExistsError
    elif code == "UpdateConditionNotSatisfied":
        return ResourceModifiedError
    else:
        return AzureRestApiError


async def raise_for_status(response: aiohttp.ClientResponse) -> None:
    """
    Like response.raise_for_status, but raises AzureRestApiError based on parsing the
    response content
    """
    if not response.ok:
        code = None
        message = None

        content_type = response.headers.get("Content-Type", "").lower()
        if content_type.startswith("application/json"):
            try:
                code, message = _get_code_and_message_from_json(await response.json())
            except Exception:
                # not actually json, fall back to the raw text
                pass

        if message is None:
            message = await response.text()

        raise _exception_type_from_code(code)(response.status, code, message)
