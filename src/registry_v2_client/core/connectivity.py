"""Registry status checks and error mapping."""

from collections.abc import Mapping
from typing import Any, Optional

from ..exceptions import NotFoundError, RegistryError, UnauthorizedError
from .session import parse_json_response
from .types import RegistryResponse, ResponseChain

API_VERSION = "registry/2.0"


def check_api_version_header(headers: Mapping) -> bool:
    """Check the ``Docker-Distribution-Api-Version`` header announces v2."""
    return headers.get("Docker-Distribution-Api-Version") == API_VERSION


def extract_errors(body: Any) -> list[dict[str, Any]]:
    """Return the ``errors`` array of a registry error body."""
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        body = parse_json_response(body)
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        return [e for e in body["errors"] if isinstance(e, dict)]
    return []


def _describe(errors: list[dict[str, Any]]) -> str:
    return "; ".join(
        f"{e.get('code', 'UNKNOWN')}: {e.get('message', '')}".rstrip(": ")
        for e in errors
    )


def raise_for_status(
    response: RegistryResponse,
    *,
    body: Any = None,
    chain: Optional[ResponseChain] = None,
    what: str = "",
) -> None:
    """Raise the typed error for a non-2xx response.

    Args:
        response: Terminal response
        body: Response body, used for the registry's error codes
        chain: Redirect chain the response belongs to
        what: Short description of the request for the message

    Raises:
        UnauthorizedError: On 401
        NotFoundError: On 404
        RegistryError: On any other non-2xx status
    """
    if response.ok:
        return

    errors = extract_errors(body)
    message = f"{what or response.method + ' ' + response.url} returned {response.status}"
    if errors:
        message = f"{message} ({_describe(errors)})"

    if response.status == 401:
        error_cls: type[RegistryError] = UnauthorizedError
    elif response.status == 404:
        error_cls = NotFoundError
    else:
        error_cls = RegistryError
    raise error_cls(message, response=response, chain=chain, errors=errors)


def validate_connectivity_response(
    response: RegistryResponse, body: Any = None
) -> None:
    """Validate the response to ``GET /v2/``.

    Raises:
        UnauthorizedError: If the registry requires authentication
        RegistryError: For any other failure
    """
    raise_for_status(response, body=body, what="ping")
