"""Authentication negotiation for registry ``401`` challenges.

Follows the Docker token authentication flow:
https://distribution.github.io/distribution/spec/auth/token/
"""

import asyncio
import base64
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

import aiohttp
import www_authenticate
from yarl import URL

from ..exceptions import (
    AuthEndpointError,
    MalformedAuthResponseError,
    TransportError,
    UnauthorizedError,
)
from .types import AuthChallenge, Credentials, Logger, RegistryResponse

SCOPE_REPOSITORY_PULL_PATTERN = "repository:{0}:pull"

# Lifetime registries assume for tokens that omit expires_in
DEFAULT_TOKEN_LIFETIME = 60


def pull_scope(remote_name: str) -> str:
    """Return the pull scope for a repository."""
    return SCOPE_REPOSITORY_PULL_PATTERN.format(remote_name)


def basic_authorization(username: str, password: str) -> str:
    """Build a Basic ``Authorization`` header value."""
    raw = f"{username}:{password}".encode("utf-8")
    return "Basic " + base64.b64encode(raw).decode("ascii")


def parse_challenge(header: Optional[str]) -> Optional[AuthChallenge]:
    """Parse a ``WWW-Authenticate`` header.

    Args:
        header: Raw header value

    Returns:
        AuthChallenge for the Bearer challenge if offered, else the Basic
        one, else None
    """
    if not header:
        return None
    try:
        parsed = www_authenticate.parse(header)
    except ValueError:
        return None

    challenges: dict[str, dict[str, str]] = {}
    for scheme, params in parsed.items():
        if isinstance(params, Mapping):
            challenges[scheme.lower()] = {k.lower(): v for k, v in params.items()}
        else:
            challenges[scheme.lower()] = {}

    if "bearer" in challenges:
        params = challenges["bearer"]
        if not params.get("realm"):
            return None
        return AuthChallenge(
            scheme="Bearer",
            realm=params["realm"],
            service=params.get("service"),
            scope=params.get("scope"),
        )
    if "basic" in challenges:
        return AuthChallenge(scheme="Basic", realm=challenges["basic"].get("realm"))
    return None


def _token_expiry(payload: dict[str, Any]) -> float:
    issued = time.time()
    issued_at = payload.get("issued_at")
    if isinstance(issued_at, str):
        try:
            issued = datetime.fromisoformat(issued_at.replace("Z", "+00:00")).timestamp()
        except ValueError:
            pass
    expires_in = payload.get("expires_in")
    if not isinstance(expires_in, (int, float)) or expires_in <= 0:
        expires_in = DEFAULT_TOKEN_LIFETIME
    return issued + expires_in


async def fetch_token(
    http: aiohttp.ClientSession,
    challenge: AuthChallenge,
    scope: Optional[str],
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: Optional[aiohttp.ClientTimeout] = None,
    log: Optional[Logger] = None,
) -> tuple[str, float]:
    """Exchange a Bearer challenge for a token.

    Args:
        http: aiohttp session to use
        challenge: Bearer challenge carrying the token realm
        scope: Scope to request (e.g. "repository:library/alpine:pull")
        username: Account name, None for an anonymous token
        password: Account password
        timeout: Request timeout
        log: Logger for debug events

    Returns:
        Tuple of (token, expiry as epoch seconds)

    Raises:
        AuthEndpointError: If the token endpoint returns non-2xx
        MalformedAuthResponseError: If the response carries no token
        TransportError: If the token endpoint cannot be reached
    """
    params: dict[str, str] = {}
    if challenge.service:
        params["service"] = challenge.service
    if scope:
        params["scope"] = scope
    headers: dict[str, str] = {}
    if username is not None and password is not None:
        params["account"] = username
        headers["Authorization"] = basic_authorization(username, password)

    url = URL(challenge.realm).update_query(params)
    if log is not None:
        log.debug(
            "requesting token: realm=%s service=%s scope=%s anonymous=%s",
            challenge.realm,
            challenge.service,
            scope,
            username is None,
        )

    kwargs: dict[str, Any] = {}
    if timeout is not None:
        kwargs["timeout"] = timeout
    try:
        async with http.get(url, headers=headers, **kwargs) as resp:
            response = RegistryResponse.from_client_response(resp)
            if not response.ok:
                raise AuthEndpointError(
                    f"Token endpoint {challenge.realm} returned {resp.status}",
                    response=response,
                )
            try:
                payload = await resp.json(content_type=None)
            except ValueError as e:
                raise MalformedAuthResponseError(
                    f"Token endpoint {challenge.realm} returned invalid JSON",
                    response=response,
                ) from e
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise TransportError(f"Failed to reach token endpoint: {e}") from e

    token = None
    if isinstance(payload, dict):
        token = payload.get("token") or payload.get("access_token")
    if not isinstance(token, str) or not token:
        raise MalformedAuthResponseError(
            f"Token endpoint {challenge.realm} response has no token",
            response=response,
        )
    return token, _token_expiry(payload)


async def negotiate(
    http: aiohttp.ClientSession,
    challenge: AuthChallenge,
    *,
    scope: Optional[str],
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: Optional[aiohttp.ClientTimeout] = None,
    log: Optional[Logger] = None,
    response: Optional[RegistryResponse] = None,
) -> Credentials:
    """Produce credentials answering a challenge.

    Raises:
        UnauthorizedError: Basic challenge without configured credentials
    """
    if challenge.scheme == "Basic":
        if username is None or password is None:
            raise UnauthorizedError(
                "Registry requires Basic authentication but no credentials "
                "are configured",
                response=response,
            )
        return Credentials(
            mode="basic", authorization=basic_authorization(username, password)
        )

    token, expiry = await fetch_token(
        http,
        challenge,
        scope or challenge.scope,
        username=username,
        password=password,
        timeout=timeout,
        log=log,
    )
    return Credentials(
        mode="bearer",
        authorization=f"Bearer {token}",
        token=token,
        token_expiry=expiry,
    )
