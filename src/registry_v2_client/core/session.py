"""HTTP session management and authenticated requests."""

import asyncio
import json
from typing import Any, Optional, Union

import aiohttp
from yarl import URL

from ..exceptions import TransportError, UnauthorizedError
from .auth import negotiate, parse_challenge
from .types import AuthChallenge, Credentials, Logger, RegistryResponse, SessionState


async def create_session(
    timeout: Optional[float] = None, user_agent: Optional[str] = None
) -> aiohttp.ClientSession:
    """Create the pooled aiohttp session used by a client.

    Args:
        timeout: Default total timeout in seconds (None disables it)
        user_agent: User-Agent header for every request

    Returns:
        aiohttp.ClientSession
    """
    headers = {"User-Agent": user_agent} if user_agent else None
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=timeout),
        headers=headers,
    )


def parse_json_response(text: str) -> Optional[Any]:
    """Parse a JSON response body, returning None if it is not JSON."""
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


def make_timeout(timeout: Optional[float]) -> Optional[aiohttp.ClientTimeout]:
    """Per-call timeout; None keeps the session default."""
    if timeout is None:
        return None
    return aiohttp.ClientTimeout(total=timeout)


class AuthSession:
    """Attaches credentials to registry requests and retries once on 401.

    One instance is shared by every operation of a client, so a token
    negotiated for one call is reused by the next. Negotiation is
    serialised by a lock: concurrent 401s produce a single token request.
    """

    def __init__(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        scope: Optional[str] = None,
        timeout: Optional[float] = 30.0,
        user_agent: Optional[str] = None,
        log: Logger,
    ) -> None:
        self.state = SessionState(username=username, password=password)
        self.scope = scope
        self.timeout = timeout
        self.user_agent = user_agent
        self.log = log
        self._http: Optional[aiohttp.ClientSession] = None
        self._lock: Optional[asyncio.Lock] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def get_http(self) -> aiohttp.ClientSession:
        """Return the pooled aiohttp session, creating it on first use."""
        if self._closed:
            raise TransportError("Client is closed")
        if self._http is None:
            self._http = await create_session(self.timeout, self.user_agent)
        return self._http

    async def send(
        self,
        method: str,
        url: Union[str, URL],
        *,
        headers: Optional[dict[str, str]] = None,
        authorization: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> aiohttp.ClientResponse:
        """Issue one request without any auth retry.

        The caller owns the returned response and must release it.

        Raises:
            TransportError: On connection-level failure
        """
        http = await self.get_http()
        request_headers = dict(headers or {})
        if authorization:
            request_headers["Authorization"] = authorization
        self.log.debug("%s %s", method, url)
        kwargs: dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = make_timeout(timeout)
        try:
            return await http.request(
                method, url, headers=request_headers, allow_redirects=False, **kwargs
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, RuntimeError) as e:
            # aiohttp raises RuntimeError for requests on a closed session
            raise TransportError(f"{method} {url} failed: {e}") from e

    async def request(
        self,
        method: str,
        url: Union[str, URL],
        *,
        headers: Optional[dict[str, str]] = None,
        authenticate: bool = True,
        timeout: Optional[float] = None,
    ) -> aiohttp.ClientResponse:
        """Issue a request, negotiating credentials on 401.

        Args:
            method: HTTP method
            url: Absolute URL
            headers: Extra request headers
            authenticate: False sends an anonymous request and returns a
                401 untouched
            timeout: Per-call timeout in seconds

        Returns:
            The unread aiohttp response; the caller must release it

        Raises:
            UnauthorizedError: If the registry still answers 401 after one
                retry, or the challenge cannot be answered
            AuthEndpointError: If the token endpoint fails
            MalformedAuthResponseError: If the token response has no token
            TransportError: On connection-level failure
        """
        if not authenticate:
            return await self.send(method, url, headers=headers, timeout=timeout)

        used = self.state.authorization
        response = await self.send(
            method, url, headers=headers, authorization=used, timeout=timeout
        )
        if response.status != 401:
            return response

        snapshot = RegistryResponse.from_client_response(response)
        response.release()
        challenge = parse_challenge(snapshot.headers.get("WWW-Authenticate"))
        if challenge is None:
            raise UnauthorizedError(
                f"{method} {url} returned 401 without a usable challenge",
                response=snapshot,
            )
        self.log.debug("%s %s challenged with %s", method, url, challenge.scheme)

        authorization = await self.refresh(used, challenge, snapshot, timeout)
        retry = await self.send(
            method, url, headers=headers, authorization=authorization, timeout=timeout
        )
        if retry.status == 401:
            snapshot = RegistryResponse.from_client_response(retry)
            retry.release()
            self.log.warning("%s %s still unauthorized after retry", method, url)
            raise UnauthorizedError(
                f"{method} {url} unauthorized after authentication",
                response=snapshot,
            )
        return retry

    async def refresh(
        self,
        used: Optional[str],
        challenge: AuthChallenge,
        response: Optional[RegistryResponse] = None,
        timeout: Optional[float] = None,
        scope: Optional[str] = None,
    ) -> str:
        """Negotiate new credentials unless another caller already did.

        Args:
            used: Authorization value the failed request carried
            challenge: Parsed challenge of the failed request
            response: The 401 response, attached to errors
            timeout: Per-call timeout in seconds
            scope: Scope overriding the session scope

        Returns:
            Authorization header value to retry with
        """
        # Created on first use so it binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            current = self.state.authorization
            if current is not None and current != used:
                return current
            http = await self.get_http()
            credentials = await negotiate(
                http,
                challenge,
                scope=self.scope if scope is None else scope,
                username=self.state.username,
                password=self.state.password,
                timeout=make_timeout(timeout),
                log=self.log,
                response=response,
            )
            self._store(credentials)
            self.log.info("authenticated with %s scheme", challenge.scheme)
            return credentials.authorization

    def _store(self, credentials: Credentials) -> None:
        self.state.mode = credentials.mode
        self.state.authorization = credentials.authorization
        self.state.token = credentials.token
        self.state.token_expiry = credentials.token_expiry

    async def close(self) -> None:
        """Close the pooled session. Safe to call more than once."""
        self._closed = True
        http, self._http = self._http, None
        if http is not None and not http.closed:
            try:
                await http.close()
            except Exception as e:  # close() never raises
                self.log.debug("error closing HTTP session: %s", e)
