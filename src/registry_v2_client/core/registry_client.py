"""Docker Registry API v2 async client implementation."""

import asyncio
from typing import Any, Optional

import aiohttp
from yarl import URL

from ..exceptions import (
    DigestMismatchError,
    ManifestError,
    RegistryError,
    TransportError,
    UnauthorizedError,
)
from ..operations.manifests import manifest_accept_types, verify_manifest_digest
from ..utils.digest import validate_digest
from .auth import parse_challenge, pull_scope
from .connectivity import (
    check_api_version_header,
    raise_for_status,
    validate_connectivity_response,
)
from .repo import RepoCoordinates
from .session import AuthSession, parse_json_response
from .stream import BlobReadStream
from .types import RegistryConfig, RegistryResponse, ResponseChain, TagList

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class RegistryClient:
    """Docker Registry API v2 async client for one repository.

    Read-only: ping, tag listing, manifest retrieval and blob download.
    Authentication (Basic or Bearer token) is negotiated on the first
    ``401`` and reused by later calls.
    """

    version = 2

    def __init__(self, config: RegistryConfig) -> None:
        """Initialize the registry client.

        Args:
            config: Client configuration; ``config.name`` is the repository
        """
        self.config = config
        self.log = config.log
        self._session = AuthSession(
            username=config.username,
            password=config.password,
            scope=pull_scope(config.repo.remote_name),
            timeout=config.timeout,
            user_agent=config.user_agent,
            log=config.log,
        )

    @property
    def repo(self) -> RepoCoordinates:
        return self.config.repo

    @property
    def session(self) -> AuthSession:
        return self._session

    async def __aenter__(self) -> "RegistryClient":
        """Enter async context manager."""
        await self._session.get_http()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session.

        Idempotent and never raises. Operations still in flight are
        aborted and fail with TransportError; later calls fail the same way.
        """
        await self._session.close()

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    async def _read_body(self, response: aiohttp.ClientResponse) -> bytes:
        try:
            return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Failed to read response from {response.url}: {e}",
                response=RegistryResponse.from_client_response(response),
            ) from e

    async def _read_error_body(self, response: aiohttp.ClientResponse) -> bytes:
        try:
            return await self._read_body(response)
        except TransportError as e:
            self.log.debug("could not read error body: %s", e)
            return b""

    async def ping(self, timeout: Optional[float] = None) -> tuple[Any, RegistryResponse]:
        """Ping the registry API base (``GET /v2/``) anonymously.

        No authentication is attempted: against an access-controlled
        registry the 401 and its ``WWW-Authenticate`` challenge come back
        attached to the raised error.

        Args:
            timeout: Request timeout in seconds

        Returns:
            Tuple of (decoded body or None, response)

        Raises:
            UnauthorizedError: If the registry requires authentication
            RegistryError: For any other non-2xx status
            TransportError: If the registry cannot be reached
        """
        response = await self._session.request(
            "GET", self._url("/v2/"), authenticate=False, timeout=timeout
        )
        async with response:
            raw = await self._read_body(response)
            info = RegistryResponse.from_client_response(response)

        if not check_api_version_header(info.headers):
            self.log.warning(
                "registry %s sent Docker-Distribution-Api-Version %r",
                self.config.base_url,
                info.api_version,
            )
        validate_connectivity_response(info, raw)
        return parse_json_response(raw.decode("utf-8", errors="replace")), info

    async def supports_v2(self, timeout: Optional[float] = None) -> bool:
        """Check if the registry supports v2 API.

        Returns:
            True if v2 API is supported
        """
        try:
            _, response = await self.ping(timeout=timeout)
        except UnauthorizedError as e:
            response = e.response
        except RegistryError:
            return False
        return check_api_version_header(response.headers)

    async def login(self, timeout: Optional[float] = None) -> bool:
        """Verify the configured credentials against the registry.

        Returns:
            True if the registry accepts the credentials (or needs none)

        Raises:
            UnauthorizedError: If the registry refuses the credentials
            AuthEndpointError: If the token endpoint fails
        """
        try:
            await self.ping(timeout=timeout)
            return True
        except UnauthorizedError as e:
            challenge = parse_challenge(e.headers.get("WWW-Authenticate"))
            if challenge is None:
                raise
            unauthorized = e.response

        authorization = await self._session.refresh(
            None, challenge, unauthorized, timeout, scope=challenge.scope or ""
        )
        response = await self._session.send(
            "GET", self._url("/v2/"), authorization=authorization, timeout=timeout
        )
        async with response:
            raw = await self._read_error_body(response)
            info = RegistryResponse.from_client_response(response)
        raise_for_status(info, body=raw, what="login")
        self.log.info("logged in to %s", self.config.base_url)
        return True

    async def list_tags(self, timeout: Optional[float] = None) -> TagList:
        """List tags for the repository.

        Follows ``Link: <...>; rel="next"`` pagination.

        Returns:
            TagList with the repository name and its tags in registry order

        Raises:
            NotFoundError: If the repository does not exist
            UnauthorizedError: If authentication fails
            RegistryError: If listing fails, or pagination links back to a
                page already fetched
        """
        remote_name = self.repo.remote_name
        url: Optional[URL] = URL(self._url(f"/v2/{remote_name}/tags/list"))
        name = remote_name
        tags: list[str] = []
        seen: set[URL] = set()

        while url is not None:
            if url in seen:
                raise RegistryError(
                    f"Tag list of {remote_name} links back to already fetched page {url}"
                )
            seen.add(url)
            response = await self._session.request("GET", url, timeout=timeout)
            async with response:
                raw = await self._read_body(response)
                info = RegistryResponse.from_client_response(response)
                next_link = response.links.get("next")
                response_url = response.url
            raise_for_status(info, body=raw, what=f"list tags of {remote_name}")

            data = parse_json_response(raw.decode("utf-8", errors="replace"))
            if not isinstance(data, dict):
                raise RegistryError(
                    f"Invalid tag list for {remote_name}", response=info
                )
            page_tags = data.get("tags")
            if page_tags is None:
                page_tags = []
            if not isinstance(page_tags, list):
                raise RegistryError(
                    f"Invalid tags value for {remote_name}: {page_tags!r}", response=info
                )
            name = data.get("name") or name
            tags.extend(page_tags)

            url = response_url.join(next_link["url"]) if next_link else None
            if url is not None:
                self.log.debug("following tag list page %s", url)

        return TagList(name=name, tags=tags)

    async def get_manifest(
        self,
        ref: str,
        *,
        max_schema_version: Optional[int] = None,
        accept_manifest_lists: Optional[bool] = None,
        timeout: Optional[float] = None,
    ) -> tuple[dict[str, Any], RegistryResponse]:
        """Retrieve a manifest by tag or digest.

        The ``Docker-Content-Digest`` header stays on the returned response
        and is checked against the body.

        Args:
            ref: Tag name or digest
            max_schema_version: 1 to get schema 1 manifests, 2 (default) for v2
            accept_manifest_lists: Also accept manifest lists / OCI indexes
            timeout: Request timeout in seconds

        Returns:
            Tuple of (manifest, response)

        Raises:
            NotFoundError: If the tag or digest is unknown
            UnauthorizedError: If authentication fails
            ManifestError: If the body is not a manifest
            DigestMismatchError: If the body does not match its digest
        """
        if max_schema_version is None:
            max_schema_version = self.config.max_schema_version
        if accept_manifest_lists is None:
            accept_manifest_lists = self.config.accept_manifest_lists

        headers = {}
        accept = manifest_accept_types(max_schema_version, accept_manifest_lists)
        if accept:
            headers["Accept"] = ", ".join(accept)

        url = self._url(f"/v2/{self.repo.remote_name}/manifests/{ref}")
        response = await self._session.request(
            "GET", url, headers=headers, timeout=timeout
        )
        async with response:
            raw = await self._read_body(response)
            info = RegistryResponse.from_client_response(response)
        raise_for_status(info, body=raw, what=f"get manifest {ref}")

        manifest = parse_json_response(raw.decode("utf-8", errors="replace"))
        if not isinstance(manifest, dict):
            raise ManifestError(f"Manifest {ref} is not a JSON object", response=info)

        expected = info.content_digest
        if expected is None and validate_digest(ref):
            expected = ref
        try:
            digest = verify_manifest_digest(raw, manifest, expected)
        except (ManifestError, DigestMismatchError) as e:
            e.response = info
            raise
        self.log.debug(
            "manifest %s schemaVersion=%s digest=%s",
            ref,
            manifest.get("schemaVersion"),
            digest,
        )
        return manifest, info

    async def _follow_redirects(
        self, method: str, path: str, timeout: Optional[float]
    ) -> tuple[aiohttp.ClientResponse, list[RegistryResponse]]:
        """Issue a request and follow its redirects one hop at a time.

        Returns:
            Tuple of (unreleased terminal response, every hop's response)
        """
        url = URL(self._url(path))
        origin = url.origin()
        try:
            response = await self._session.request(method, url, timeout=timeout)
        except RegistryError as e:
            if e.chain is None and e.response is not None:
                e.chain = ResponseChain((e.response,))
            raise
        hops: list[RegistryResponse] = []

        while True:
            hops.append(RegistryResponse.from_client_response(response))
            location = response.headers.get("Location")
            if response.status not in REDIRECT_STATUSES or not location:
                return response, hops
            response.release()

            if len(hops) > self.config.max_redirects:
                raise RegistryError(
                    f"{method} {url} exceeded {self.config.max_redirects} redirects",
                    chain=ResponseChain(tuple(hops)),
                )
            next_url = response.url.join(URL(location, encoded=True))
            # Credentials only go back to the registry itself, never to storage
            authorization = None
            if next_url.origin() == origin:
                authorization = self._session.state.authorization
            self.log.debug(
                "following %s redirect to %s", response.status, next_url.with_query(None)
            )
            try:
                response = await self._session.send(
                    method, next_url, authorization=authorization, timeout=timeout
                )
            except TransportError as e:
                e.chain = ResponseChain(tuple(hops))
                raise

    async def head_blob(
        self, digest: str, timeout: Optional[float] = None
    ) -> ResponseChain:
        """Check a blob exists, returning every response of the redirect chain.

        The first response carries the registry headers
        (``Docker-Content-Digest``, API version); the last confirms the blob.

        Args:
            digest: Blob digest
            timeout: Request timeout in seconds

        Returns:
            ResponseChain of all hops

        Raises:
            NotFoundError: If the blob is unknown (``chain`` attached)
            RegistryError: For any other failure (``chain`` attached)
        """
        response, hops = await self._follow_redirects(
            "HEAD", f"/v2/{self.repo.remote_name}/blobs/{digest}", timeout
        )
        response.release()
        chain = ResponseChain(tuple(hops))
        raise_for_status(chain.last, chain=chain, what=f"HEAD blob {digest}")
        return chain

    async def create_blob_read_stream(
        self,
        digest: str,
        timeout: Optional[float] = None,
        chunk_size: Optional[int] = None,
    ) -> tuple[BlobReadStream, ResponseChain]:
        """Open a stream over a blob's bytes.

        The bytes are not verified here; hash them against ``digest`` while
        consuming the stream.

        Args:
            digest: Blob digest
            timeout: Total timeout in seconds, including reading the body
            chunk_size: Size of chunks yielded by the stream

        Returns:
            Tuple of (stream over the terminal response body, ResponseChain)

        Raises:
            NotFoundError: If the blob is unknown (``chain`` attached)
            RegistryError: For any other failure (``chain`` attached)
        """
        response, hops = await self._follow_redirects(
            "GET", f"/v2/{self.repo.remote_name}/blobs/{digest}", timeout
        )
        chain = ResponseChain(tuple(hops))
        if not chain.last.ok:
            async with response:
                raw = await self._read_error_body(response)
            raise_for_status(chain.last, body=raw, chain=chain, what=f"GET blob {digest}")
        stream = BlobReadStream(response, chunk_size or self.config.chunk_size)
        return stream, chain


def create_client_v2(
    name: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    log: Any = None,
    **options: Any,
) -> RegistryClient:
    """Create a v2 client for a repository reference.

    Args:
        name: Repository reference, e.g. "alpine" or "quay.io/coreos/etcd"
        username: Registry user name
        password: Registry password
        log: Logger; defaults to the package logger
        **options: Further RegistryConfig fields (insecure, timeout, ...)

    Returns:
        RegistryClient
    """
    if log is not None:
        options["log"] = log
    config = RegistryConfig(name=name, username=username, password=password, **options)
    return RegistryClient(config)
