"""Core data types for Registry API v2 client."""

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Union

import aiohttp
from multidict import CIMultiDict, CIMultiDictProxy

from .repo import DEFAULT_V2_REGISTRY, RepoCoordinates, parse_repo

DEFAULT_LOGGER_NAME = "registry_v2_client"

Logger = Union[logging.Logger, logging.LoggerAdapter]


@dataclass
class RegistryConfig:
    """Configuration for a single repository client."""

    name: str
    username: Optional[str] = None
    password: Optional[str] = None
    insecure: bool = False
    timeout: Optional[float] = 30.0
    max_redirects: int = 10
    max_schema_version: int = 2
    accept_manifest_lists: bool = False
    chunk_size: int = 64 * 1024
    user_agent: Optional[str] = None
    log: Logger = field(default_factory=lambda: logging.getLogger(DEFAULT_LOGGER_NAME))
    repo: RepoCoordinates = field(init=False)

    def __post_init__(self) -> None:
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must be given together")
        if self.max_schema_version not in (1, 2):
            raise ValueError(
                f"max_schema_version must be 1 or 2: {self.max_schema_version}"
            )
        self.repo = parse_repo(self.name)
        if self.user_agent is None:
            from .. import __version__

            self.user_agent = f"registry-v2-client/{__version__}"

    @property
    def base_url(self) -> str:
        """Registry URL without trailing slash."""
        if self.repo.index_official:
            return DEFAULT_V2_REGISTRY
        scheme = self.repo.scheme or ("http" if self.insecure else "https")
        return f"{scheme}://{self.repo.index_host}"


@dataclass(frozen=True)
class AuthChallenge:
    """A parsed ``WWW-Authenticate`` challenge."""

    scheme: str
    realm: Optional[str] = None
    service: Optional[str] = None
    scope: Optional[str] = None


@dataclass
class SessionState:
    """Authentication state shared by all operations of one client."""

    mode: str = "none"
    username: Optional[str] = None
    password: Optional[str] = None
    authorization: Optional[str] = None
    token: Optional[str] = None
    token_expiry: Optional[float] = None


@dataclass(frozen=True)
class RegistryResponse:
    """Status and headers of one HTTP exchange.

    Bodies are not kept here; the blob stream or the decoded manifest
    carries them.
    """

    method: str
    url: str
    status: int
    headers: CIMultiDictProxy = field(
        default_factory=lambda: CIMultiDictProxy(CIMultiDict())
    )

    @classmethod
    def from_client_response(cls, response: aiohttp.ClientResponse) -> "RegistryResponse":
        return cls(
            method=response.method,
            url=str(response.url),
            status=response.status,
            headers=CIMultiDictProxy(CIMultiDict(response.headers)),
        )

    @property
    def status_code(self) -> int:
        return self.status

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_digest(self) -> Optional[str]:
        """The ``Docker-Content-Digest`` header."""
        return self.headers.get("Docker-Content-Digest")

    @property
    def api_version(self) -> Optional[str]:
        return self.headers.get("Docker-Distribution-Api-Version")

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("Content-Length")
        return int(value) if value is not None and value.isdigit() else None


@dataclass(frozen=True)
class ResponseChain:
    """Responses of one logical request after redirect following.

    ``first`` is the response to the original request, ``last`` the
    terminal one whose body (if any) is authoritative.
    """

    responses: tuple[RegistryResponse, ...]

    def __post_init__(self) -> None:
        if not self.responses:
            raise ValueError("ResponseChain needs at least one response")

    @property
    def first(self) -> RegistryResponse:
        return self.responses[0]

    @property
    def last(self) -> RegistryResponse:
        return self.responses[-1]

    def __len__(self) -> int:
        return len(self.responses)

    def __getitem__(self, index: int) -> RegistryResponse:
        return self.responses[index]

    def __iter__(self) -> Iterator[RegistryResponse]:
        return iter(self.responses)


@dataclass(frozen=True)
class TagList:
    """Result of a tags listing."""

    name: str
    tags: list[str]


@dataclass(frozen=True)
class Credentials:
    """Outcome of one auth negotiation."""

    mode: str
    authorization: str
    token: Optional[str] = None
    token_expiry: Optional[float] = None

