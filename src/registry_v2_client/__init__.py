"""Registry v2 Client - Async Python client for the Docker Registry HTTP API v2."""

__version__ = "0.2.0"

from .core.auth import parse_challenge, pull_scope
from .core.registry_client import RegistryClient, create_client_v2
from .core.repo import RepoCoordinates, parse_index, parse_repo
from .core.stream import BlobReadStream
from .core.types import (
    AuthChallenge,
    RegistryConfig,
    RegistryResponse,
    ResponseChain,
    TagList,
)
from .exceptions import (
    AuthEndpointError,
    AuthError,
    DigestMismatchError,
    InvalidRepoNameError,
    MalformedAuthResponseError,
    ManifestError,
    NotFoundError,
    RegistryError,
    TransportError,
    UnauthorizedError,
)
from .registry import (
    check_registry_connectivity,
    get_manifest,
    list_tags,
    login,
    ping,
)

__all__ = [
    "RegistryClient",
    "RegistryConfig",
    "create_client_v2",
    "parse_repo",
    "parse_index",
    "parse_challenge",
    "pull_scope",
    "RepoCoordinates",
    "AuthChallenge",
    "RegistryResponse",
    "ResponseChain",
    "TagList",
    "BlobReadStream",
    "check_registry_connectivity",
    "ping",
    "login",
    "list_tags",
    "get_manifest",
    "RegistryError",
    "InvalidRepoNameError",
    "TransportError",
    "AuthError",
    "AuthEndpointError",
    "MalformedAuthResponseError",
    "UnauthorizedError",
    "NotFoundError",
    "ManifestError",
    "DigestMismatchError",
]
