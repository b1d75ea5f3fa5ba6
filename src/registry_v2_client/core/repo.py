"""Repository reference parsing.

Turns user input such as ``alpine``, ``myorg/app`` or
``quay.io/coreos/etcd`` into the coordinates used to talk to a registry.
Tags and digests are not part of the input; callers pass them as ``ref``.
"""

import re
from dataclasses import dataclass
from typing import Optional

from ..exceptions import InvalidRepoNameError

DEFAULT_INDEX_NAME = "docker.io"
DEFAULT_V2_REGISTRY = "https://registry-1.docker.io"
OFFICIAL_NAMESPACE = "library"

VALID_NAMESPACE = re.compile(r"^[a-z0-9._-]*$")
VALID_REPO = re.compile(r"^[a-z0-9_/.-]*$")
VALID_SCHEMES = ("http", "https")


@dataclass(frozen=True)
class RepoCoordinates:
    """Parsed repository coordinates."""

    index_host: str
    remote_name: str
    official_name: Optional[str] = None
    scheme: Optional[str] = None

    @property
    def index_official(self) -> bool:
        """Whether the index is Docker Hub."""
        return self.index_host == DEFAULT_INDEX_NAME

    @property
    def official(self) -> bool:
        """Whether this is an official (``library/``) Docker Hub image."""
        return self.official_name is not None

    @property
    def local_name(self) -> str:
        """Name as shown by ``docker images``."""
        if self.official_name is not None:
            return self.official_name
        if self.index_official:
            return self.remote_name
        return f"{self.index_host}/{self.remote_name}"

    @property
    def canonical_name(self) -> str:
        """Fully qualified name including the index."""
        if self.index_official:
            return f"{DEFAULT_INDEX_NAME}/{self.local_name}"
        return self.local_name


def _looks_like_host(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"


def parse_index(index: Optional[str]) -> tuple[str, Optional[str]]:
    """Parse an index (registry host) reference.

    Args:
        index: Host with optional scheme, e.g. "quay.io", "https://localhost:5000"

    Returns:
        Tuple of (host, scheme). Scheme is None when not given.

    Raises:
        InvalidRepoNameError: If the index is not a valid host
    """
    if not index:
        return DEFAULT_INDEX_NAME, None

    scheme: Optional[str] = None
    host = index
    if "://" in index:
        scheme, host = index.split("://", 1)
        if scheme not in VALID_SCHEMES:
            raise InvalidRepoNameError(
                f'invalid index scheme, must be "http" or "https": {index}'
            )

    # Tolerate the trailing "/" URL builders tend to add
    if host.endswith("/"):
        host = host[:-1]

    if not host:
        raise InvalidRepoNameError(f"invalid index, empty host: {index}")
    if not _looks_like_host(host):
        raise InvalidRepoNameError(
            f'invalid index, "{host}" does not look like a valid host: {index}'
        )
    if "/" in host:
        raise InvalidRepoNameError(f"invalid index, trailing repo: {index}")

    if host == f"index.{DEFAULT_INDEX_NAME}":
        host = DEFAULT_INDEX_NAME
    return host, scheme


def _validate_namespace(namespace: str) -> None:
    if len(namespace) < 2 or len(namespace) > 255:
        raise InvalidRepoNameError(
            "invalid repository namespace, must be between 2 and 255 "
            f"characters: {namespace}"
        )
    if not VALID_NAMESPACE.match(namespace):
        raise InvalidRepoNameError(
            "invalid repository namespace, may only contain [a-z0-9._-] "
            f"characters: {namespace}"
        )
    if namespace.startswith("-") or namespace.endswith("-"):
        raise InvalidRepoNameError(
            f"invalid repository namespace, cannot start or end with a hyphen: {namespace}"
        )
    if "--" in namespace:
        raise InvalidRepoNameError(
            f"invalid repository namespace, cannot contain consecutive hyphens: {namespace}"
        )


def parse_repo(name: str) -> RepoCoordinates:
    """Parse a repository reference into coordinates.

    Args:
        name: Repository reference without tag or digest

    Returns:
        RepoCoordinates for the reference

    Raises:
        InvalidRepoNameError: If the reference is malformed
    """
    if not isinstance(name, str) or not name:
        raise InvalidRepoNameError(f"invalid repository name: {name!r}")

    if "://" in name:
        # "https://host/repo"
        slash = name.find("/", name.index("://") + 3)
        if slash == -1:
            raise InvalidRepoNameError(
                f'invalid repository name, no "/REPO" after hostname: {name}'
            )
        host, scheme = parse_index(name[:slash])
        remote = name[slash + 1 :]
    else:
        first, sep, rest = name.partition("/")
        if not sep or not _looks_like_host(first):
            host, scheme = DEFAULT_INDEX_NAME, None
            remote = name
        else:
            host, scheme = parse_index(first)
            remote = rest

    if not remote:
        raise InvalidRepoNameError(f"invalid repository name, empty name: {name}")

    namespace: Optional[str]
    namespace, sep, repo = remote.partition("/")
    if not sep:
        namespace, repo = None, remote
    else:
        _validate_namespace(namespace)

    if not repo or not VALID_REPO.match(repo):
        raise InvalidRepoNameError(
            f"invalid repository name, may only contain [a-z0-9_/.-] characters: {repo}"
        )

    official_name: Optional[str] = None
    if host == DEFAULT_INDEX_NAME:
        if namespace is None:
            namespace = OFFICIAL_NAMESPACE
        if namespace == OFFICIAL_NAMESPACE:
            official_name = repo

    remote_name = f"{namespace}/{repo}" if namespace else repo
    return RepoCoordinates(
        index_host=host,
        remote_name=remote_name,
        official_name=official_name,
        scheme=scheme,
    )
