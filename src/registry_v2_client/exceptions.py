"""Custom exceptions for Registry API v2 client."""

from typing import Any, Optional


class RegistryError(Exception):
    """Base exception for all registry-related errors.

    Carries the response (and redirect chain, for blob operations) that
    caused it so callers can branch on the status code.
    """

    def __init__(
        self,
        message: str,
        *,
        response: Optional[Any] = None,
        chain: Optional[Any] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        if response is None and chain is not None:
            response = chain.last
        self.response = response
        self.chain = chain
        self.errors = errors or []

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status of the attached response, if any."""
        return self.response.status if self.response is not None else None

    @property
    def headers(self) -> Any:
        """Headers of the attached response (empty if none)."""
        return self.response.headers if self.response is not None else {}


class InvalidRepoNameError(RegistryError):
    """Raised when a repository reference cannot be parsed."""

    pass


class TransportError(RegistryError):
    """Raised when unable to talk to the registry at the connection level."""

    pass


class AuthError(RegistryError):
    """Base exception for authentication failures."""

    pass


class AuthEndpointError(AuthError):
    """Raised when the token endpoint answers with a non-2xx status."""

    pass


class MalformedAuthResponseError(AuthError):
    """Raised when the token endpoint response carries no token."""

    pass


class UnauthorizedError(AuthError):
    """Raised when the registry refuses the request with 401."""

    pass


class NotFoundError(RegistryError):
    """Raised when the repository, tag, manifest or blob does not exist."""

    pass


class ManifestError(RegistryError):
    """Raised when manifest operations fail."""

    pass


class DigestMismatchError(RegistryError):
    """Raised when content does not hash to its advertised digest."""

    def __init__(self, expected: str, actual: str, **kwargs: Any) -> None:
        super().__init__(
            f"Digest mismatch: expected {expected}, got {actual}", **kwargs
        )
        self.expected = expected
        self.actual = actual
