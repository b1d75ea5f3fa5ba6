"""Manifest media types and digest correlation."""

import base64
import json
from typing import Any, Optional

from ..exceptions import DigestMismatchError, ManifestError
from ..utils.digest import calculate_digest, split_digest

MEDIA_TYPE_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
MEDIA_TYPE_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
MEDIA_TYPE_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
MEDIA_TYPE_OCI_INDEX = "application/vnd.oci.image.index.v1+json"


def manifest_accept_types(
    max_schema_version: int = 2, accept_manifest_lists: bool = False
) -> list[str]:
    """Media types to send in ``Accept`` for a manifest request.

    Schema 1 sends nothing so the registry falls back to its v1 default.
    """
    if max_schema_version < 2:
        return []
    types = [MEDIA_TYPE_MANIFEST_V2, MEDIA_TYPE_OCI_MANIFEST]
    if accept_manifest_lists:
        types += [MEDIA_TYPE_MANIFEST_LIST, MEDIA_TYPE_OCI_INDEX]
    return types


def _b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def signed_payload(raw: bytes, manifest: dict[str, Any]) -> bytes:
    """Return the part of a schema 1 manifest its digest covers.

    Signed manifests are hashed without their ``signatures`` block: the
    body is cut at ``formatLength`` and ``formatTail`` appended, both
    taken from the first signature's protected header.
    """
    signatures = manifest.get("signatures")
    if not signatures:
        return raw
    try:
        protected = json.loads(_b64url_decode(signatures[0]["protected"]))
        format_length = int(protected["formatLength"])
        format_tail = _b64url_decode(protected["formatTail"])
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestError(f"Invalid schema 1 manifest signature: {e}") from e
    return raw[:format_length] + format_tail


def calculate_manifest_digest(
    raw: bytes, manifest: dict[str, Any], algorithm: str = "sha256"
) -> str:
    """Compute a manifest's content digest, routed on ``schemaVersion``.

    Raises:
        ManifestError: For an unknown schema version
    """
    schema_version = manifest.get("schemaVersion")
    if schema_version == 1:
        return calculate_digest(signed_payload(raw, manifest), algorithm)
    if schema_version == 2:
        return calculate_digest(raw, algorithm)
    raise ManifestError(f"Unsupported manifest schemaVersion: {schema_version!r}")


def verify_manifest_digest(
    raw: bytes, manifest: dict[str, Any], expected: Optional[str]
) -> str:
    """Check a manifest body against its ``Docker-Content-Digest``.

    Args:
        raw: Manifest body as received
        manifest: Decoded manifest
        expected: Header value, or None when the registry sent none

    Returns:
        The manifest digest

    Raises:
        DigestMismatchError: If the body does not hash to ``expected``
        ManifestError: For an unknown schema version or bad header
    """
    if expected is None:
        return calculate_manifest_digest(raw, manifest)
    try:
        algorithm, expected_hex = split_digest(expected)
    except ValueError as e:
        raise ManifestError(f"Invalid Docker-Content-Digest header: {expected}") from e
    actual = calculate_manifest_digest(raw, manifest, algorithm)
    if actual != f"{algorithm}:{expected_hex}":
        raise DigestMismatchError(expected, actual)
    return actual
