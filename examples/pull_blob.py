"""Example: resolve an image manifest and download its layers."""

import asyncio
import logging
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from registry_v2_client import RegistryError, create_client_v2
from registry_v2_client.utils import new_hasher

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def pull(name: str, ref: str = "latest") -> None:
    """Download every layer of ``name:ref`` and verify its digest."""
    async with create_client_v2(name, log=logger) as client:
        manifest, response = await client.get_manifest(ref)
        logger.info("%s:%s -> %s", name, ref, response.content_digest)

        for layer in manifest.get("layers", []):
            digest = layer["digest"]
            stream, chain = await client.create_blob_read_stream(digest)
            hasher = new_hasher(digest)
            async with stream:
                async for chunk in stream:
                    hasher.update(chunk)
            ok = f"{digest.split(':')[0]}:{hasher.hexdigest()}" == digest
            logger.info(
                "  %s: %d bytes via %d hop(s), digest %s",
                digest[:19],
                stream.bytes_read,
                len(chain),
                "ok" if ok else "MISMATCH",
            )


async def main():
    name = sys.argv[1] if len(sys.argv) > 1 else "alpine"
    try:
        await pull(name)
    except RegistryError as e:
        logger.error("Registry error (status %s): %s", e.status_code, e)


if __name__ == "__main__":
    asyncio.run(main())
