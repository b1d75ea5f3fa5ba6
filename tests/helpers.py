"""Test helpers: an in-process fake registry and blob storage server."""

import asyncio
import base64
import hashlib
import json
from typing import Optional

from aiohttp import web
from aiohttp.test_utils import TestServer

API_VERSION_HEADER = {"Docker-Distribution-Api-Version": "registry/2.0"}


def sha256_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def basic_header(username: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{username}:{password}".encode()).decode()


def make_schema2_manifest(config_digest: str, layer_digests: list[str]) -> bytes:
    """Serialize a schema 2 image manifest."""
    manifest = {
        "schemaVersion": 2,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "config": {
            "mediaType": "application/vnd.docker.container.image.v1+json",
            "size": 2,
            "digest": config_digest,
        },
        "layers": [
            {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar.gzip",
                "size": 1,
                "digest": d,
            }
            for d in layer_digests
        ],
    }
    return json.dumps(manifest, indent=3).encode("utf-8")


def make_schema1_manifest(name: str, tag: str, layer_digests: list[str]) -> tuple[bytes, str]:
    """Serialize a signed schema 1 manifest.

    Returns:
        Tuple of (signed body, digest of the unsigned payload)
    """
    body = {
        "schemaVersion": 1,
        "name": name,
        "tag": tag,
        "architecture": "amd64",
        "fsLayers": [{"blobSum": d} for d in layer_digests],
        "history": [{"v1Compatibility": json.dumps({"id": "abc"})}],
    }
    payload = json.dumps(body, indent=3).encode("utf-8")
    tail = b"\n}"
    format_length = len(payload) - len(tail)
    protected = {
        "formatLength": format_length,
        "formatTail": b64url(tail),
        "time": "2015-06-01T00:00:00Z",
    }
    signatures = [
        {
            "header": {"alg": "ES256", "jwk": {"kty": "EC", "crv": "P-256"}},
            "signature": b64url(b"not-a-real-signature"),
            "protected": b64url(json.dumps(protected).encode("utf-8")),
        }
    ]
    signed = (
        payload[:format_length]
        + b',\n   "signatures": '
        + json.dumps(signatures, indent=3).encode("utf-8")
        + tail
    )
    return signed, sha256_digest(payload)


class _Server:
    """Start/stop wrapper around aiohttp's TestServer."""

    def __init__(self) -> None:
        self._server: Optional[TestServer] = None

    def app(self) -> web.Application:
        raise NotImplementedError

    async def start(self) -> None:
        self._server = TestServer(self.app(), host="127.0.0.1")
        await self._server.start_server()

    async def close(self) -> None:
        if self._server is not None:
            await self._server.close()

    @property
    def host(self) -> str:
        return f"127.0.0.1:{self._server.port}"

    @property
    def url(self) -> str:
        return f"http://{self.host}"


class FakeStorage(_Server):
    """Blob storage that registries redirect downloads to."""

    def __init__(self) -> None:
        super().__init__()
        self.blobs: dict[str, bytes] = {}
        self.authorizations: list[Optional[str]] = []

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/blobs/{digest}", self.get_blob)
        return app

    async def get_blob(self, request: web.Request) -> web.StreamResponse:
        self.authorizations.append(request.headers.get("Authorization"))
        data = self.blobs.get(request.match_info["digest"])
        if data is None:
            return web.Response(status=404, text="no such object")
        return web.Response(body=data, content_type="application/octet-stream")


class FakeRegistry(_Server):
    """Minimal read-only Docker Registry v2 with Basic or Bearer auth."""

    def __init__(
        self,
        auth: str = "none",
        username: str = "user",
        password: str = "secret",
        service: str = "fake-registry",
    ) -> None:
        super().__init__()
        self.auth = auth
        self.username = username
        self.password = password
        self.service = service
        self.manifests: dict[str, tuple[bytes, str]] = {}
        self.blobs: dict[str, bytes] = {}
        self.tags: dict[str, list[str]] = {}
        self.page_size: Optional[int] = None
        self.tags_link: Optional[str] = None
        self.raw_tags: Optional[object] = None
        self.storage: Optional[FakeStorage] = None
        self.send_digest_header = True
        self.truncate_blobs = False

        # auth bookkeeping
        self.tokens: dict[str, str] = {}
        self.token_requests: list[dict[str, Optional[str]]] = []
        self.token_delay = 0.0
        self.token_status = 200
        self.token_payload: Optional[dict] = None
        self.reject_all = False
        self.requests: list[tuple[str, str, Optional[str]]] = []
        self.manifest_accepts: list[Optional[str]] = []

    # -- content

    def add_manifest(
        self, repo: str, tag: str, raw: bytes, digest: Optional[str] = None
    ) -> str:
        digest = digest or sha256_digest(raw)
        self.manifests[f"{repo}@{tag}"] = (raw, digest)
        self.manifests[f"{repo}@{digest}"] = (raw, digest)
        self.tags.setdefault(repo, []).append(tag)
        return digest

    def add_blob(self, data: bytes) -> str:
        digest = sha256_digest(data)
        self.blobs[digest] = data
        if self.storage is not None:
            self.storage.blobs[digest] = data
        return digest

    # -- application

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self.middleware])
        app.router.add_get("/token", self.get_token)
        app.router.add_get("/v2/", self.get_base)
        app.router.add_get("/v2/{name:.+}/tags/list", self.get_tags)
        app.router.add_get("/v2/{name:.+}/manifests/{ref}", self.get_manifest)
        app.router.add_get("/v2/{name:.+}/blobs/{digest}", self.get_blob)
        return app

    def _error(self, status: int, code: str, message: str) -> web.Response:
        return web.json_response(
            {"errors": [{"code": code, "message": message}]},
            status=status,
            headers=API_VERSION_HEADER,
        )

    def _challenge(self, request: web.Request, scope: Optional[str]) -> web.Response:
        if self.auth == "basic":
            header = 'Basic realm="fake-registry"'
        else:
            realm = f"{request.scheme}://{request.host}/token"
            header = f'Bearer realm="{realm}",service="{self.service}"'
            if scope:
                header += f',scope="{scope}"'
        response = self._error(401, "UNAUTHORIZED", "authentication required")
        response.headers["WWW-Authenticate"] = header
        return response

    def _authorized(self, authorization: Optional[str], scope: Optional[str]) -> bool:
        if self.reject_all or not authorization:
            return False
        if self.auth == "basic":
            return authorization == basic_header(self.username, self.password)
        if not authorization.startswith("Bearer "):
            return False
        granted = self.tokens.get(authorization[len("Bearer ") :])
        if granted is None:
            return False
        return scope is None or granted == scope

    @web.middleware
    async def middleware(self, request: web.Request, handler) -> web.StreamResponse:
        authorization = request.headers.get("Authorization")
        self.requests.append((request.method, request.path, authorization))
        if self.auth != "none" and request.path.startswith("/v2/"):
            name = request.match_info.get("name")
            scope = f"repository:{name}:pull" if name else None
            if not self._authorized(authorization, scope):
                return self._challenge(request, scope)
        response = await handler(request)
        response.headers.update(API_VERSION_HEADER)
        return response

    async def get_token(self, request: web.Request) -> web.Response:
        authorization = request.headers.get("Authorization")
        self.token_requests.append(
            {
                "service": request.query.get("service"),
                "scope": request.query.get("scope"),
                "account": request.query.get("account"),
                "authorization": authorization,
            }
        )
        if self.token_delay:
            await asyncio.sleep(self.token_delay)
        if self.token_status != 200:
            return web.json_response({"details": "denied"}, status=self.token_status)
        if authorization is not None and authorization != basic_header(
            self.username, self.password
        ):
            return web.json_response({"details": "bad credentials"}, status=401)
        if self.token_payload is not None:
            return web.json_response(self.token_payload)

        token = f"tok-{len(self.token_requests)}"
        self.tokens[token] = request.query.get("scope", "")
        return web.json_response({"token": token, "expires_in": 300})

    async def get_base(self, request: web.Request) -> web.Response:
        return web.json_response({})

    async def get_tags(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        if name not in self.tags:
            return self._error(404, "NAME_UNKNOWN", "repository name not known to registry")
        tags = sorted(self.tags[name])
        headers = {}
        if self.page_size:
            last = request.query.get("last")
            if last is not None:
                tags = [t for t in tags if t > last]
            page, rest = tags[: self.page_size], tags[self.page_size :]
            if rest:
                headers["Link"] = (
                    f'</v2/{name}/tags/list?n={self.page_size}&last={page[-1]}>; rel="next"'
                )
            tags = page
        if self.tags_link is not None:
            headers["Link"] = self.tags_link
        if self.raw_tags is not None:
            tags = self.raw_tags
        return web.json_response({"name": name, "tags": tags}, headers=headers)

    async def get_manifest(self, request: web.Request) -> web.Response:
        self.manifest_accepts.append(request.headers.get("Accept"))
        name = request.match_info["name"]
        entry = self.manifests.get(f"{name}@{request.match_info['ref']}")
        if entry is None:
            return self._error(404, "MANIFEST_UNKNOWN", "manifest unknown")
        raw, digest = entry
        headers = {"Docker-Content-Digest": digest} if self.send_digest_header else {}
        media_type = json.loads(raw).get(
            "mediaType", "application/vnd.docker.distribution.manifest.v1+prettyjws"
        )
        return web.Response(body=raw, headers=headers, content_type=media_type)

    async def get_blob(self, request: web.Request) -> web.StreamResponse:
        digest = request.match_info["digest"]
        data = self.blobs.get(digest)
        if data is None:
            return self._error(404, "BLOB_UNKNOWN", "blob unknown to registry")
        headers = {"Docker-Content-Digest": digest}
        if self.storage is not None:
            headers["Location"] = f"{self.storage.url}/blobs/{digest}"
            return web.Response(status=307, headers=headers)
        if self.truncate_blobs:
            response = web.StreamResponse(headers=headers)
            response.content_type = "application/octet-stream"
            response.content_length = len(data)
            await response.prepare(request)
            await response.write(data[: len(data) // 2])
            request.transport.close()
            return response
        return web.Response(
            body=data, headers=headers, content_type="application/octet-stream"
        )
