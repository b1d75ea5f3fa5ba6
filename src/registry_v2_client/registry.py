"""Async functional registry operations."""

from typing import Any, Optional

from .core.registry_client import RegistryClient
from .core.types import RegistryConfig, RegistryResponse, TagList


def _client(
    name: str,
    username: Optional[str],
    password: Optional[str],
    timeout: Optional[float],
    insecure: bool,
) -> RegistryClient:
    config = RegistryConfig(
        name=name,
        username=username,
        password=password,
        timeout=timeout,
        insecure=insecure,
    )
    return RegistryClient(config)


async def check_registry_connectivity(
    name: str, timeout: int = 10, insecure: bool = False
) -> bool:
    """레지스트리가 v2 API를 지원하는지 확인합니다.

    인증이 필요한 레지스트리(401 응답)도 v2를 지원하는 것으로 판단합니다.

    Args:
        name: 저장소 이름 (예: "alpine", "localhost:5000/myapp")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        insecure: True면 HTTP로 접속합니다 (로컬 레지스트리용)

    Returns:
        bool: v2 API 지원 시 True

    Examples:
        # 로컬 레지스트리 연결 확인
        ok = await check_registry_connectivity("localhost:5000/myapp", insecure=True)
    """
    async with _client(name, None, None, timeout, insecure) as client:
        return await client.supports_v2()


async def ping(
    name: str, timeout: int = 10, insecure: bool = False
) -> tuple[Any, RegistryResponse]:
    """레지스트리 API 루트(/v2/)에 익명으로 요청합니다.

    Args:
        name: 저장소 이름 (예: "alpine", "quay.io/coreos/etcd")
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        insecure: True면 HTTP로 접속합니다

    Returns:
        tuple[Any, RegistryResponse]: (응답 본문, 응답)

    Raises:
        UnauthorizedError: 인증이 필요한 레지스트리인 경우 (401, WWW-Authenticate 포함)
        RegistryError: 기타 요청 실패 시

    Examples:
        try:
            body, res = await ping("alpine")
        except UnauthorizedError as e:
            print(e.headers["WWW-Authenticate"])
    """
    async with _client(name, None, None, timeout, insecure) as client:
        return await client.ping()


async def login(
    name: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: int = 10,
    insecure: bool = False,
) -> bool:
    """자격 증명으로 레지스트리 로그인을 확인합니다.

    Args:
        name: 저장소 이름 (레지스트리 호스트를 결정하는 데 사용)
        username: 사용자 이름
        password: 비밀번호
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        insecure: True면 HTTP로 접속합니다

    Returns:
        bool: 로그인 성공 시 True

    Raises:
        UnauthorizedError: 자격 증명이 거부된 경우
        AuthEndpointError: 토큰 서버 요청 실패 시
    """
    async with _client(name, username, password, timeout, insecure) as client:
        return await client.login()


async def list_tags(
    name: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: int = 10,
    insecure: bool = False,
) -> list[str]:
    """특정 저장소의 모든 태그 목록을 조회합니다.

    Args:
        name: 저장소 이름 (예: "alpine", "mycompany/myapp", "localhost:5000/app")
        username: 사용자 이름 (선택사항)
        password: 비밀번호 (선택사항)
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        insecure: True면 HTTP로 접속합니다

    Returns:
        list[str]: 태그 이름 목록 (예: ["latest", "3.19", "edge"])

    Raises:
        NotFoundError: 저장소가 존재하지 않는 경우
        RegistryError: 요청 실패 시

    Examples:
        tags = await list_tags("alpine")
        print(f"alpine 태그: {tags}")
    """
    async with _client(name, username, password, timeout, insecure) as client:
        result: TagList = await client.list_tags()
        return result.tags


async def get_manifest(
    name: str,
    ref: str = "latest",
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: int = 10,
    insecure: bool = False,
) -> dict[str, Any]:
    """이미지의 매니페스트를 조회합니다.

    Args:
        name: 저장소 이름 (예: "alpine", "mycompany/myapp")
        ref: 태그 또는 digest (예: "latest", "sha256:abc123...")
        username: 사용자 이름 (선택사항)
        password: 비밀번호 (선택사항)
        timeout: 요청 타임아웃 (초, 기본값: 10초)
        insecure: True면 HTTP로 접속합니다

    Returns:
        dict[str, Any]: 매니페스트 딕셔너리. Docker-Content-Digest 헤더가 있으면
        "digest" 키로 함께 반환됩니다.

    Raises:
        NotFoundError: 태그나 digest가 존재하지 않는 경우
        RegistryError: 요청 실패 시

    Examples:
        manifest = await get_manifest("alpine", "latest")
        print(f"스키마 버전: {manifest['schemaVersion']}")
    """
    async with _client(name, username, password, timeout, insecure) as client:
        manifest, response = await client.get_manifest(ref)
    if response.content_digest and "digest" not in manifest:
        manifest = {**manifest, "digest": response.content_digest}
    return manifest

