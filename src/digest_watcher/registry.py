"""Registry clients that resolve a tag to its current content digest.

Two implementations share the ``RegistryClient`` protocol:

* ``DockerHubRegistryClient`` queries the Docker Hub tag API
  (``/v2/repositories/<repo>/tags/<tag>/``).
* ``OciRegistryClient`` speaks the OCI distribution API
  (``/v2/<repo>/manifests/<tag>``) including the bearer-token challenge.

Digest selection is deterministic: the manifest-list / image-index digest is
preferred because that is what ``docker pull`` records in ``RepoDigests``.
Only when a registry exposes no index digest is the per-platform entry used.
"""

from __future__ import annotations

import hashlib
import re
from typing import Any, Protocol

import httpx

from digest_watcher.errors import RegistryUnavailable, TagNotFound
from digest_watcher.logging import get_logger

log = get_logger("digest_watcher.registry")

MANIFEST_ACCEPT = ", ".join(
    [
        "application/vnd.oci.image.index.v1+json",
        "application/vnd.docker.distribution.manifest.list.v2+json",
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
)

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


class RegistryClient(Protocol):
    """Resolves a repository/tag to the digest the registry advertises."""

    async def get_latest_digest(self, repository: str, tag: str) -> str: ...


def _platform_of(image: dict[str, Any]) -> str:
    parts = [str(image.get("os") or ""), str(image.get("architecture") or "")]
    variant = image.get("variant")
    if variant:
        parts.append(str(variant))
    return "/".join(parts).lower()


def select_digest(payload: dict[str, Any], platform: str) -> str | None:
    """Pick one digest from a Docker Hub tag payload.

    Order: the tag's index digest, then the image matching *platform*
    (an ``os/arch`` platform also matches entries that add a variant), then
    the sole image of a single-image tag. Returns None when none applies.
    """
    digest = payload.get("digest")
    if digest:
        return str(digest)

    images = [img for img in payload.get("images") or [] if img.get("digest")]
    exact = [img for img in images if _platform_of(img) == platform]
    if exact:
        return str(exact[0]["digest"])
    if platform.count("/") == 1:
        loose = sorted(
            (img for img in images if _platform_of(img).startswith(f"{platform}/")),
            key=_platform_of,
        )
        if loose:
            return str(loose[0]["digest"])
    if len(images) == 1:
        return str(images[0]["digest"])
    return None


def parse_bearer_challenge(header: str) -> dict[str, str] | None:
    """Parse a ``WWW-Authenticate: Bearer realm=…,service=…,scope=…`` header."""
    if not header or not header.lower().startswith("bearer "):
        return None
    params = dict(_CHALLENGE_PARAM_RE.findall(header[len("bearer ") :]))
    if "realm" not in params:
        return None
    return params


class DockerHubRegistryClient:
    """Reads tag digests from the Docker Hub v2 tag API."""

    def __init__(
        self,
        api_url: str = "https://hub.docker.com/v2",
        platform: str = "linux/amd64",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._platform = platform
        self._timeout = timeout
        self._transport = transport

    async def get_latest_digest(self, repository: str, tag: str) -> str:
        # Official images live under the implicit "library" namespace
        path_repo = repository if "/" in repository else f"library/{repository}"
        url = f"{self._api_url}/repositories/{path_repo}/tags/{tag}/"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            log.warning("registry_request_failed", url=url, error=str(exc))
            raise RegistryUnavailable(f"Docker Hub request failed: {exc}") from exc

        if resp.status_code == 404:
            raise TagNotFound(f"{repository}:{tag} not found on Docker Hub")
        if resp.status_code != 200:
            log.warning("registry_unexpected_status", url=url, status=resp.status_code)
            raise RegistryUnavailable(f"Docker Hub returned HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise RegistryUnavailable("Docker Hub returned a malformed body") from exc
        if not isinstance(payload, dict):
            raise RegistryUnavailable("Docker Hub returned a malformed body")

        digest = select_digest(payload, self._platform)
        if digest is None:
            raise TagNotFound(f"{repository}:{tag} has no manifest for {self._platform}")
        digest = digest.strip()
        if not digest:
            raise RegistryUnavailable("Docker Hub returned an empty digest")

        log.debug("registry_digest_resolved", repository=repository, tag=tag, digest=digest)
        return digest


class OciRegistryClient:
    """Reads tag digests through the OCI distribution API."""

    def __init__(
        self,
        registry_url: str = "https://registry-1.docker.io",
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._registry_url = registry_url.rstrip("/")
        self._username = username
        self._password = password
        self._timeout = timeout
        self._transport = transport

    async def get_latest_digest(self, repository: str, tag: str) -> str:
        path_repo = repository
        if "/" not in repository and httpx.URL(self._registry_url).host.endswith("docker.io"):
            path_repo = f"library/{repository}"
        url = f"{self._registry_url}/v2/{path_repo}/manifests/{tag}"
        headers = {"Accept": MANIFEST_ACCEPT}

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.head(url, headers=headers)
                if resp.status_code == 401:
                    token = await self._fetch_token(client, resp.headers.get("WWW-Authenticate", ""))
                    headers["Authorization"] = f"Bearer {token}"
                    resp = await client.head(url, headers=headers)

                if resp.status_code == 404:
                    raise TagNotFound(f"{repository}:{tag} not found in {self._registry_url}")
                if resp.status_code != 200:
                    log.warning("registry_unexpected_status", url=url, status=resp.status_code)
                    raise RegistryUnavailable(f"Registry returned HTTP {resp.status_code}")

                digest = resp.headers.get("Docker-Content-Digest", "").strip()
                if digest:
                    return digest

                # Some registries omit the header on HEAD; hash the raw manifest
                resp = await client.get(url, headers=headers)
                if resp.status_code != 200:
                    raise RegistryUnavailable(f"Registry returned HTTP {resp.status_code}")
                return resp.headers.get(
                    "Docker-Content-Digest",
                    f"sha256:{hashlib.sha256(resp.content).hexdigest()}",
                )
        except httpx.HTTPError as exc:
            log.warning("registry_request_failed", url=url, error=str(exc))
            raise RegistryUnavailable(f"Registry request failed: {exc}") from exc

    async def _fetch_token(self, client: httpx.AsyncClient, challenge: str) -> str:
        params = parse_bearer_challenge(challenge)
        if params is None:
            raise RegistryUnavailable("Registry requires auth but sent no bearer challenge")

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        auth = None
        if self._username and self._password:
            auth = httpx.BasicAuth(self._username, self._password)

        resp = await client.get(params["realm"], params=query, auth=auth)
        if resp.status_code != 200:
            log.warning("registry_token_failed", realm=params["realm"], status=resp.status_code)
            raise RegistryUnavailable(f"Token endpoint returned HTTP {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise RegistryUnavailable("Token endpoint returned a malformed body") from exc

        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryUnavailable("Token endpoint returned no token")
        return str(token)
