"""Registry operations the build pipeline depends on (Docker Registry HTTP API v2)."""
from __future__ import annotations

import io
import logging
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import requests

from ..common.errors import RegistryError

MANIFEST_MEDIA_TYPE = "application/vnd.docker.distribution.manifest.v2+json"


class ImageRegistry(Protocol):
    """Registry calls used by the orchestrator."""

    def image_exists(self, repository_path: str, name: str) -> bool:
        ...

    def get_image(self, full_name: str, tag: str, dest_path: Union[str, Path]) -> None:
        ...

    def delete_image(self, name: str, tag: str) -> None:
        ...


class RegistryClient:
    """Minimal client for a private registry reachable over HTTP(S)."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        user_id: str = "",
        password: str = "",
        use_ssl: bool = False,
        request_timeout: int = 30,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        scheme = "https" if use_ssl else "http"
        self.base_url = f"{scheme}://{host}:{port}/v2"
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(__name__)
        self.session = session or requests.Session()
        if user_id:
            self.session.auth = (user_id, password)

    def image_exists(self, repository_path: str, name: str) -> bool:
        """
        Return True when ``name`` is already a tag of ``repository_path``.

        A ``name:tag`` input is looked up as tag ``tag`` of ``repository_path/name``.
        """
        repository, tag = _split_reference(repository_path, name)
        response = self._request("GET", f"{repository}/tags/list")
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise RegistryError(f"Registry returned status {response.status_code} listing tags of {repository}")
        tags = _json_body(response, f"tag list of {repository}").get("tags") or []
        self.logger.debug("Tags of %s: %s", repository, tags)
        return tag in tags

    def get_image(self, full_name: str, tag: str, dest_path: Union[str, Path]) -> None:
        """Download the manifest and every blob of ``full_name:tag`` into a tar file at ``dest_path``."""
        manifest_response = self._request(
            "GET", f"{full_name}/manifests/{tag}", headers={"Accept": MANIFEST_MEDIA_TYPE}
        )
        if manifest_response.status_code != 200:
            raise RegistryError(
                f"Registry returned status {manifest_response.status_code} for manifest {full_name}:{tag}"
            )
        manifest = _json_body(manifest_response, f"manifest {full_name}:{tag}")
        descriptors: List[dict] = [manifest["config"], *manifest.get("layers", [])] if "config" in manifest else []

        self.logger.info("Saving %s:%s (%d blobs) to %s", full_name, tag, len(descriptors), dest_path)
        with tarfile.open(str(dest_path), mode="w") as tar:
            _add_bytes(tar, "manifest.json", manifest_response.content)
            for descriptor in descriptors:
                digest = descriptor["digest"]
                blob = self._request("GET", f"{full_name}/blobs/{digest}", stream=True)
                if blob.status_code != 200:
                    raise RegistryError(f"Registry returned status {blob.status_code} for blob {digest}")
                info = tarfile.TarInfo(name=digest.replace(":", "_"))
                info.size = int(descriptor["size"])
                blob.raw.decode_content = True
                tar.addfile(info, blob.raw)

    def delete_image(self, name: str, tag: str) -> None:
        """Delete the manifest that ``name:tag`` points to."""
        head = self._request("HEAD", f"{name}/manifests/{tag}", headers={"Accept": MANIFEST_MEDIA_TYPE})
        digest = head.headers.get("Docker-Content-Digest")
        if head.status_code != 200 or not digest:
            raise RegistryError(f"Image {name}:{tag} not found in registry (status {head.status_code})")
        response = self._request("DELETE", f"{name}/manifests/{digest}")
        if response.status_code not in (200, 202):
            raise RegistryError(f"Registry returned status {response.status_code} deleting {name}:{tag}")
        self.logger.info("Deleted %s:%s (%s) from registry", name, tag, digest)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}/{path}"
        self.logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, timeout=self.request_timeout, **kwargs)
        except requests.exceptions.RequestException as exc:
            raise RegistryError(f"Registry request {method} {url} failed: {exc}") from exc


def _split_reference(repository_path: str, name: str) -> Tuple[str, str]:
    if ":" in name:
        image, tag = name.split(":", 1)
        return f"{repository_path}/{image}", tag
    return repository_path, name


def _add_bytes(tar: tarfile.TarFile, name: str, payload: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(payload)
    tar.addfile(info, io.BytesIO(payload))


def _json_body(response: requests.Response, what: str) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise RegistryError(f"Registry returned a malformed {what}: {exc}") from exc
    if not isinstance(payload, dict):
        raise RegistryError(f"Registry returned a malformed {what}: expected a JSON object")
    return payload
