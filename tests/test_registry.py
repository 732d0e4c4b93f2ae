"""Unit tests for the registry client."""

from __future__ import annotations

import io
import json
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import requests

from imagebuild.common.errors import RegistryError
from imagebuild.runtime.registry import RegistryClient


class FakeRaw(io.BytesIO):
    decode_content = False


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, *, headers=None, body: bytes = b"") -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.content = json.dumps(payload).encode("utf-8") if payload is not None else body
        self.raw = FakeRaw(body)

    def json(self) -> Any:
        return self._payload


class FakeSession:
    """Answers registry requests from a table keyed by (method, url)."""

    def __init__(self, responses: Dict[tuple, FakeResponse], error: Optional[Exception] = None) -> None:
        self.responses = responses
        self.error = error
        self.requests: List[tuple] = []
        self.auth = None

    def request(self, method: str, url: str, **kwargs) -> FakeResponse:
        self.requests.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.responses.get((method, url), FakeResponse(404))


BASE = "http://registry.local:5000/v2"


def make_client(responses=None, **kwargs) -> RegistryClient:
    session = FakeSession(responses or {}, error=kwargs.pop("error", None))
    return RegistryClient("registry.local", 5000, session=session, **kwargs)


def test_image_exists_checks_tag_list() -> None:
    client = make_client({("GET", f"{BASE}/realm/repo/tags/list"): FakeResponse(payload={"tags": ["web", "db"]})})

    assert client.image_exists("realm/repo", "web")
    assert not client.image_exists("realm/repo", "cache")


def test_tagged_name_is_looked_up_in_its_own_repository() -> None:
    client = make_client({("GET", f"{BASE}/realm/repo/centos/tags/list"): FakeResponse(payload={"tags": ["7"]})})

    assert client.image_exists("realm/repo", "centos:7")


def test_unknown_repository_does_not_exist() -> None:
    assert not make_client().image_exists("realm/repo", "web")


def test_unexpected_status_is_registry_error() -> None:
    client = make_client({("GET", f"{BASE}/realm/repo/tags/list"): FakeResponse(500)})

    with pytest.raises(RegistryError):
        client.image_exists("realm/repo", "web")


def test_transport_failure_is_registry_error() -> None:
    client = make_client(error=requests.exceptions.ConnectionError("refused"))

    with pytest.raises(RegistryError):
        client.image_exists("realm/repo", "web")


def test_credentials_are_set_on_session() -> None:
    client = make_client(user_id="builder", password="secret", use_ssl=True)

    assert client.session.auth == ("builder", "secret")
    assert client.base_url == "https://registry.local:5000/v2"


def test_get_image_writes_manifest_and_blobs(tmp_path: Path) -> None:
    manifest = {
        "schemaVersion": 2,
        "config": {"digest": "sha256:cfg", "size": 3},
        "layers": [{"digest": "sha256:layer1", "size": 5}],
    }
    client = make_client(
        {
            ("GET", f"{BASE}/realm/repo/manifests/web"): FakeResponse(payload=manifest),
            ("GET", f"{BASE}/realm/repo/blobs/sha256:cfg"): FakeResponse(body=b"cfg"),
            ("GET", f"{BASE}/realm/repo/blobs/sha256:layer1"): FakeResponse(body=b"layer"),
        }
    )
    dest = tmp_path / "image.tar"

    client.get_image("realm/repo", "web", dest)

    with tarfile.open(dest) as tar:
        assert tar.getnames() == ["manifest.json", "sha256_cfg", "sha256_layer1"]
        assert tar.extractfile("sha256_layer1").read() == b"layer"
        assert json.loads(tar.extractfile("manifest.json").read()) == manifest


def test_get_missing_image_fails(tmp_path: Path) -> None:
    with pytest.raises(RegistryError):
        make_client().get_image("realm/repo", "web", tmp_path / "image.tar")


def test_delete_image_resolves_digest_first() -> None:
    client = make_client(
        {
            ("HEAD", f"{BASE}/realm/repo/manifests/web"): FakeResponse(
                headers={"Docker-Content-Digest": "sha256:abc"}
            ),
            ("DELETE", f"{BASE}/realm/repo/manifests/sha256:abc"): FakeResponse(202),
        }
    )

    client.delete_image("realm/repo", "web")

    assert [method for method, _, _ in client.session.requests] == ["HEAD", "DELETE"]


def test_delete_unknown_image_fails() -> None:
    with pytest.raises(RegistryError):
        make_client().delete_image("realm/repo", "web")


class NotJSONResponse(FakeResponse):
    def json(self) -> Any:
        raise ValueError("Expecting value: line 1 column 1 (char 0)")


def test_non_json_tag_list_is_registry_error() -> None:
    client = make_client({("GET", f"{BASE}/realm/repo/tags/list"): NotJSONResponse(body=b"<html>proxy</html>")})

    with pytest.raises(RegistryError):
        client.image_exists("realm/repo", "web")


def test_non_json_manifest_is_registry_error(tmp_path: Path) -> None:
    client = make_client({("GET", f"{BASE}/realm/repo/manifests/web"): NotJSONResponse(body=b"oops")})

    with pytest.raises(RegistryError):
        client.get_image("realm/repo", "web", tmp_path / "image.tar")
