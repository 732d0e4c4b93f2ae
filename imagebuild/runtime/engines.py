"""Build backends: the ``docker build`` command and the Docker Engine REST API."""
from __future__ import annotations

import logging
import tarfile
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Literal, Optional, Protocol, Union

import docker
import requests
from docker.constants import DEFAULT_DOCKER_API_VERSION
from docker.errors import APIError, DockerException
from requests.auth import AuthBase, HTTPBasicAuth

from ..common.command_runner import CommandRunner
from ..common.errors import BackendUnreachable, BuildFailed
from .staging import StagedBuildContext

OutputFormat = Literal["text", "json-stream"]
SessionTokenInjector = Callable[[requests.PreparedRequest, str], None]

DOCKER_SOCKET_URL = "unix:///var/run/docker.sock"


class BuildBackend(Protocol):
    """
    Something that can build a staged context into a tagged image.

    ``output_format`` tells the caller whether ``build`` returns the plain
    transcript (``"text"``) or the engine's JSON-lines stream (``"json-stream"``).
    """

    output_format: OutputFormat

    def build(
        self,
        context: StagedBuildContext,
        image_full_name: str,
        *,
        timeout: Optional[float] = None,
    ) -> Union[str, Iterable[Union[str, bytes]]]:
        ...


class LocalEngine:
    """Run the ``docker build`` command and capture its combined output."""

    output_format: OutputFormat = "text"

    def __init__(
        self,
        command_runner: Optional[CommandRunner] = None,
        *,
        docker_binary: str = "docker",
        disable_buildkit: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.command_runner = command_runner or CommandRunner(logger=self.logger)
        self.docker_binary = docker_binary
        self.disable_buildkit = disable_buildkit

    def build_command(self, context: StagedBuildContext, image_full_name: str) -> List[str]:
        return [
            self.docker_binary,
            "build",
            "--file",
            str(context.dockerfile_path),
            "--tag",
            image_full_name,
            str(context.path),
        ]

    def build(
        self,
        context: StagedBuildContext,
        image_full_name: str,
        *,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Build the image and return the transcript.

        Raises:
            BackendUnreachable: The docker binary is missing.
            BuildFailed: The command failed or timed out; ``raw_output`` keeps the transcript.
        """
        # The classic builder prints the "Step N : ..." transcript the parser understands.
        env = {"DOCKER_BUILDKIT": "0"} if self.disable_buildkit else None

        self.logger.info("Building Docker image %s with %s", image_full_name, self.docker_binary)
        result = self.command_runner.run(
            self.build_command(context, image_full_name),
            timeout=timeout,
            env=env,
            merge_stderr=True,
        )
        output = result.combined_output

        if not result.tool_available:
            raise BackendUnreachable(f"Docker CLI not available: {self.docker_binary}")
        if result.timed_out:
            self.logger.error("docker build timed out for %s after %.1fs", image_full_name, result.duration)
            raise BuildFailed(
                f"docker build timed out after {result.duration:.0f}s",
                raw_output=output,
                timed_out=True,
            )
        if not result.succeeded():
            detail = f"exit status {result.return_code}" if result.return_code is not None else result.stderr
            self.logger.error("docker build failed for %s: %s", image_full_name, detail)
            raise BuildFailed(f"docker build failed: {detail}", raw_output=output)

        self.logger.info("Build completed for %s in %.1fs", image_full_name, result.duration)
        return output


@dataclass(slots=True)
class EngineConnection:
    """Where the Docker Engine listens and how to authenticate against it."""

    use_ssl: bool = False
    host: str = ""
    port: int = 2375
    user_id: str = ""
    password: str = ""
    session_token_injector: Optional[SessionTokenInjector] = None
    session_token: str = ""
    api_version: str = DEFAULT_DOCKER_API_VERSION
    timeout: int = 60

    @property
    def base_url(self) -> str:
        """TCP URL for a host, otherwise the engine's local unix socket."""
        if not self.host:
            return DOCKER_SOCKET_URL
        return f"tcp://{self.host}:{self.port}"


class _EngineAuth(AuthBase):
    """Attach basic credentials and the session token to each engine request."""

    def __init__(self, connection: EngineConnection) -> None:
        self.connection = connection

    def __call__(self, request: requests.PreparedRequest) -> requests.PreparedRequest:
        if self.connection.user_id:
            request = HTTPBasicAuth(self.connection.user_id, self.connection.password)(request)
        if self.connection.session_token_injector and self.connection.session_token:
            self.connection.session_token_injector(request, self.connection.session_token)
        return request


class RESTEngine:
    """Drive builds through the Docker Engine API (``POST /build``)."""

    output_format: OutputFormat = "json-stream"

    def __init__(
        self,
        connection: Optional[EngineConnection] = None,
        *,
        client_factory: Callable[..., docker.APIClient] = docker.APIClient,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Open the connection and ping the engine.

        Raises:
            BackendUnreachable: When the client cannot be created or the ping fails.
        """
        self.connection = connection or EngineConnection()
        self.logger = logger or logging.getLogger(__name__)
        try:
            self.client = client_factory(
                base_url=self.connection.base_url,
                version=self.connection.api_version,
                timeout=self.connection.timeout,
                tls=self.connection.use_ssl,
            )
        except DockerException as exc:
            raise BackendUnreachable(f"Could not connect to docker engine at {self.connection.base_url}: {exc}") from exc
        self.client.auth = _EngineAuth(self.connection)

        self.logger.info("Attempting to ping the engine at %s", self.connection.base_url)
        self.ping()

    def ping(self) -> None:
        try:
            self.client.ping()
        except (DockerException, requests.exceptions.RequestException) as exc:
            raise BackendUnreachable(f"Ping of docker engine at {self.connection.base_url} failed: {exc}") from exc

    def get_images(self) -> List[Dict[str, Any]]:
        """List every image the engine holds, intermediate layers included."""
        try:
            return self.client.images(all=True)
        except (DockerException, requests.exceptions.RequestException) as exc:
            raise BackendUnreachable(f"Listing images failed: {exc}") from exc

    def build(
        self,
        context: StagedBuildContext,
        image_full_name: str,
        *,
        timeout: Optional[float] = None,
    ) -> Iterator[Union[str, bytes]]:
        """
        Send the staged context as a tar archive and return the response stream.

        The body is consumed lazily; HTTP failures surface as BuildFailed or
        BackendUnreachable while iterating.
        """
        self.logger.info("Building Docker image %s through the engine API", image_full_name)
        with tempfile.TemporaryFile() as archive:
            _write_context_archive(context, archive)
            archive.seek(0)
            try:
                chunks = self.client.build(
                    fileobj=archive,
                    custom_context=True,
                    tag=image_full_name,
                    dockerfile=context.dockerfile_name,
                    rm=True,
                    timeout=timeout,
                    decode=False,
                )
            except APIError as exc:
                raise BuildFailed(f"Engine rejected build of {image_full_name}: {exc.explanation or exc}") from exc
            except (DockerException, requests.exceptions.RequestException) as exc:
                raise BackendUnreachable(f"Build request to {self.connection.base_url} failed: {exc}") from exc
        return self._relay(chunks, image_full_name)

    def _relay(self, chunks: Iterable[Union[str, bytes]], image_full_name: str) -> Iterator[Union[str, bytes]]:
        try:
            for chunk in chunks:
                yield chunk
        except APIError as exc:
            self.logger.error("Engine build of %s failed: %s", image_full_name, exc)
            raise BuildFailed(f"Engine rejected build of {image_full_name}: {exc.explanation or exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise BackendUnreachable(f"Connection to {self.connection.base_url} lost during build: {exc}") from exc


def _write_context_archive(context: StagedBuildContext, fileobj) -> None:
    """Tar every regular file of the staging directory, with paths relative to it."""
    with tarfile.open(fileobj=fileobj, mode="w") as tar:
        for path in sorted(context.path.rglob("*")):
            if path.is_file():
                tar.add(str(path), arcname=str(path.relative_to(context.path)))
