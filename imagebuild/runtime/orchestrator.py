"""Build a stored Dockerfile into a tagged image and report what happened."""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from ..common.command_runner import CommandRunner
from ..common.errors import (
    BackendUnreachable,
    BuildFailed,
    ImageAlreadyExists,
    IncompleteBuildOutput,
    InvalidImageName,
    MalformedStreamRecord,
    RegistryError,
    StagingFailed,
)
from ..common.models import BuildOutput, ImageReference
from ..core.config import BuilderConfig
from .engines import BuildBackend, EngineConnection, LocalEngine, RESTEngine, SessionTokenInjector
from .issues import RuntimeIssue
from .naming import NameValidator
from .output_parser import BuildOutputParser, ParseResult
from .registry import ImageRegistry, RegistryClient
from .staging import BuildContextStager, StagedBuildContext
from .stream import StreamDemuxer


@dataclass(slots=True)
class ImageBuildResult:
    """
    Aggregate result of one build request.

    ``output`` is whatever build report could be recovered, possibly partial,
    and is present even when ``issues`` contains errors. An incomplete
    transcript is reported as a warning, so ``success`` stays True.
    """

    image_full_name: str
    output: Optional[BuildOutput] = None
    issues: List[RuntimeIssue] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not any(issue.is_error() for issue in self.issues)

    @property
    def errors(self) -> List[RuntimeIssue]:
        return [issue for issue in self.issues if issue.is_error()]

    @property
    def warnings(self) -> List[RuntimeIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    @property
    def error_message(self) -> str:
        """Messages of all error issues, for display."""
        return "; ".join(issue.message for issue in self.errors)

    @property
    def final_image_id(self) -> str:
        return self.output.final_image_id if self.output else ""


class BuildOrchestrator:
    """
    Validate, stage, build and parse, in that order.

    The backend is chosen once, when the orchestrator is created. Each call to
    :meth:`build_dockerfile` stages its own directory and removes it before
    returning, whatever the outcome, so concurrent builds never share state.
    """

    def __init__(
        self,
        backend: BuildBackend,
        *,
        registry: Optional[ImageRegistry] = None,
        stager: Optional[BuildContextStager] = None,
        validator: Optional[NameValidator] = None,
        demuxer: Optional[StreamDemuxer] = None,
        parser: Optional[BuildOutputParser] = None,
        build_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.backend = backend
        self.registry = registry
        self.stager = stager or BuildContextStager(logger=self.logger)
        self.validator = validator or NameValidator()
        self.demuxer = demuxer or StreamDemuxer(logger=self.logger)
        self.parser = parser or BuildOutputParser(logger=self.logger)
        self.build_timeout = build_timeout

    @classmethod
    def from_config(
        cls,
        config: BuilderConfig,
        logger: Optional[logging.Logger] = None,
        *,
        session_token_injector: Optional[SessionTokenInjector] = None,
        session_token: str = "",
    ) -> "BuildOrchestrator":
        """
        Wire an orchestrator from configuration.

        ``session_token_injector`` and ``session_token`` are handed to the REST
        backend, which applies them to every engine request.

        Raises:
            BackendUnreachable: When the REST backend is selected and the engine does not answer.
        """
        logger = logger or logging.getLogger(__name__)
        backend: BuildBackend
        if config.backend == "rest":
            backend = RESTEngine(
                EngineConnection(
                    use_ssl=config.engine_use_ssl,
                    host=config.engine_host,
                    port=config.engine_port,
                    user_id=config.engine_user_id,
                    password=config.engine_password,
                    session_token_injector=session_token_injector,
                    session_token=session_token,
                ),
                logger=logger,
            )
        else:
            backend = LocalEngine(
                CommandRunner(logger=logger),
                docker_binary=config.docker_binary,
                disable_buildkit=config.disable_buildkit,
                logger=logger,
            )

        registry: Optional[ImageRegistry] = None
        if config.registry_enabled:
            registry = RegistryClient(
                config.registry_host,
                config.registry_port,
                user_id=config.registry_user_id,
                password=config.registry_password,
                use_ssl=config.registry_use_ssl,
                logger=logger,
            )

        return cls(
            backend,
            registry=registry,
            stager=BuildContextStager(config.staging_dir_base, logger=logger),
            build_timeout=config.build_timeout,
            logger=logger,
        )

    def build_dockerfile(
        self,
        dockerfile_external_path: Union[str, Path],
        dockerfile_name: str,
        namespace: str,
        repository: str,
        image_name: str,
    ) -> ImageBuildResult:
        """
        Build the stored Dockerfile as ``image_name`` within ``namespace/repository``.

        Args:
            dockerfile_external_path: Where the Dockerfile is stored.
            dockerfile_name: File name of the Dockerfile inside the build context.
            namespace: Realm (or other namespace) owning the repository.
            repository: Repository the image belongs to.
            image_name: User supplied ``name[:tag]``.
        """
        image = ImageReference.from_user_input(namespace, repository, image_name)
        result = ImageBuildResult(image_full_name=image.full_name)

        try:
            self.validator.validate(image_name)
            self._check_not_exists(image)
        except (InvalidImageName, ImageAlreadyExists, RegistryError) as exc:
            self.logger.info("Rejected build of %s: %s", image.full_name, exc)
            result.issues.append(RuntimeIssue.from_error(exc, subject=image_name))
            return result

        try:
            with self.stager.stage(dockerfile_external_path, dockerfile_name) as context:
                self._build_in_context(context, image, result)
        except StagingFailed as exc:
            self.logger.error("Staging failed for %s: %s", image.full_name, exc)
            result.issues.append(RuntimeIssue.from_error(exc, subject=str(dockerfile_external_path)))

        return result

    def _check_not_exists(self, image: ImageReference) -> None:
        if self.registry is None:
            return
        if self.registry.image_exists(image.repository_path, image.image_name):
            raise ImageAlreadyExists(image.full_name)

    def _build_in_context(self, context: StagedBuildContext, image: ImageReference, result: ImageBuildResult) -> None:
        subject = image.full_name
        try:
            body = self.backend.build(context, image.full_name, timeout=self.build_timeout)
            raw_output = self._demux(body, result, subject)
        except BuildFailed as exc:
            result.issues.append(RuntimeIssue.from_error(exc, subject=subject, details=exc.raw_output or None))
            if exc.raw_output:
                result.output = self.parser.parse(exc.raw_output).output
            return
        except MalformedStreamRecord as exc:
            self.logger.error("Malformed build stream for %s: %s", subject, exc)
            result.issues.append(RuntimeIssue.from_error(exc, subject=subject))
            result.output = self.parser.parse(exc.partial_output).output
            return
        except BackendUnreachable as exc:
            self.logger.error("Build backend unreachable for %s: %s", subject, exc)
            result.issues.append(RuntimeIssue.from_error(exc, subject=subject))
            if exc.partial_output:
                result.output = self.parser.parse(exc.partial_output).output
            return

        self.logger.debug("Output from docker build of %s:\n%s", subject, raw_output)
        parsed = self.parser.parse(raw_output)
        self._record_parse_result(parsed, result, subject)

    def _demux(self, body, result: ImageBuildResult, subject: str) -> str:
        """Normalise the backend's output to a plain transcript, recording any stream error."""
        if self.backend.output_format != "json-stream":
            return body
        demuxed = self.demuxer.demux(body)
        if demuxed.error is not None:
            result.issues.append(RuntimeIssue.from_error(demuxed.error, subject=subject))
        return demuxed.raw_output

    def _record_parse_result(self, parsed: ParseResult, result: ImageBuildResult, subject: str) -> None:
        result.output = parsed.output
        stream_failed = any(issue.is_error() for issue in result.issues)

        if stream_failed and not parsed.output.error_message and not parsed.output.final_image_id:
            # The engine reported the failure out of band; keep it with the report.
            parsed.output.error_message = result.issues[-1].message
            return
        if parsed.error is None:
            self.logger.info("Successfully built %s as %s", subject, parsed.output.final_image_id)
            return
        if isinstance(parsed.error, IncompleteBuildOutput):
            if stream_failed:
                return
            self.logger.warning(
                "Build output for %s ended without a final image id after %d steps",
                subject,
                len(parsed.output.steps),
            )
            result.issues.append(
                RuntimeIssue.from_error(
                    parsed.error,
                    severity="warning",
                    subject=subject,
                    details="Build output ended before a final image id; the step list may be partial.",
                )
            )
            return
        self.logger.error("Build of %s reported an error: %s", subject, parsed.error)
        result.issues.append(RuntimeIssue.from_error(parsed.error, subject=subject))

    def save_image(self, namespace: str, name: str, tag: str) -> Path:
        """
        Transfer an image from the registry into a new temporary file and return its path.

        The caller owns the file and must remove it.
        """
        if self.registry is None:
            raise RegistryError("No registry is configured")
        full_name = f"{namespace}/{name}" if namespace else name
        handle, temp_path = tempfile.mkstemp(prefix="imagebuild-", suffix=".tar")
        os.close(handle)
        try:
            self.registry.get_image(full_name, tag, temp_path)
        except (RegistryError, OSError):
            os.unlink(temp_path)
            raise
        return Path(temp_path)

    def remove_image(self, name: str, tag: str) -> None:
        if self.registry is None:
            raise RegistryError("No registry is configured")
        self.registry.delete_image(name, tag)

