"""Error kinds raised or reported while building images."""
from __future__ import annotations

from typing import Optional


class ImageBuildError(RuntimeError):
    """Base class for every failure the build pipeline reports."""

    code = "IMAGE_BUILD_ERROR"


class InvalidImageName(ImageBuildError):
    """Raised when a user supplied image name breaks a naming rule."""

    code = "INVALID_IMAGE_NAME"

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"Image name '{name}' is not valid: {reason}")
        self.name = name
        self.reason = reason


class ImageAlreadyExists(ImageBuildError):
    code = "IMAGE_ALREADY_EXISTS"

    def __init__(self, full_name: str) -> None:
        super().__init__(f"Image with name {full_name} already exists.")
        self.full_name = full_name


class StagingFailed(ImageBuildError):
    """Raised when the build context could not be prepared on disk."""

    code = "STAGING_FAILED"


class BackendUnreachable(ImageBuildError):
    """Raised when the build tool or the engine cannot be reached."""

    code = "BACKEND_UNREACHABLE"

    def __init__(self, message: str, *, partial_output: str = "") -> None:
        super().__init__(message)
        self.partial_output = partial_output


class BuildFailed(ImageBuildError):
    """
    Raised when the backend ran but the build did not succeed.

    ``raw_output`` holds whatever transcript the backend produced so the
    recovered steps can still be reported.
    """

    code = "BUILD_FAILED"

    def __init__(self, message: str, *, raw_output: str = "", timed_out: bool = False) -> None:
        super().__init__(message)
        self.raw_output = raw_output
        self.timed_out = timed_out


class MalformedStreamRecord(ImageBuildError):
    """Raised when a line of the engine's JSON stream cannot be decoded."""

    code = "MALFORMED_STREAM_RECORD"

    def __init__(self, message: str, *, partial_output: str = "", line_number: int = 0) -> None:
        super().__init__(message)
        self.partial_output = partial_output
        self.line_number = line_number


class StreamErrorRecord(ImageBuildError):
    """An ``error`` record emitted by the engine in its build stream."""

    code = "BUILD_STREAM_ERROR"

    def __init__(self, message: str, *, error_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class IncompleteBuildOutput(ImageBuildError):
    """The transcript ended before a ``Successfully built`` or ``Error`` line."""

    code = "BUILD_OUTPUT_INCOMPLETE"

    def __init__(self, message: str = "Incomplete") -> None:
        super().__init__(message)


class BuildErrorReported(ImageBuildError):
    """The transcript contains an ``Error`` line."""

    code = "BUILD_ERROR_REPORTED"


class RegistryError(ImageBuildError):
    code = "REGISTRY_ERROR"


class ConfigError(ImageBuildError):
    """Raised when configuration cannot be loaded."""

    code = "CONFIG_ERROR"
