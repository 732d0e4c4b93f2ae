"""Context-managed build contexts with per-build isolation."""
from __future__ import annotations

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from ..common.errors import StagingFailed


class StagedBuildContext:
    """
    A temporary directory holding the Dockerfile for exactly one build.

    The directory is owned by one orchestration. ``release()`` removes it
    together with its contents and is safe to call more than once; leaving
    the ``with`` block always releases it.

    Usage:
        with stager.stage("/repo/files/1234", "Dockerfile") as context:
            backend.build(context, "realm/repo:name")
    """

    def __init__(self, path: Path, dockerfile_name: str, logger: Optional[logging.Logger] = None) -> None:
        self.path = path
        self.dockerfile_name = dockerfile_name
        self.logger = logger or logging.getLogger(__name__)
        self._released = False

    def __enter__(self) -> "StagedBuildContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    @property
    def dockerfile_path(self) -> Path:
        return self.path / self.dockerfile_name

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.logger.info("Removing all files at %s", self.path)
        shutil.rmtree(self.path, ignore_errors=True)


class BuildContextStager:
    """Copy a stored Dockerfile into a fresh, uniquely named temporary directory."""

    def __init__(
        self,
        base_dir: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_dir = Path(base_dir) if base_dir else None
        self.logger = logger or logging.getLogger(__name__)

    def stage(self, dockerfile_external_path: Union[str, Path], dockerfile_name: str) -> StagedBuildContext:
        """
        Create the staging directory and copy the Dockerfile into it.

        Args:
            dockerfile_external_path: Where the Dockerfile is stored.
            dockerfile_name: File name the Dockerfile gets inside the build context.

        Raises:
            StagingFailed: When the directory cannot be created or the copy fails.
                A directory that was already created is removed first.
        """
        if not dockerfile_name or Path(dockerfile_name).name != dockerfile_name:
            raise StagingFailed(f"Invalid Dockerfile name '{dockerfile_name}'")

        try:
            if self.base_dir:
                self.base_dir.mkdir(parents=True, exist_ok=True)
            temp_dir = Path(
                tempfile.mkdtemp(prefix="imagebuild-", dir=str(self.base_dir) if self.base_dir else None)
            )
        except OSError as exc:
            raise StagingFailed(f"Could not create staging directory: {exc}") from exc

        context = StagedBuildContext(temp_dir, dockerfile_name, logger=self.logger)
        self.logger.info("Staging directory = %s", temp_dir)
        try:
            shutil.copyfile(str(dockerfile_external_path), str(context.dockerfile_path))
        except OSError as exc:
            context.release()
            raise StagingFailed(
                f"Could not copy Dockerfile {dockerfile_external_path} to {context.dockerfile_path}: {exc}"
            ) from exc

        self.logger.debug("Copied Dockerfile to %s", context.dockerfile_path)
        return context
