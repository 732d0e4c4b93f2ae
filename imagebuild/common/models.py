"""Shared data models for build reports and image references."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BuildStep(BaseModel):
    """One instruction executed by the build tool, as reported in its transcript."""

    model_config = ConfigDict(populate_by_name=True)

    step_number: int = Field(alias="StepNumber", ge=0, description="Step number printed by the build tool")
    command: str = Field(alias="Command", description="Dockerfile instruction executed by the step")
    used_cache: bool = Field(default=False, alias="UsedCache", description="Result reused from a previous build")
    produced_image_id: str = Field(
        default="",
        alias="ProducedDockerImageId",
        description="Intermediate image id produced by the step",
    )

    def mark_used_cache(self) -> None:
        self.used_cache = True

    def set_produced_image_id(self, image_id: str) -> None:
        self.produced_image_id = image_id


class BuildOutput(BaseModel):
    """
    Structured representation of a build transcript.

    Steps are kept in the order the build tool executed them. Once parsing has
    terminated, at most one of ``final_image_id`` and ``error_message`` is set;
    when neither is, the transcript ended before a terminal line.
    """

    model_config = ConfigDict(populate_by_name=True)

    error_message: str = Field(default="", alias="ErrorMessage")
    final_image_id: str = Field(default="", alias="FinalDockerImageId")
    steps: List[BuildStep] = Field(default_factory=list, alias="Steps")

    def add_step(self, number: int, command: str) -> BuildStep:
        """Append a new step and return it so its body lines can update it."""
        step = BuildStep(step_number=number, command=command)
        self.steps.append(step)
        return step

    @property
    def completed(self) -> bool:
        return bool(self.final_image_id)

    def to_wire(self) -> Dict[str, Any]:
        """Return the mapping sent to API consumers, using the legacy field names."""
        return self.model_dump(by_alias=True)

    def as_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "BuildOutput":
        return cls.model_validate(payload)


@dataclass(frozen=True, slots=True)
class ImageReference:
    """Image coordinates: caller supplied namespace/repository plus a user supplied name."""

    namespace: str
    repository: str
    name: str
    tag: Optional[str] = None

    @classmethod
    def from_user_input(cls, namespace: str, repository: str, image_name: str) -> "ImageReference":
        """Split ``name[:tag]`` as typed by the user."""
        if ":" in image_name:
            name, tag = image_name.split(":", 1)
            return cls(namespace=namespace, repository=repository, name=name, tag=tag)
        return cls(namespace=namespace, repository=repository, name=image_name)

    @property
    def repository_path(self) -> str:
        return f"{self.namespace}/{self.repository}"

    @property
    def image_name(self) -> str:
        """Name exactly as the user supplied it."""
        return f"{self.name}:{self.tag}" if self.tag else self.name

    @property
    def full_name(self) -> str:
        """
        Reference passed to the build backend.

        Untagged names become the tag of the repository (``ns/repo:name``);
        tagged names get their own repository (``ns/repo/name:tag``).
        """
        if self.tag:
            return f"{self.repository_path}/{self.name}:{self.tag}"
        return f"{self.repository_path}:{self.name}"

