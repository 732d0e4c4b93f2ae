"""Image name checks applied before anything is staged or built."""
from __future__ import annotations

import re

from ..common.errors import InvalidImageName

LOCAL_COMPONENT_PATTERN = re.compile(r"^[A-Za-z0-9_-]*$")

# Docker repository components must match [a-z0-9]+(?:[._-][a-z0-9]+)*
REGISTRY_LEADING_CHARS = "abcdefghijklmnopqrstuvwxyz0123456789"
REGISTRY_TRAILING_CHARS = REGISTRY_LEADING_CHARS + "._-"


class NameValidator:
    """Validate ``name[:tag]`` against the local convention and the registry's rules."""

    def validate(self, name: str) -> None:
        """
        Raise InvalidImageName unless ``name`` satisfies both rule sets.

        The registry rule is applied to the name and the tag separately.
        """
        if not name:
            raise InvalidImageName(name, "no image name was given")
        self.validate_local(name)
        for component in name.split(":"):
            if not component:
                raise InvalidImageName(name, "name and tag must not be empty")
            self.validate_registry(component)

    def validate_local(self, name: str) -> None:
        parts = name.split(":")
        if len(parts) > 2:
            raise InvalidImageName(name, "must be of format <name>[:<tag>]")
        for part in parts:
            if not LOCAL_COMPONENT_PATTERN.match(part):
                raise InvalidImageName(
                    name, "must be of format <name>[:<tag>] using only letters, digits, '_' and '-'"
                )

    def validate_registry(self, name: str) -> None:
        if not name:
            raise InvalidImageName(name, "name and tag must not be empty")
        remainder = name.lstrip(REGISTRY_LEADING_CHARS).rstrip(REGISTRY_TRAILING_CHARS)
        if remainder:
            raise InvalidImageName(
                name,
                "does not conform to docker name rules: [a-z0-9]+(?:[._-][a-z0-9]+)*  "
                f"Offending fragment: '{remainder}'",
            )

    def is_valid(self, name: str) -> bool:
        try:
            self.validate(name)
        except InvalidImageName:
            return False
        return True
