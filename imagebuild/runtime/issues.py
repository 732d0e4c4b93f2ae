"""Shared issue representation for build operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from ..common.errors import ImageBuildError

IssueSeverity = Literal["error", "warning", "info"]


@dataclass(slots=True)
class RuntimeIssue:
    """Lightweight issue representation for build operations."""

    code: str
    message: str
    severity: IssueSeverity = "error"
    subject: Optional[str] = None
    details: Optional[str] = None

    def is_error(self) -> bool:
        """Return True when the issue is considered an error."""
        return self.severity == "error"

    @classmethod
    def from_error(
        cls,
        error: ImageBuildError,
        *,
        severity: IssueSeverity = "error",
        subject: Optional[str] = None,
        details: Optional[str] = None,
    ) -> "RuntimeIssue":
        return cls(code=error.code, message=str(error), severity=severity, subject=subject, details=details)
