"""Runtime helpers for staging, building and parsing Docker image builds."""

from .engines import BuildBackend, EngineConnection, LocalEngine, RESTEngine
from .issues import IssueSeverity, RuntimeIssue
from .naming import NameValidator
from .orchestrator import BuildOrchestrator, ImageBuildResult
from .output_parser import BuildOutputParser, ParseResult, parse_build_output, parse_rest_output
from .registry import ImageRegistry, RegistryClient
from .staging import BuildContextStager, StagedBuildContext
from .stream import DemuxResult, StreamDemuxer

__all__ = [
    "BuildBackend",
    "EngineConnection",
    "LocalEngine",
    "RESTEngine",
    "IssueSeverity",
    "RuntimeIssue",
    "NameValidator",
    "BuildOrchestrator",
    "ImageBuildResult",
    "BuildOutputParser",
    "ParseResult",
    "parse_build_output",
    "parse_rest_output",
    "ImageRegistry",
    "RegistryClient",
    "BuildContextStager",
    "StagedBuildContext",
    "DemuxResult",
    "StreamDemuxer",
]
