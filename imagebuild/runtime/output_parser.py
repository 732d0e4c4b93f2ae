"""Turn a ``docker build`` transcript into a :class:`BuildOutput`.

Sample transcript::

    Sending build context to Docker daemon  2.56 kB
    Step 0 : FROM ubuntu:14.04
     ---> ca4d7b1b9a51
    Step 1 : RUN echo blah > afile
     ---> Using cache
     ---> Running in 3bac4e50b6f9
     ---> 03dcea1bc8a6
    Removing intermediate container 3bac4e50b6f9
    Successfully built 03dcea1bc8a6

The parser is a two-state automaton. While scanning for a step it looks for
``Step``, ``Successfully built`` and ``Error`` lines and skips anything else.
After a ``Step`` line it consumes the `` ---> `` lines that belong to the
step; the first line that is not one of those ends the step body and is
scanned again for the next step or a terminal line.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..common.errors import BuildErrorReported, ImageBuildError, IncompleteBuildOutput
from ..common.models import BuildOutput, BuildStep
from .stream import StreamBody, StreamDemuxer

STEP_PREFIX = "Step "
SUCCESS_PREFIX = "Successfully built "
ERROR_PREFIX = "Error"
STEP_BODY_PREFIX = " ---> "
USING_CACHE = "Using cache"
STEP_SEPARATOR = " : "

_STEP_NUMBER = re.compile(r"^\s*(\d+)")


class ParserState(Enum):
    SCANNING_FOR_STEP = "scanning_for_step"
    SCANNING_STEP_BODY = "scanning_step_body"


@dataclass(slots=True)
class ParseResult:
    """Output recovered from a transcript together with the reason parsing stopped early."""

    output: BuildOutput
    error: Optional[ImageBuildError] = None

    @property
    def complete(self) -> bool:
        return self.error is None

    @property
    def incomplete(self) -> bool:
        return isinstance(self.error, IncompleteBuildOutput)


@dataclass(slots=True)
class _Cursor:
    lines: List[str]
    output: BuildOutput = field(default_factory=BuildOutput)
    line_index: int = 0
    current_step: Optional[BuildStep] = None
    state: ParserState = ParserState.SCANNING_FOR_STEP


class BuildOutputParser:
    """Parse build transcripts. Holds no per-parse state, so one instance can be shared."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def parse(self, raw_output: str) -> ParseResult:
        """
        Parse ``raw_output`` and return whatever was recovered.

        ``ParseResult.error`` is None after a ``Successfully built`` line,
        BuildErrorReported after an ``Error`` line, and IncompleteBuildOutput
        when the transcript ran out first.
        """
        cursor = _Cursor(lines=[line.rstrip("\r") for line in raw_output.split("\n")])

        while cursor.line_index < len(cursor.lines):
            line = cursor.lines[cursor.line_index]

            if cursor.state is ParserState.SCANNING_STEP_BODY:
                if self._consume_step_body_line(cursor, line):
                    cursor.line_index += 1
                    continue
                # The line ends the step body; evaluate it again while scanning for a step.
                cursor.state = ParserState.SCANNING_FOR_STEP
                cursor.current_step = None

            if line.startswith(STEP_PREFIX):
                cursor.current_step = cursor.output.add_step(*_split_step_line(line[len(STEP_PREFIX):]))
                cursor.state = ParserState.SCANNING_STEP_BODY
            elif line.startswith(SUCCESS_PREFIX):
                cursor.output.final_image_id = line[len(SUCCESS_PREFIX):]
                return ParseResult(output=cursor.output)
            elif line.startswith(ERROR_PREFIX):
                cursor.output.error_message = line[len(ERROR_PREFIX):]
                self.logger.debug("Build transcript reported an error: %s", cursor.output.error_message)
                return ParseResult(
                    output=cursor.output,
                    error=BuildErrorReported(cursor.output.error_message.strip() or "Build reported an error"),
                )
            cursor.line_index += 1

        self.logger.debug("Build transcript ended after %d steps without a final image id", len(cursor.output.steps))
        return ParseResult(output=cursor.output, error=IncompleteBuildOutput())

    @staticmethod
    def _consume_step_body_line(cursor: _Cursor, line: str) -> bool:
        """Apply a `` ---> `` line to the current step; return False if the line is not one."""
        if not line.startswith(STEP_BODY_PREFIX):
            return False
        remainder = line[len(STEP_BODY_PREFIX):]
        step = cursor.current_step
        if remainder.startswith(USING_CACHE):
            step.mark_used_cache()
        elif remainder and not any(char.isspace() for char in remainder):
            step.set_produced_image_id(remainder)
        return True


def _split_step_line(rest: str) -> tuple[int, str]:
    """
    Split ``<int> : <command>``.

    Newer engines print ``Step 1/4 : ...``; only the leading integer counts.
    Without a separator the whole remainder after the number is the command.
    """
    match = _STEP_NUMBER.match(rest)
    number = int(match.group(1)) if match else 0
    separator_at = rest.find(STEP_SEPARATOR)
    if separator_at != -1:
        command = rest[separator_at + len(STEP_SEPARATOR):]
    else:
        command = rest[match.end():].strip() if match else rest.strip()
    return number, command


def parse_build_output(raw_output: str) -> ParseResult:
    """Parse a transcript produced by the ``docker build`` command."""
    return BuildOutputParser().parse(raw_output)


def parse_rest_output(body: StreamBody) -> ParseResult:
    """
    Demux an engine ``/build`` response and parse the resulting transcript.

    A stream error record takes precedence over whatever the parser concluded,
    and is copied into ``error_message`` when the transcript itself had none.
    Raises MalformedStreamRecord like :meth:`StreamDemuxer.demux`.
    """
    demuxed = StreamDemuxer().demux(body)
    result = BuildOutputParser().parse(demuxed.raw_output)
    if demuxed.error is not None:
        if not result.output.error_message and not result.output.final_image_id:
            result.output.error_message = demuxed.error.message
        return ParseResult(output=result.output, error=demuxed.error)
    return result
