"""Decode the Docker Engine's JSON-lines build stream into a plain transcript.

The engine answers ``POST /build`` with one JSON object per line::

    {"stream":"Step 1 : FROM centos\\n"}
    {"stream":" ---\\u003e 968790001270\\n"}
    {"error":"...","errorDetail":{"code":1,"message":"..."}}

Concatenating the ``stream`` fragments gives the same text the ``docker
build`` command prints, so a single parser serves both backends.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Union

from ..common.errors import BackendUnreachable, BuildFailed, MalformedStreamRecord, StreamErrorRecord

StreamBody = Union[str, bytes, Iterable[Union[str, bytes]]]


@dataclass(slots=True)
class DemuxResult:
    """Transcript recovered from the stream, plus the error record that stopped it, if any."""

    raw_output: str
    error: Optional[StreamErrorRecord] = None
    records: int = 0


class StreamDemuxer:
    """Concatenate ``stream`` payloads of a newline-delimited JSON body."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def demux(self, body: StreamBody) -> DemuxResult:
        """
        Consume ``body`` line by line.

        Raises:
            MalformedStreamRecord: On the first line that is not a JSON object.
                The output concatenated before that line travels with the error.
            BuildFailed, BackendUnreachable: When reading the body fails part way;
                the output concatenated so far is attached to the error.
        """
        fragments: List[str] = []
        records = 0
        try:
            for line_number, line in enumerate(iter_lines(body), start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError as exc:
                    raise MalformedStreamRecord(
                        f"Line {line_number} of the build stream is not valid JSON: {exc}",
                        partial_output="".join(fragments),
                        line_number=line_number,
                    ) from exc
                if not isinstance(record, dict):
                    raise MalformedStreamRecord(
                        f"Line {line_number} of the build stream is not a JSON object",
                        partial_output="".join(fragments),
                        line_number=line_number,
                    )
                records += 1

                if "error" in record or "errorDetail" in record:
                    error = _error_from_record(record)
                    self.logger.error("Build stream reported an error: %s", error.message)
                    return DemuxResult(raw_output="".join(fragments), error=error, records=records)

                fragment = record.get("stream")
                if isinstance(fragment, str):
                    fragments.append(fragment)
        except BuildFailed as exc:
            if not exc.raw_output:
                exc.raw_output = "".join(fragments)
            raise
        except BackendUnreachable as exc:
            exc.partial_output = "".join(fragments)
            raise

        return DemuxResult(raw_output="".join(fragments), records=records)


def iter_lines(body: StreamBody) -> Iterator[str]:
    """Yield decoded lines from a string, bytes, or chunks that may split lines anywhere."""
    if isinstance(body, (str, bytes)):
        chunks: Iterable[Union[str, bytes]] = (body,)
    else:
        chunks = body

    buffer = b""
    for chunk in chunks:
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            yield line.decode("utf-8", errors="replace")
    if buffer:
        yield buffer.decode("utf-8", errors="replace")


def _error_from_record(record: dict) -> StreamErrorRecord:
    detail = record.get("errorDetail")
    code = None
    message = record.get("error")
    if isinstance(detail, dict):
        code = detail.get("code")
        message = message or detail.get("message")
    if not message:
        message = "Build stream reported an error without a message"
    return StreamErrorRecord(str(message).rstrip("\n"), error_code=code if isinstance(code, int) else None)
