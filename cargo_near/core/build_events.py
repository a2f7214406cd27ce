"""
Build events — parse ``cargo build --message-format=json`` output.

Cargo writes one JSON message per line. Only ``compiler-artifact``
messages matter here; everything else (build-script output, diagnostics,
``build-finished``, stray text lines) collapses to :class:`OtherEvent`.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, Iterator, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

COMPILER_ARTIFACT = "compiler-artifact"


class CompilerArtifact(BaseModel):
    """A crate finished compiling and produced ``filenames``."""

    reason: Literal["compiler-artifact"] = COMPILER_ARTIFACT
    package_id: str = ""
    filenames: List[str] = Field(default_factory=list)
    fresh: bool = False


class OtherEvent(BaseModel):
    reason: str = ""


BuildEvent = Union[CompilerArtifact, OtherEvent]


def parse_build_event(line: Union[str, bytes]) -> BuildEvent:
    """Parse one line of cargo output; anything unrecognised is OtherEvent."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return OtherEvent()
    try:
        payload = json.loads(line)
    except json.JSONDecodeError:
        return OtherEvent(reason="text-line")
    if not isinstance(payload, dict):
        return OtherEvent(reason="text-line")

    reason = payload.get("reason", "")
    if reason == COMPILER_ARTIFACT:
        try:
            return CompilerArtifact.model_validate(payload)
        except ValidationError as e:
            logger.warning("Malformed compiler-artifact message ignored: %s", e)
    return OtherEvent(reason=str(reason))


def iter_build_events(lines: Iterable[Union[str, bytes]]) -> Iterator[BuildEvent]:
    """Lazily turn an iterable of output lines into events."""
    for line in lines:
        yield parse_build_event(line)


def iter_build_events_from_bytes(stdout: bytes) -> Iterator[BuildEvent]:
    """Lazily split captured stdout into lines and parse each."""
    start = 0
    while start < len(stdout):
        end = stdout.find(b"\n", start)
        if end == -1:
            end = len(stdout)
        yield parse_build_event(stdout[start:end])
        start = end + 1


def last_compiler_artifact(events: Iterable[BuildEvent]) -> Optional[CompilerArtifact]:
    """The most recent compiler-artifact event, or None."""
    last = None
    for event in events:
        if isinstance(event, CompilerArtifact):
            last = event
    return last
