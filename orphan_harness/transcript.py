"""Transcript protocol shared by the workload and the verifier.

One event per newline-terminated UTF-8 line. The crash-injection driver may
cut the transcript at any byte, so only the terminal line of a transcript is
allowed to be malformed (see ``orphan_harness.replay``).
"""

from __future__ import annotations

import re
import sys
import threading
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .errors import TranscriptWriteError

EV_WRITING = "writing"
EV_WROTE = "wrote"
EV_INTEGRATED = "integrated"
EV_LIFECYCLE = "lifecycle"
EV_ERROR = "error"

OPENED_QUEUE = "Opened queue"
CLOSING_QUEUE = "Closing queue"
RESTARTING = "Restarting"
ERROR_CLOSING_QUEUE = "Error closing queue"
ERROR_READING_QUEUE = "Error reading queue"

_LINE_RE = re.compile(
    r"^(?:Writing orphan with ID ([0-9]+)"
    r"|Wrote orphan with ID ([0-9]+)"
    r"|Integrated orphan with ID ([0-9]+)"
    r"|(Opened queue|Closing queue|Restarting)"
    r"|(Error .*))$"
)


@dataclass(frozen=True)
class TranscriptEvent:
    kind: str
    key: Optional[int] = None
    text: str = ""


def writing_line(key: int) -> str:
    return f"Writing orphan with ID {key}"


def wrote_line(key: int) -> str:
    return f"Wrote orphan with ID {key}"


def integrated_line(key: int) -> str:
    return f"Integrated orphan with ID {key}"


def parse_line(line: str) -> Optional[TranscriptEvent]:
    """Classify one transcript line (without its newline).

    Returns None when the line matches none of the protocol forms.
    """
    m = _LINE_RE.match(line)
    if m is None:
        return None
    writing, wrote, integrated, lifecycle, error = m.groups()
    if writing is not None:
        return TranscriptEvent(EV_WRITING, int(writing), line)
    if wrote is not None:
        return TranscriptEvent(EV_WROTE, int(wrote), line)
    if integrated is not None:
        return TranscriptEvent(EV_INTEGRATED, int(integrated), line)
    if lifecycle is not None:
        return TranscriptEvent(EV_LIFECYCLE, None, line)
    return TranscriptEvent(EV_ERROR, None, error)


class TranscriptWriter:
    """Append-only line sink shared by all workload tasks.

    Each line goes out in a single ``write`` call on an unbuffered binary
    stream. A short write would leave a split line that the verifier cannot
    tell apart from a crash fragment, so it is fatal.
    """

    def __init__(self, stream: BinaryIO):
        self._stream = stream
        self._lock = threading.Lock()

    @classmethod
    def stdout(cls) -> "TranscriptWriter":
        return cls(open(sys.stdout.fileno(), "wb", buffering=0, closefd=False))

    def emit(self, line: str) -> None:
        data = (line + "\n").encode("utf-8")
        with self._lock:
            try:
                n = self._stream.write(data)
                self._stream.flush()
            except (OSError, ValueError) as e:
                raise TranscriptWriteError(f"error writing to stdout: {e}") from e
        if n is not None and n != len(data):
            raise TranscriptWriteError(f"short write to stdout: {n} of {len(data)} bytes")
