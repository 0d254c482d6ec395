"""Replay a (possibly crash-truncated) transcript into per-orphan state.

The crash-injection driver cuts the transcript at arbitrary byte offsets, so
the terminal line may be a fragment of a longer one. That line is dropped
when it is unterminated or does not match the protocol; every earlier line
must parse. Violations are raised on the first offending line.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .errors import HarnessError, KeyCollision, ObservedBeforeWritten, TranscriptParseError
from .transcript import EV_INTEGRATED, EV_WRITING, EV_WROTE, TranscriptEvent, parse_line


@dataclass(slots=True)
class OrphanState:
    # An attempt was made to write the orphan to the queue.
    attempted_write: bool = False
    # The write returned, so the orphan must be durable from here on.
    confirmed_durable: bool = False
    # Integrated by the consumer loop, or still readable from the queue.
    observed_afterward: bool = False


@dataclass
class ReplayResult:
    states: Dict[int, OrphanState] = field(default_factory=dict)
    lines_replayed: int = 0
    dropped_fragment: Optional[str] = None


def apply_event(states: Dict[int, OrphanState], ev: TranscriptEvent) -> None:
    if ev.kind not in (EV_WRITING, EV_WROTE, EV_INTEGRATED):
        return
    key = ev.key
    st = states.get(key)
    if st is None:
        st = states[key] = OrphanState()

    if ev.kind == EV_WRITING:
        if st.attempted_write:
            raise KeyCollision(key, f"ID collision on {key} in orphan write attempts")
        st.attempted_write = True
    elif ev.kind == EV_WROTE:
        if st.confirmed_durable:
            raise KeyCollision(key, f"ID collision on {key} in orphan write confirmations")
        st.confirmed_durable = True
    else:
        if not st.attempted_write:
            raise ObservedBeforeWritten(key, f"ID {key} was read before/without being written")
        st.observed_afterward = True


def split_transcript(text: str) -> Tuple[List[str], Optional[str]]:
    """Split into complete lines and the unterminated tail (None if clean)."""
    parts = text.split("\n")
    tail = parts.pop()
    return parts, (tail if tail != "" else None)


def replay_lines(lines: Iterable[str], tail: Optional[str] = None) -> ReplayResult:
    res = ReplayResult()
    lines = list(lines)
    if tail is not None:
        # Unterminated: even a matching tail may be a cut-off longer line.
        res.dropped_fragment = tail
    for i, line in enumerate(lines):
        ev = parse_line(line)
        if ev is None:
            if i == len(lines) - 1 and tail is None:
                res.dropped_fragment = line
                break
            raise TranscriptParseError(i + 1, line)
        apply_event(res.states, ev)
        res.lines_replayed += 1
    return res


def replay_text(text: str) -> ReplayResult:
    lines, tail = split_transcript(text)
    return replay_lines(lines, tail)


def replay_file(path: Union[str, Path]) -> ReplayResult:
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise HarnessError(f"reading transcript {path} failed: {e}") from e
    # A cut can land inside a multi-byte sequence; replaced characters then
    # fail to match and fall under the fragment rule.
    return replay_text(raw.decode("utf-8", errors="replace"))
