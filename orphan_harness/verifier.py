"""Durability verifier for a crashed orphan queue run.

Usage: orphan-verifier CRASHED_DIR TRANSCRIPT [--report PATH]

The transcript is replayed first; then every item still present in
``CRASHED_DIR/orphanqueue`` is marked as observed. Any orphan whose write was
confirmed but which was neither integrated nor recovered is a durability
violation. A passing run prints nothing.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from .errors import DurabilityViolation, OracleError, WritelessRecovery, describe
from .items import decode_orphan
from .queue import OrphanQueue, QueueOpener, inspect_queue
from .replay import OrphanState, ReplayResult, replay_file
from .report import build_report, write_report

QUEUE_SUBDIR = "orphanqueue"


@dataclass
class Verdict:
    replay: ReplayResult
    recovered: List[int] = field(default_factory=list)
    violations: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations


def recovered_keys(q: OrphanQueue) -> Iterator[int]:
    # Peek only: the queue under inspection must not change.
    length = q.length()
    for offset in range(length):
        item = q.peek_by_offset(offset)
        yield decode_orphan(item.value).reg_id


def mark_recovered(states: Dict[int, OrphanState], keys: Iterable[int]) -> List[int]:
    seen = []
    for key in keys:
        st = states.get(key)
        if st is None or not st.attempted_write:
            raise WritelessRecovery(key, f"ID {key} was read without being written")
        st.observed_afterward = True
        seen.append(key)
    return seen


def durability_violations(states: Dict[int, OrphanState]) -> List[int]:
    return sorted(
        key for key, st in states.items() if st.confirmed_durable and not st.observed_afterward
    )


def check(replay: ReplayResult, recovered: Iterable[int]) -> Verdict:
    v = Verdict(replay=replay)
    v.recovered = mark_recovered(replay.states, recovered)
    v.violations = durability_violations(replay.states)
    return v


def verify(
    crashed_dir: Union[str, Path],
    transcript: Union[str, Path],
    opener: QueueOpener = inspect_queue,
) -> Verdict:
    """Replay the transcript, scan the recovered queue and judge the run."""
    replay = replay_file(transcript)
    q = opener(Path(crashed_dir) / QUEUE_SUBDIR)
    try:
        verdict = check(replay, recovered_keys(q))
    finally:
        q.close()
    return verdict


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description="Check a crashed orphan queue against the workload transcript."
    )
    ap.add_argument("crashed_dir", help="crashed state directory (contains orphanqueue/)")
    ap.add_argument("transcript", help="reconstructed workload stdout")
    ap.add_argument("--report", default=None, help="write a JSON verdict report here")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    verdict: Optional[Verdict] = None
    err: Optional[OracleError] = None
    try:
        verdict = verify(args.crashed_dir, args.transcript)
        if not verdict.ok:
            raise DurabilityViolation(verdict.violations)
    except OracleError as e:
        err = e
        print(describe(err), file=sys.stderr)

    # The verdict decides the exit status; a failed report only adds a
    # diagnostic unless the run itself passed.
    if args.report:
        try:
            write_report(Path(args.report), build_report(args.crashed_dir, args.transcript, verdict, err))
        except OracleError as e:
            print(describe(e), file=sys.stderr)
            if err is None:
                return e.exit_code

    if err is not None:
        return err.exit_code
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
