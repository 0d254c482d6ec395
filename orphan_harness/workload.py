"""Workload generator for the orphan queue crash test.

Each restart cycle opens the queue, runs ``writes`` producers and one
consumer against it concurrently, then closes it. Every durability-relevant
step is announced on the transcript (stdout) so that a verifier can replay
it against whatever the queue recovers after a simulated crash.

The synthetic integration failures are workload noise: they leave items
that were durably written and already peeked sitting in the queue, which the
verifier must accept as still recoverable.
"""

from __future__ import annotations

import argparse
import random
import sys
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable, Optional

from .config import WorkloadConfig
from .errors import ItemDecodeError, OracleError, QueueEmpty, QueueError, describe
from .items import decode_orphan, encode_orphan, new_orphaned_item
from .queue import OrphanQueue, QueueOpener, open_queue
from .transcript import (
    CLOSING_QUEUE,
    ERROR_CLOSING_QUEUE,
    ERROR_READING_QUEUE,
    OPENED_QUEUE,
    RESTARTING,
    TranscriptWriter,
    integrated_line,
    writing_line,
    wrote_line,
)

EMPTY_BACKOFF_SECS = 0.001


class Workload:
    def __init__(
        self,
        config: WorkloadConfig,
        transcript: TranscriptWriter,
        opener: QueueOpener = open_queue,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.transcript = transcript
        self._open = opener
        self.rng = rng if rng is not None else random.Random(config.seed)
        self._sleep = sleep

    def run(self) -> None:
        for i in range(self.config.restarts):
            if i != 0:
                self.transcript.emit(RESTARTING)
            self.run_once()

    def run_once(self) -> None:
        q = self._open(self.config.queue_dir)
        self.transcript.emit(OPENED_QUEUE)

        self._fan_out(q)

        self.transcript.emit(CLOSING_QUEUE)
        try:
            q.close()
        except QueueError as e:
            # stderr for diagnostics, stdout for the transcript
            print(f"ERROR: closing queue failed: {e}", file=sys.stderr)
            self.transcript.emit(ERROR_CLOSING_QUEUE)

    def _fan_out(self, q: OrphanQueue) -> None:
        # Join barrier: the queue is closed only after all writes + 1 tasks
        # have finished. The first fatal error is re-raised once the others
        # have stopped.
        abort = threading.Event()
        with ThreadPoolExecutor(
            max_workers=self.config.writes + 1, thread_name_prefix="orphan"
        ) as pool:
            futures = [pool.submit(self.read_loop, q, abort)]
            futures += [pool.submit(self.write_one, q) for _ in range(self.config.writes)]
            done, _ = wait(futures, return_when=FIRST_EXCEPTION)
            for f in done:
                err = f.exception()
                if err is not None:
                    abort.set()
                    raise err

    def write_one(self, q: OrphanQueue) -> int:
        orphan = new_orphaned_item(self.rng)
        # The orphan may be present in the queue from here on.
        self.transcript.emit(writing_line(orphan.reg_id))
        try:
            q.enqueue(encode_orphan(orphan))
        except QueueError as e:
            raise QueueError(f"writing to queue failed: {e}") from e
        # The orphan must now be durably stored.
        self.transcript.emit(wrote_line(orphan.reg_id))
        return orphan.reg_id

    def read_loop(self, q: OrphanQueue, abort: Optional[threading.Event] = None) -> None:
        for _ in range(self.config.reads):
            if abort is not None and abort.is_set():
                return
            try:
                self.integrate_one(q)
            except QueueEmpty:
                self._sleep(EMPTY_BACKOFF_SECS)

    def integrate_one(self, q: OrphanQueue) -> Optional[int]:
        """Peek the head and, unless a synthetic failure is drawn, dequeue it.

        Returns the integrated key, or None when nothing was integrated.
        Raises QueueEmpty when there is nothing to peek.
        """
        try:
            item = q.peek()
            orphan = decode_orphan(item.value)
        except QueueEmpty:
            raise
        except (QueueError, ItemDecodeError) as e:
            print(f"ERROR: failed to peek into orphan queue: {e}", file=sys.stderr)
            self.transcript.emit(ERROR_READING_QUEUE)
            return None

        if self.rng.random() < self.config.probability:
            # synthetic failure to store the orphan downstream
            return None

        self.transcript.emit(integrated_line(orphan.reg_id))
        try:
            q.dequeue()
        except QueueError as e:
            raise QueueError(f"failed to dequeue integrated orphan: {e}") from e
        return orphan.reg_id


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        description="Orphan queue crash-test workload; writes the transcript to stdout."
    )
    ap.add_argument("--restarts", "-restarts", type=int, default=None,
                    help="number of times to open and close the queue")
    ap.add_argument("--reads", "-reads", type=int, default=None,
                    help="number of times per restart to read from the queue")
    ap.add_argument("--writes", "-writes", type=int, default=None,
                    help="number of times to write to the queue, in parallel")
    ap.add_argument("--probability", "-probability", type=float, default=None,
                    help="probability of not dequeueing an item after peeking it")
    ap.add_argument("--queue-dir", default=None)
    ap.add_argument("--seed", type=int, default=None,
                    help="seed for item keys and synthetic failures")
    return ap.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = WorkloadConfig.from_env().with_overrides(
            restarts=args.restarts,
            reads=args.reads,
            writes=args.writes,
            probability=args.probability,
            queue_dir=args.queue_dir,
            seed=args.seed,
        ).validate()
        Workload(config, TranscriptWriter.stdout()).run()
    except OracleError as e:
        print(describe(e), file=sys.stderr)
        return e.exit_code
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
