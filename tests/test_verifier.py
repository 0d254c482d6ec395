import contextlib
import io
import json
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from orphan_harness.errors import WritelessRecovery
from orphan_harness.items import OrphanedItem, encode_orphan
from orphan_harness.queue import DB_NAME, SqliteQueue
from orphan_harness.replay import replay_text
from orphan_harness.verifier import QUEUE_SUBDIR, check, main, verify


def _orphan(key):
    return encode_orphan(OrphanedItem(b"\x00" * 16, b"\x01" * 16, key, True, 1))


class CheckTests(unittest.TestCase):
    def test_confirmed_but_lost_is_a_violation(self):
        v = check(replay_text("Writing orphan with ID 7\nWrote orphan with ID 7\n"), [])
        self.assertFalse(v.ok)
        self.assertEqual(v.violations, [7])

    def test_integrated_or_recovered_passes(self):
        replay = replay_text(
            "Writing orphan with ID 1\n"
            "Wrote orphan with ID 1\n"
            "Integrated orphan with ID 1\n"
            "Writing orphan with ID 2\n"
            "Wrote orphan with ID 2\n"
        )
        v = check(replay, [2])
        self.assertTrue(v.ok)
        self.assertEqual(v.recovered, [2])
        self.assertTrue(replay.states[2].observed_afterward)

    def test_unconfirmed_write_may_be_lost(self):
        v = check(replay_text("Writing orphan with ID 3\n"), [])
        self.assertTrue(v.ok)

    def test_unconfirmed_write_may_be_recovered(self):
        v = check(replay_text("Writing orphan with ID 3\n"), [3])
        self.assertTrue(v.ok)

    def test_integrated_item_left_in_queue_passes(self):
        # crash between the Integrated line and the dequeue
        replay = replay_text(
            "Writing orphan with ID 4\nWrote orphan with ID 4\nIntegrated orphan with ID 4\n"
        )
        self.assertTrue(check(replay, [4]).ok)

    def test_recovered_without_write_is_rejected(self):
        with self.assertRaises(WritelessRecovery) as cm:
            check(replay_text("Writing orphan with ID 1\n"), [1, 11])
        self.assertEqual(cm.exception.key, 11)

    def test_all_lost_keys_are_reported(self):
        replay = replay_text(
            "Writing orphan with ID 9\nWrote orphan with ID 9\n"
            "Writing orphan with ID 2\nWrote orphan with ID 2\n"
            "Writing orphan with ID 5\nWrote orphan with ID 5\n"
        )
        self.assertEqual(check(replay, [5]).violations, [2, 9])


class VerifyOnDiskTests(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.crashed = self.root / "crashed"
        self.transcript = self.root / "stdout"

    def tearDown(self):
        self._td.cleanup()

    def _seed_queue(self, *keys):
        q = SqliteQueue.open(self.crashed / QUEUE_SUBDIR)
        for k in keys:
            q.enqueue(_orphan(k))
        q.close()

    def _run_main(self, *extra):
        out, err = io.StringIO(), io.StringIO()
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            code = main([str(self.crashed), str(self.transcript), *extra])
        return code, out.getvalue(), err.getvalue()

    def test_pass_is_silent(self):
        self._seed_queue(2)
        self.transcript.write_text(
            "Opened queue\n"
            "Writing orphan with ID 1\nWrote orphan with ID 1\nIntegrated orphan with ID 1\n"
            "Writing orphan with ID 2\nWrote orphan with ID 2\n"
            "Writing orphan with ID 9",
            encoding="utf-8",
        )
        code, out, err = self._run_main()
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        self.assertEqual(err, "")

    def test_durability_violation_exit_status(self):
        self._seed_queue()
        self.transcript.write_text("Writing orphan with ID 7\nWrote orphan with ID 7\n", encoding="utf-8")
        code, out, err = self._run_main()
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("durability_violation", err)
        self.assertIn("ID 7 was not durable", err)

    def test_protocol_violation_exit_status(self):
        self._seed_queue()
        self.transcript.write_text("Integrated orphan with ID 5\n", encoding="utf-8")
        code, _, err = self._run_main()
        self.assertEqual(code, 3)
        self.assertIn("observed_before_written", err)

    def test_missing_transcript_exit_status(self):
        code, _, err = self._run_main()
        self.assertEqual(code, 2)
        self.assertIn("ERROR: harness_error", err)

    def test_missing_queue_directory_is_an_empty_queue(self):
        self.transcript.write_text("Writing orphan with ID 3\n", encoding="utf-8")
        v = verify(self.crashed, self.transcript)
        self.assertTrue(v.ok)
        self.assertEqual(v.recovered, [])
        self.assertFalse(self.crashed.exists())

    def test_missing_queue_still_fails_confirmed_writes(self):
        self.transcript.write_text("Writing orphan with ID 3\nWrote orphan with ID 3\n", encoding="utf-8")
        code, _, err = self._run_main()
        self.assertEqual(code, 1)
        self.assertIn("ID 3 was not durable", err)
        self.assertFalse(self.crashed.exists())

    def test_zero_length_database_is_not_initialized(self):
        qdir = self.crashed / QUEUE_SUBDIR
        qdir.mkdir(parents=True)
        (qdir / DB_NAME).write_bytes(b"")
        self.transcript.write_text("Writing orphan with ID 3\n", encoding="utf-8")
        v = verify(self.crashed, self.transcript)
        self.assertTrue(v.ok)
        self.assertEqual(sorted(p.name for p in qdir.iterdir()), [DB_NAME])
        self.assertEqual((qdir / DB_NAME).stat().st_size, 0)


    def test_verification_is_repeatable_and_read_only(self):
        self._seed_queue(2, 3)
        self.transcript.write_text(
            "Writing orphan with ID 2\nWrote orphan with ID 2\n"
            "Writing orphan with ID 3\n"
            "Writing orphan with ID 4\nWrote orphan with ID 4\n",
            encoding="utf-8",
        )
        first = verify(self.crashed, self.transcript)
        second = verify(self.crashed, self.transcript)
        self.assertEqual(first.violations, [4])
        self.assertEqual(second.violations, first.violations)
        self.assertEqual(second.recovered, first.recovered)

        q = SqliteQueue.open(self.crashed / QUEUE_SUBDIR)
        try:
            self.assertEqual(q.length(), 2)
        finally:
            q.close()

    def test_report_on_pass(self):
        self._seed_queue(2)
        self.transcript.write_text("Writing orphan with ID 2\nWrote orphan with ID 2\n", encoding="utf-8")
        report = self.root / "out" / "verdict.json"
        code, out, _ = self._run_main("--report", str(report))
        self.assertEqual(code, 0)
        self.assertEqual(out, "")
        obj = json.loads(report.read_text(encoding="utf-8"))
        self.assertTrue(obj["ok"])
        self.assertEqual(obj["verdict"], "pass")
        self.assertEqual(obj["counts"]["recovered"], 1)
        self.assertEqual(obj["counts"]["confirmed_durable"], 1)
        self.assertEqual(obj["lines_replayed"], 2)

    def test_report_on_durability_violation(self):
        self._seed_queue()
        self.transcript.write_text("Writing orphan with ID 7\nWrote orphan with ID 7\n", encoding="utf-8")
        report = self.root / "verdict.json"
        code, _, _ = self._run_main("--report", str(report))
        self.assertEqual(code, 1)
        obj = json.loads(report.read_text(encoding="utf-8"))
        self.assertFalse(obj["ok"])
        self.assertEqual(obj["verdict"], "durability_violation")
        self.assertEqual(obj["violations"], [7])

    def test_report_on_protocol_violation(self):
        self._seed_queue()
        self.transcript.write_text("Writing orphan with ID 1\nWriting orphan with ID 1\n", encoding="utf-8")
        report = self.root / "verdict.json"
        code, _, _ = self._run_main("--report", str(report))
        self.assertEqual(code, 3)
        obj = json.loads(report.read_text(encoding="utf-8"))
        self.assertEqual(obj["verdict"], "protocol_violation")
        self.assertEqual(obj["reason_code"], "key_collision")
        self.assertEqual(obj["key"], 1)
        self.assertIsNone(obj["counts"])

    def test_unwritable_report_keeps_verdict_exit_status(self):
        self._seed_queue()
        self.transcript.write_text("Writing orphan with ID 7\nWrote orphan with ID 7\n", encoding="utf-8")
        blocker = self.root / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        code, _, err = self._run_main("--report", str(blocker / "verdict.json"))
        self.assertEqual(code, 1)
        self.assertIn("ID 7 was not durable", err)
        self.assertIn("writing report", err)

    def test_unwritable_report_fails_a_passing_run(self):
        self._seed_queue(2)
        self.transcript.write_text("Writing orphan with ID 2\nWrote orphan with ID 2\n", encoding="utf-8")
        blocker = self.root / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        code, _, err = self._run_main("--report", str(blocker / "verdict.json"))
        self.assertEqual(code, 2)
        self.assertIn("writing report", err)


if __name__ == "__main__":
    unittest.main()
