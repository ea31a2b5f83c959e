"""
Tests for the StreamGroup class.
"""

import os
import sys
import unittest
from itertools import islice

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))
from mcp_stream_mux import (  # noqa: E402
    StreamGroup,
    ProcessStream,
    ReadFailure,
    SpawnFailure,
    STDOUT,
    STDERR,
)
from fakes import FakeReader, FakeProcess  # noqa: E402


def fake_stream(identity, stdout_chunks=None, stderr_chunks=None, finished=True):
    stdout = FakeReader(stdout_chunks, finished=finished)
    stderr = FakeReader(stderr_chunks, finished=finished)
    return ProcessStream(FakeProcess(), stdout, stderr, identity=identity)


class TestStreamGroupFanOut(unittest.TestCase):
    """Test cases for fan-out over scripted streams."""

    def setUp(self):
        """Set up test environment."""
        self.group = StreamGroup()

    def test_results_follow_insertion_order(self):
        """Test that per-member results come back in the order members were added."""
        for identity in ("c", "a", "b"):
            self.group.add_stream(fake_stream(identity, [f"{identity}-line\n"]))

        results = self.group.next_lines()

        self.assertEqual(["c", "a", "b"], [entry.identity for entry in results])
        self.assertEqual(["c-line", "a-line", "b-line"], [entry.text for entry in results])
        self.assertTrue(all(entry.side == STDOUT for entry in results))
        self.assertTrue(all(entry.error is None for entry in results))

    def test_fill_failure_does_not_stop_fan_out(self):
        """Test that a failing member is reported while the others are still filled."""
        broken = fake_stream("broken", finished=False)
        broken.stdout_reader.fail = True
        self.group.add_stream(fake_stream("first", ["one\n"], finished=False))
        self.group.add_stream(broken)
        self.group.add_stream(fake_stream("last", ["two\n"], finished=False))

        results = self.group.fill_buffers()

        self.assertEqual(["first", "broken", "last"], [result.identity for result in results])
        self.assertIsNone(results[0].error)
        self.assertIsInstance(results[1].error, ReadFailure)
        self.assertIsNone(results[2].error)
        self.assertEqual("two\n", self.group.get("last").stdout_buffer.get_contents())

    def test_next_lines_reports_errors_per_member(self):
        """Test that an extraction error is tagged on its member only."""
        broken = fake_stream("broken", finished=False)
        broken.stderr_reader.fail = True
        self.group.add_stream(broken)
        self.group.add_stream(fake_stream("ok", ["fine\n"], finished=False))

        results = self.group.next_lines()

        self.assertIsInstance(results[0].error, ReadFailure)
        self.assertIsNone(results[0].text)
        self.assertEqual(("ok", "fine", STDOUT, None), tuple(results[1]))

    def test_end_of_stream_polls_every_member(self):
        """Test that end-of-stream checks all members without short-circuiting."""
        first = fake_stream("first", finished=False)
        second = fake_stream("second", finished=False)
        self.group.add_stream(first)
        self.group.add_stream(second)

        # The second member's pipes closed, but no fill has observed it yet
        second.stdout_reader.eof = True
        second.stderr_reader.eof = True

        self.assertFalse(self.group.is_end_of_stream())
        self.assertEqual(1, second.stdout_reader.eof_checks)
        self.assertTrue(second.stdout_eof and second.stderr_eof)

        first.stdout_reader.finished = True
        first.stderr_reader.finished = True
        self.group.fill_buffers()
        self.assertTrue(self.group.is_end_of_stream())

    def test_has_pending_data(self):
        """Test that pending data in any member is reported."""
        self.group.add_stream(fake_stream("quiet", finished=False))
        self.group.add_stream(fake_stream("busy", ["partial"], finished=False))

        self.assertFalse(self.group.has_pending_data())
        self.group.fill_buffers()
        self.assertTrue(self.group.has_pending_data())

    def test_empty_group(self):
        """Test that an empty group is finished and idle."""
        self.assertTrue(self.group.is_end_of_stream())
        self.assertFalse(self.group.has_pending_data())
        self.assertEqual([], self.group.next_lines())
        self.assertEqual([], list(self.group.follow(poll_interval=0)))

    def test_follow(self):
        """Test that follow yields every line tagged and then stops."""
        self.group.add_stream(fake_stream("a", ["a1\na", "2\n"], ["ae\n"]))
        self.group.add_stream(fake_stream("b", ["b1\n", "b2"]))

        lines = []
        for entry in self.group.follow(max_lines=1, poll_interval=0):
            self.assertIsNone(entry.error)
            lines.append((entry.identity, entry.side, entry.text))

        self.assertEqual(
            sorted([("a", STDOUT, "a1"), ("a", STDOUT, "a2"), ("a", STDERR, "ae"),
                    ("b", STDOUT, "b1"), ("b", STDOUT, "b2")]),
            sorted(lines))
        self.assertLess(lines.index(("a", STDOUT, "a1")), lines.index(("a", STDOUT, "a2")))
        self.assertLess(lines.index(("b", STDOUT, "b1")), lines.index(("b", STDOUT, "b2")))

    def test_follow_stops_polling_failed_member(self):
        """Test that a member with a persistent read failure is reported once and then left alone."""
        bad = fake_stream("bad", finished=False)
        bad.stdout_reader.fail = True
        self.group.add_stream(bad)
        self.group.add_stream(fake_stream("good", ["ok\n"]))

        entries = list(islice(self.group.follow(poll_interval=0), 50))

        self.assertLess(len(entries), 50)
        errors = [entry for entry in entries if entry.error is not None]
        self.assertEqual(["bad"], [entry.identity for entry in errors])
        self.assertIsInstance(errors[0].error, ReadFailure)
        self.assertIn(("good", "ok", STDOUT), [(entry.identity, entry.text, entry.side) for entry in entries])

    def test_remove(self):
        """Test removing a member by identity."""
        stream = fake_stream("gone")
        self.group.add_stream(stream)
        self.group.add_stream(fake_stream("kept"))

        self.assertIs(stream, self.group.remove("gone"))
        self.assertEqual(["kept"], self.group.identities())
        self.assertIsNone(self.group.remove("gone"))

    def test_close_all(self):
        """Test that close_all terminates every member's process."""
        streams = [fake_stream("a", finished=False), fake_stream("b", finished=False)]
        for stream in streams:
            self.group.add_stream(stream)

        self.group.close_all()

        self.assertTrue(all(stream.process.killed for stream in streams))


@unittest.skipIf(os.name == 'nt', "requires a POSIX shell")
class TestStreamGroupProcesses(unittest.TestCase):
    """Test cases running real processes."""

    def setUp(self):
        """Set up test environment."""
        self.group = StreamGroup()

    def tearDown(self):
        """Clean up after tests."""
        self.group.close_all()

    def test_member_spawn_failure_is_isolated(self):
        """Test that one member failing to spawn leaves the other two usable."""
        self.assertIsNotNone(self.group.add("sh", ["-c", "echo one"], identity="one"))
        self.assertIsNone(self.group.add("definitely-not-a-real-binary-xyz", [], identity="missing"))
        self.assertIsNotNone(self.group.add("sh", ["-c", "echo two >&2"], identity="two"))

        self.assertEqual(3, len(self.group))
        self.assertEqual(2, len(self.group.streams()))

        fill_results = self.group.fill_buffers()
        self.assertEqual(["one", "missing", "two"], [result.identity for result in fill_results])
        self.assertIsInstance(fill_results[1].error, SpawnFailure)

        line_results = self.group.next_lines()
        self.assertEqual(["one", "missing", "two"], [entry.identity for entry in line_results])
        self.assertIsInstance(line_results[1].error, SpawnFailure)
        self.assertIsNone(line_results[0].error)
        self.assertIsNone(line_results[2].error)

        drained = self.group.drain_all()
        self.assertIsInstance(drained[1].error, SpawnFailure)

        collected = {}
        for entry in line_results + drained:
            if entry.text:
                collected.setdefault(entry.identity, []).extend(entry.text.split("\n"))
        self.assertEqual({"one": ["one"], "two": ["two"]}, collected)
        self.assertTrue(self.group.is_end_of_stream())

    def test_follow_processes(self):
        """Test following several processes until they all finish."""
        self.group.add("sh", ["-c", 'for i in 1 2 3; do echo "a$i"; sleep 0.05; done'], identity="a")
        self.group.add("sh", ["-c", 'echo b1; echo b2 >&2'], identity="b")
        self.group.add("missing-binary-for-follow-test", [], identity="c")

        received = {}
        errors = []
        for entry in self.group.follow(trim=True):
            if entry.error is not None:
                errors.append(entry.identity)
                continue
            received.setdefault((entry.identity, entry.side), []).extend(entry.text.split("\n"))

        self.assertEqual(["c"], errors)
        self.assertEqual(["a1", "a2", "a3"], received[("a", STDOUT)])
        self.assertEqual(["b1"], received[("b", STDOUT)])
        self.assertEqual(["b2"], received[("b", STDERR)])
        self.assertTrue(self.group.is_end_of_stream())
        self.assertFalse(self.group.has_pending_data())

    def test_closed_member_does_not_read_new_member_output(self):
        """Test that a member closed by close_all never reads a pipe opened afterwards."""
        old = self.group.add("sh", ["-c", "sleep 5"], identity="old")
        self.group.close_all()

        new = self.group.add("sh", ["-c", "echo SECRET"], identity="new")
        new.process.wait(timeout=5)
        self.group.fill_buffers()

        self.assertEqual("SECRET\n", new.stdout_buffer.get_contents())
        self.assertTrue(old.stdout_buffer.is_empty())
        self.assertTrue(old.stderr_buffer.is_empty())
        self.assertTrue(old.is_end_of_stream())


if __name__ == "__main__":
    unittest.main()
