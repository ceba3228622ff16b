"""
Tests for the command line replay.
"""

import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from io import StringIO

# main lives at the repository root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from main import frame_time, main, parse_arguments, read_frames  # noqa: E402


class TestHelpers(unittest.TestCase):

    def test_parse_arguments(self):
        args = parse_arguments(["replay", "frames.jsonl", "--no-coaching", "--save", "out.json"])
        self.assertEqual(args.command, "replay")
        self.assertTrue(args.no_coaching)
        self.assertFalse(args.realtime)
        self.assertEqual(args.save, "out.json")

        args = parse_arguments(["serve", "--port", "8080"])
        self.assertEqual(args.port, 8080)

    def test_frame_time(self):
        self.assertEqual(frame_time({'timestamp': 1700000000000}, None), 1700000000.0)
        self.assertEqual(frame_time({'timestamp': 3.5}, None), 3.5)
        self.assertAlmostEqual(frame_time({}, 3.5), 3.7)

    def test_read_frames_skips_bad_lines(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "frames.jsonl")
            with open(path, 'w') as f:
                f.write('{"faces": []}\n\nnot json\n{"faces": [], "timestamp": 1.0}\n')
            frames = list(read_frames(path))
        self.assertEqual(len(frames), 2)
        self.assertEqual(frames[1]['timestamp'], 1.0)


class TestReplay(unittest.TestCase):

    def test_virtual_replay_writes_summary(self):
        with tempfile.TemporaryDirectory() as tmp:
            frames_path = os.path.join(tmp, "frames.jsonl")
            summary_path = os.path.join(tmp, "summary.json")
            with open(frames_path, 'w') as f:
                for i in range(100):
                    f.write(json.dumps({'faces': [], 'timestamp': i * 0.2}) + "\n")

            output = StringIO()
            with redirect_stdout(output):
                code = main(["replay", frames_path, "--no-coaching", "--silent",
                             "--session-id", "replay-test", "--save", summary_path])

            self.assertEqual(code, 0)
            self.assertIn("SESSION SUMMARY", output.getvalue())
            with open(summary_path) as f:
                summary = json.load(f)
        self.assertEqual(summary['session_id'], "replay-test")
        self.assertLess(summary['final_score'], 100)
        self.assertEqual(summary['nudge_count'], 0)

    def test_empty_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "empty.jsonl")
            open(path, 'w').close()
            with redirect_stdout(StringIO()):
                self.assertEqual(main(["replay", path]), 1)

    def test_no_command(self):
        with redirect_stdout(StringIO()):
            self.assertEqual(main([]), 2)


if __name__ == '__main__':
    unittest.main()
