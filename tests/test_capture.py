import json
import tempfile
import unittest
import zipfile
from pathlib import Path

from thread_inspector.capture import (
    CaptureLog,
    JsonEventSource,
    load_json_capture,
    locate_capture,
    parse_event
)
from thread_inspector.errors import CaptureError
from thread_inspector.events import (
    PROCESS_END,
    PROCESS_RUNDOWN_END,
    PROCESS_START,
    ContextSwitch,
    Frame,
    ProcessLifecycle,
    ReadyThread,
    Sample
)
from thread_inspector.processes import ENDED, STARTED, ProcessTracker


class TestLocateCapture(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.log = CaptureLog()

    def tearDown(self):
        self._tmp.cleanup()

    def _write_zip(self, name, members):
        archive = self.root / name
        with zipfile.ZipFile(archive, "w") as zip_file:
            for member, content in members.items():
                zip_file.writestr(member, content)
        return archive

    def test_plain_file(self):
        capture = self.root / "capture.json"
        capture.write_text("{}")
        self.assertEqual(locate_capture(capture, self.log), capture)

    def test_zip_path_is_unpacked(self):
        archive = self._write_zip("capture.zip", {"notes.txt": "x", "run/capture.json": '{"events": []}'})
        located = locate_capture(archive, self.log, work_dir=self.root / "out")
        self.assertEqual(located, self.root / "out" / "capture.json")
        self.assertEqual(located.read_text(), '{"events": []}')
        self.assertTrue(any("Extracted run/capture.json" in line for line in self.log.lines))

    def test_missing_capture_falls_back_to_archive(self):
        self._write_zip("capture.zip", {"capture.json": "[]"})
        located = locate_capture(self.root / "capture.json", self.log, work_dir=self.root / "out")
        self.assertTrue(located.is_file())
        self.assertTrue(any("using archive" in line for line in self.log.lines))

    def test_missing_capture_without_archive(self):
        with self.assertRaises(CaptureError):
            locate_capture(self.root / "missing.json", self.log)

    def test_archive_without_capture(self):
        archive = self._write_zip("capture.zip", {"readme.txt": "nothing here"})
        with self.assertRaises(CaptureError):
            locate_capture(archive, self.log, work_dir=self.root / "out")

    def test_directory_is_rejected(self):
        with self.assertRaises(CaptureError):
            locate_capture(self.root, self.log)


class TestJsonCapture(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.log = CaptureLog()

    def tearDown(self):
        self._tmp.cleanup()

    def test_parse_events(self):
        sample = parse_event({
            "type": "Sample", "ts": 1, "pid": 10, "tid": 12,
            "stack": ["user32!GetMessageW", {"module": "app", "address": "0x40"}]
        })
        self.assertIsInstance(sample, Sample)
        self.assertEqual(sample.call_stack[0], Frame("user32", "GetMessageW"))
        self.assertEqual(sample.call_stack[1], Frame("app", None, 0x40))

        switch = parse_event({"type": "CSwitch", "ts": 2.5, "old_tid": 12, "new_tid": 0, "old_wait_reason": 6})
        self.assertIsInstance(switch, ContextSwitch)
        self.assertEqual(switch.old_thread_wait_reason, 6)
        self.assertEqual(switch.call_stack, [])

        ready = parse_event({"type": "ReadyThread", "ts": 3, "tid": 12})
        self.assertEqual(ready, ReadyThread(3.0, 12))

        start = parse_event({"type": "ProcessStart", "ts": 0, "pid": 10, "image": "devenv.exe"})
        self.assertEqual(start.kind, PROCESS_START)

        with self.assertRaises(ValueError):
            parse_event({"type": "DiskIo", "ts": 1})
        with self.assertRaises(KeyError):
            parse_event({"type": "ReadyThread", "ts": 1})

    def test_malformed_events_are_skipped(self):
        capture = self.root / "capture.json"
        capture.write_text(json.dumps({
            "processes": [{"pid": 10, "name": "devenv.exe"}],
            "events": [
                {"type": "ReadyThread", "ts": 1, "tid": 12},
                {"type": "ReadyThread", "ts": "soon", "tid": 12},
                {"type": "Bogus", "ts": 2},
            ]
        }))
        events = load_json_capture(capture, self.log)
        self.assertEqual(len(events), 2)
        self.assertIsInstance(events[0], ProcessLifecycle)
        self.assertEqual(events[1], ReadyThread(1.0, 12))
        skipped = [line for line in self.log.lines if "Skipping malformed event" in line]
        self.assertEqual(len(skipped), 2)

    def test_json_lines(self):
        capture = self.root / "capture.jsonl"
        capture.write_text(
            '{"type": "ReadyThread", "ts": 1, "tid": 12}\n\n'
            '{"type": "ReadyThread", "ts": 2, "tid": 13}\n'
        )
        events = load_json_capture(capture, self.log)
        self.assertEqual([event.awakened_thread_id for event in events], [12, 13])

    def test_unreadable_capture(self):
        capture = self.root / "capture.json"
        capture.write_text("{not json")
        with self.assertRaises(CaptureError):
            load_json_capture(capture, self.log)

    def test_source_filters_samples_by_process(self):
        capture = self.root / "capture.json"
        capture.write_text(json.dumps({
            "events": [
                {"type": "ProcessStart", "ts": 0, "pid": 10, "image": "devenv.exe"},
                {"type": "Sample", "ts": 1, "pid": 10, "tid": 12, "stack": ["devenv!WinMain"]},
                {"type": "Sample", "ts": 2, "pid": 20, "tid": 21, "stack": ["devenv!WinMain"]},
            ]
        }))
        source = JsonEventSource(capture, self.log)
        self.assertEqual(source.find_processes("devenv.exe"), [10])
        self.assertEqual([s.thread_id for s in source.load_samples(10)], [12])
        self.assertTrue(any("started" in note for note in source.notes))


class TestProcessTracker(unittest.TestCase):
    def _event(self, pid, kind, image="devenv.exe", ts=0.0):
        return ProcessLifecycle(ts, pid, image, kind)

    def test_instances_and_notifications(self):
        tracker = ProcessTracker("devenv.exe")
        seen = []
        only_ten = []
        tracker.subscribe(lambda change, event: seen.append((change, event.process_id)))
        tracker.subscribe(lambda change, event: only_ten.append(change), process_id=10)

        tracker.consume_all([
            self._event(10, PROCESS_START, image=r"C:\Program Files\devenv.exe"),
            self._event(11, PROCESS_START, image="notepad.exe"),
            self._event(20, PROCESS_START, image="DEVENV"),
            self._event(10, PROCESS_END),
        ])

        self.assertEqual(tracker.instances, [10, 20])
        self.assertEqual(seen, [(STARTED, 10), (STARTED, 20), (ENDED, 10)])
        self.assertEqual(only_ten, [STARTED, ENDED])
        self.assertEqual(tracker.running, {20})

    def test_duplicate_and_unmatched_events_are_noted(self):
        tracker = ProcessTracker("devenv")
        tracker.consume_all([
            self._event(10, PROCESS_START),
            self._event(10, PROCESS_START),
            self._event(30, PROCESS_END),
        ])
        self.assertEqual(tracker.instances, [10])
        self.assertIn("Process 10 already started", tracker.notes)
        self.assertIn("Process 30 ended but was not started", tracker.notes)

    def test_rundown_end_counts_uncaptured_start(self):
        tracker = ProcessTracker("devenv")
        tracker.consume(self._event(40, PROCESS_RUNDOWN_END))
        self.assertEqual(tracker.instances, [40])

    def test_unsubscribe(self):
        tracker = ProcessTracker("devenv")
        calls = []

        def listener(change, event):
            calls.append(change)

        tracker.subscribe(listener)
        tracker.unsubscribe(listener)
        tracker.consume(self._event(10, PROCESS_START))
        self.assertEqual(calls, [])


if __name__ == "__main__":
    unittest.main()
