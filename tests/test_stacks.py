import unittest

from thread_inspector.events import Frame, Sample, frame_signature, parse_signature
from thread_inspector.stacks import extract_activity_label, locate_target_thread
from thread_inspector.wait_reasons import (
    WAIT_REASONS,
    WR_PREEMPTED,
    WR_USER_REQUEST,
    is_blocking,
    wait_reason_name
)


ANCHOR = "app!MessageLoop"


def stack(*signatures):
    return [parse_signature(signature) for signature in signatures]


class TestFrameSignature(unittest.TestCase):
    def test_signature_forms(self):
        self.assertEqual(frame_signature(Frame("user32", "GetMessageW")), "user32!GetMessageW")
        self.assertEqual(frame_signature(Frame(None, "Run")), "?!Run")
        self.assertEqual(frame_signature(Frame("app", address=0x1f0)), "app!0x1f0")
        self.assertEqual(frame_signature(Frame("app", "Run", address=0x1f0)), "app!Run")


class TestActivityLabel(unittest.TestCase):
    def test_returns_frame_just_inside_anchor(self):
        call_stack = stack("ntdll!Wait", "user32!GetMessageW", ANCHOR, "app!main")
        self.assertEqual(extract_activity_label(call_stack, ANCHOR), "user32!GetMessageW")

    def test_single_frame_inside_anchor(self):
        call_stack = stack("app!DoWork", ANCHOR)
        self.assertEqual(extract_activity_label(call_stack, ANCHOR), "app!DoWork")

    def test_anchor_at_leaf_is_unresolved(self):
        self.assertIsNone(extract_activity_label(stack(ANCHOR, "app!main"), ANCHOR))

    def test_missing_anchor_is_unresolved(self):
        self.assertIsNone(extract_activity_label(stack("a!b", "c!d"), ANCHOR))
        self.assertIsNone(extract_activity_label([], ANCHOR))

    def test_first_anchor_match_wins(self):
        call_stack = stack("a!inner", ANCHOR, "b!nested", ANCHOR)
        self.assertEqual(extract_activity_label(call_stack, ANCHOR), "a!inner")

    def test_unresolved_frame_can_be_label(self):
        call_stack = [Frame("user32", address=0x42)] + stack(ANCHOR)
        self.assertEqual(extract_activity_label(call_stack, ANCHOR), "user32!0x42")


class TestLocateTargetThread(unittest.TestCase):
    def test_first_matching_sample(self):
        samples = [
            Sample(1.0, 7, stack("ntdll!Wait", "kernel32!BaseThreadInitThunk")),
            Sample(2.0, 9, stack("user32!GetMessageW", "devenv!WinMain")),
            Sample(3.0, 11, stack("devenv!WinMain")),
        ]
        self.assertEqual(locate_target_thread(samples, "devenv!WinMain"), 9)

    def test_not_found(self):
        samples = [Sample(1.0, 7, stack("a!b"))]
        self.assertIsNone(locate_target_thread(samples, "devenv!WinMain"))
        self.assertIsNone(locate_target_thread([], "devenv!WinMain"))


class TestWaitReasons(unittest.TestCase):
    def test_table_covers_all_codes(self):
        self.assertEqual(len(WAIT_REASONS), 37)
        self.assertEqual(wait_reason_name(36), "WrRundown")

    def test_classification(self):
        self.assertTrue(is_blocking(WR_USER_REQUEST))
        self.assertFalse(is_blocking(WR_PREEMPTED))
        self.assertIsNone(is_blocking(37))
        self.assertIsNone(is_blocking(-1))
        self.assertEqual(wait_reason_name(99), "<unknown 99>")


if __name__ == "__main__":
    unittest.main()
