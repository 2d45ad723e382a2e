from .access import AccessDetector, AccessIssue, assert_likely_logged_in, detect_access_issue
from .controls import click_first, find_first_visible, human_pause, try_goto, wait_for_idle
from .debug_capture import DebugCaptureResult, capture_debug_artifacts

__all__ = [
    "AccessDetector",
    "AccessIssue",
    "DebugCaptureResult",
    "assert_likely_logged_in",
    "capture_debug_artifacts",
    "click_first",
    "detect_access_issue",
    "find_first_visible",
    "human_pause",
    "try_goto",
    "wait_for_idle",
]
