"""
Stream Sanitizer Use Case

Boundary-aware repair of terminal control sequences in gateway output.
"""

from use_cases.stream_sanitizer.sanitizer import (
    AUTOWRAP_ENABLE,
    TAIL_LENGTH,
    SanitizeResult,
    StreamSanitizer,
    merge_ranges,
)

__all__ = [
    "AUTOWRAP_ENABLE",
    "TAIL_LENGTH",
    "SanitizeResult",
    "StreamSanitizer",
    "merge_ranges",
]
