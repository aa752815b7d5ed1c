"""
Stream Sanitizer

Repairs terminal mode state in the output stream before it reaches the
rendering surface. Control sequences can arrive split across two network
deliveries, so a short tail of the previous raw chunk is kept and prepended
when scanning; only matches that end inside the new chunk count. An
unfinished private-mode sequence at the very end of a chunk is held back
until the next chunk shows whether it has to be stripped.
"""

import re
from dataclasses import dataclass
from typing import List, Tuple

# Alternate screen exit: xterm 1049, 1047 and the legacy 47 variant
ALT_SCREEN_EXIT = re.compile(r"\x1b\[\?(?:1049|1047|47)l")

# DECAWM reset (line auto-wrap disabled)
AUTOWRAP_DISABLE = re.compile(r"\x1b\[\?7l")

# Any private mode set/reset whose parameter list includes 3 (DECCOLM)
COLUMN_MODE = re.compile(r"\x1b\[\?(?:\d{1,4};){0,4}3(?:;\d{1,4}){0,4}[hl]")

# Bracketed paste off, focus reporting off, cursor shown
SHELL_RETURN_HINTS = re.compile(r"\x1b\[\?(?:2004l|1004l|25h)")

AUTOWRAP_ENABLE = "\x1b[?7h"

# Trailing ESC, ESC[, ESC[? or ESC[? with a partial parameter list
INCOMPLETE_PRIVATE_CSI = re.compile(r"\x1b(?:\[(?:\?[\d;]{0,24})?)?\Z")

# At least as long as the longest sequence above can be
TAIL_LENGTH = 64


@dataclass(frozen=True)
class SanitizeResult:
    text: str
    requires_recovery: bool


def merge_ranges(ranges: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Merge overlapping or touching [start, end) ranges."""
    merged: List[Tuple[int, int]] = []
    for start, end in sorted(ranges):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def remove_ranges(text: str, ranges: List[Tuple[int, int]]) -> str:
    if not ranges:
        return text
    pieces = []
    cursor = 0
    for start, end in merge_ranges(ranges):
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])
    return "".join(pieces)


class StreamSanitizer:
    """
    Stateful filter for one logical output stream.

    The state is the raw tail of forwarded text plus any held-back
    unfinished sequence. A torn-down instance can be replaced by a fresh one
    at any time without replaying history.

    A chunk that contains a recovery marker but already ends with
    ESC[?7h reports no recovery. Running the sanitizer again over its own
    output then changes nothing, at the cost of no redraw request when an
    application happens to emit that exact ending itself.

    Args:
        shell_return_heuristics: Treat bracketed-paste off, focus reporting
            off and cursor shown as "control returned to the shell". These are
            tuned guesses and can fire while an application is still running.
    """

    def __init__(self, shell_return_heuristics: bool = True):
        self.shell_return_heuristics = shell_return_heuristics
        self._tail = ""
        self._held = ""

    def reset(self) -> None:
        self._tail = ""
        self._held = ""

    def process(self, chunk: str) -> SanitizeResult:
        if not chunk:
            return SanitizeResult(text="", requires_recovery=False)

        pending = self._held + chunk
        incomplete = INCOMPLETE_PRIVATE_CSI.search(pending)
        if incomplete:
            self._held = pending[incomplete.start():]
            current = pending[: incomplete.start()]
        else:
            self._held = ""
            current = pending

        boundary = len(self._tail)
        combined = self._tail + current

        recovery = False
        for pattern in self._recovery_patterns():
            if any(match.end() > boundary for match in pattern.finditer(combined)):
                recovery = True
                break

        strip_ranges = []
        for match in COLUMN_MODE.finditer(combined):
            if match.end() <= boundary:
                continue
            # The part that sat in the tail has already been forwarded
            strip_ranges.append((max(match.start(), boundary) - boundary, match.end() - boundary))

        self._tail = combined[-TAIL_LENGTH:]

        text = remove_ranges(current, strip_ranges)
        if recovery and not text.endswith(AUTOWRAP_ENABLE):
            text += AUTOWRAP_ENABLE
        elif recovery:
            # Already carries the corrective sequence from an earlier pass
            recovery = False

        return SanitizeResult(text=text, requires_recovery=recovery)

    def _recovery_patterns(self):
        patterns = [ALT_SCREEN_EXIT, AUTOWRAP_DISABLE]
        if self.shell_return_heuristics:
            patterns.append(SHELL_RETURN_HINTS)
        return patterns
