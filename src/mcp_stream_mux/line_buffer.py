"""
Line buffer for pending process output.

This module provides the LineBuffer class which holds text read from one
output channel of a process until it can be handed out as complete lines.
"""

import re
import logging
from typing import List, Optional

# Sentinel for "no limit on the number of lines"
UNLIMITED = -1

# Every \n and \r is a terminator of its own; \r\n is not collapsed
_TERMINATORS = re.compile(r"[\r\n]")


def split_lines(text: str) -> List[str]:
    """
    Split text into lines on \\n or \\r characters.

    Empty lines are kept, but a trailing terminator does not produce an
    extra empty line at the end.

    Args:
        text: Text to split

    Returns:
        List of lines without terminators
    """
    if not text:
        return []
    lines = _TERMINATORS.split(text)
    if lines[-1] == "":
        lines.pop()
    return lines


def trim_lines(text: str) -> Optional[str]:
    """
    Strip whitespace from each line of text and drop the lines left empty.

    Args:
        text: Text to trim

    Returns:
        The remaining lines joined with newlines, or None if nothing remains
    """
    trimmed = [line.strip() for line in split_lines(text)]
    trimmed = [line for line in trimmed if line]
    if not trimmed:
        return None
    return "\n".join(trimmed)


class LineBuffer:
    """
    Holds text read from a single channel that has not been consumed yet.

    Data only leaves the buffer as whole lines, so a line split across
    several reads comes out in one piece. The buffer never holds text that
    has already been handed to a caller, but it may hold a trailing partial
    line that has no terminator yet.

    Example usage:
        buffer = LineBuffer("stdout")
        buffer.append("Line 1\\nLi")
        buffer.extract_lines()  # ["Line 1"]
        buffer.append("ne 2\\n")
        buffer.extract_lines()  # ["Line 2"]
    """

    def __init__(self, name: str = "buffer"):
        """
        Initialize an empty line buffer.

        Args:
            name: Label used in log messages (e.g. "stdout")
        """
        self.name = name
        self.buffer = ""

        # Set up logger
        self.logger = logging.getLogger("mcp_stream_mux.line_buffer")

    def _truncate_for_logging(self, value, max_length=50):
        """Truncate a value for logging purposes."""
        if isinstance(value, str) and len(value) > max_length:
            return value[:max_length - 3] + "..."
        return value

    def append(self, text: str) -> None:
        """
        Add text to the end of the buffer.

        Args:
            text: Text to add
        """
        if not text:
            return
        self.buffer += text
        self.logger.debug(f"Appended to {self.name}: size={len(text)}, data={self._truncate_for_logging(text)!r}")

    def extract_lines(self, max_lines: int = UNLIMITED, flush_partial: bool = False) -> List[str]:
        """
        Remove complete lines from the front of the buffer.

        Args:
            max_lines: Maximum number of lines to remove (default: UNLIMITED).
                       Any negative value means no limit.
            flush_partial: Also remove a trailing unterminated line once all
                           terminated lines are taken. Used after the channel
                           reached end-of-stream.

        Returns:
            Extracted lines without their terminators
        """
        limited = max_lines >= 0
        lines = []
        pos = 0

        for match in _TERMINATORS.finditer(self.buffer):
            if limited and len(lines) >= max_lines:
                break
            lines.append(self.buffer[pos:match.start()])
            pos = match.end()

        if flush_partial and pos < len(self.buffer) and not (limited and len(lines) >= max_lines):
            self.logger.debug(f"Flushing partial line from {self.name}: {self._truncate_for_logging(self.buffer[pos:])!r}")
            lines.append(self.buffer[pos:])
            pos = len(self.buffer)

        if pos:
            self.buffer = self.buffer[pos:]
            self.logger.debug(f"Extracted {len(lines)} lines from {self.name}, {len(self.buffer)} chars left")

        return lines

    def is_empty(self) -> bool:
        """Return True if no text is pending."""
        return not self.buffer

    def get_size(self) -> int:
        """
        Get the amount of pending text.

        Returns:
            Number of pending characters
        """
        return len(self.buffer)

    def get_contents(self) -> str:
        """Return the pending text without consuming it."""
        return self.buffer

    def clear(self) -> None:
        """Clear the buffer contents."""
        if self.buffer:
            self.logger.info(f"Clearing {self.name} buffer: discarding {len(self.buffer)} chars")
        self.buffer = ""
