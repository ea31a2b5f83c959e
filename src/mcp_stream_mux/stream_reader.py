"""
Non-blocking reader over a single process pipe.

This module provides the StreamReader class which drains whatever bytes a
pipe has available without ever waiting for more.
"""

import os
import codecs
import logging
from typing import Any

from .exceptions import ReadFailure
from .line_buffer import LineBuffer

# Maximum number of bytes taken from a pipe per fill attempt
READ_SIZE = 64 * 1024


class StreamReader:
    """
    Wraps one byte source (a process's stdout or stderr) in non-blocking mode.

    Bytes are decoded incrementally as UTF-8, so a multi-byte character
    split between two reads is still decoded correctly.

    Example usage:
        reader = StreamReader(process.stdout, "stdout")
        buffer = LineBuffer("stdout")
        count = reader.fill(buffer)  # 0 if nothing is available yet
        done = reader.is_at_end_of_stream()
    """

    def __init__(self, pipe: Any, source: str, read_size: int = READ_SIZE):
        """
        Initialize a reader and switch the pipe to non-blocking mode.

        Args:
            pipe: File object of the pipe (must have fileno())
            source: Source identifier ("stdout" or "stderr")
            read_size: Maximum bytes read per fill attempt

        Raises:
            OSError: If the descriptor cannot be made non-blocking
        """
        self.pipe = pipe
        self.source = source
        self.read_size = read_size
        self.fd = pipe.fileno()
        self.eof = False
        self.total_bytes = 0
        self.decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        # Set up logger
        self.logger = logging.getLogger("mcp_stream_mux.stream_reader")

        os.set_blocking(self.fd, False)
        self.logger.debug(f"StreamReader initialized: source={source}, fd={self.fd}")

    def fill(self, buffer: LineBuffer) -> int:
        """
        Make one non-blocking read attempt and append the result to a buffer.

        Args:
            buffer: Buffer receiving the decoded text

        Returns:
            Number of bytes read; 0 if nothing was available

        Raises:
            ReadFailure: If the OS reports a read error on the pipe
        """
        if self.eof or self.fd is None:
            return 0

        try:
            data = os.read(self.fd, self.read_size)
        except BlockingIOError:
            return 0
        except OSError as e:
            self.logger.error(f"Error reading {self.source}: fd={self.fd}, error={str(e)}")
            raise ReadFailure(f"Error reading {self.source}: {str(e)}") from e

        if not data:
            self.eof = True
            buffer.append(self.decoder.decode(b"", final=True))
            self.logger.debug(f"End of {self.source} stream: total_bytes={self.total_bytes}")
            return 0

        self.total_bytes += len(data)
        buffer.append(self.decoder.decode(data))
        return len(data)

    def is_at_end_of_stream(self) -> bool:
        """
        Check whether the producer closed the pipe and everything was drained.

        This only turns True after a fill attempt has observed the close.

        Returns:
            True once the source is exhausted
        """
        return self.eof

    def close(self) -> None:
        """
        Close the underlying pipe.

        The reader counts as exhausted afterwards and forgets the descriptor
        number, which the OS may hand to the next pipe it opens.
        """
        self.eof = True
        self.fd = None
        try:
            self.pipe.close()
        except OSError as e:
            self.logger.error(f"Error closing {self.source} pipe: {str(e)}")
