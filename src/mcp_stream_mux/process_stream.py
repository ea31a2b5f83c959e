"""
Process stream for reading the output of a single monitored process.

This module provides the ProcessStream class which owns one child process,
drains its stdout and stderr without blocking, and hands the output back as
complete lines, alternating fairly between the two channels.
"""

import subprocess
import time
import logging
from typing import List, Dict, Tuple, Optional, Any

from .exceptions import SpawnFailure, ReadFailure, NoChannelsCaptured
from .line_buffer import LineBuffer, UNLIMITED, trim_lines
from .stream_reader import StreamReader

STDOUT = "stdout"
STDERR = "stderr"

# Seconds slept between polls when nothing was available
POLL_INTERVAL = 0.01
DEFAULT_TIMEOUT = 15.0

logger = logging.getLogger("mcp_stream_mux.process_stream")


class ProcessStream:
    """
    Streams complete lines out of one running process.

    Nothing here blocks: fill_buffers() takes whatever the pipes have right
    now, and next_lines() returns whole lines from one channel per call,
    switching between stdout and stderr so neither starves the other.

    Example usage:
        stream = ProcessStream.spawn("kubectl", ["logs", "-f", "pod"], identity="prod")
        while not stream.is_end_of_stream() or stream.has_pending_data():
            text, side = stream.next_lines()
            if text is not None:
                print(side, text)
    """

    def __init__(self,
                 process: Any,
                 stdout_reader: Optional[StreamReader],
                 stderr_reader: Optional[StreamReader],
                 identity: Optional[str] = None):
        """
        Initialize a stream over an already running process.

        Args:
            process: The child process (subprocess.Popen or compatible)
            stdout_reader: Reader over the process stdout, or None if not captured
            stderr_reader: Reader over the process stderr, or None if not captured
            identity: Label of the monitored target this stream belongs to

        Raises:
            NoChannelsCaptured: If both readers are None
        """
        if stdout_reader is None and stderr_reader is None:
            raise NoChannelsCaptured("Both stdout and stderr are unavailable")

        self.process = process
        self.stdout_reader = stdout_reader
        self.stderr_reader = stderr_reader
        self.identity = identity

        # Only kept for diagnostics
        self.program = None
        self.args = None

        self.stdout_buffer = LineBuffer(STDOUT)
        self.stderr_buffer = LineBuffer(STDERR)

        # A channel that was never captured counts as finished
        self.stdout_eof = stdout_reader is None
        self.stderr_eof = stderr_reader is None

        self.last_side_was_stdout = False
        self.lines_emitted = {STDOUT: 0, STDERR: 0}
        self.closed = False

        # Set up logger
        self.logger = logger
        self.logger.info(f"ProcessStream initialized: identity={identity}, pid={self.pid}, "
                         f"stdout={stdout_reader is not None}, stderr={stderr_reader is not None}")

    @classmethod
    def from_process(cls, process: Any, identity: Optional[str] = None) -> "ProcessStream":
        """
        Wrap the output pipes of a running process.

        A pipe that is missing or cannot be switched to non-blocking mode is
        left out; the stream is only rejected when neither pipe is usable.

        Args:
            process: Running process with stdout and/or stderr pipes
            identity: Label of the monitored target

        Returns:
            A new ProcessStream

        Raises:
            NoChannelsCaptured: If neither pipe can be read
        """
        readers = {}
        for source, pipe in ((STDOUT, process.stdout), (STDERR, process.stderr)):
            if pipe is None:
                continue
            try:
                readers[source] = StreamReader(pipe, source)
            except OSError as e:
                logger.warning(f"Cannot read {source} without blocking: identity={identity}, error={str(e)}")

        if not readers:
            raise NoChannelsCaptured("Both stdout and stderr are unavailable")

        return cls(process, readers.get(STDOUT), readers.get(STDERR), identity)

    @classmethod
    def spawn(cls, program: str, args: Optional[List[str]] = None, identity: Optional[str] = None) -> "ProcessStream":
        """
        Start a program with stdout and stderr piped and stream its output.

        Args:
            program: Program to run
            args: Arguments passed to the program
            identity: Label of the monitored target

        Returns:
            A new ProcessStream

        Raises:
            SpawnFailure: If the process could not be started
        """
        args = list(args or [])
        command = [program] + args
        logger.info(f"Spawning process: identity={identity}, command={command}")

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0  # Unbuffered
            )
        except FileNotFoundError as e:
            raise SpawnFailure(f"Command not found: {str(e)}") from e
        except PermissionError as e:
            raise SpawnFailure(f"Permission denied: {str(e)}") from e
        except (IndexError, ValueError) as e:
            raise SpawnFailure(f"Invalid command format: {str(e)}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise SpawnFailure(f"Subprocess error: {str(e)}") from e

        try:
            stream = cls.from_process(process, identity)
        except NoChannelsCaptured:
            process.kill()
            process.wait()
            raise

        stream.program = program
        stream.args = args
        return stream

    @property
    def pid(self) -> Optional[int]:
        return getattr(self.process, "pid", None)

    def format_command(self) -> str:
        """
        Format the command line this stream was spawned with.

        Raises:
            ValueError: If the stream was not created through spawn()
        """
        if self.program is None:
            raise ValueError("program not set")
        return " ".join([self.program] + list(self.args or []))

    def _channel(self, side: str) -> Tuple[Optional[StreamReader], LineBuffer]:
        if side == STDOUT:
            return self.stdout_reader, self.stdout_buffer
        if side == STDERR:
            return self.stderr_reader, self.stderr_buffer
        raise ValueError(f"Invalid side: {side}. Must be '{STDOUT}' or '{STDERR}'")

    def _is_marked_eof(self, side: str) -> bool:
        return self.stdout_eof if side == STDOUT else self.stderr_eof

    def _mark_eof(self, side: str) -> None:
        if side == STDOUT:
            self.stdout_eof = True
        else:
            self.stderr_eof = True
        self.logger.debug(f"Channel reached end of stream: identity={self.identity}, side={side}")

    def fill_buffers(self) -> None:
        """
        Move whatever the pipes have available into the channel buffers.

        Both channels are always attempted; a failure on one does not discard
        what was read from the other.

        Raises:
            ReadFailure: If reading either channel failed
        """
        first_error = None

        for side in (STDOUT, STDERR):
            if self._is_marked_eof(side):
                continue
            reader, buffer = self._channel(side)
            try:
                reader.fill(buffer)
            except ReadFailure as e:
                self.logger.error(f"Read failure: identity={self.identity}, side={side}, error={str(e)}")
                if first_error is None:
                    first_error = e
                continue
            if reader.is_at_end_of_stream():
                self._mark_eof(side)

        if first_error is not None:
            raise first_error

    def is_end_of_stream(self) -> bool:
        """
        Check whether both captured channels have been closed by the process.

        The per-channel flags are sticky: once a channel is seen closed it
        stays closed.

        Returns:
            True if every captured channel reached end-of-stream
        """
        for side in (STDOUT, STDERR):
            if not self._is_marked_eof(side):
                reader, _ = self._channel(side)
                if reader.is_at_end_of_stream():
                    self._mark_eof(side)

        return self.stdout_eof and self.stderr_eof

    def has_pending_data(self) -> bool:
        """Return True if either buffer still holds unread output."""
        return not self.stdout_buffer.is_empty() or not self.stderr_buffer.is_empty()

    def _select_side(self) -> str:
        # Prefer the channel not used last time, unless it has nothing buffered
        self.last_side_was_stdout = not self.last_side_was_stdout

        if self.last_side_was_stdout and self.stdout_buffer.is_empty():
            self.last_side_was_stdout = False

        if not self.last_side_was_stdout and self.stderr_buffer.is_empty():
            self.last_side_was_stdout = True

        return STDOUT if self.last_side_was_stdout else STDERR

    def next_lines(self,
                   max_lines: int = UNLIMITED,
                   fill_first: bool = True,
                   trim: bool = False) -> Tuple[Optional[str], str]:
        """
        Take the next batch of complete lines from one channel.

        Args:
            max_lines: Maximum number of lines to take (default: UNLIMITED)
            fill_first: Call fill_buffers() before extracting
            trim: Strip the lines and drop the ones left empty

        Returns:
            Tuple of (text, side) where text holds the lines joined with
            newlines (None if no complete line was available) and side is
            "stdout" or "stderr"

        Raises:
            ReadFailure: If fill_first is set and filling failed
        """
        if fill_first:
            self.fill_buffers()

        side = self._select_side()

        if self.stdout_buffer.is_empty() and self.stderr_buffer.is_empty():
            return None, side

        _, buffer = self._channel(side)
        lines = buffer.extract_lines(max_lines, flush_partial=self._is_marked_eof(side))
        if not lines:
            return None, side

        self.lines_emitted[side] += len(lines)

        text = "\n".join(lines)
        if trim:
            return trim_lines(text), side
        return text, side

    def drain_all(self, fill_first: bool = True, trim: bool = False, poll_interval: float = POLL_INTERVAL) -> str:
        """
        Collect all output until the process closes both channels.

        Meant for short-lived commands; for long running followers use
        next_lines() in a poll loop instead.

        Args:
            fill_first: Fill the buffers before every extraction
            trim: Strip lines and drop empty ones
            poll_interval: Seconds to sleep when nothing was available

        Returns:
            All extracted batches joined with newlines

        Raises:
            ReadFailure: If reading a channel failed
        """
        self.logger.debug(f"Draining stream: identity={self.identity}")
        batches = []

        self.fill_buffers()
        while not self.is_end_of_stream() or self.has_pending_data():
            text, _ = self.next_lines(UNLIMITED, fill_first, trim)
            if text is not None:
                batches.append(text)
                continue

            self.fill_buffers()
            time.sleep(poll_interval)

        self.logger.debug(f"Drained stream: identity={self.identity}, batches={len(batches)}")
        return "\n".join(batches)

    def channel_state(self, side: str) -> str:
        """
        Get the state of one channel.

        Args:
            side: "stdout" or "stderr"

        Returns:
            "open" before end-of-stream, "draining" after end-of-stream while
            output is still buffered, "closed" once the buffer is empty
        """
        _, buffer = self._channel(side)
        if not self._is_marked_eof(side):
            return "open"
        if not buffer.is_empty():
            return "draining"
        return "closed"

    def get_state(self) -> str:
        """Get the process state ("running", "completed" or "error: Exit code N")."""
        exit_code = self.process.poll()
        if exit_code is None:
            return "running"
        if exit_code == 0:
            return "completed"
        return f"error: Exit code {exit_code}"

    def get_status(self) -> Dict[str, Any]:
        """
        Get diagnostic information about this stream.

        Returns:
            Dictionary with process and channel status information
        """
        command = [self.program] + list(self.args or []) if self.program else []
        return {
            "identity": self.identity,
            "command": command,
            "pid": self.pid,
            "state": self.get_state(),
            "exit_code": self.process.poll(),
            "stdout": self.channel_state(STDOUT),
            "stderr": self.channel_state(STDERR),
            "pending": {STDOUT: self.stdout_buffer.get_size(), STDERR: self.stderr_buffer.get_size()},
            "lines_emitted": dict(self.lines_emitted),
        }

    def kill(self, timeout: float = DEFAULT_TIMEOUT) -> bool:
        """
        Kill the process if it is still running.

        Args:
            timeout: Maximum time to wait for the process to exit (seconds)

        Returns:
            True if the process is no longer running
        """
        if self.process.poll() is not None:
            return True

        self.logger.info(f"Killing process: identity={self.identity}, pid={self.pid}")
        self.process.kill()
        try:
            self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.logger.error(f"Process did not terminate within timeout: pid={self.pid}")
            return False
        return True

    def close(self, terminate: bool = True, timeout: float = DEFAULT_TIMEOUT) -> None:
        """
        Release the process and its pipes.

        Both channels count as end-of-stream afterwards. Output still in the
        buffers can be taken with next_lines(fill_first=False); anything the
        process writes after this point is lost.

        Args:
            terminate: Kill the process if it is still running. Otherwise it
                       is left running, but the read ends of its pipes are
                       closed, so its next write to stdout or stderr fails
                       with SIGPIPE/EPIPE.
            timeout: Maximum time to wait for the process to exit (seconds)
        """
        if self.closed:
            return
        self.closed = True
        self.logger.info(f"Closing stream: identity={self.identity}, pid={self.pid}, terminate={terminate}")

        if terminate:
            self.kill(timeout=timeout)

        for reader in (self.stdout_reader, self.stderr_reader):
            if reader is not None:
                reader.close()
        self.stdout_eof = True
        self.stderr_eof = True

        if terminate:
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.logger.error(f"Process not reaped within timeout: pid={self.pid}")

    def __enter__(self) -> "ProcessStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
