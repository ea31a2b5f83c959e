"""
Stream manager for following output of multiple monitored processes.

This module provides the StreamManager class which wraps a StreamGroup in a
tool-style interface, and the main() entry point that serves those tools
over MCP.
"""

import threading
import logging
import os
from typing import List, Dict, Tuple, Optional, Any
from datetime import datetime

from .line_buffer import UNLIMITED
from .process_stream import ProcessStream, DEFAULT_TIMEOUT
from .stream_group import StreamGroup
from .exceptions import StreamError


class StreamManager:
    """
    Manages a group of process streams behind a tool-friendly interface.

    Every method returns plain strings, tuples or dictionaries and reports
    failures as "failed: {error}" or "ERROR: {error}" instead of raising.

    Example usage:
        manager = StreamManager()
        status, pid = manager.stream_start("prod", ["stern", "--context", "prod", "."])
        if "success" in status:
            lines = manager.stream_get_lines("prod")
    """

    def __init__(self):
        """Initialize a new stream manager."""
        self.group = StreamGroup()
        self.lock = threading.RLock()

        # Set up logging
        self._setup_logging()
        self.logger.info("StreamManager initialized")

    def _setup_logging(self):
        """Set up logging configuration."""
        # Create logs directory if it doesn't exist
        log_dir = "./logs"
        if not os.path.exists(log_dir):
            os.makedirs(log_dir)

        # Configure logger
        self.logger = logging.getLogger("mcp_stream_mux")
        self.logger.setLevel(logging.INFO)

        today = datetime.now().strftime("%Y_%m_%d")
        log_file = f"{log_dir}/mcp_streammux_{today}.log"

        # Check if handlers already exist to avoid duplicates
        if not self.logger.handlers:
            try:
                from logging.handlers import RotatingFileHandler
                rotating_handler = RotatingFileHandler(
                    log_file,
                    maxBytes=10 * 1024 * 1024,  # 10MB
                    backupCount=5
                )
                formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
                rotating_handler.setFormatter(formatter)
                self.logger.addHandler(rotating_handler)
            except OSError as e:
                self.logger.error(f"Failed to set up log file: {str(e)}")

    def _truncate_for_logging(self, value, max_length=50):
        """Truncate a value for logging purposes."""
        if isinstance(value, str) and len(value) > max_length:
            return value[:max_length - 3] + "..."
        elif isinstance(value, list):
            return [self._truncate_for_logging(item) for item in value[:5]] + (["..."] if len(value) > 5 else [])
        return value

    def stream_start(self, identity: str, command: List[str]) -> Tuple[str, Optional[int]]:
        """
        Start a process and follow its output under the given identity.

        Args:
            identity: Unique label for the monitored target
            command: Command to execute as a list of strings

        Returns:
            Tuple of (status, pid) where status is "success" or "failed: {error}"
            and pid is the process ID or None if failed
        """
        self.logger.info(f"Starting stream: identity={identity}, command={self._truncate_for_logging(command)}")

        if not identity:
            error_msg = "Identity cannot be empty"
            self.logger.error(error_msg)
            return f"failed: {error_msg}", None

        if not isinstance(command, list):
            error_msg = f"Command must be a list, got {type(command).__name__}"
            self.logger.error(error_msg)
            return f"failed: {error_msg}", None

        if not command:
            error_msg = "Command list cannot be empty"
            self.logger.error(error_msg)
            return f"failed: {error_msg}", None

        with self.lock:
            if self.group.contains(identity):
                error_msg = f"Identity already in use: {identity}"
                self.logger.error(error_msg)
                return f"failed: {error_msg}", None

            stream = self.group.add(command[0], command[1:], identity=identity)
            if stream is None:
                error = self.group.get_spawn_error(identity)
                # Failed spawns are reported here, not kept as members
                self.group.remove(identity)
                self.logger.error(f"Failed to start stream: identity={identity}, error={error}")
                return f"failed: {error}", None

            self.logger.info(f"Stream started successfully: identity={identity}, pid={stream.pid}")
            return "success", stream.pid

    def stream_status(self, identity: str) -> Dict[str, Any]:
        """
        Get the status of a stream.

        Args:
            identity: Identity of the stream

        Returns:
            Dictionary with stream status information
        """
        self.logger.info(f"Getting status for stream: identity={identity}")

        with self.lock:
            stream = self.group.get(identity)
            if stream is None:
                self.logger.warning(f"Stream not found: identity={identity}")
                return {
                    "identity": identity,
                    "command": [],
                    "state": "error: Stream not found",
                }

            # Refresh the end-of-stream flags before reporting channel states
            stream.is_end_of_stream()
            status = stream.get_status()
            self.logger.info(f"Stream status: identity={identity}, state={status['state']}")
            return status

    def stream_list(self) -> List[Tuple[str, List[str], str]]:
        """
        Get a list of all tracked streams.

        Returns:
            List of tuples (identity, command, state)
        """
        self.logger.info("Listing all streams")

        result = []
        with self.lock:
            for stream in self.group.streams():
                status = stream.get_status()
                result.append((stream.identity, status["command"], status["state"]))

        self.logger.info(f"Stream list result: count={len(result)}")
        return result

    def _collect_lines(self, stream: ProcessStream, max_lines: int, trim: bool) -> List[str]:
        # Alternate between channels until neither yields anything
        lines = []
        stream.fill_buffers()
        stream.is_end_of_stream()
        idle_calls = 0
        while idle_calls < 2:
            if max_lines >= 0 and len(lines) >= max_lines:
                break
            remaining = max_lines - len(lines) if max_lines >= 0 else UNLIMITED
            text, side = stream.next_lines(remaining, fill_first=False, trim=trim)
            if text is None:
                idle_calls += 1
                continue
            idle_calls = 0
            lines.extend(f"[{side}] {line}" for line in text.split("\n"))
        return lines

    def stream_get_lines(self, identity: str, max_lines: int = UNLIMITED, trim: bool = False) -> List[str]:
        """
        Get the output lines a stream produced since the last call.

        Args:
            identity: Identity of the stream
            max_lines: Maximum number of lines to return (default: -1, no limit)
            trim: Strip lines and drop empty ones

        Returns:
            List of lines prefixed with "[stdout]" or "[stderr]", or error message
        """
        self.logger.info(f"Getting output lines: identity={identity}, max_lines={max_lines}, trim={trim}")

        with self.lock:
            stream = self.group.get(identity)
            if stream is None:
                error_msg = f"Stream not found: identity={identity}"
                self.logger.warning(error_msg)
                return [f"ERROR: {error_msg}"]

            try:
                lines = self._collect_lines(stream, max_lines, trim)
            except StreamError as e:
                error_msg = f"Error getting output lines: {str(e)}"
                self.logger.error(error_msg)
                return [f"ERROR: {error_msg}"]

            self.logger.info(f"Got output lines: identity={identity}, line_count={len(lines)}")
            return lines

    def all_get_lines(self, max_lines: int = UNLIMITED, trim: bool = False) -> List[Tuple[str, str, List[str]]]:
        """
        Get the next batch of lines from every stream.

        Args:
            max_lines: Maximum number of lines per stream (default: -1, no limit)
            trim: Strip lines and drop empty ones

        Returns:
            List of tuples (identity, side, lines) for streams that produced
            output; failed streams are reported with side "error"
        """
        self.logger.info(f"Getting lines from all streams: max_lines={max_lines}, trim={trim}")

        result = []
        with self.lock:
            for entry in self.group.next_lines(max_lines, fill_first=True, trim=trim):
                if entry.error is not None:
                    result.append((entry.identity, "error", [f"ERROR: {str(entry.error)}"]))
                elif entry.text is not None:
                    result.append((entry.identity, entry.side, entry.text.split("\n")))

        self.logger.info(f"All get lines completed: streams_with_output={len(result)}")
        return result

    def stream_kill(self, identity: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        """
        Kill the process behind a stream.

        Buffered output stays available through stream_get_lines.

        Args:
            identity: Identity of the stream
            timeout: Maximum time to wait for the process to terminate (seconds)

        Returns:
            "success" or "failed: {error}"
        """
        self.logger.info(f"Killing stream process: identity={identity}, timeout={timeout}")

        with self.lock:
            stream = self.group.get(identity)
            if stream is None:
                self.logger.warning(f"Stream not found for kill: identity={identity}")
                return "failed: Stream not found"

            if stream.get_state() != "running":
                self.logger.warning(f"Stream process not running: identity={identity}")
                return "failed: Process not running"

            if not stream.kill(timeout=timeout):
                return "failed: Process did not terminate within timeout"

            self.logger.info(f"Stream process killed successfully: identity={identity}")
            return "success"

    def stream_remove(self, identity: str, timeout: float = DEFAULT_TIMEOUT) -> str:
        """
        Stop following a stream, killing its process if still running.

        Args:
            identity: Identity of the stream
            timeout: Maximum time to wait (seconds)

        Returns:
            "success" or "failed: {error}"
        """
        self.logger.info(f"Removing stream: identity={identity}, timeout={timeout}")

        with self.lock:
            if not self.group.contains(identity):
                self.logger.warning(f"Stream not found for removal: identity={identity}")
                return "failed: Stream not found"

            stream = self.group.remove(identity)
            if stream is not None:
                try:
                    stream.close(terminate=True, timeout=timeout)
                except OSError as e:
                    self.logger.error(f"Error during cleanup: identity={identity}, error={str(e)}")

            self.logger.info(f"Stream removed from tracking: identity={identity}")
            return "success"

    def all_kill(self, timeout: float = DEFAULT_TIMEOUT) -> str:
        """
        Kill all running processes.

        Args:
            timeout: Maximum time to wait for processes to terminate (seconds)

        Returns:
            "success" or "failed: {error}"
        """
        self.logger.info(f"Killing all running processes: timeout={timeout}")

        errors = []
        with self.lock:
            for stream in self.group.streams():
                if stream.get_state() == "running" and not stream.kill(timeout=timeout):
                    errors.append(f"{stream.identity}: Process did not terminate within timeout")

        if errors:
            error_msg = f"failed: {'; '.join(errors)}"
            self.logger.error(f"All kill had errors: {error_msg}")
            return error_msg
        return "success"

    def all_remove(self, timeout: float = DEFAULT_TIMEOUT) -> str:
        """
        Remove all streams whose process is no longer running.

        Unread output of those streams is discarded; read it first with
        stream_get_lines if it matters.

        Args:
            timeout: Maximum time to wait (seconds)

        Returns:
            "success" or "failed: {error}"
        """
        self.logger.info(f"Removing all non-running streams: timeout={timeout}")

        errors = []
        removed_count = 0

        with self.lock:
            for stream in self.group.streams():
                if stream.get_state() == "running":
                    continue
                if stream.has_pending_data():
                    self.logger.warning(f"Discarding unread output: identity={stream.identity}")
                try:
                    self.group.remove(stream.identity)
                    stream.close(terminate=True, timeout=timeout)
                    removed_count += 1
                except OSError as e:
                    errors.append(f"{stream.identity}: {str(e)}")
                    self.logger.error(f"Error removing stream: identity={stream.identity}, error={str(e)}")

        self.logger.info(f"All remove operation completed: removed={removed_count}, errors={len(errors)}")

        if errors:
            error_msg = f"failed: {'; '.join(errors)}"
            self.logger.error(f"All remove had errors: {error_msg}")
            return error_msg
        return "success"

    def shutdown(self) -> None:
        """Kill and close every stream."""
        with self.lock:
            self.group.close_all(terminate=True)
            for identity in self.group.identities():
                self.group.remove(identity)


def main() -> None:
    """
    Main entry point for the MCP Stream Multiplexer when run as a command-line tool.
    This function initializes the StreamManager and serves its tools over FastMCP.
    """
    try:
        from fastmcp import FastMCP
    except ImportError:
        logging.basicConfig(level=logging.ERROR)
        logging.getLogger("mcp_stream_mux").error("FastMCP not found. Please install it to use the MCP Stream Multiplexer CLI.")
        print("Error: FastMCP not found. Please install it to use the MCP Stream Multiplexer CLI.")
        raise SystemExit(1)

    sm = StreamManager()
    mcp = FastMCP("mcp_streammux")

    try:
        sm.logger.info("Adding tools to FastMCP")

        mcp.tool(sm.stream_list)
        mcp.tool(sm.stream_start)
        mcp.tool(sm.stream_status)
        mcp.tool(sm.stream_get_lines)
        mcp.tool(sm.all_get_lines)
        mcp.tool(sm.stream_kill)
        mcp.tool(sm.stream_remove)
        mcp.tool(sm.all_kill)
        mcp.tool(sm.all_remove)

        sm.logger.info("All tools added to FastMCP")

        sm.logger.info("Starting FastMCP with stdio transport")
        mcp.run(transport="stdio")
    except Exception as e:
        sm.logger.error(f"Error in main: {str(e)}", exc_info=True)
        print(f"Error: {str(e)}")
        raise SystemExit(1)
    finally:
        # clean up on any exit path
        sm.shutdown()


if __name__ == "__main__":
    main()
