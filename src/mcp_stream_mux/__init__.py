"""
MCP Stream Multiplexer - A library for following the output of many running processes at once.

This package provides non-blocking readers that turn the stdout and stderr of
several concurrently running processes into complete, tagged lines.
"""

import os
import logging
from .exceptions import StreamError, SpawnFailure, ReadFailure, NoChannelsCaptured
from .line_buffer import LineBuffer, UNLIMITED
from .stream_reader import StreamReader
from .process_stream import ProcessStream, STDOUT, STDERR
from .stream_group import StreamGroup, StreamLines, FillResult
from .stream_manager import StreamManager

# Set up package-level logging
logger = logging.getLogger("mcp_stream_mux")
logger.setLevel(logging.INFO)

# Create logs directory if it doesn't exist
log_dir = "./logs"
if not os.path.exists(log_dir):
    os.makedirs(log_dir)

# Export public classes
__all__ = [
    "StreamManager",
    "StreamGroup",
    "ProcessStream",
    "StreamReader",
    "LineBuffer",
    "StreamLines",
    "FillResult",
    "StreamError",
    "SpawnFailure",
    "ReadFailure",
    "NoChannelsCaptured",
    "UNLIMITED",
    "STDOUT",
    "STDERR",
]
