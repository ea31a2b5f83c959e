"""Exceptions raised by the stream multiplexer."""


class StreamError(Exception):
    """Base exception for stream multiplexer errors."""
    pass


class SpawnFailure(StreamError):
    """Raised when a monitored process cannot be started."""
    pass


class ReadFailure(StreamError):
    """Raised when reading from a process pipe fails at the OS level."""
    pass


class NoChannelsCaptured(StreamError):
    """Raised when neither stdout nor stderr of a process can be read."""
    pass
