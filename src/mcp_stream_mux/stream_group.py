"""
Stream group for following several processes at once.

This module provides the StreamGroup class which applies the ProcessStream
operations to every monitored target and reports the results per member.
"""

import time
import logging
from typing import List, Iterator, NamedTuple, Optional

from .exceptions import SpawnFailure, StreamError
from .line_buffer import UNLIMITED
from .process_stream import ProcessStream, POLL_INTERVAL


class FillResult(NamedTuple):
    """Outcome of filling one member's buffers."""
    identity: Optional[str]
    error: Optional[Exception]


class StreamLines(NamedTuple):
    """Lines taken from one member, tagged with where they came from."""
    identity: Optional[str]
    text: Optional[str]
    side: Optional[str]
    error: Optional[Exception]


class _Member:
    """A group slot: either a live stream or the error that prevented its spawn."""

    def __init__(self, identity: Optional[str], stream: Optional[ProcessStream] = None,
                 spawn_error: Optional[Exception] = None):
        self.identity = identity
        self.stream = stream
        self.spawn_error = spawn_error


class StreamGroup:
    """
    Owns an ordered collection of ProcessStreams, one per monitored target.

    Every fan-out operation visits the members in the order they were added
    and returns one result per member. A member that failed never prevents
    the others from being serviced.

    Example usage:
        group = StreamGroup()
        group.add("stern", ["--context", "prod", "."], identity="prod")
        group.add("stern", ["--context", "dev", "."], identity="dev")
        for entry in group.follow():
            print(entry.identity, entry.side, entry.text)
    """

    def __init__(self):
        """Initialize an empty stream group."""
        self.members: List[_Member] = []

        # Set up logger
        self.logger = logging.getLogger("mcp_stream_mux.stream_group")

    def add(self, program: str, args: Optional[List[str]] = None,
            identity: Optional[str] = None) -> Optional[ProcessStream]:
        """
        Spawn a process and add it as a new member.

        If the spawn fails the member is still recorded, so its error shows
        up in the results of every fan-out operation.

        Args:
            program: Program to run
            args: Arguments passed to the program
            identity: Label of the monitored target

        Returns:
            The new ProcessStream, or None if the process could not be started
        """
        try:
            stream = ProcessStream.spawn(program, args, identity=identity)
        except SpawnFailure as e:
            self.logger.error(f"Failed to spawn member: identity={identity}, program={program}, error={str(e)}")
            self.members.append(_Member(identity, spawn_error=e))
            return None

        self.members.append(_Member(identity, stream=stream))
        self.logger.info(f"Member added: identity={identity}, pid={stream.pid}, count={len(self.members)}")
        return stream

    def add_stream(self, stream: ProcessStream) -> None:
        """
        Add an existing stream as a new member.

        Args:
            stream: Stream to add; its identity tags its results
        """
        self.members.append(_Member(stream.identity, stream=stream))
        self.logger.info(f"Member added: identity={stream.identity}, pid={stream.pid}, count={len(self.members)}")

    def remove(self, identity: str) -> Optional[ProcessStream]:
        """
        Remove the first member with the given identity.

        The stream is not closed; that is left to the caller.

        Args:
            identity: Identity of the member to remove

        Returns:
            The removed stream (None if not found or it never spawned)
        """
        for index, member in enumerate(self.members):
            if member.identity == identity:
                del self.members[index]
                self.logger.info(f"Member removed: identity={identity}, count={len(self.members)}")
                return member.stream
        self.logger.warning(f"Member not found for removal: identity={identity}")
        return None

    def get(self, identity: str) -> Optional[ProcessStream]:
        """
        Get the stream of the first member with the given identity.

        Args:
            identity: Identity of the member

        Returns:
            The member's stream, or None if not found or it never spawned
        """
        for member in self.members:
            if member.identity == identity:
                return member.stream
        return None

    def contains(self, identity: str) -> bool:
        """
        Check whether a member with the given identity exists.

        Members that failed to spawn count as well.

        Args:
            identity: Identity of the member

        Returns:
            True if the group has such a member
        """
        return any(member.identity == identity for member in self.members)

    def get_spawn_error(self, identity: str) -> Optional[Exception]:
        """
        Get the error that prevented a member from spawning.

        Args:
            identity: Identity of the member

        Returns:
            The SpawnFailure, or None if the member spawned or is not found
        """
        for member in self.members:
            if member.identity == identity:
                return member.spawn_error
        return None

    def identities(self) -> List[Optional[str]]:
        """
        Get the identities of all members.

        Returns:
            Identities in insertion order, including failed spawns
        """
        return [member.identity for member in self.members]

    def streams(self) -> List[ProcessStream]:
        """Return the live streams, skipping members that failed to spawn."""
        return [member.stream for member in self.members if member.stream is not None]

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[ProcessStream]:
        return iter(self.streams())

    def fill_buffers(self) -> List[FillResult]:
        """
        Fill the buffers of every member.

        Returns:
            One FillResult per member, in insertion order
        """
        results = []
        for member in self.members:
            if member.stream is None:
                results.append(FillResult(member.identity, member.spawn_error))
                continue
            try:
                member.stream.fill_buffers()
            except StreamError as e:
                self.logger.error(f"Fill failed: identity={member.identity}, error={str(e)}")
                results.append(FillResult(member.identity, e))
                continue
            results.append(FillResult(member.identity, None))
        return results

    def is_end_of_stream(self) -> bool:
        """
        Check whether every member reached end-of-stream.

        All members are polled, even after one reports False, so that their
        end-of-stream flags stay current.

        Returns:
            True if every member is at end-of-stream
        """
        states = [member.stream.is_end_of_stream() for member in self.members if member.stream is not None]
        return all(states)

    def has_pending_data(self) -> bool:
        """Return True if any member still holds unread output."""
        return any(stream.has_pending_data() for stream in self.streams())

    def next_lines(self,
                   max_lines: int = UNLIMITED,
                   fill_first: bool = True,
                   trim: bool = False) -> List[StreamLines]:
        """
        Take the next batch of lines from every member.

        Args:
            max_lines: Maximum number of lines per member (default: UNLIMITED)
            fill_first: Fill each member's buffers before extracting
            trim: Strip lines and drop empty ones

        Returns:
            One StreamLines per member, in insertion order
        """
        results = []
        for member in self.members:
            if member.stream is None:
                results.append(StreamLines(member.identity, None, None, member.spawn_error))
                continue
            try:
                text, side = member.stream.next_lines(max_lines, fill_first, trim)
            except StreamError as e:
                self.logger.error(f"Getting lines failed: identity={member.identity}, error={str(e)}")
                results.append(StreamLines(member.identity, None, None, e))
                continue
            results.append(StreamLines(member.identity, text, side, None))
        return results

    def drain_all(self, fill_first: bool = True, trim: bool = False,
                  poll_interval: float = POLL_INTERVAL) -> List[StreamLines]:
        """
        Collect all output of every member, one member after the other.

        Only suitable for short-lived commands.

        Returns:
            One StreamLines per member with side set to None
        """
        results = []
        for member in self.members:
            if member.stream is None:
                results.append(StreamLines(member.identity, None, None, member.spawn_error))
                continue
            try:
                text = member.stream.drain_all(fill_first, trim, poll_interval)
            except StreamError as e:
                self.logger.error(f"Drain failed: identity={member.identity}, error={str(e)}")
                results.append(StreamLines(member.identity, None, None, e))
                continue
            results.append(StreamLines(member.identity, text, None, None))
        return results

    def follow(self, max_lines: int = UNLIMITED, trim: bool = False,
               poll_interval: float = POLL_INTERVAL) -> Iterator[StreamLines]:
        """
        Poll all members until every one of them has finished.

        Each round fills every buffer, then takes lines until no member has
        anything left, then sleeps for poll_interval. Spawn failures are
        reported once at the start. A read failure is reported once and the
        member is not polled again during this follow; whatever it had
        buffered stays in its stream.

        Args:
            max_lines: Maximum number of lines per member and call
            trim: Strip lines and drop empty ones
            poll_interval: Seconds to sleep between rounds

        Yields:
            StreamLines carrying either text or an error
        """
        for member in self.members:
            if member.stream is None:
                yield StreamLines(member.identity, None, None, member.spawn_error)

        # Members whose reads failed, by id(); failures are not retried
        failed = set()

        def active() -> List[_Member]:
            return [member for member in self.members
                    if member.stream is not None and id(member) not in failed]

        while True:
            for member in active():
                try:
                    member.stream.fill_buffers()
                except StreamError as e:
                    self.logger.error(f"Read failed, no longer following: identity={member.identity}, error={str(e)}")
                    failed.add(id(member))
                    yield StreamLines(member.identity, None, None, e)

            idle_calls = 0
            while idle_calls < 2 and any(member.stream.has_pending_data() for member in active()):
                produced = False
                for member in active():
                    text, side = member.stream.next_lines(max_lines, fill_first=False, trim=trim)
                    if text is not None:
                        produced = True
                        yield StreamLines(member.identity, text, side, None)
                # Two idle calls in a row means both channels were tried and
                # only partial lines are left
                idle_calls = 0 if produced else idle_calls + 1

            streams = [member.stream for member in active()]
            # Poll every stream so the end-of-stream flags stay current
            ended = [stream.is_end_of_stream() for stream in streams]
            if all(ended) and not any(stream.has_pending_data() for stream in streams):
                break

            time.sleep(poll_interval)

        self.logger.info(f"All members finished: count={len(self.members)}, failed={len(failed)}")

    def close_all(self, terminate: bool = True) -> None:
        """
        Close every live member.

        Args:
            terminate: Kill processes that are still running
        """
        for stream in self.streams():
            stream.close(terminate=terminate)
