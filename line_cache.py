# line_cache.py
"""
Sparse line-offset index over an immutable newline-terminated text file.

The index keeps at most `capacity` (line number, byte offset) anchors. Anchors
start out uniformly spaced every `skip` lines; when that leaves slots unused,
randomly chosen lines from outside the uniform set fill the remainder, so the
cache is always fully used. A lookup binary searches for the closest anchor at
or before the target and reads forward from there.

The anchors are never changed after construction. Requests carry no locality,
so caching recently seen lines would only erode the uniform spacing.
"""

import abc
import array
import bisect
import heapq
import logging
import os
import random
from collections import namedtuple

DEFAULT_CAPACITY = 1024 * 1024
CHUNK_SIZE = 32 * 1024

server_logger = logging.getLogger('server')

Anchor = namedtuple('Anchor', ['line_number', 'byte_offset'])


class ConfigError(Exception):
    """Startup input is unusable: unreadable file, bad capacity or address."""


class OutOfRangeError(IndexError):
    """Requested line number is outside [1, total_lines]."""


class TruncatedFileError(OSError):
    """The file holds fewer lines than were counted when the index was built."""


def count_lines(f, chunk_size=CHUNK_SIZE):
    """Count newline bytes from the current position of binary file `f`.

    A trailing line without a newline is not counted.
    """
    count = 0
    while True:
        chunk = f.read(chunk_size)
        if not chunk:
            return count
        count += chunk.count(b"\n")


def _pick_extras(total_lines, skip, deficit, rng):
    # the complement of {0, skip, 2*skip, ...} is enumerated block by block:
    # each block of `skip` lines contributes its skip - 1 non-multiples
    uniform_count = -(-total_lines // skip)
    per_block = skip - 1
    picks = rng.sample(range(total_lines - uniform_count), deficit)
    return sorted((j // per_block) * skip + j % per_block + 1 for j in picks)


def build_anchors(f, total_lines, capacity, rng=None):
    """
    Read binary file `f` from its current position and return two parallel
    arrays (line numbers, byte offsets) holding min(capacity, total_lines)
    anchors in ascending line order.
    """
    capacity = max(capacity, 1)
    if rng is None:
        rng = random.Random()

    if total_lines <= capacity:
        wanted = iter(range(total_lines))
    else:
        skip = -(-total_lines // capacity)
        uniform = range(0, total_lines, skip)
        deficit = capacity - len(uniform)
        extras = _pick_extras(total_lines, skip, deficit, rng) if deficit > 0 else []
        wanted = heapq.merge(uniform, extras)

    line_numbers = array.array('q')
    byte_offsets = array.array('q')
    next_line = next(wanted, None)
    offset = 0
    for index, line in enumerate(f):
        if next_line is None:
            break
        if index == next_line:
            line_numbers.append(index)
            byte_offsets.append(offset)
            next_line = next(wanted, None)
        offset += len(line)

    if next_line is not None:
        raise TruncatedFileError(
            f"file ended before the anchor for line {next_line + 1} was placed"
        )
    return line_numbers, byte_offsets


class IndexCache(abc.ABC):
    """Anything that can return the bytes of a 1-based line number."""

    @abc.abstractmethod
    def lookup(self, line_number):
        raise NotImplementedError


class OffsetCache(IndexCache):
    """
    Immutable anchor table for one file.

    Lookups never share a file handle: each one opens, seeks, reads and closes
    its own, so any number of threads may call `lookup` concurrently.
    """

    def __init__(self, file_path, line_numbers, byte_offsets, total_lines):
        if len(line_numbers) != len(byte_offsets):
            raise ValueError("line number and offset columns differ in length")
        self.file_path = file_path
        self.total_lines = total_lines
        self._line_numbers = line_numbers
        self._byte_offsets = byte_offsets

    @classmethod
    def from_file(cls, file_path, capacity=DEFAULT_CAPACITY, seed=None):
        """Count the lines of `file_path` and build its anchors in two passes."""
        file_path = os.path.abspath(file_path)
        try:
            f = open(file_path, "rb")
        except OSError as e:
            raise ConfigError(f"cannot open target file '{file_path}': {e}") from e

        with f:
            total_lines = count_lines(f)
            f.seek(0)
            line_numbers, byte_offsets = build_anchors(
                f, total_lines, capacity, random.Random(seed)
            )

        server_logger.info(
            f"Indexed '{os.path.basename(file_path)}': {total_lines} lines, "
            f"{len(line_numbers)} anchors (capacity {capacity})"
        )
        return cls(file_path, line_numbers, byte_offsets, total_lines)

    def __len__(self):
        return len(self._line_numbers)

    @property
    def anchors(self):
        return [Anchor(n, off) for n, off in zip(self._line_numbers, self._byte_offsets)]

    def find_anchor(self, target):
        """Greatest anchor with line_number <= target (0-based), or None."""
        i = bisect.bisect_right(self._line_numbers, target) - 1
        if i < 0:
            return None
        return Anchor(self._line_numbers[i], self._byte_offsets[i])

    def _check_range(self, line_number):
        if line_number < 1 or line_number > self.total_lines:
            raise OutOfRangeError(
                f"invalid requested line number '{line_number}': "
                f"{self.total_lines} lines in file"
            )

    def scan_length(self, line_number):
        """Lines a lookup of `line_number` reads and discards before the target."""
        self._check_range(line_number)
        target = line_number - 1
        anchor = self.find_anchor(target)
        return target - (anchor.line_number if anchor else 0)

    def lookup(self, line_number):
        """Return the bytes of 1-based `line_number`, trailing newline included."""
        self._check_range(line_number)
        target = line_number - 1
        anchor = self.find_anchor(target)
        start_line, offset = anchor if anchor else (0, 0)

        with open(self.file_path, "rb") as f:
            f.seek(offset)
            for current in range(start_line, target + 1):
                line = f.readline()
                if not line.endswith(b"\n"):
                    raise TruncatedFileError(
                        f"unexpected end of file at line {current + 1} "
                        f"while reading line {line_number}"
                    )
        return line
