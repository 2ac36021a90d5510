"""Piecewise geometric model (PGM) index over sorted unsigned 64-bit keys.

The index approximates the position of a key in a sorted array with a
sequence of linear segments, each accurate to within ``epsilon`` positions.
An index can be written to a compact little-endian byte layout and read back
either fully (:meth:`PGMIndex.from_bytes`) or in place, without copying the
segment table (:meth:`PGMIndex.as_archived`).
"""

from __future__ import annotations

import math
import struct
import sys
from bisect import bisect_left
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from itertools import chain, islice, pairwise
from typing import Union, overload

__all__ = [
    "Segment",
    "PGMIndexError",
    "KeysNotSortedError",
    "ArchiveError",
    "PGMIndex",
    "ArchivedPGMIndex",
]

_FLOAT_EPSILON = sys.float_info.epsilon

_MAGIC = b"PGMX"
# magic, has-top-level flag, epsilon, segment count, top-level segment count
_HEADER = struct.Struct("<4sIQQQ")
# slope, intercept, start key, end key
_SEGMENT = struct.Struct("<ddQQ")

Buffer = Union[bytes, bytearray, memoryview]


class PGMIndexError(Exception):
    """Base class for errors raised by the index."""


class KeysNotSortedError(PGMIndexError, ValueError):
    """The keys given to build an index are not in ascending order."""

    def __init__(self) -> None:
        super().__init__("Keys are not sorted")


class ArchiveError(PGMIndexError):
    """A serialized index could not be written or is not valid."""


@dataclass(frozen=True, slots=True)
class Segment:
    """A linear model mapping keys in ``[start_key, end_key]`` to positions."""

    slope: float
    intercept: float
    start_key: int
    end_key: int

    def predict(self, key: int) -> float:
        return self.slope * float(key) + self.intercept


def _round_position(value: float) -> int:
    """Clamp at zero and round half away from zero."""
    value = max(value, 0.0)
    whole = math.floor(value)
    return whole + 1 if value - whole >= 0.5 else whole


def _segment_between(keys: Sequence[int], first: int, last: int) -> Segment:
    x0 = float(keys[first])
    x1 = float(keys[last])
    y0 = float(first)
    y1 = float(last)
    slope = 0.0 if abs(x1 - x0) < _FLOAT_EPSILON else (y1 - y0) / (x1 - x0)
    return Segment(slope, y0 - slope * x0, keys[first], keys[last])


def _fit_segments(keys: Sequence[int], epsilon: int) -> list[Segment]:
    """Greedily cover ``keys`` with segments of maximum error ``epsilon``."""
    eps = float(epsilon)
    segments: list[Segment] = []
    start = 0
    s_min, s_max = -math.inf, math.inf

    for i, key in enumerate(islice(keys, 1, None), start=1):
        x0 = float(keys[start])
        y0 = float(start)
        dx = float(key) - x0
        if abs(dx) < _FLOAT_EPSILON:
            continue

        yi = float(i)
        s_min = max(s_min, ((yi - eps) - y0) / dx)
        s_max = min(s_max, ((yi + eps) - y0) / dx)

        if s_min > s_max:
            segments.append(_segment_between(keys, start, i - 1))
            start = i - 1
            s_min, s_max = -math.inf, math.inf

    segments.append(_segment_between(keys, start, len(keys) - 1))
    return segments


def _locate(
    segments: Sequence[Segment],
    top_level: Sequence[Segment] | None,
    epsilon: int,
    key: int,
) -> tuple[int, int]:
    last = len(segments) - 1
    if top_level is not None:
        i = min(bisect_left(top_level, key, key=lambda s: s.end_key), len(top_level) - 1)
        seg_index = min(_round_position(top_level[i].predict(key)), last)
    else:
        seg_index = min(bisect_left(segments, key, key=lambda s: s.end_key), last)

    pos = _round_position(segments[seg_index].predict(key))
    total_keys = (segments[last].end_key if segments else 0) + 1

    lo = max(pos - epsilon, 0)
    hi = max(min(pos + epsilon, total_keys - 1), 0)
    return lo, hi


def _as_keys(keys: Iterable[int]) -> Sequence[int]:
    return keys if isinstance(keys, Sequence) else list(keys)


@dataclass
class PGMIndex:
    """A two-level PGM index over sorted keys."""

    segments: list[Segment]
    top_level: list[Segment] | None
    epsilon: int

    @classmethod
    def build(cls, keys: Iterable[int], epsilon: int) -> PGMIndex:
        """Build an index, checking first that ``keys`` are sorted."""
        keys = _as_keys(keys)
        if not all(a <= b for a, b in pairwise(keys)):
            raise KeysNotSortedError()
        return cls.build_unchecked(keys, epsilon)

    @classmethod
    def build_unchecked(cls, keys: Iterable[int], epsilon: int) -> PGMIndex:
        """Build an index without checking that ``keys`` are sorted.

        The search ranges are only meaningful for sorted input.
        """
        keys = _as_keys(keys)
        if not keys:
            raise ValueError("cannot build an index from an empty key sequence")
        if epsilon < 0:
            raise ValueError("epsilon must not be negative")

        segments = _fit_segments(keys, epsilon)
        top_keys = [segment.start_key for segment in segments]
        top_level = _fit_segments(top_keys, epsilon) if len(top_keys) > 2 else None
        return cls(segments, top_level, epsilon)

    def search(self, key: int) -> tuple[int, int]:
        """Return the inclusive position range ``(lo, hi)`` where ``key`` may be."""
        return _locate(self.segments, self.top_level, self.epsilon, key)

    def to_bytes(self) -> bytes:
        """Serialize the index to its archived byte layout."""
        top = self.top_level or []
        buffer = bytearray(_HEADER.size + _SEGMENT.size * (len(self.segments) + len(top)))
        try:
            _HEADER.pack_into(
                buffer,
                0,
                _MAGIC,
                int(self.top_level is not None),
                self.epsilon,
                len(self.segments),
                len(top),
            )
            offset = _HEADER.size
            for segment in chain(self.segments, top):
                _SEGMENT.pack_into(
                    buffer,
                    offset,
                    segment.slope,
                    segment.intercept,
                    segment.start_key,
                    segment.end_key,
                )
                offset += _SEGMENT.size
        except struct.error as exc:
            raise ArchiveError(f"index cannot be serialized: {exc}") from exc
        return bytes(buffer)

    @classmethod
    def from_bytes(cls, data: Buffer) -> PGMIndex:
        """Deserialize archived bytes into an owned index."""
        archived = cls.as_archived(data)
        top = archived.top_level
        return cls(
            list(archived.segments),
            list(top) if top is not None else None,
            archived.epsilon,
        )

    @classmethod
    def as_archived(cls, data: Buffer) -> ArchivedPGMIndex:
        """Validate ``data`` and give in-place access to the archived index."""
        return ArchivedPGMIndex._open(data, validate=True)

    @classmethod
    def as_archived_unchecked(cls, data: Buffer) -> ArchivedPGMIndex:
        """Give in-place access to ``data`` without validating its layout."""
        return ArchivedPGMIndex._open(data, validate=False)


class _SegmentArray(Sequence[Segment]):
    """Read-only view of segments stored in a byte buffer."""

    __slots__ = ("_view", "_offset", "_count")

    def __init__(self, view: memoryview, offset: int, count: int) -> None:
        self._view = view
        self._offset = offset
        self._count = count

    def __len__(self) -> int:
        return self._count

    @overload
    def __getitem__(self, index: int) -> Segment: ...

    @overload
    def __getitem__(self, index: slice) -> list[Segment]: ...

    def __getitem__(self, index):
        if isinstance(index, slice):
            return [self[i] for i in range(*index.indices(self._count))]
        if index < 0:
            index += self._count
        if not 0 <= index < self._count:
            raise IndexError("segment index out of range")
        return Segment(*_SEGMENT.unpack_from(self._view, self._offset + index * _SEGMENT.size))


class ArchivedPGMIndex:
    """An index read in place from its archived byte layout."""

    __slots__ = ("segments", "top_level", "epsilon")

    def __init__(
        self,
        segments: Sequence[Segment],
        top_level: Sequence[Segment] | None,
        epsilon: int,
    ) -> None:
        self.segments = segments
        self.top_level = top_level
        self.epsilon = epsilon

    @classmethod
    def _open(cls, data: Buffer, *, validate: bool) -> ArchivedPGMIndex:
        view = memoryview(data).cast("B")
        if validate and len(view) < _HEADER.size:
            raise ArchiveError("buffer is too short for an index header")

        magic, has_top, epsilon, n_segments, n_top = _HEADER.unpack_from(view, 0)
        if validate:
            if magic != _MAGIC:
                raise ArchiveError("buffer does not hold an archived index")
            if has_top not in (0, 1):
                raise ArchiveError("invalid top-level flag")
            if not has_top and n_top:
                raise ArchiveError("top-level segments present without top-level flag")
            if n_segments == 0:
                raise ArchiveError("archived index has no segments")
            expected = _HEADER.size + _SEGMENT.size * (n_segments + n_top)
            if len(view) != expected:
                raise ArchiveError(
                    f"buffer length {len(view)} does not match expected {expected}"
                )

        segments = _SegmentArray(view, _HEADER.size, n_segments)
        top_offset = _HEADER.size + _SEGMENT.size * n_segments
        top_level = _SegmentArray(view, top_offset, n_top) if has_top else None
        return cls(segments, top_level, epsilon)

    def search(self, key: int) -> tuple[int, int]:
        """Return the inclusive position range ``(lo, hi)`` where ``key`` may be."""
        return _locate(self.segments, self.top_level, self.epsilon, key)