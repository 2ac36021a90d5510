# pgmindex

A piecewise geometric model (PGM) index for sorted, unsigned 64-bit integer keys,
with a compact binary form that can be searched in place.

The index fits a sequence of linear segments to the positions of the keys. Each
segment predicts a key's position to within `epsilon` places. When there are
more than two segments, a second, top-level set of segments is fitted over their
start keys to pick the right segment quickly.

A search does not return an exact position. It returns a small inclusive range
`(lo, hi)` of positions. If the key is present, it lies inside that range. You
finish the lookup with an ordinary binary search over that slice of your keys.

The package has no dependencies outside the standard library.

## Installation

```
pip install .
```

To install the test dependencies as well (pytest and hypothesis):

```
pip install ".[test]"
```

## Usage

```python
from bisect import bisect_left

from pgmindex.pgm import PGMIndex

keys = list(range(0, 1000, 5))
index = PGMIndex.build(keys, epsilon=8)

lo, hi = index.search(500)
window = keys[lo : hi + 1]
pos = bisect_left(window, 500)
found = pos < len(window) and window[pos] == 500
```

`PGMIndex.build(keys, epsilon)` accepts any iterable of integers. It checks that
the keys are in non-decreasing order and raises `KeysNotSortedError` if they are
not. `PGMIndex.build_unchecked(keys, epsilon)` leaves out that check. Its search
ranges mean something only for sorted input.

Both methods raise `ValueError` when the keys are empty or `epsilon` is negative.

A built index exposes its fields directly:

- `segments`: the list of `Segment` objects.
- `top_level`: the list of top-level segments, or `None`.
- `epsilon`: the error bound it was built with.

A `Segment` is a frozen dataclass with `slope`, `intercept`, `start_key` and
`end_key`. Its `predict(key)` method returns `slope * key + intercept`.

## Serialization

An index can be written to a compact binary form and read back:

```python
data = index.to_bytes()

restored = PGMIndex.from_bytes(data)      # full, owned copy
archived = PGMIndex.as_archived(data)     # validated read-only view over the bytes
lo, hi = archived.search(1000)
```

The layout is little-endian. A fixed header holds a `PGMX` marker, a top-level
flag, `epsilon` and the two segment counts. After the header come the segment
records, then the top-level records. Each record holds two doubles (slope and
intercept) and two unsigned 64-bit keys.

`to_bytes()` raises `ArchiveError` if a value does not fit the layout, for
example a key outside the unsigned 64-bit range.

`PGMIndex.as_archived(data)` accepts `bytes`, `bytearray` or `memoryview`. It
returns an `ArchivedPGMIndex`, which reads segments from the buffer only when
they are needed and has the same `search(key)` method as `PGMIndex`. It first
checks the buffer and raises `ArchiveError` if:

- the buffer is too short for a header,
- the marker is wrong,
- the top-level flag is invalid or disagrees with the top-level count,
- there are no segments, or
- the length does not match the counts.

`PGMIndex.from_bytes(data)` runs the same checks and then copies the segments
into a new `PGMIndex`.

`PGMIndex.as_archived_unchecked(data)` skips the checks. Use it only for buffers
you know are valid.

## Errors

All errors raised by the index derive from `PGMIndexError`:

- `KeysNotSortedError`: the keys given to `build` are not in non-decreasing
  order. It is also a `ValueError`.
- `ArchiveError`: an index could not be serialized, or a byte buffer could not be
  read as a serialized index.

Empty keys or a negative `epsilon` raise a plain `ValueError`.

## What it does not do

The index is static. It has no insert or delete, and it does not store the keys
themselves. You keep the sorted key list and use the index to narrow searches
over it. The package is a library only and has no command-line tool.