"""PGM index over sorted unsigned 64-bit keys, with an archived byte form searchable in place."""

__version__ = "0.1.0"