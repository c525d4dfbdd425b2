"""Storage layer for a vulnerability advisory database: records, a bucket store and metadata."""

__version__ = "0.1.0"