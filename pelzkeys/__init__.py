"""AES key wrap, key and certificate tables, and named-pipe messaging for a key service."""

__version__ = "0.1.0"