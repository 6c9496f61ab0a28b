"""Helpers for working with byte buffers that may hold key material."""

from __future__ import annotations

from typing import Optional, Union

Buffer = Union[bytes, bytearray, memoryview]


def _as_bytes(buf: Optional[Buffer]) -> bytes:
    return b"" if buf is None else bytes(buf)


def compare(buf1: Optional[Buffer], buf2: Optional[Buffer]) -> int:
    """Compare two buffers byte-wise, returning -1, 0 or 1.

    ``None`` counts as an empty buffer. When one buffer is a prefix of the
    other, the shorter one orders first.
    """
    a = _as_bytes(buf1)
    b = _as_bytes(buf2)
    return (a > b) - (a < b)


def find_char(
    buf: Optional[Buffer],
    char: Union[str, int],
    index: int,
    reverse: bool = False,
) -> Optional[int]:
    """Find ``char`` in ``buf`` starting at ``index``.

    Searches towards the end of the buffer, or towards its start when
    ``reverse`` is true. Returns the position found, or ``None`` when the
    character does not occur or ``index`` lies outside the buffer.
    """
    data = _as_bytes(buf)
    if not 0 <= index < len(data):
        return None
    value = ord(char) if isinstance(char, str) else char
    if reverse:
        found = data.rfind(bytes([value]), 0, index + 1)
    else:
        found = data.find(bytes([value]), index)
    return None if found == -1 else found


def copy_from(buf: Optional[Buffer], index: int) -> bytes:
    """Return a copy of the bytes of ``buf`` from ``index`` to the end.

    An index outside the buffer yields an empty result.
    """
    data = _as_bytes(buf)
    if not 0 <= index < len(data):
        return b""
    return data[index:]


def secure_clear(buf: Optional[bytearray]) -> None:
    """Overwrite a mutable buffer with zeros and then empty it.

    ``None`` is accepted and ignored, so clearing twice is harmless.
    """
    if buf is None:
        return
    buf[:] = bytes(len(buf))
    del buf[:]