"""AES key wrap without padding (RFC 3394)."""

from __future__ import annotations

import logging

from cryptography.hazmat.primitives.keywrap import (
    InvalidUnwrap,
    aes_key_unwrap,
    aes_key_wrap,
)

log = logging.getLogger(__name__)

_KEY_SIZES = (16, 24, 32)
_SEMIBLOCK = 8


class KeyWrapError(ValueError):
    """Raised when a key wrap or unwrap operation cannot be carried out."""


def _check_key(key: bytes) -> None:
    if not key:
        raise KeyWrapError("no key data")
    if len(key) not in _KEY_SIZES:
        raise KeyWrapError(f"invalid key size: {len(key)} bytes")


def wrap(key: bytes, data: bytes) -> bytes:
    """Wrap ``data`` under ``key``.

    ``data`` must be a multiple of eight bytes and at least sixteen bytes
    long. The result is eight bytes longer than the input.
    """
    _check_key(key)
    if not data:
        raise KeyWrapError("no input data")
    if len(data) < 16 or len(data) % _SEMIBLOCK:
        raise KeyWrapError("bad data size - not div by 8/min 16 bytes")
    result = aes_key_wrap(bytes(key), bytes(data))
    if len(result) != len(data) + _SEMIBLOCK:
        raise KeyWrapError("ciphertext length differs from expected")
    log.debug("key wrap produced %d bytes", len(result))
    return result


def unwrap(key: bytes, data: bytes) -> bytes:
    """Unwrap ``data`` under ``key`` and check its integrity value.

    ``data`` must be a multiple of eight bytes and at least 24 bytes long.
    The result is eight bytes shorter than the input.
    """
    _check_key(key)
    if not data:
        raise KeyWrapError("no input data")
    if len(data) < 24:
        raise KeyWrapError("input data must be >= 24 bytes")
    if len(data) % _SEMIBLOCK:
        raise KeyWrapError("bad data size - not div by 8")
    try:
        result = aes_key_unwrap(bytes(key), bytes(data))
    except InvalidUnwrap as exc:
        raise KeyWrapError("key unwrapping error") from exc
    if len(result) != len(data) - _SEMIBLOCK:
        raise KeyWrapError("unwrapped data length differs from expected")
    log.debug("key unwrap produced %d bytes", len(result))
    return result