# Copyright (C) 2018-2025 The psbt-builder developers
#
# This file is part of psbt-builder
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of psbt-builder, including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

import hashlib
import struct
from typing import BinaryIO


def encode_varint(i: int) -> bytes:
    """
    Encode a potentially very large integer into varint bytes. The length should be
    specified in little-endian.

    https://bitcoin.org/en/developer-reference#compactsize-unsigned-integers
    """
    if i < 0:
        raise ValueError("Integer must be positive: %d" % i)
    if i < 253:
        return bytes([i])
    elif i < 0x10000:
        return b"\xfd" + i.to_bytes(2, "little")
    elif i < 0x100000000:
        return b"\xfe" + i.to_bytes(4, "little")
    elif i < 0x10000000000000000:
        return b"\xff" + i.to_bytes(8, "little")
    else:
        raise ValueError("Integer is too large: %d" % i)


def prepend_compact_size(data: bytes) -> bytes:
    """
    Counts bytes and returns them with their varint (or compact size) prepended.
    """
    return encode_varint(len(data)) + data


def parse_compact_size(data: bytes) -> tuple[int, int]:
    """
    Parse variable integer. Returns (count, size)
    """
    if not data:
        raise ValueError("Cannot parse compact size from empty data")
    first_byte = data[0]
    if first_byte < 0xFD:
        return (first_byte, 1)
    widths = {0xFD: ("<H", 3), 0xFE: ("<I", 5), 0xFF: ("<Q", 9)}
    fmt, size = widths[first_byte]
    if len(data) < size:
        raise ValueError("Truncated compact size")
    return (struct.unpack(fmt, data[1:size])[0], size)


def read_compact_size(stream: BinaryIO) -> int:
    """Reads a compact size integer from a byte stream"""
    first = stream.read(1)
    if not first:
        raise ValueError("Unexpected end of data while reading compact size")
    if first[0] < 0xFD:
        return first[0]
    width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[first[0]]
    return parse_compact_size(first + read_exact(stream, width))[0]


def read_exact(stream: BinaryIO, length: int) -> bytes:
    """Reads exactly length bytes from stream or raises ValueError"""
    data = stream.read(length)
    if len(data) != length:
        raise ValueError(
            f"Unexpected end of data: wanted {length} bytes, got {len(data)}"
        )
    return data


def hash256(data: bytes) -> bytes:
    """Double SHA-256, used for txids and base58 checksums"""
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def b_to_h(b: bytes) -> str:
    """Converts bytes to hexadecimal string"""
    return b.hex()


def h_to_b(h: str) -> bytes:
    """Converts hexadecimal string to bytes"""
    return bytes.fromhex(h)


def to_bytes(data: str | bytes) -> bytes:
    """Accepts hex strings or raw bytes and returns bytes"""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str):
        return h_to_b(data)
    raise TypeError("Expected a hexadecimal string or bytes")
