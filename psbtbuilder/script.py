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

import struct
from typing import Any, Optional

from psbtbuilder.utils import b_to_h, h_to_b, to_bytes


# Op codes needed to describe and recognise standard output scripts
OP_CODES = {
    # constants
    "OP_0": b"\x00",
    "OP_PUSHDATA1": b"\x4c",
    "OP_PUSHDATA2": b"\x4d",
    "OP_PUSHDATA4": b"\x4e",
    "OP_1NEGATE": b"\x4f",
    "OP_1": b"\x51",
    "OP_2": b"\x52",
    "OP_3": b"\x53",
    "OP_4": b"\x54",
    "OP_5": b"\x55",
    "OP_6": b"\x56",
    "OP_7": b"\x57",
    "OP_8": b"\x58",
    "OP_9": b"\x59",
    "OP_10": b"\x5a",
    "OP_11": b"\x5b",
    "OP_12": b"\x5c",
    "OP_13": b"\x5d",
    "OP_14": b"\x5e",
    "OP_15": b"\x5f",
    "OP_16": b"\x60",
    # flow control
    "OP_NOP": b"\x61",
    "OP_IF": b"\x63",
    "OP_NOTIF": b"\x64",
    "OP_ELSE": b"\x67",
    "OP_ENDIF": b"\x68",
    "OP_VERIFY": b"\x69",
    "OP_RETURN": b"\x6a",
    # stack
    "OP_DROP": b"\x75",
    "OP_DUP": b"\x76",
    # bitwise logic
    "OP_EQUAL": b"\x87",
    "OP_EQUALVERIFY": b"\x88",
    # crypto
    "OP_SHA256": b"\xa8",
    "OP_HASH160": b"\xa9",
    "OP_CHECKSIG": b"\xac",
    "OP_CHECKSIGVERIFY": b"\xad",
    "OP_CHECKMULTISIG": b"\xae",
    "OP_CHECKSIGADD": b"\xba",
    # locktime
    "OP_CHECKLOCKTIMEVERIFY": b"\xb1",
    "OP_CHECKSEQUENCEVERIFY": b"\xb2",
}

CODE_OPS = {code: name for name, code in OP_CODES.items()}


class Script:
    """Represents any script in Bitcoin

    A Script is a list of op code names and hex encoded data pushes. A script
    parsed with from_raw() remembers its exact bytes so that non-minimal
    pushes survive serialization unchanged.

    Attributes
    ----------
    script : list
        the list with all the script OP_CODES and data

    Methods
    -------
    to_bytes()
        returns a serialized byte version of the script
    to_hex()
        returns a serialized version of the script in hex
    from_raw()
        parses a script from bytes or hex (staticmethod)
    is_p2pkh(), is_p2sh(), is_p2wpkh(), is_p2wsh(), is_p2tr()
        standard output script templates
    get_script_type()
        determines the type of script
    witness_program()
        returns (version, program) for a segwit output script

    Raises
    ------
    ValueError
        If string data is too large or integer is negative
    """

    def __init__(self, script: list[Any], raw: Optional[bytes] = None):
        """See Script description"""
        self.script: list[Any] = script
        self._raw = raw

    def _op_push_data(self, data: str) -> bytes:
        """Converts data to appropriate OP_PUSHDATA OP code including length"""
        data_bytes = h_to_b(data)

        if len(data_bytes) < 0x4C:
            return bytes([len(data_bytes)]) + data_bytes
        elif len(data_bytes) <= 0xFF:
            return b"\x4c" + bytes([len(data_bytes)]) + data_bytes
        elif len(data_bytes) <= 0xFFFF:
            return b"\x4d" + struct.pack("<H", len(data_bytes)) + data_bytes
        elif len(data_bytes) <= 0xFFFFFFFF:
            return b"\x4e" + struct.pack("<I", len(data_bytes)) + data_bytes
        else:
            raise ValueError("Data too large. Cannot push into script")

    def to_bytes(self) -> bytes:
        """Converts the script to bytes"""
        if self._raw is not None:
            return self._raw
        script_bytes = b""
        for token in self.script:
            if isinstance(token, str) and token in OP_CODES:
                script_bytes += OP_CODES[token]
            elif isinstance(token, int) and 0 <= token <= 16:
                script_bytes += OP_CODES["OP_" + str(token)]
            elif isinstance(token, int):
                raise ValueError("Only small integers (0-16) can be pushed")
            else:
                script_bytes += self._op_push_data(token)
        return script_bytes

    def to_hex(self) -> str:
        """Converts the script to hexadecimal"""
        return b_to_h(self.to_bytes())

    @staticmethod
    def from_raw(scriptraw: str | bytes) -> "Script":
        """
        Imports a Script commands list from raw hexadecimal data or bytes.

        Bytes that do not decode (truncated pushes, unassigned op codes) are
        kept as OP_UNKNOWN tokens; the original bytes are always preserved.
        """
        raw = to_bytes(scriptraw)
        commands: list[Any] = []
        index = 0

        while index < len(raw):
            byte = raw[index]
            index += 1
            if 0x01 <= byte <= 0x4B:
                length = byte
            elif byte in (0x4C, 0x4D, 0x4E):
                width = {0x4C: 1, 0x4D: 2, 0x4E: 4}[byte]
                if index + width > len(raw):
                    commands.append("OP_UNKNOWN_%02x" % byte)
                    break
                length = int.from_bytes(raw[index : index + width], "little")
                index += width
            else:
                commands.append(CODE_OPS.get(bytes([byte]), "OP_UNKNOWN_%02x" % byte))
                continue
            if index + length > len(raw):
                commands.append("OP_UNKNOWN_%02x" % byte)
                break
            commands.append(raw[index : index + length].hex())
            index += length

        return Script(commands, raw=raw)

    def get_script(self) -> list[Any]:
        """Returns script as array of strings"""
        return self.script

    def is_p2pkh(self) -> bool:
        """OP_DUP OP_HASH160 <20 bytes> OP_EQUALVERIFY OP_CHECKSIG"""
        b = self.to_bytes()
        return (
            len(b) == 25
            and b[:3] == b"\x76\xa9\x14"
            and b[23:] == b"\x88\xac"
        )

    def is_p2sh(self) -> bool:
        """OP_HASH160 <20 bytes> OP_EQUAL"""
        b = self.to_bytes()
        return len(b) == 23 and b[:2] == b"\xa9\x14" and b[22:] == b"\x87"

    def is_p2wpkh(self) -> bool:
        """OP_0 <20 bytes>"""
        b = self.to_bytes()
        return len(b) == 22 and b[:2] == b"\x00\x14"

    def is_p2wsh(self) -> bool:
        """OP_0 <32 bytes>"""
        b = self.to_bytes()
        return len(b) == 34 and b[:2] == b"\x00\x20"

    def is_p2tr(self) -> bool:
        """OP_1 <32 bytes>"""
        b = self.to_bytes()
        return len(b) == 34 and b[:2] == b"\x51\x20"

    def witness_program(self) -> Optional[tuple[int, bytes]]:
        """Returns (witness version, program) for segwit scripts, else None"""
        b = self.to_bytes()
        if len(b) < 4 or len(b) > 42:
            return None
        if b[0] != 0x00 and not (0x51 <= b[0] <= 0x60):
            return None
        if b[1] != len(b) - 2:
            return None
        version = 0 if b[0] == 0x00 else b[0] - 0x50
        return version, b[2:]

    def get_script_type(self) -> str:
        """
        Determine the type of script.

        Returns:
            str: Script type ('p2pkh', 'p2sh', 'p2wpkh', 'p2wsh', 'p2tr', 'unknown')
        """
        if self.is_p2pkh():
            return "p2pkh"
        elif self.is_p2sh():
            return "p2sh"
        elif self.is_p2wpkh():
            return "p2wpkh"
        elif self.is_p2wsh():
            return "p2wsh"
        elif self.is_p2tr():
            return "p2tr"
        else:
            return "unknown"

    def __len__(self) -> int:
        return len(self.to_bytes())

    def __str__(self) -> str:
        return str(self.script)

    def __repr__(self) -> str:
        return self.__str__()

    def __eq__(self, _other: object) -> bool:
        if not isinstance(_other, Script):
            return False
        return self.to_bytes() == _other.to_bytes()

    def __hash__(self) -> int:
        return hash(self.to_bytes())
