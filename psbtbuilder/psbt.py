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

"""BIP-174 (version 0) partially signed transaction container.

Only the fields an unsigned PSBT produced by the builder (or handed to it
by a counterparty) can carry are decoded; every other key-value pair is
kept verbatim in ``unknown`` so that a decode/encode round trip is lossless.
"""

import base64
import binascii
import struct
from io import BytesIO
from typing import BinaryIO, Dict, List, Optional, Tuple

from psbtbuilder.script import Script
from psbtbuilder.transactions import Transaction, TxInput, TxOutput
from psbtbuilder.utils import (
    b_to_h,
    encode_varint,
    prepend_compact_size,
    read_compact_size,
    read_exact,
    to_bytes,
)


class PSBTInput:
    """Signing metadata of one input

    Attributes
    ----------
    non_witness_utxo : Transaction
        the full previous transaction (legacy inputs)
    witness_utxo : TxOutput
        the spent output (segwit and taproot inputs)
    partial_sigs : dict
        pubkey bytes -> signature bytes
    sighash_type : int
    redeem_script : Script
    witness_script : Script
    final_scriptsig : Script
    final_scriptwitness : list (bytes)
    tap_key_sig : bytes
    tap_leaf_scripts : dict
        control block bytes -> (script bytes, leaf version)
    tap_internal_key : bytes
        32 byte x-only key
    unknown : dict
        full key bytes -> value bytes for any other pair
    """

    def __init__(self):
        self.non_witness_utxo: Optional[Transaction] = None
        self.witness_utxo: Optional[TxOutput] = None
        self.partial_sigs: Dict[bytes, bytes] = {}
        self.sighash_type: Optional[int] = None
        self.redeem_script: Optional[Script] = None
        self.witness_script: Optional[Script] = None
        self.final_scriptsig: Optional[Script] = None
        self.final_scriptwitness: Optional[List[bytes]] = None
        self.tap_key_sig: Optional[bytes] = None
        self.tap_leaf_scripts: Dict[bytes, Tuple[bytes, int]] = {}
        self.tap_internal_key: Optional[bytes] = None
        self.unknown: Dict[bytes, bytes] = {}


class PSBTOutput:
    """Metadata of one output; the builder leaves it empty"""

    def __init__(self):
        self.redeem_script: Optional[Script] = None
        self.witness_script: Optional[Script] = None
        self.tap_internal_key: Optional[bytes] = None
        self.unknown: Dict[bytes, bytes] = {}


class PSBT:
    """A partially signed bitcoin transaction

    Attributes
    ----------
    tx : Transaction
        the unsigned transaction
    inputs : list (PSBTInput)
        one entry per transaction input
    outputs : list (PSBTOutput)
        one entry per transaction output
    unknown : dict
        unknown global pairs

    Methods
    -------
    add_input(tx_input, psbt_input)
    add_output(tx_output, psbt_output)
    set_input_sequence(index, sequence)
    input_script(index)
        returns the previous output script of an input, if known
    to_bytes(), to_hex(), to_base64()
    from_bytes(), from_hex(), from_base64() (classmethods)

    Raises
    ------
    ValueError
        when decoding malformed data
    """

    # PSBT magic bytes and version
    MAGIC = b"psbt"
    SEPARATOR = b"\xff"

    # Key types as defined in BIP-174 and BIP-371
    class GlobalTypes:
        UNSIGNED_TX = 0x00

    class InputTypes:
        NON_WITNESS_UTXO = 0x00
        WITNESS_UTXO = 0x01
        PARTIAL_SIG = 0x02
        SIGHASH_TYPE = 0x03
        REDEEM_SCRIPT = 0x04
        WITNESS_SCRIPT = 0x05
        FINAL_SCRIPTSIG = 0x07
        FINAL_SCRIPTWITNESS = 0x08
        TAP_KEY_SIG = 0x13
        TAP_LEAF_SCRIPT = 0x15
        TAP_INTERNAL_KEY = 0x17

    class OutputTypes:
        REDEEM_SCRIPT = 0x00
        WITNESS_SCRIPT = 0x01
        TAP_INTERNAL_KEY = 0x05

    def __init__(self, unsigned_tx: Optional[Transaction] = None):
        if unsigned_tx is None:
            unsigned_tx = Transaction([], [])
        # the global transaction never carries witnesses
        self.tx = Transaction(
            [TxInput.copy(txin) for txin in unsigned_tx.inputs],
            [TxOutput.copy(txout) for txout in unsigned_tx.outputs],
            unsigned_tx.locktime,
            unsigned_tx.version,
        )
        self.inputs: List[PSBTInput] = [PSBTInput() for _ in self.tx.inputs]
        self.outputs: List[PSBTOutput] = [PSBTOutput() for _ in self.tx.outputs]
        self.unknown: Dict[bytes, bytes] = {}

    def add_input(
        self, tx_input: TxInput, psbt_input: Optional[PSBTInput] = None
    ) -> int:
        """Appends an input and returns its index"""
        self.tx.inputs.append(
            TxInput(tx_input.txid, tx_input.txout_index, sequence=tx_input.sequence)
        )
        self.inputs.append(psbt_input if psbt_input is not None else PSBTInput())
        return len(self.inputs) - 1

    def add_output(
        self, tx_output: TxOutput, psbt_output: Optional[PSBTOutput] = None
    ) -> int:
        """Appends an output and returns its index"""
        self.tx.outputs.append(tx_output)
        self.outputs.append(psbt_output if psbt_output is not None else PSBTOutput())
        return len(self.outputs) - 1

    def set_input_sequence(self, index: int, sequence: str | bytes) -> None:
        self.tx.inputs[index].sequence = to_bytes(sequence)

    def input_script(self, index: int) -> Optional[Script]:
        """Returns the script of the output spent by input index, if known"""
        psbt_input = self.inputs[index]
        if psbt_input.witness_utxo is not None:
            return psbt_input.witness_utxo.script_pubkey
        if psbt_input.non_witness_utxo is not None:
            vout = self.tx.inputs[index].txout_index
            outputs = psbt_input.non_witness_utxo.outputs
            if vout < len(outputs):
                return outputs[vout].script_pubkey
        return None

    @classmethod
    def from_base64(cls, psbt_str: str) -> "PSBT":
        try:
            psbt_bytes = base64.b64decode(psbt_str, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 PSBT: {e}") from e
        return cls.from_bytes(psbt_bytes)

    @classmethod
    def from_hex(cls, psbt_hex: str) -> "PSBT":
        return cls.from_bytes(bytes.fromhex(psbt_hex))

    @classmethod
    def from_bytes(cls, psbt_bytes: bytes) -> "PSBT":
        stream = BytesIO(psbt_bytes)

        magic = stream.read(4)
        if magic != cls.MAGIC:
            raise ValueError(f"Invalid PSBT magic: {magic.hex()}")
        if stream.read(1) != cls.SEPARATOR:
            raise ValueError("Invalid PSBT separator")

        psbt = cls()
        psbt._parse_global_section(stream)
        for i in range(len(psbt.tx.inputs)):
            psbt._parse_input_section(stream, i)
        for i in range(len(psbt.tx.outputs)):
            psbt._parse_output_section(stream, i)

        if stream.read(1):
            raise ValueError("Trailing data after PSBT")
        return psbt

    def to_bytes(self) -> bytes:
        result = BytesIO()
        result.write(self.MAGIC)
        result.write(self.SEPARATOR)

        self._serialize_global_section(result)
        for i in range(len(self.inputs)):
            self._serialize_input_section(result, i)
        for i in range(len(self.outputs)):
            self._serialize_output_section(result, i)

        return result.getvalue()

    def to_hex(self) -> str:
        return b_to_h(self.to_bytes())

    def to_base64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode("ascii")

    def _parse_global_section(self, stream: BinaryIO) -> None:
        """Parse the global section of a PSBT."""
        found_tx = False
        for key_type, key_data, value_data in self._read_section(stream):
            if key_type == self.GlobalTypes.UNSIGNED_TX and not key_data:
                tx = Transaction.from_raw(value_data)
                if tx.has_segwit:
                    raise ValueError("Unsigned transaction must not have witnesses")
                self.tx = tx
                self.inputs = [PSBTInput() for _ in tx.inputs]
                self.outputs = [PSBTOutput() for _ in tx.outputs]
                found_tx = True
            else:
                self.unknown[bytes([key_type]) + key_data] = value_data
        if not found_tx:
            raise ValueError("PSBT has no unsigned transaction")

    def _parse_input_section(self, stream: BinaryIO, input_index: int) -> None:
        """Parse an input section of a PSBT."""
        psbt_input = self.inputs[input_index]
        types = self.InputTypes

        for key_type, key_data, value_data in self._read_section(stream):
            if key_type == types.NON_WITNESS_UTXO and not key_data:
                psbt_input.non_witness_utxo = Transaction.from_raw(value_data)
            elif key_type == types.WITNESS_UTXO and not key_data:
                stream_value = BytesIO(value_data)
                psbt_input.witness_utxo = TxOutput.from_stream(stream_value)
            elif key_type == types.PARTIAL_SIG:
                psbt_input.partial_sigs[key_data] = value_data
            elif key_type == types.SIGHASH_TYPE and not key_data:
                (psbt_input.sighash_type,) = struct.unpack("<I", value_data)
            elif key_type == types.REDEEM_SCRIPT and not key_data:
                psbt_input.redeem_script = Script.from_raw(value_data)
            elif key_type == types.WITNESS_SCRIPT and not key_data:
                psbt_input.witness_script = Script.from_raw(value_data)
            elif key_type == types.FINAL_SCRIPTSIG and not key_data:
                psbt_input.final_scriptsig = Script.from_raw(value_data)
            elif key_type == types.FINAL_SCRIPTWITNESS and not key_data:
                stream_value = BytesIO(value_data)
                count = read_compact_size(stream_value)
                psbt_input.final_scriptwitness = [
                    read_exact(stream_value, read_compact_size(stream_value))
                    for _ in range(count)
                ]
            elif key_type == types.TAP_KEY_SIG and not key_data:
                psbt_input.tap_key_sig = value_data
            elif key_type == types.TAP_LEAF_SCRIPT and value_data:
                psbt_input.tap_leaf_scripts[key_data] = (value_data[:-1], value_data[-1])
            elif key_type == types.TAP_INTERNAL_KEY and not key_data:
                psbt_input.tap_internal_key = value_data
            else:
                psbt_input.unknown[bytes([key_type]) + key_data] = value_data

    def _parse_output_section(self, stream: BinaryIO, output_index: int) -> None:
        """Parse an output section of a PSBT."""
        psbt_output = self.outputs[output_index]
        types = self.OutputTypes

        for key_type, key_data, value_data in self._read_section(stream):
            if key_type == types.REDEEM_SCRIPT and not key_data:
                psbt_output.redeem_script = Script.from_raw(value_data)
            elif key_type == types.WITNESS_SCRIPT and not key_data:
                psbt_output.witness_script = Script.from_raw(value_data)
            elif key_type == types.TAP_INTERNAL_KEY and not key_data:
                psbt_output.tap_internal_key = value_data
            else:
                psbt_output.unknown[bytes([key_type]) + key_data] = value_data

    def _serialize_global_section(self, result: BinaryIO) -> None:
        self._write_key_value_pair(
            result,
            self.GlobalTypes.UNSIGNED_TX,
            b"",
            self.tx.to_bytes(include_witness=False),
        )
        self._write_unknown(result, self.unknown)
        result.write(b"\x00")

    def _serialize_input_section(self, result: BinaryIO, input_index: int) -> None:
        psbt_input = self.inputs[input_index]
        types = self.InputTypes
        write = self._write_key_value_pair

        if psbt_input.non_witness_utxo is not None:
            write(result, types.NON_WITNESS_UTXO, b"", psbt_input.non_witness_utxo.to_bytes())
        if psbt_input.witness_utxo is not None:
            write(result, types.WITNESS_UTXO, b"", psbt_input.witness_utxo.to_bytes())
        for pubkey, signature in psbt_input.partial_sigs.items():
            write(result, types.PARTIAL_SIG, pubkey, signature)
        if psbt_input.sighash_type is not None:
            write(result, types.SIGHASH_TYPE, b"", struct.pack("<I", psbt_input.sighash_type))
        if psbt_input.redeem_script is not None:
            write(result, types.REDEEM_SCRIPT, b"", psbt_input.redeem_script.to_bytes())
        if psbt_input.witness_script is not None:
            write(result, types.WITNESS_SCRIPT, b"", psbt_input.witness_script.to_bytes())
        if psbt_input.final_scriptsig is not None:
            write(result, types.FINAL_SCRIPTSIG, b"", psbt_input.final_scriptsig.to_bytes())
        if psbt_input.final_scriptwitness is not None:
            witness_data = encode_varint(len(psbt_input.final_scriptwitness))
            for item in psbt_input.final_scriptwitness:
                witness_data += prepend_compact_size(item)
            write(result, types.FINAL_SCRIPTWITNESS, b"", witness_data)
        if psbt_input.tap_key_sig is not None:
            write(result, types.TAP_KEY_SIG, b"", psbt_input.tap_key_sig)
        for control_block, (script, leaf_version) in psbt_input.tap_leaf_scripts.items():
            write(result, types.TAP_LEAF_SCRIPT, control_block, script + bytes([leaf_version]))
        if psbt_input.tap_internal_key is not None:
            write(result, types.TAP_INTERNAL_KEY, b"", psbt_input.tap_internal_key)
        self._write_unknown(result, psbt_input.unknown)

        result.write(b"\x00")

    def _serialize_output_section(self, result: BinaryIO, output_index: int) -> None:
        psbt_output = self.outputs[output_index]
        types = self.OutputTypes
        write = self._write_key_value_pair

        if psbt_output.redeem_script is not None:
            write(result, types.REDEEM_SCRIPT, b"", psbt_output.redeem_script.to_bytes())
        if psbt_output.witness_script is not None:
            write(result, types.WITNESS_SCRIPT, b"", psbt_output.witness_script.to_bytes())
        if psbt_output.tap_internal_key is not None:
            write(result, types.TAP_INTERNAL_KEY, b"", psbt_output.tap_internal_key)
        self._write_unknown(result, psbt_output.unknown)

        result.write(b"\x00")

    def _read_section(self, stream: BinaryIO):
        """Yields (key_type, key_data, value) until the section separator"""
        seen = set()
        while True:
            key_len = read_compact_size(stream)
            if key_len == 0:
                return
            key = read_exact(stream, key_len)
            value = read_exact(stream, read_compact_size(stream))
            if key in seen:
                raise ValueError(f"Duplicate PSBT key: {key.hex()}")
            seen.add(key)
            yield key[0], key[1:], value

    def _write_unknown(self, result: BinaryIO, pairs: Dict[bytes, bytes]) -> None:
        for key, value in pairs.items():
            result.write(prepend_compact_size(key))
            result.write(prepend_compact_size(value))

    def _write_key_value_pair(
        self, result: BinaryIO, key_type: int, key_data: bytes, value_data: bytes
    ) -> None:
        """Write a key-value pair to the stream."""
        key = bytes([key_type]) + key_data
        result.write(prepend_compact_size(key))
        result.write(prepend_compact_size(value_data))

    def __str__(self) -> str:
        return str({"tx": self.tx, "inputs": len(self.inputs), "outputs": len(self.outputs)})

    def __repr__(self) -> str:
        return self.__str__()
