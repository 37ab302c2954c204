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
from io import BytesIO
from typing import BinaryIO, Optional

from psbtbuilder.constants import (
    DEFAULT_TX_SEQUENCE,
    DEFAULT_TX_LOCKTIME,
    DEFAULT_TX_VERSION,
)
from psbtbuilder.script import Script
from psbtbuilder.utils import (
    encode_varint,
    prepend_compact_size,
    h_to_b,
    b_to_h,
    hash256,
    read_compact_size,
    read_exact,
    to_bytes,
)


class TxInput:
    """Represents a transaction input.

    A transaction input requires a transaction id of a UTXO and the index of
    that UTXO.

    Attributes
    ----------
    txid : str
        the transaction id as a hex string (little-endian as displayed by
        tools)
    txout_index : int
        the index of the UTXO that we want to spend
    script_sig : Script
        the unlocking script; always empty in an unsigned PSBT
    sequence : bytes
        the input sequence (for timelocks, RBF, etc.)

    Methods
    -------
    to_bytes()
        serializes TxInput to bytes
    copy()
        creates a copy of the object (classmethod)
    from_stream()
        reads a TxInput from a byte stream (staticmethod)
    """

    def __init__(
        self,
        txid: str,
        txout_index: int,
        script_sig: Optional[Script] = None,
        sequence: str | bytes = DEFAULT_TX_SEQUENCE,
    ) -> None:
        """See TxInput description"""

        if len(txid) != 64:
            raise ValueError(f"Invalid txid: {txid}")
        # expected in the format used for displaying Bitcoin hashes
        self.txid = txid.lower()
        self.txout_index = txout_index
        self.script_sig = script_sig if script_sig is not None else Script([])
        self.sequence = to_bytes(sequence)

    @property
    def sequence_number(self) -> int:
        return struct.unpack("<I", self.sequence)[0]

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        # the txid is displayed in little-endian so the bytes are reversed
        txid_bytes = h_to_b(self.txid)[::-1]
        txout_bytes = struct.pack("<L", self.txout_index)
        return (
            txid_bytes
            + txout_bytes
            + prepend_compact_size(self.script_sig.to_bytes())
            + self.sequence
        )

    def __str__(self):
        return str(
            {
                "txid": self.txid,
                "txout_index": self.txout_index,
                "script_sig": self.script_sig,
                "sequence": self.sequence.hex(),
            }
        )

    def __repr__(self):
        return self.__str__()

    @staticmethod
    def from_stream(stream: BinaryIO) -> "TxInput":
        """Reads a TxInput from the current position of a byte stream"""
        txid = read_exact(stream, 32)[::-1]
        (vout,) = struct.unpack("<I", read_exact(stream, 4))
        script_sig = read_exact(stream, read_compact_size(stream))
        sequence = read_exact(stream, 4)
        return TxInput(
            txid=txid.hex(),
            txout_index=vout,
            script_sig=Script.from_raw(script_sig),
            sequence=sequence,
        )

    @classmethod
    def copy(cls, txin: "TxInput") -> "TxInput":
        """Deep copy of TxInput"""

        return cls(txin.txid, txin.txout_index, txin.script_sig, txin.sequence)


class TxWitnessInput:
    """A list of the witness items required to satisfy the locking conditions
       of a segwit input (aka witness stack).

    Attributes
    ----------
    stack : list
        the witness items (hex str) list
    """

    def __init__(self, stack: list[str]) -> None:
        """See description"""

        self.stack = stack

    def to_bytes(self) -> bytes:
        """Converts to bytes, item count included"""
        stack_bytes = encode_varint(len(self.stack))
        for item in self.stack:
            stack_bytes += prepend_compact_size(h_to_b(item))
        return stack_bytes

    @classmethod
    def copy(cls, txwin: "TxWitnessInput") -> "TxWitnessInput":
        """Deep copy of TxWitnessInput"""

        return cls(list(txwin.stack))

    def __str__(self) -> str:
        return str({"witness_items": self.stack})

    def __repr__(self) -> str:
        return self.__str__()


class TxOutput:
    """Represents a transaction output

    Attributes
    ----------
    amount : int
        the value we want to send to this output in satoshis
    script_pubkey : Script
        the script that will lock this amount
    """

    def __init__(self, amount: int, script_pubkey: Script) -> None:
        """See TxOutput description"""

        if not isinstance(amount, int) or isinstance(amount, bool):
            raise TypeError("Amount needs to be in satoshis as an integer")

        self.amount = amount
        self.script_pubkey = script_pubkey

    def to_bytes(self) -> bytes:
        """Serializes to bytes"""

        amount_bytes = struct.pack("<q", self.amount)
        return amount_bytes + prepend_compact_size(self.script_pubkey.to_bytes())

    @staticmethod
    def from_stream(stream: BinaryIO) -> "TxOutput":
        """Reads a TxOutput from the current position of a byte stream"""
        (amount,) = struct.unpack("<q", read_exact(stream, 8))
        script = read_exact(stream, read_compact_size(stream))
        return TxOutput(amount=amount, script_pubkey=Script.from_raw(script))

    def __str__(self) -> str:
        return str({"amount": self.amount, "script_pubkey": self.script_pubkey})

    def __repr__(self) -> str:
        return self.__str__()

    @classmethod
    def copy(cls, txout: "TxOutput") -> "TxOutput":
        """Deep copy of TxOutput"""

        return cls(txout.amount, txout.script_pubkey)


class Transaction:
    """Represents a Bitcoin transaction

    Attributes
    ----------
    inputs : list (TxInput)
        A list of all the transaction inputs
    outputs : list (TxOutput)
        A list of all the transaction outputs
    locktime : bytes
        The transaction's locktime parameter
    version : bytes
        The transaction version
    has_segwit : bool
        Specifies a tx that includes segwit inputs
    witnesses : list (TxWitnessInput)
        The witness structure that corresponds to the inputs

    Methods
    -------
    to_bytes()
        Serializes Transaction to bytes
    to_hex()
        converts result of to_bytes to hexadecimal string
    from_raw()
        Instantiates a Transaction from raw hex or bytes (staticmethod)
    get_txid()
        Calculates txid and returns it
    get_size()
        Calculates the tx size
    get_vsize()
        Calculates the tx segwit size
    copy()
        creates a copy of the object (classmethod)
    """

    def __init__(
        self,
        inputs: Optional[list[TxInput]] = None,
        outputs: Optional[list[TxOutput]] = None,
        locktime: str | bytes = DEFAULT_TX_LOCKTIME,
        version: str | bytes = DEFAULT_TX_VERSION,
        has_segwit: bool = False,
        witnesses: Optional[list[TxWitnessInput]] = None,
    ) -> None:
        """See Transaction description"""

        self.inputs = inputs if inputs is not None else []
        self.outputs = outputs if outputs is not None else []
        self.has_segwit = has_segwit
        self.witnesses = witnesses if witnesses is not None else []
        self.locktime = to_bytes(locktime)
        self.version = to_bytes(version)

    def to_bytes(self, include_witness: bool = True) -> bytes:
        """Serializes transaction to bytes following the Bitcoin protocol serialization

        Parameters
        ----------
        include_witness : bool
            Whether to include witness data in serialization
        """
        inputs_ser = b"".join(txin.to_bytes() for txin in self.inputs)
        outputs_ser = b"".join(txout.to_bytes() for txout in self.outputs)
        body = (
            encode_varint(len(self.inputs))
            + inputs_ser
            + encode_varint(len(self.outputs))
            + outputs_ser
        )

        if not include_witness or not self.has_segwit:
            return self.version + body + self.locktime

        witness_ser = b"".join(witness.to_bytes() for witness in self.witnesses)
        # inputs without explicit witness data get an empty stack
        witness_ser += b"\x00" * max(0, len(self.inputs) - len(self.witnesses))
        return self.version + b"\x00\x01" + body + witness_ser + self.locktime

    def to_hex(self) -> str:
        """Serializes transaction to hex string"""
        return b_to_h(self.to_bytes(include_witness=self.has_segwit))

    def get_txid(self) -> str:
        """Calculates the transaction id (txid) and returns it"""
        # txid serialization never includes marker, flag and witness data
        return hash256(self.to_bytes(include_witness=False))[::-1].hex()

    def get_size(self) -> int:
        """Calculates the transaction size in bytes (including witness data if present)"""
        return len(self.to_bytes(include_witness=self.has_segwit))

    def get_vsize(self) -> int:
        """Calculates the virtual transaction size

        vsize = ceil(weight / 4) where weight = 3 * non_witness_size + full_size
        """
        non_witness_size = len(self.to_bytes(include_witness=False))
        full_size = self.get_size()
        weight = 3 * non_witness_size + full_size
        return (weight + 3) // 4

    @staticmethod
    def from_raw(rawtx: str | bytes) -> "Transaction":
        """
        Imports a Transaction from hexadecimal data or bytes.

        Raises ValueError if the data is truncated or has trailing bytes.
        """
        raw = to_bytes(rawtx)
        stream = BytesIO(raw)
        tx = Transaction.from_stream(stream)
        if stream.read(1):
            raise ValueError("Trailing data after transaction")
        return tx

    @staticmethod
    def from_stream(stream: BinaryIO) -> "Transaction":
        version = read_exact(stream, 4)

        has_segwit = False
        n_inputs = read_compact_size(stream)
        if n_inputs == 0:
            # marker 0x00 followed by flag 0x01
            flag = read_exact(stream, 1)
            if flag != b"\x01":
                raise ValueError("Invalid segwit flag")
            has_segwit = True
            n_inputs = read_compact_size(stream)

        inputs = [TxInput.from_stream(stream) for _ in range(n_inputs)]
        n_outputs = read_compact_size(stream)
        outputs = [TxOutput.from_stream(stream) for _ in range(n_outputs)]

        witnesses = []
        if has_segwit:
            for _ in range(n_inputs):
                n_items = read_compact_size(stream)
                stack = [
                    read_exact(stream, read_compact_size(stream)).hex()
                    for _ in range(n_items)
                ]
                witnesses.append(TxWitnessInput(stack=stack))

        locktime = read_exact(stream, 4)

        return Transaction(
            inputs=inputs,
            outputs=outputs,
            version=version,
            locktime=locktime,
            has_segwit=has_segwit,
            witnesses=witnesses,
        )

    def __str__(self) -> str:
        return str(
            {
                "inputs": self.inputs,
                "outputs": self.outputs,
                "has_segwit": self.has_segwit,
                "witnesses": self.witnesses,
                "locktime": self.locktime.hex(),
                "version": self.version.hex(),
            }
        )

    def __repr__(self) -> str:
        return self.__str__()

    @classmethod
    def copy(cls, tx: "Transaction") -> "Transaction":
        """Deep copy of Transaction"""

        ins = [TxInput.copy(txin) for txin in tx.inputs]
        outs = [TxOutput.copy(txout) for txout in tx.outputs]
        wits = [TxWitnessInput.copy(witness) for witness in tx.witnesses]
        return cls(ins, outs, tx.locktime, tx.version, tx.has_segwit, wits)
